"""Prompt text for the browser-testing agent."""
from __future__ import annotations

import json

from actions import WindowInfo
from test_types import TestDefinition

SYSTEM_PROMPT = """You are a QA engineer executing an end-to-end test in a real web browser.

You control the browser only through the provided tools:
- computer: mouse, keyboard, screenshot and cursor actions at pixel coordinates.
- navigate: open a URL (relative paths resolve against the application).
- sleep: wait for the page to settle.
- run_callback: run the test's code callback when the test is marked [HAS_CALLBACK].

Work through the test steps in order. Take a screenshot whenever you need to see
the current state of the page. Prefer moving the mouse to an element before
clicking it.

When you have finished, or when the test clearly cannot succeed, stop calling
tools and reply with exactly one JSON object and nothing else:
{"result": "pass" | "fail", "reason": "<one sentence explaining the verdict>"}
"""

VERDICT_REMINDER = (
    "Continue the test with tool calls, or if you are done reply with the JSON verdict "
    '{"result": "pass" | "fail", "reason": "..."}.'
)


def build_test_prompt(definition: TestDefinition, window: WindowInfo) -> str:
    """Initial user turn describing the test and the live page."""
    lines = [f'Test: "{definition.name}"']
    if definition.payload is not None:
        lines.append(f"Context: {json.dumps(definition.payload, default=str)}")
    lines.append(f"Callback function: {'[HAS_CALLBACK]' if definition.during else '[NO_CALLBACK]'}")
    if definition.before or definition.after:
        lines.append("Setup/teardown hooks run outside this session.")

    lines.append("\nSteps:")
    if definition.steps:
        lines.extend(f"{i}. {step}" for i, step in enumerate(definition.steps, 1))
    else:
        lines.append(f'1. "{definition.name}" expected to be successful')

    lines.append("\nCurrent Page State:")
    lines.append(f"URL: {window.url or 'unknown'}")
    lines.append(f"Title: {window.title or 'unknown'}")
    return "\n".join(lines)
