"""Test doubles shared by the unit tests."""
from __future__ import annotations

import io
import json
from typing import Any, Dict, List, Optional, Tuple

from PIL import Image

from action_channel import ActionChannel
from actions import ActionDescriptor, ActionMetadata, ActionResult, BrowserAction, WindowInfo
from exceptions import ActionError, ActionErrorKind, AIError, AIErrorKind
from llm_client import ModelReply, ToolCall
from test_types import TokenUsage


def make_png(width: int = 64, height: int = 48) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 220, 240)).save(buffer, format="PNG")
    return buffer.getvalue()


def tool_reply(*calls: Tuple[str, Dict[str, Any]], usage: Tuple[int, int] = (10, 5)) -> ModelReply:
    """Model reply carrying the given (tool name, arguments) calls."""
    return ModelReply(
        text="",
        tool_calls=[
            ToolCall(id=f"call_{i}", name=name, arguments=json.dumps(args))
            for i, (name, args) in enumerate(calls)
        ],
        usage=TokenUsage(*usage),
    )


def text_reply(text: str, usage: Tuple[int, int] = (10, 5)) -> ModelReply:
    return ModelReply(text=text, usage=TokenUsage(*usage))


class ScriptedModel:
    """Model client stub replaying a fixed list of replies."""

    def __init__(self, replies: List[ModelReply], repeat_last: bool = False):
        self.replies = list(replies)
        self.repeat_last = repeat_last
        self.calls = 0
        self.seen_messages: List[List[Dict[str, Any]]] = []

    async def complete(self, messages, tools) -> ModelReply:
        self.calls += 1
        self.seen_messages.append(list(messages))
        if not self.replies:
            raise AIError(AIErrorKind.PROVIDER_FAILURE, "No scripted reply left")
        if self.repeat_last and len(self.replies) == 1:
            return self.replies[0]
        return self.replies.pop(0)


class StubChannel(ActionChannel):
    """In-memory ActionChannel with controllable UI fingerprints."""

    def __init__(
        self,
        fingerprints: Optional[Dict[Tuple[int, int], str]] = None,
        default_fingerprint: str = "fp-default",
        fail_actions: Optional[set] = None,
    ):
        self.fingerprints = fingerprints or {}
        self.default_fingerprint = default_fingerprint
        self.fail_actions = fail_actions or set()
        self.executed: List[ActionDescriptor] = []
        self.fingerprint_queries: List[Tuple[int, int]] = []
        self.url = "http://localhost:3000/"
        self.cursor = (0, 0)

    async def execute(self, descriptor) -> ActionResult:
        if not isinstance(descriptor, ActionDescriptor):
            descriptor = ActionDescriptor.from_tool_input(descriptor)
        if descriptor.action in self.fail_actions:
            raise ActionError(ActionErrorKind.BACKEND_FAILURE, f"{descriptor.action.value} failed")
        self.executed.append(descriptor)
        metadata = ActionMetadata()
        if descriptor.is_pointer_action:
            metadata.target = descriptor.coordinate or self.cursor
            metadata.ui_fingerprint = self.fingerprints.get(metadata.target, self.default_fingerprint)
            self.cursor = metadata.target
        if descriptor.action == BrowserAction.NAVIGATE:
            self.url = descriptor.url
        payload = make_png() if descriptor.action == BrowserAction.SCREENSHOT else None
        metadata.window_info = WindowInfo(url=self.url, title="Stub")
        return ActionResult(message=f"did {descriptor.action.value}", payload=payload, metadata=metadata)

    async def get_ui_fingerprint(self, x: int, y: int) -> str:
        self.fingerprint_queries.append((x, y))
        return self.fingerprints.get((x, y), self.default_fingerprint)

    async def window_info(self) -> WindowInfo:
        return WindowInfo(url=self.url, title="Stub")

    @property
    def non_screenshot_actions(self) -> List[BrowserAction]:
        return [d.action for d in self.executed if d.action != BrowserAction.SCREENSHOT]
