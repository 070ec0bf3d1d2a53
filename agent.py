"""Model-driven action loop that turns a test definition into a verdict."""
from __future__ import annotations

import base64
import io
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Literal, Optional

from PIL import Image
from pydantic import BaseModel, ValidationError

from action_channel import ActionChannel
from actions import ActionDescriptor, BrowserAction, descriptor_from_tool_call
from exceptions import ActionError, AIError, AIErrorKind
from llm_client import ModelClient, ModelReply, ToolCall
from prompts import SYSTEM_PROMPT, VERDICT_REMINDER, build_test_prompt
from replay_cache import TraceStep
from test_types import TestDefinition, TokenUsage, Verdict


class VerdictPayload(BaseModel):
    """Schema of the JSON verdict the model must emit."""

    result: Literal["pass", "fail"]
    reason: str


def _delimited_objects(text: str) -> Iterator[str]:
    """Yield balanced ``{...}`` spans in order of their opening brace."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : i + 1]
                    break
        start = text.find("{", start + 1)


def extract_verdict(text: str) -> Optional[VerdictPayload]:
    """
    Find the verdict object in free model text.

    Returns None when the text holds no braces at all. The first span that is
    well-formed JSON must match the verdict schema; anything else raises
    ``AIError(invalid_response)``.
    """
    if "{" not in text:
        return None
    for candidate in _delimited_objects(text):
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        try:
            return VerdictPayload.model_validate(data)
        except ValidationError as e:
            raise AIError(
                AIErrorKind.INVALID_RESPONSE,
                f"Verdict does not match the expected schema: {e.errors()[0]['msg']}",
                response=text,
            ) from e
    raise AIError(AIErrorKind.INVALID_RESPONSE, "Could not parse verdict JSON from model response", response=text)


class Conversation:
    """Ordered message history for one agent loop invocation."""

    def __init__(self, max_turns: int):
        self.max_turns = max_turns
        self.turns = 0
        self.messages: List[Dict[str, Any]] = []

    @property
    def exhausted(self) -> bool:
        return self.turns >= self.max_turns

    def add_system(self, text: str) -> None:
        self.messages.append({"role": "system", "content": text})

    def add_user(self, text: str, image_url: Optional[str] = None) -> None:
        if image_url is None:
            self.messages.append({"role": "user", "content": text})
            return
        self.messages.append(
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": text},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            }
        )

    def add_reply(self, reply: ModelReply) -> None:
        self.turns += 1
        self.messages.append(reply.to_message())

    def add_tool_result(self, call: ToolCall, content: str) -> None:
        self.messages.append({"role": "tool", "tool_call_id": call.id, "content": content})


@dataclass
class AgentRun:
    """Verdict plus the executed steps, for persisting on pass."""

    verdict: Verdict
    steps: List[TraceStep] = field(default_factory=list)


class AgentLoop:
    """Drives a tool-use conversation with a vision model over an ActionChannel."""

    def __init__(
        self,
        client: ModelClient,
        channel: ActionChannel,
        logger: Optional[logging.Logger] = None,
        screenshot_max_width: int = 1280,
    ):
        self.client = client
        self.channel = channel
        self.logger = logger or logging.getLogger("agent")
        self.screenshot_max_width = screenshot_max_width

    def _image_url(self, png_bytes: bytes) -> str:
        """Downscale a screenshot and return it as a data URL."""
        image = Image.open(io.BytesIO(png_bytes))
        if image.width > self.screenshot_max_width:
            height = round(image.height * self.screenshot_max_width / image.width)
            image = image.resize((self.screenshot_max_width, height))
        buffer = io.BytesIO()
        image.convert("RGB").save(buffer, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")

    def _to_descriptor(self, call: ToolCall, usage: TokenUsage) -> ActionDescriptor:
        try:
            return descriptor_from_tool_call(call.name, call.arguments)
        except ValueError as e:
            raise AIError(
                AIErrorKind.INVALID_RESPONSE,
                f"Tool call {call.name} has malformed arguments: {e}",
                usage=usage,
                response=call.arguments,
            ) from e

    async def run(self, definition: TestDefinition, turn_budget: int) -> AgentRun:
        """Run the conversation until a verdict or until ``turn_budget`` model turns."""
        self.logger.info(f"Running '{definition.name}' with the model (budget {turn_budget} turns)")
        snapshot = await self.channel.execute(ActionDescriptor(action=BrowserAction.SCREENSHOT))

        conversation = Conversation(max_turns=turn_budget)
        conversation.add_system(SYSTEM_PROMPT)
        conversation.add_user(
            build_test_prompt(definition, snapshot.metadata.window_info),
            image_url=self._image_url(snapshot.payload) if snapshot.payload else None,
        )

        tools = self.channel.tool_definitions()
        usage = TokenUsage()
        steps: List[TraceStep] = []

        while not conversation.exhausted:
            try:
                reply = await self.client.complete(conversation.messages, tools)
            except AIError as e:
                e.usage = usage
                raise
            usage.add(reply.usage)
            conversation.add_reply(reply)
            self.logger.debug(f"Turn {conversation.turns}/{turn_budget}: {reply.text[:200]!r}")

            if reply.tool_calls:
                latest_screenshot: Optional[bytes] = None
                for call in reply.tool_calls:
                    try:
                        descriptor = self._to_descriptor(call, usage)
                        self.logger.info(f"Tool call: {call.name} {descriptor.to_tool_input()}")
                        result = await self.channel.execute(descriptor)
                    except ActionError as e:
                        e.usage = usage
                        raise
                    steps.append(TraceStep.from_result(descriptor, result))
                    conversation.add_tool_result(call, result.message)
                    if result.payload:
                        latest_screenshot = result.payload
                if latest_screenshot is not None:
                    conversation.add_user("Screenshot:", image_url=self._image_url(latest_screenshot))
                continue

            try:
                payload = extract_verdict(reply.text)
            except AIError as e:
                e.usage = usage
                raise
            if payload is not None:
                self.logger.info(f"Verdict for '{definition.name}': {payload.result} ({payload.reason})")
                return AgentRun(
                    verdict=Verdict(result=payload.result, reason=payload.reason, usage=usage),
                    steps=steps,
                )
            conversation.add_user(VERDICT_REMINDER)

        raise AIError(
            AIErrorKind.MAX_TURNS_REACHED,
            f"Reached maximum of {turn_budget} turns without a verdict",
            usage=usage,
        )
