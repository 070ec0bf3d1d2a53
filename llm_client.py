"""Thin wrapper over the OpenAI-compatible chat completions API."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    OpenAIError,
    RateLimitError,
)
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import AgentConfig
from exceptions import AIError, AIErrorKind
from test_types import TokenUsage

_TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str = "{}"


@dataclass
class ModelReply:
    """One model turn: free text and/or tool invocations."""

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)

    def to_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"role": "assistant", "content": self.text or None}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in self.tool_calls
            ]
        return message


class ModelClient:
    """Sends a conversation plus tool schema and returns the parsed reply."""

    def __init__(
        self,
        config: AgentConfig,
        client: Optional[AsyncOpenAI] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger("llm_client")
        self.client = client or AsyncOpenAI(api_key=config.api_key, base_url=config.base_url)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=2.0, min=2.0, max=10),
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _create(self, **kwargs: Any) -> Any:
        return await self.client.chat.completions.create(**kwargs)

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
    ) -> ModelReply:
        """Call the model; any provider failure becomes ``AIError(provider_failure)``."""
        try:
            response = await self._create(
                model=self.config.model,
                messages=messages,
                tools=tools,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except OpenAIError as e:
            raise AIError(AIErrorKind.PROVIDER_FAILURE, f"Model call failed: {e}") from e

        if not response.choices:
            raise AIError(AIErrorKind.INVALID_RESPONSE, "Model returned no choices")

        message = response.choices[0].message
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=call.function.arguments or "{}",
            )
            for call in (message.tool_calls or [])
        ]
        usage = TokenUsage()
        if response.usage is not None:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
            )
        reply = ModelReply(text=message.content or "", tool_calls=tool_calls, usage=usage)
        if self.config.debug_log_requests:
            self.logger.debug(
                "Model reply: "
                + json.dumps({"text": reply.text, "tool_calls": [c.__dict__ for c in tool_calls]})[:2000]
            )
        return reply
