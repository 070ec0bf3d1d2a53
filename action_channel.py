"""Executes action descriptors against a live browser session."""
from __future__ import annotations

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import urljoin

from actions import (
    ActionDescriptor,
    ActionMetadata,
    ActionResult,
    BrowserAction,
    WindowInfo,
    normalize_key,
    tool_definitions,
)
from exceptions import ActionError, ActionErrorKind
from test_types import TestContext, invoke_callback

MAX_SLEEP_MS = 60_000
DEFAULT_SLEEP_MS = 1_000

Handler = Callable[[ActionDescriptor], Awaitable[Tuple[str, Optional[bytes]]]]


def hash_component(signature: str) -> str:
    """Stable UI fingerprint for a normalized component signature."""
    return hashlib.sha256(signature.encode("utf-8")).hexdigest()[:32]


class ActionChannel(ABC):
    """Capability surface the agent loop and replay depend on."""

    viewport_width: int = 1920
    viewport_height: int = 1080

    @abstractmethod
    async def execute(self, descriptor: Union[ActionDescriptor, Mapping[str, Any]]) -> ActionResult:
        """Execute one action and describe what happened."""

    @abstractmethod
    async def get_ui_fingerprint(self, x: int, y: int) -> str:
        """Read-only structural fingerprint of the element at (x, y)."""

    @abstractmethod
    async def window_info(self) -> WindowInfo:
        """Current URL and title."""

    def tool_definitions(self) -> List[Dict[str, Any]]:
        return tool_definitions(self.viewport_width, self.viewport_height)


class BrowserActionChannel(ActionChannel):
    """ActionChannel backed by a :class:`browser.BrowserSession`."""

    def __init__(
        self,
        session: Any,
        context: Optional[TestContext] = None,
        base_url: str = "",
        logger: Optional[logging.Logger] = None,
    ):
        self.session = session
        self.context = context
        self.base_url = base_url or (context.base_url if context else "")
        self.logger = logger or logging.getLogger("action_channel")
        self.viewport_width = getattr(session, "viewport_width", 1920)
        self.viewport_height = getattr(session, "viewport_height", 1080)
        self._handlers: Dict[BrowserAction, Handler] = {
            BrowserAction.KEY: self._press_key,
            BrowserAction.TYPE: self._type_text,
            BrowserAction.MOUSE_MOVE: self._mouse_move,
            BrowserAction.LEFT_CLICK: self._left_click,
            BrowserAction.RIGHT_CLICK: self._right_click,
            BrowserAction.DOUBLE_CLICK: self._double_click,
            BrowserAction.LEFT_CLICK_DRAG: self._drag,
            BrowserAction.SCREENSHOT: self._screenshot,
            BrowserAction.CURSOR_POSITION: self._cursor_position,
            BrowserAction.NAVIGATE: self._navigate,
            BrowserAction.SLEEP: self._sleep,
            BrowserAction.RUN_CALLBACK: self._run_callback,
        }

    @property
    def handled_actions(self) -> frozenset:
        return frozenset(self._handlers)

    async def execute(self, descriptor: Union[ActionDescriptor, Mapping[str, Any]]) -> ActionResult:
        if not isinstance(descriptor, ActionDescriptor):
            descriptor = ActionDescriptor.from_tool_input(descriptor)

        action = descriptor.action.value
        handler = self._handlers.get(descriptor.action)
        if handler is None:
            raise ActionError(ActionErrorKind.UNSUPPORTED_ACTION, f"Unsupported action: {action}", action=action)

        missing = descriptor.missing_fields()
        if missing:
            raise ActionError(
                ActionErrorKind.MISSING_ARGUMENT,
                f"{', '.join(missing)} required for {action} action",
                action=action,
            )

        metadata = ActionMetadata()
        if descriptor.is_pointer_action:
            metadata.target = descriptor.coordinate or self.session.cursor_position
            metadata.ui_fingerprint = await self.get_ui_fingerprint(*metadata.target)

        try:
            message, payload = await handler(descriptor)
        except ActionError:
            raise
        except Exception as e:
            raise ActionError(
                ActionErrorKind.BACKEND_FAILURE,
                f"{action} failed: {e}",
                action=action,
            ) from e

        metadata.window_info = await self.window_info()
        metadata.cursor = self.session.cursor_position
        return ActionResult(message=message, payload=payload, metadata=metadata)

    async def get_ui_fingerprint(self, x: int, y: int) -> str:
        try:
            signature = await self.session.get_component_signature(x, y)
        except Exception as e:
            raise ActionError(
                ActionErrorKind.BACKEND_FAILURE,
                f"Could not inspect element at ({x}, {y}): {e}",
            ) from e
        return hash_component(signature or "")

    async def window_info(self) -> WindowInfo:
        try:
            return WindowInfo(url=self.session.get_url(), title=await self.session.get_title())
        except Exception as e:
            self.logger.warning(f"Failed to read window info: {e}")
            return WindowInfo()

    # ─────────────────────────────────────────────────────────────────────────
    # Handlers
    # ─────────────────────────────────────────────────────────────────────────

    async def _press_key(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        key = normalize_key(descriptor.text)
        await self.session.press_key(key)
        return f"Pressed key: {key}", None

    async def _type_text(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        await self.session.type_text(descriptor.text)
        return f"Typed: {descriptor.text}", None

    async def _mouse_move(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        x, y = descriptor.coordinate
        await self.session.move_mouse(x, y)
        return f"Moved cursor to ({x}, {y})", None

    async def _click(self, descriptor: ActionDescriptor, button: str, click_count: int) -> Tuple[int, int]:
        x, y = descriptor.coordinate or self.session.cursor_position
        await self.session.click(x, y, button=button, click_count=click_count)
        return x, y

    async def _left_click(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        x, y = await self._click(descriptor, "left", 1)
        return f"Clicked at ({x}, {y})", None

    async def _right_click(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        x, y = await self._click(descriptor, "right", 1)
        return f"Right-clicked at ({x}, {y})", None

    async def _double_click(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        x, y = await self._click(descriptor, "left", 2)
        return f"Double-clicked at ({x}, {y})", None

    async def _drag(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        start = self.session.cursor_position
        x, y = descriptor.coordinate
        await self.session.drag(x, y)
        return f"Dragged from {start} to ({x}, {y})", None

    async def _screenshot(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        shot = await self.session.screenshot()
        return "Screenshot taken", shot

    async def _cursor_position(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        x, y = self.session.cursor_position
        return f"Cursor position is: ({x}, {y})", None

    async def _navigate(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        target = urljoin(self.base_url, descriptor.url) if self.base_url else descriptor.url
        await self.session.goto(target)
        return f"Navigated to {target}", None

    async def _sleep(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        duration_ms = DEFAULT_SLEEP_MS if descriptor.duration is None else descriptor.duration
        duration_ms = max(0.0, min(float(duration_ms), MAX_SLEEP_MS))
        await asyncio.sleep(duration_ms / 1000)
        return f"Waited {duration_ms:.0f}ms", None

    async def _run_callback(self, descriptor: ActionDescriptor) -> Tuple[str, Optional[bytes]]:
        current = self.context.current_test if self.context else None
        if current is None or current.during is None:
            raise ActionError(
                ActionErrorKind.MISSING_ARGUMENT,
                "Current test has no callback to run",
                action=descriptor.action.value,
            )
        await invoke_callback(current.during, self.context)
        return "Callback executed successfully", None
