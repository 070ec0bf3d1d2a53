"""Canonical action descriptors, results and the model-facing tool vocabulary."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError

from exceptions import ActionError, ActionErrorKind


class BrowserAction(str, Enum):
    KEY = "key"
    TYPE = "type"
    MOUSE_MOVE = "mouse_move"
    LEFT_CLICK = "left_click"
    RIGHT_CLICK = "right_click"
    DOUBLE_CLICK = "double_click"
    LEFT_CLICK_DRAG = "left_click_drag"
    SCREENSHOT = "screenshot"
    CURSOR_POSITION = "cursor_position"
    NAVIGATE = "navigate"
    SLEEP = "sleep"
    RUN_CALLBACK = "run_callback"


REQUIRED_FIELDS: Dict[BrowserAction, Tuple[str, ...]] = {
    BrowserAction.KEY: ("text",),
    BrowserAction.TYPE: ("text",),
    BrowserAction.MOUSE_MOVE: ("coordinate",),
    BrowserAction.LEFT_CLICK: (),
    BrowserAction.RIGHT_CLICK: (),
    BrowserAction.DOUBLE_CLICK: (),
    BrowserAction.LEFT_CLICK_DRAG: ("coordinate",),
    BrowserAction.SCREENSHOT: (),
    BrowserAction.CURSOR_POSITION: (),
    BrowserAction.NAVIGATE: ("url",),
    BrowserAction.SLEEP: (),
    BrowserAction.RUN_CALLBACK: (),
}

# Actions whose effect depends on the element under the pointer.
POINTER_ACTIONS = frozenset(
    {
        BrowserAction.MOUSE_MOVE,
        BrowserAction.LEFT_CLICK,
        BrowserAction.RIGHT_CLICK,
        BrowserAction.DOUBLE_CLICK,
        BrowserAction.LEFT_CLICK_DRAG,
    }
)

# Named keys accepted from the model, mapped to Playwright key names.
KEY_SYNONYMS: Dict[str, str] = {
    "return": "Enter",
    "enter": "Enter",
    "kp_enter": "Enter",
    "esc": "Escape",
    "escape": "Escape",
    "tab": "Tab",
    "space": "Space",
    "backspace": "Backspace",
    "delete": "Delete",
    "del": "Delete",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "arrowup": "ArrowUp",
    "arrowdown": "ArrowDown",
    "arrowleft": "ArrowLeft",
    "arrowright": "ArrowRight",
    "page_up": "PageUp",
    "pageup": "PageUp",
    "page_down": "PageDown",
    "pagedown": "PageDown",
    "home": "Home",
    "end": "End",
    "ctrl": "Control",
    "control": "Control",
    "alt": "Alt",
    "option": "Alt",
    "shift": "Shift",
    "cmd": "Meta",
    "command": "Meta",
    "super": "Meta",
    "meta": "Meta",
}


def normalize_key(text: str) -> str:
    """Translate a key or chord such as ``ctrl+a`` or ``Return`` to Playwright form."""
    parts = [p.strip() for p in text.split("+") if p.strip()]
    if not parts:
        return text
    return "+".join(KEY_SYNONYMS.get(p.lower(), p) for p in parts)


class ActionDescriptor(BaseModel):
    """One abstract browser action, tagged by ``action``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    action: BrowserAction
    coordinate: Optional[Tuple[int, int]] = None
    text: Optional[str] = None
    url: Optional[str] = None
    duration: Optional[float] = None

    @classmethod
    def from_tool_input(cls, data: Mapping[str, Any]) -> "ActionDescriptor":
        """Build a descriptor from loosely typed tool arguments."""
        raw_action = str(data.get("action") or "")
        try:
            action = BrowserAction(raw_action)
        except ValueError as exc:
            raise ActionError(
                ActionErrorKind.UNSUPPORTED_ACTION,
                f"Unsupported action: {raw_action or '<missing>'}",
                action=raw_action or None,
            ) from exc
        try:
            return cls.model_validate({**data, "action": action})
        except ValidationError as exc:
            raise ActionError(
                ActionErrorKind.MISSING_ARGUMENT,
                f"Invalid arguments for {action.value}: {exc.errors()[0]['msg']}",
                action=action.value,
            ) from exc

    @property
    def is_pointer_action(self) -> bool:
        return self.action in POINTER_ACTIONS

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_FIELDS[self.action] if getattr(self, name) is None]

    def to_tool_input(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


@dataclass
class WindowInfo:
    url: str = ""
    title: str = ""


@dataclass
class ActionMetadata:
    window_info: WindowInfo = field(default_factory=WindowInfo)
    cursor: Optional[Tuple[int, int]] = None
    target: Optional[Tuple[int, int]] = None
    ui_fingerprint: Optional[str] = None


@dataclass
class ActionResult:
    """Outcome of one executed action."""

    message: str
    payload: Optional[bytes] = None
    metadata: ActionMetadata = field(default_factory=ActionMetadata)


# Tool names offered to the model. ``computer`` carries the pointer/keyboard vocabulary.
COMPUTER_TOOL = "computer"
NAVIGATE_TOOL = "navigate"
SLEEP_TOOL = "sleep"
RUN_CALLBACK_TOOL = "run_callback"

_COMPUTER_ACTIONS = [
    BrowserAction.KEY,
    BrowserAction.TYPE,
    BrowserAction.MOUSE_MOVE,
    BrowserAction.LEFT_CLICK,
    BrowserAction.RIGHT_CLICK,
    BrowserAction.DOUBLE_CLICK,
    BrowserAction.LEFT_CLICK_DRAG,
    BrowserAction.SCREENSHOT,
    BrowserAction.CURSOR_POSITION,
]


def tool_definitions(viewport_width: int, viewport_height: int) -> List[Dict[str, Any]]:
    """Function-tool schema describing the action vocabulary."""
    return [
        {
            "type": "function",
            "function": {
                "name": COMPUTER_TOOL,
                "description": (
                    "Control the browser with mouse and keyboard. The screen is "
                    f"{viewport_width}x{viewport_height} pixels; coordinates are [x, y] in that space. "
                    "Click actions without a coordinate act at the current cursor position. "
                    "left_click_drag drags from the cursor to the coordinate. "
                    "key accepts names such as Return, Tab, Escape or chords such as ctrl+a."
                ),
                "parameters": {
                    "type": "object",
                    "properties": {
                        "action": {"type": "string", "enum": [a.value for a in _COMPUTER_ACTIONS]},
                        "coordinate": {
                            "type": "array",
                            "items": {"type": "integer"},
                            "minItems": 2,
                            "maxItems": 2,
                        },
                        "text": {"type": "string"},
                    },
                    "required": ["action"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": NAVIGATE_TOOL,
                "description": "Open a URL. Relative paths resolve against the application base URL.",
                "parameters": {
                    "type": "object",
                    "properties": {"url": {"type": "string"}},
                    "required": ["url"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": SLEEP_TOOL,
                "description": "Wait for the page to settle.",
                "parameters": {
                    "type": "object",
                    "properties": {"duration": {"type": "number", "description": "Milliseconds"}},
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": RUN_CALLBACK_TOOL,
                "description": "Run the test's code callback. Only use when the test is marked [HAS_CALLBACK].",
                "parameters": {"type": "object", "properties": {}},
            },
        },
    ]


def descriptor_from_tool_call(name: str, arguments: Any) -> ActionDescriptor:
    """Translate a model tool invocation into an ActionDescriptor."""
    if isinstance(arguments, str):
        arguments = json.loads(arguments) if arguments.strip() else {}
    if not isinstance(arguments, dict):
        raise ActionError(
            ActionErrorKind.MISSING_ARGUMENT,
            f"Tool {name} arguments must be an object",
            action=name,
        )
    if name == COMPUTER_TOOL:
        return ActionDescriptor.from_tool_input(arguments)
    if name == NAVIGATE_TOOL:
        return ActionDescriptor.from_tool_input({**arguments, "action": BrowserAction.NAVIGATE.value})
    if name == SLEEP_TOOL:
        return ActionDescriptor.from_tool_input({**arguments, "action": BrowserAction.SLEEP.value})
    if name == RUN_CALLBACK_TOOL:
        return ActionDescriptor(action=BrowserAction.RUN_CALLBACK)
    raise ActionError(ActionErrorKind.UNSUPPORTED_ACTION, f"Unsupported tool: {name}", action=name)
