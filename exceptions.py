"""Custom exception hierarchy for the cachepilot test runner."""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from test_types import TokenUsage


class PilotError(Exception):
    """Base exception for all cachepilot errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Browser-related exceptions
class BrowserError(PilotError):
    """Base exception for browser automation errors."""

    pass


class NavigationError(BrowserError):
    """Raised when page navigation fails."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        details = {}
        if url:
            details["url"] = url
        if timeout:
            details["timeout"] = timeout
        super().__init__(message, details)
        self.url = url
        self.timeout = timeout


class BrowserNotStartedError(BrowserError):
    """Raised when attempting to use browser before starting."""

    def __init__(self):
        super().__init__("Browser has not been started. Call start() first.")


class BrowserLaunchError(BrowserError):
    """Raised when the browser session cannot be launched."""

    def __init__(self, message: str, browser_type: Optional[str] = None):
        details = {"browser": browser_type} if browser_type else {}
        super().__init__(message, details)
        self.browser_type = browser_type


class ScreenshotError(BrowserError):
    """Raised when screenshot capture fails."""

    pass


# Action dispatch
class ActionErrorKind(str, Enum):
    UNSUPPORTED_ACTION = "unsupported_action"
    MISSING_ARGUMENT = "missing_argument"
    BACKEND_FAILURE = "backend_failure"


class ActionError(PilotError):
    """Raised when an action descriptor cannot be executed."""

    def __init__(
        self,
        kind: ActionErrorKind,
        message: str,
        action: Optional[str] = None,
        usage: Optional["TokenUsage"] = None,
    ):
        details = {"kind": kind.value}
        if action:
            details["action"] = action
        super().__init__(message, details)
        self.kind = kind
        self.action = action
        self.usage = usage


# Model-related exceptions
class AIErrorKind(str, Enum):
    INVALID_RESPONSE = "invalid_response"
    MAX_TURNS_REACHED = "max_turns_reached"
    PROVIDER_FAILURE = "provider_failure"


class AIError(PilotError):
    """Terminal failure of one agent loop invocation."""

    def __init__(
        self,
        kind: AIErrorKind,
        message: str,
        usage: Optional["TokenUsage"] = None,
        response: Optional[str] = None,
    ):
        details: dict[str, Any] = {"kind": kind.value}
        if response:
            details["response_preview"] = response[:200]
        super().__init__(message, details)
        self.kind = kind
        self.usage = usage
        self.response = response


# Cache exceptions
class CacheError(PilotError):
    """Raised when a cache entry cannot be read or written."""

    def __init__(self, message: str, key: Optional[str] = None):
        details = {"key": key} if key else {}
        super().__init__(message, details)
        self.key = key


class StaleTraceError(PilotError):
    """Raised when a cached trace no longer matches the live UI."""

    def __init__(
        self,
        step_index: int,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ):
        super().__init__(
            f"UI changed at cached step {step_index}",
            {"step": step_index, "expected": expected, "actual": actual},
        )
        self.step_index = step_index
        self.expected = expected
        self.actual = actual


# Test definition exceptions
class TestDefinitionError(PilotError):
    """Base exception for test definition/loading errors."""

    __test__ = False


class TestLoadError(TestDefinitionError):
    """Raised when a test file cannot be loaded or parsed."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        details = {"file_path": file_path} if file_path else {}
        super().__init__(message, details)
        self.file_path = file_path


class TestValidationError(TestDefinitionError):
    """Raised when a test definition is invalid."""

    def __init__(self, message: str, test_name: Optional[str] = None, field: Optional[str] = None):
        details = {}
        if test_name:
            details["test"] = test_name
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.test_name = test_name
        self.field = field


# Configuration exceptions
class ConfigurationError(PilotError):
    """Raised when configuration is invalid."""

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Raised when a required config file is not found."""

    def __init__(self, file_path: str):
        super().__init__(f"Configuration file not found: {file_path}", {"file_path": file_path})
        self.file_path = file_path
