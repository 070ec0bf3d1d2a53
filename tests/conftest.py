"""Pytest fixtures for cachepilot tests."""
from __future__ import annotations

import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from config import PilotConfig
from llm_client import ModelReply
from replay_cache import ReplayCache
from test_types import FileResult, SuiteResult, TestDefinition, TestOutcome, TokenUsage, Verdict

from tests.helpers import make_png, text_reply, tool_reply


@pytest.fixture
def temp_dir() -> Path:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def config(temp_dir: Path) -> PilotConfig:
    return PilotConfig.model_validate(
        {
            "agent": {"api_key": "test-key", "max_turns": 10},
            "cache": {"directory": str(temp_dir / ".cachepilot"), "project": "demo", "settle_delay": 0},
            "base_url": "http://localhost:3000",
        }
    )


@pytest.fixture
def cache(temp_dir: Path) -> ReplayCache:
    return ReplayCache(root=temp_dir / ".cachepilot", project="demo")


@pytest.fixture
def login_test() -> TestDefinition:
    return TestDefinition(
        name="login",
        steps=["go to /login", "fill username", "fill password", "submit"],
    )


@pytest.fixture
def login_script() -> List[ModelReply]:
    """Model conversation that logs in and passes."""
    return [
        tool_reply(("navigate", {"url": "/login"})),
        tool_reply(("computer", {"action": "type", "text": "alice"})),
        tool_reply(("computer", {"action": "type", "text": "secret"})),
        tool_reply(("computer", {"action": "left_click", "coordinate": [640, 410]})),
        text_reply('Everything worked. {"result": "pass", "reason": "login succeeded"}'),
    ]


@pytest.fixture
def mock_session(png_bytes: bytes) -> MagicMock:
    """Create a mock browser session for testing."""
    session = MagicMock()
    session.viewport_width = 1920
    session.viewport_height = 1080
    session.cursor_position = (0, 0)
    session.start = AsyncMock()
    session.close = AsyncMock()
    session.goto = AsyncMock()
    session.screenshot = AsyncMock(return_value=png_bytes)
    session.move_mouse = AsyncMock()
    session.click = AsyncMock()
    session.drag = AsyncMock()
    session.type_text = AsyncMock()
    session.press_key = AsyncMock()
    session.get_url = MagicMock(return_value="http://localhost:3000/login")
    session.get_title = AsyncMock(return_value="Login")
    session.get_component_signature = AsyncMock(return_value="button|type=submit|text=sign in")
    session.new_request_context = AsyncMock()
    return session


@pytest.fixture
def sample_file_result() -> FileResult:
    """Create a file result with one cached pass and one agent failure."""
    started = datetime(2024, 1, 15, 10, 30, 0)
    return FileResult(
        path=Path("e2e/auth.e2e.py"),
        outcomes=[
            TestOutcome(
                name="login",
                verdict=Verdict.passing("replayed from cache"),
                source="cache",
                started_at=started,
                finished_at=started + timedelta(seconds=4),
            ),
            TestOutcome(
                name="logout",
                verdict=Verdict.failing("Log out button not found", TokenUsage(1200, 80)),
                source="agent",
                started_at=started,
                finished_at=started + timedelta(seconds=30),
            ),
        ],
    )


@pytest.fixture
def sample_suite_result(sample_file_result: FileResult) -> SuiteResult:
    started = datetime(2024, 1, 15, 10, 30, 0)
    return SuiteResult(
        files=[sample_file_result, FileResult(path=Path("e2e/broken.e2e.yaml"), error="Failed to read test file")],
        started_at=started,
        finished_at=started + timedelta(seconds=42),
    )
