"""Pydantic configuration models for the cachepilot runner."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from exceptions import ConfigFileNotFoundError


# Load .env file if present
load_dotenv()

DEFAULT_CONFIG_FILES = ("cachepilot.yaml", "cachepilot.yml", "cachepilot.json")


class AgentConfig(BaseModel):
    """Model provider configuration."""

    model: str = Field(
        default="gpt-4o",
        description="Vision-capable model name",
    )
    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible API endpoint",
    )
    api_key: str = Field(
        default="",
        description="API key for the model provider",
    )
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Temperature for model generation",
    )
    max_turns: int = Field(
        default=30,
        ge=1,
        le=200,
        description="Default turn budget per test",
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens for each model response",
    )
    screenshot_max_width: int = Field(
        default=1280,
        ge=320,
        le=3840,
        description="Screenshots wider than this are downscaled before sending",
    )
    debug_log_requests: bool = Field(
        default=False,
        description="Log model replies and tool calls at debug level",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base_url doesn't have trailing slash."""
        return v.rstrip("/")

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Load values from environment variables if not explicitly set."""
        env_mapping = {
            "base_url": ("CACHEPILOT_BASE_URL",),
            "api_key": ("CACHEPILOT_API_KEY", "OPENAI_API_KEY"),
            "model": ("CACHEPILOT_MODEL",),
        }
        for field_name, env_vars in env_mapping.items():
            if field_name not in data or data[field_name] is None:
                for env_var in env_vars:
                    env_value = os.getenv(env_var)
                    if env_value:
                        data[field_name] = env_value
                        break
        return data


class BrowserConfig(BaseModel):
    """Browser automation configuration."""

    browser: Literal["chromium", "firefox", "webkit"] = Field(
        default="chromium",
        description="Browser engine to use",
    )
    headless: bool = Field(
        default=False,
        description="Run browser in headless mode",
    )
    viewport_width: int = Field(
        default=1920,
        ge=800,
        le=3840,
        description="Browser viewport width",
    )
    viewport_height: int = Field(
        default=1080,
        ge=600,
        le=2160,
        description="Browser viewport height",
    )
    slow_mo: int = Field(
        default=0,
        ge=0,
        le=5000,
        description="Slow down browser operations by this many ms",
    )


class CacheConfig(BaseModel):
    """Replay cache configuration."""

    enabled: bool = Field(
        default=True,
        description="Replay cached traces and record new ones",
    )
    directory: Path = Field(
        default=Path(".cachepilot"),
        description="Project-local directory holding the cache",
    )
    project: str = Field(
        default_factory=lambda: Path.cwd().name or "default",
        description="Namespace separating cache entries of different projects",
    )
    settle_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=10.0,
        description="Seconds to wait before each replayed action",
    )

    @field_validator("directory", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        """Convert string to Path."""
        if isinstance(v, str):
            return Path(v)
        return v


class ReportingConfig(BaseModel):
    """Result report configuration."""

    reports_folder: Optional[Path] = Field(
        default=None,
        description="Write a JSON report of each run to this directory",
    )

    @field_validator("reports_folder", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Optional[Path]:
        """Convert string to Path."""
        if isinstance(v, str):
            return Path(v)
        return v


class PilotConfig(BaseModel):
    """Root configuration model combining all config sections."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)

    base_url: str = Field(
        default="http://localhost:3000",
        description="URL of the application under test",
    )
    test_dir: List[Path] = Field(
        default_factory=lambda: [Path(".")],
        description="Directories searched for test files",
    )
    test_pattern: List[str] = Field(
        default_factory=lambda: ["**/*.e2e.py", "**/*.e2e.yaml", "**/*.e2e.yml", "**/*.e2e.json"],
        description="Glob patterns of test files",
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose logging",
    )

    @field_validator("test_dir", "test_pattern", mode="before")
    @classmethod
    def as_list(cls, v: Any) -> Any:
        if isinstance(v, (str, Path)):
            return [v]
        return v


def _find_default_config() -> Optional[Path]:
    for name in DEFAULT_CONFIG_FILES:
        candidate = Path(name)
        if candidate.exists():
            return candidate
    return None


def load_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[dict[str, Any]] = None,
) -> PilotConfig:
    """
    Load configuration from file with CLI overrides.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults
    """
    config_data: dict[str, Any] = {}

    if config_path is None:
        config_path = _find_default_config()
    elif not config_path.exists():
        raise ConfigFileNotFoundError(str(config_path))

    if config_path is not None:
        with open(config_path, "r", encoding="utf-8") as f:
            if config_path.suffix in {".yaml", ".yml"}:
                config_data = yaml.safe_load(f) or {}
            else:
                config_data = json.load(f)

    config = PilotConfig.model_validate(config_data)

    # Apply CLI overrides
    if cli_overrides:
        config_dict = config.model_dump()
        _apply_overrides(config_dict, cli_overrides)
        config = PilotConfig.model_validate(config_dict)

    return config


def _apply_overrides(config_dict: dict[str, Any], overrides: dict[str, Any]) -> None:
    """Apply CLI overrides to config dictionary."""
    override_mapping = {
        "browser": ("browser", "browser"),
        "headless": ("browser", "headless"),
        "target": ("base_url", None),
        "verbose": ("verbose", None),
        "debug_ai": ("agent", "debug_log_requests"),
        "model": ("agent", "model"),
        "max_turns": ("agent", "max_turns"),
        "report_dir": ("reporting", "reports_folder"),
    }

    for key, value in overrides.items():
        if value is None:
            continue

        if key == "no_cache":
            if value:
                config_dict["cache"]["enabled"] = False
            continue

        mapping = override_mapping.get(key)
        if mapping:
            section, field = mapping
            if field is None:
                config_dict[section] = value
            else:
                config_dict[section][field] = value
