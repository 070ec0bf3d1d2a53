"""Configuration module for the cachepilot runner."""
from config.models import (
    AgentConfig,
    BrowserConfig,
    CacheConfig,
    PilotConfig,
    ReportingConfig,
    load_config,
)

__all__ = [
    "AgentConfig",
    "BrowserConfig",
    "CacheConfig",
    "PilotConfig",
    "ReportingConfig",
    "load_config",
]
