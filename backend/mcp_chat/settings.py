"""Application-wide settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

ModelProvider = Literal["anthropic", "openai"]

DEFAULT_MODEL_NAME = "claude-3-7-sonnet-latest"
DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip()
    return normalized or default


@dataclass(frozen=True)
class ModelSettings:
    """Initial credentials, endpoint and model for the model API."""

    provider: ModelProvider
    api_key: str | None
    base_url: str | None
    model_name: str
    max_tokens: int

    @classmethod
    def from_env(cls) -> "ModelSettings":
        raw_provider = (_env_str("MODEL_PROVIDER", "anthropic") or "anthropic").lower()
        provider: ModelProvider = "openai" if raw_provider == "openai" else "anthropic"
        if provider == "openai":
            api_key = _env_str("OPENAI_API_KEY")
            base_url = _env_str("OPENAI_BASE_URL")
        else:
            api_key = _env_str("ANTHROPIC_API_KEY")
            base_url = _env_str("ANTHROPIC_BASE_URL", DEFAULT_ANTHROPIC_BASE_URL)
        return cls(
            provider=provider,
            api_key=api_key,
            base_url=base_url,
            model_name=_env_str("MODEL_NAME", DEFAULT_MODEL_NAME) or DEFAULT_MODEL_NAME,
            max_tokens=max(1, _env_int("MODEL_MAX_TOKENS", 1000)),
        )


@dataclass(frozen=True)
class MCPSettings:
    """Connection and agent-loop limits for the tool layer."""

    connect_retries: int
    connect_timeout_ms: int
    retry_backoff_seconds: float
    max_tool_iterations: int
    config_path: str | None

    @classmethod
    def from_env(cls) -> "MCPSettings":
        return cls(
            connect_retries=max(0, _env_int("MCP_CONNECT_RETRIES", 2)),
            connect_timeout_ms=max(1, _env_int("MCP_CONNECT_TIMEOUT_MS", 10_000)),
            retry_backoff_seconds=max(0.0, _env_float("MCP_RETRY_BACKOFF_SECONDS", 1.0)),
            max_tool_iterations=max(1, _env_int("MCP_MAX_TOOL_ITERATIONS", 20)),
            config_path=_env_str("MCP_CONFIG_PATH"),
        )


class Settings:
    """Container for application settings."""

    def __init__(self, *, model: ModelSettings, mcp: MCPSettings) -> None:
        self.model = model
        self.mcp = mcp

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(model=ModelSettings.from_env(), mcp=MCPSettings.from_env())


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    """Return a cached Settings instance built from the current environment."""

    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
