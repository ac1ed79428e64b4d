"""Shared MCP schema models."""

from __future__ import annotations

import json
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ConfigError


class ToolDescriptor(BaseModel):
    """Structured metadata describing a tool exposed by an MCP server."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=dict)
    server_name: str

    def to_model_tool(self) -> dict[str, Any]:
        """Re-express the descriptor in the shape model APIs expect."""
        return {
            "name": self.name,
            "description": self.description or "",
            "input_schema": self.input_schema,
        }


class ServerLaunchConfig(BaseModel):
    """How to start one tool server as a child process."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    command: str
    args: list[str]
    env: dict[str, str] | None = None

    @field_validator("command")
    @classmethod
    def _require_command(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must be a non-empty string")
        return value


class MCPConfigSet(BaseModel):
    """The installed `{"mcpServers": {...}}` document.

    Entries are kept raw and validated one at a time in `launch_config`, so a
    broken entry only fails connects for that server.
    """

    model_config = ConfigDict(populate_by_name=True)

    servers: dict[str, Any] = Field(default_factory=dict, alias="mcpServers")

    @classmethod
    def parse(cls, raw: "MCPConfigSet | Mapping[str, Any] | str") -> "MCPConfigSet":
        """Accept an instance, a mapping or JSON text."""
        if isinstance(raw, MCPConfigSet):
            return raw
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"invalid MCP config JSON: {exc.msg}") from exc
        if not isinstance(raw, Mapping):
            raise ConfigError("MCP config must be an object with an mcpServers mapping")
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(f"invalid MCP config: {exc.error_count()} error(s)") from exc

    def launch_config(self, name: str) -> ServerLaunchConfig:
        """Return the validated launch config for `name` or raise ConfigError."""
        entry = self.servers.get(name)
        if entry is None:
            raise ConfigError(
                f"MCP server {name!r} not found in config", details={"server": name}
            )
        try:
            return ServerLaunchConfig.model_validate(entry)
        except ValidationError as exc:
            fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
            raise ConfigError(
                f"MCP server {name!r} config is invalid: command and args are required",
                details={"server": name, "fields": fields},
            ) from exc
