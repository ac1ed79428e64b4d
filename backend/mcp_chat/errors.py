"""Error taxonomy shared by the tool layer, the orchestrator and the API."""

from __future__ import annotations

from typing import Any, Mapping


class ChatBackendError(Exception):
    """Base class for failures raised by the chat backend."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})


class ConfigError(ChatBackendError):
    """Launch or model configuration is missing or invalid. Never retried."""


class PrematureExit(ChatBackendError):
    """The tool server process went away while the handshake was in flight."""

    def __init__(self, server_name: str):
        super().__init__(
            f"MCP server {server_name!r} closed the connection during the handshake; "
            "the tool process likely failed to start or the command is incorrect",
            details={"server": server_name},
        )
        self.server_name = server_name


class ConnectTimeout(ChatBackendError, TimeoutError):
    """Handshake and tool discovery did not finish within the allotted time."""

    def __init__(self, server_name: str, timeout_ms: int):
        super().__init__(
            f"timed out connecting to MCP server {server_name!r} ({timeout_ms}ms)",
            details={"server": server_name, "timeout_ms": timeout_ms},
        )
        self.server_name = server_name
        self.timeout_ms = timeout_ms


class ToolNotFound(ChatBackendError):
    """No connected server exposes the requested tool."""

    def __init__(self, tool: str):
        super().__init__(
            f"no connected MCP server exposes tool {tool!r}", details={"tool": tool}
        )
        self.tool = tool


class ToolExecutionError(ChatBackendError):
    """The owning server raised while executing a tool."""

    def __init__(self, tool: str, cause: BaseException):
        super().__init__(
            f"tool {tool!r} failed: {cause}",
            details={"tool": tool, "cause": type(cause).__name__},
        )
        self.tool = tool
        self.cause = cause


class ModelCallError(ChatBackendError):
    """The upstream model API rejected or failed the request."""

    def __init__(self, message: str, *, cause: BaseException | None = None):
        details = {"cause": type(cause).__name__} if cause is not None else None
        super().__init__(message, details=details)
        self.cause = cause


__all__ = [
    "ChatBackendError",
    "ConfigError",
    "ConnectTimeout",
    "ModelCallError",
    "PrematureExit",
    "ToolExecutionError",
    "ToolNotFound",
]
