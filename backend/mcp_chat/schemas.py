"""Shared Pydantic schemas and helpers for the chat API."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["user", "assistant", "system"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_jsonable(value: Any) -> Any:
    """Turn tool results (often pydantic models from the MCP SDK) into JSON data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ToolCall(_WireModel):
    """Name and arguments of a tool request, plus its result once known."""

    name: str
    args: Any = None
    result: Any = None


class TextBlock(_WireModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(_WireModel):
    type: Literal["tool_use"] = "tool_use"
    tool: ToolCall


class ToolResultBlock(_WireModel):
    type: Literal["tool_result"] = "tool_result"
    tool: ToolCall


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock], Field(discriminator="type")
]


class ConversationMessage(_WireModel):
    """One stored chat message. Never mutated once created."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: MessageRole
    content: list[ContentBlock] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")

    def text(self, separator: str = " ") -> str:
        """Join the text blocks of this message."""
        return separator.join(block.text for block in self.content if block.type == "text")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class MCPClientState(BaseModel):
    """What the browser believes about server connections."""

    model_config = ConfigDict(populate_by_name=True)

    connected: bool = False
    connected_servers: list[str] = Field(default_factory=list, alias="connectedServers")


class ChatRequest(BaseModel):
    """Request body for POST /chat."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ConversationMessage]
    mcp_state: MCPClientState | None = Field(default=None, alias="mcpState")


class ConnectRequest(BaseModel):
    """Request body for POST /mcp/connect. `mcpConfig` is JSON text."""

    model_config = ConfigDict(populate_by_name=True)

    server_name: str | None = Field(default=None, alias="serverName")
    mcp_config: str | None = Field(default=None, alias="mcpConfig")


class DisconnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    server_name: str | None = Field(default=None, alias="serverName")


class ConfigUpdateRequest(BaseModel):
    """Request body for POST /config. Absent fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str | None = Field(default=None, alias="apiKey")
    base_url: str | None = Field(default=None, alias="baseUrl")
    model_name: str | None = Field(default=None, alias="modelName")


class ApiKeyTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str | None = Field(default=None, alias="apiKey")
    base_url: str | None = Field(default=None, alias="baseUrl")
