"""API router for the chat backend.

This module is intentionally safe to import: it should not construct runtime
singletons or spawn tool servers.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from .errors import ConfigError
from .mcp.schema import ToolDescriptor
from .schemas import (
    ApiKeyTestRequest,
    ChatRequest,
    ConfigUpdateRequest,
    ConnectRequest,
    DisconnectRequest,
    MCPClientState,
)

if TYPE_CHECKING:
    from .container import BackendContainer

logger = logging.getLogger(__name__)


def _tool_wire(tool: ToolDescriptor) -> dict[str, Any]:
    return {**tool.to_model_tool(), "serverName": tool.server_name}


def _error(message: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def get_router(container: "BackendContainer") -> APIRouter:
    """Build API routes using the provided dependency container."""

    router = APIRouter()
    registry = container.registry
    mcp_settings = container.settings.mcp

    async def _reconnect_missing(state: MCPClientState | None, run_id: str) -> None:
        """Reconnect servers the client shows as connected but we do not."""
        if state is None or not state.connected or not state.connected_servers:
            return
        connected = set(registry.list_connected_servers())
        missing = [name for name in state.connected_servers if name not in connected]
        for name in missing:
            logger.info("reconnecting mcp server server=%s", name, extra={"run_id": run_id})
            try:
                await registry.connect(
                    name,
                    retries=mcp_settings.connect_retries,
                    timeout_ms=mcp_settings.connect_timeout_ms,
                )
            except Exception as exc:
                logger.warning(
                    "automatic reconnect failed server=%s error=%s",
                    name,
                    exc,
                    extra={"run_id": run_id},
                )

    @router.post("/chat")
    async def chat(payload: ChatRequest) -> JSONResponse:
        """Run the tool loop over the submitted history."""
        run_id = uuid.uuid4().hex
        try:
            await _reconnect_missing(payload.mcp_state, run_id)
            logger.info(
                "chat request servers=%s tools=%s",
                registry.list_connected_servers(),
                [tool.name for tool in registry.list_all_tools()],
                extra={"run_id": run_id},
            )
            response = await container.orchestrator.send_message(payload.messages, run_id=run_id)
        except Exception as exc:
            logger.exception("chat request failed", extra={"run_id": run_id})
            return _error(str(exc) or "request failed", status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse({"response": response.to_wire()})

    @router.post("/config")
    async def update_config(payload: ConfigUpdateRequest) -> JSONResponse:
        """Update credentials, endpoint or model; absent fields stay as they are."""
        holder = container.config_holder
        provided = payload.model_fields_set
        if "api_key" in provided:
            holder.set_api_key(payload.api_key)
        if "base_url" in provided:
            holder.set_base_url(payload.base_url)
        if "model_name" in provided:
            holder.set_model(payload.model_name)
        return JSONResponse({"success": True})

    @router.post("/mcp/connect")
    async def connect_server(payload: ConnectRequest) -> JSONResponse:
        if not payload.server_name:
            return _error("server name is required", status.HTTP_400_BAD_REQUEST)
        if payload.mcp_config:
            try:
                registry.install_config(payload.mcp_config)
            except ConfigError as exc:
                logger.warning("rejected mcp config error=%s", exc, extra={"run_id": "system"})
                return _error(f"invalid MCP config: {exc}", status.HTTP_400_BAD_REQUEST)
        try:
            tools = await registry.connect(
                payload.server_name,
                retries=mcp_settings.connect_retries,
                timeout_ms=mcp_settings.connect_timeout_ms,
            )
        except Exception as exc:
            return _error(
                f"MCP server connection failed: {exc}",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                connected=False,
            )
        return JSONResponse(
            {
                "connected": True,
                "serverName": payload.server_name,
                "tools": [_tool_wire(tool) for tool in tools],
            }
        )

    @router.post("/mcp/disconnect")
    async def disconnect_server(payload: DisconnectRequest) -> JSONResponse:
        if not payload.server_name:
            return _error("server name is required", status.HTTP_400_BAD_REQUEST)
        try:
            await registry.disconnect(payload.server_name)
        except Exception as exc:
            return _error(
                f"MCP server disconnect failed: {exc}",
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                success=False,
            )
        return JSONResponse(
            {"success": True, "message": f"disconnected MCP server {payload.server_name}"}
        )

    @router.get("/mcp/status")
    async def server_status() -> JSONResponse:
        servers = registry.list_connected_servers()
        return JSONResponse(
            {
                "connected": bool(servers),
                "connectedServers": servers,
                "tools": [_tool_wire(tool) for tool in registry.list_all_tools()],
            }
        )

    @router.post("/test-api-key")
    async def test_api_key(payload: ApiKeyTestRequest) -> JSONResponse:
        """Check a key with a tiny request before the user saves it."""
        if not payload.api_key:
            return JSONResponse(
                {"valid": False, "error": "API key is required"},
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        try:
            model = await container.key_verifier(payload.api_key, payload.base_url)
        except Exception as exc:
            logger.warning("api key check failed error=%s", exc, extra={"run_id": "system"})
            return JSONResponse(
                {"valid": False, "error": str(exc) or "invalid API key"},
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        return JSONResponse({"valid": True, "model": model})

    return router
