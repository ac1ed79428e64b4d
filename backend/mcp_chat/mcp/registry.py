"""Registry that owns live tool-server connections and their tool catalogs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..errors import ConfigError, ConnectTimeout, PrematureExit
from .retries import DEFAULT_BACKOFF_SECONDS, RetryPolicy, Sleep
from .schema import MCPConfigSet, ServerLaunchConfig, ToolDescriptor
from .transport import ServerHandle, ServerLauncher, StdioLauncher, is_premature_exit

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_RETRIES = 2
DEFAULT_CONNECT_TIMEOUT_MS = 10_000

_SYSTEM = {"run_id": "system"}


@dataclass
class ToolConnection:
    """A named connection. Disconnected entries keep no tools and no handle."""

    name: str
    handle: ServerHandle | None
    tools: list[ToolDescriptor] = field(default_factory=list)
    connected: bool = False

    def exposes(self, tool_name: str) -> bool:
        return self.connected and any(tool.name == tool_name for tool in self.tools)


async def _teardown(name: str, handle: ServerHandle) -> None:
    """Close then release `handle`; each step runs even if the other fails."""
    try:
        await handle.close()
    except Exception:
        logger.warning("mcp session close failed server=%s", name, exc_info=True, extra=_SYSTEM)
    try:
        await handle.release()
    except Exception:
        logger.warning("mcp process release failed server=%s", name, exc_info=True, extra=_SYSTEM)


class _HandleGuard:
    """Releases a freshly spawned handle on every exit path unless detached."""

    def __init__(self, name: str, handle: ServerHandle):
        self.name = name
        self.handle = handle
        self._owned = True

    def detach(self) -> ServerHandle:
        self._owned = False
        return self.handle

    async def __aenter__(self) -> "_HandleGuard":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        if self._owned:
            await _teardown(self.name, self.handle)


class ToolConnectionRegistry:
    """Supervises connections to tool servers, keyed by server name.

    Iteration order is registration order. A reconnect under an existing name
    keeps that name's original position, so when two servers expose the same
    tool name the first registered connected server wins.
    """

    def __init__(
        self,
        launcher: ServerLauncher | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self._launcher = launcher or StdioLauncher()
        self._sleep = sleep
        self._backoff_seconds = backoff_seconds
        self._connections: dict[str, ToolConnection] = {}
        self._config: MCPConfigSet | None = None

    # configuration -------------------------------------------------------

    def install_config(self, config: MCPConfigSet | Mapping[str, Any] | str) -> None:
        """Replace the installed launch configuration set."""
        self._config = MCPConfigSet.parse(config)
        logger.info(
            "mcp config installed servers=%s", sorted(self._config.servers), extra=_SYSTEM
        )

    def installed_server_names(self) -> list[str]:
        return list(self._config.servers) if self._config else []

    def _resolve_launch_config(self, name: str) -> ServerLaunchConfig:
        if self._config is None:
            raise ConfigError("MCP config has not been set")
        return self._config.launch_config(name)

    # lifecycle -----------------------------------------------------------

    async def connect(
        self,
        name: str,
        retries: int = DEFAULT_CONNECT_RETRIES,
        timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS,
    ) -> list[ToolDescriptor]:
        """Spawn, handshake and discover tools for `name`, with bounded retries."""
        launch_config = self._resolve_launch_config(name)

        if self.is_connected(name):
            try:
                await self.disconnect(name)
            except Exception:
                logger.warning(
                    "cleanup of previous connection failed server=%s; continuing",
                    name,
                    exc_info=True,
                    extra=_SYSTEM,
                )

        policy = RetryPolicy.from_retries(retries, self._backoff_seconds)
        attempt = 0
        while True:
            attempt += 1
            if attempt > 1:
                logger.info(
                    "retrying mcp connect server=%s attempt=%s/%s",
                    name,
                    attempt,
                    policy.max_attempts,
                    extra=_SYSTEM,
                )
            try:
                handle, tools = await self._attempt(name, launch_config, timeout_ms)
            except Exception as exc:
                logger.error(
                    "mcp connect failed server=%s attempt=%s/%s error=%s",
                    name,
                    attempt,
                    policy.max_attempts,
                    exc,
                    extra=_SYSTEM,
                )
                if not policy.allows(attempt):
                    raise
                await self._sleep(policy.backoff_seconds)
                continue
            break

        self._connections[name] = ToolConnection(
            name=name, handle=handle, tools=tools, connected=True
        )
        logger.info(
            "mcp server connected server=%s tools=%s",
            name,
            [tool.name for tool in tools],
            extra=_SYSTEM,
        )
        return list(tools)

    async def _attempt(
        self, name: str, launch_config: ServerLaunchConfig, timeout_ms: int
    ) -> tuple[ServerHandle, list[ToolDescriptor]]:
        handle = await self._launcher.launch(name, launch_config)
        async with _HandleGuard(name, handle) as guard:
            try:
                tools = await asyncio.wait_for(
                    self._handshake(name, handle), timeout=timeout_ms / 1000
                )
            except asyncio.TimeoutError as exc:
                raise ConnectTimeout(name, timeout_ms) from exc
            return guard.detach(), tools

    async def _handshake(self, name: str, handle: ServerHandle) -> list[ToolDescriptor]:
        try:
            await handle.initialize()
        except Exception as exc:
            if is_premature_exit(exc):
                raise PrematureExit(name) from exc
            raise
        raw_tools = await handle.list_tools()
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description,
                input_schema=dict(tool.inputSchema or {}),
                server_name=name,
            )
            for tool in raw_tools
        ]

    async def disconnect(self, name: str) -> None:
        """Tear down `name`. Idempotent; teardown errors are logged, not raised."""
        connection = self._connections.get(name)
        if connection is None or not connection.connected:
            return
        handle = connection.handle
        try:
            if handle is not None:
                await _teardown(name, handle)
        finally:
            connection.connected = False
            connection.tools = []
            connection.handle = None
        logger.info("mcp server disconnected server=%s", name, extra=_SYSTEM)

    async def disconnect_all(self) -> None:
        for name in list(self._connections):
            try:
                await self.disconnect(name)
            except Exception:
                logger.error("failed to disconnect server=%s", name, exc_info=True, extra=_SYSTEM)

    # lookup --------------------------------------------------------------

    def is_connected(self, name: str) -> bool:
        connection = self._connections.get(name)
        return bool(connection and connection.connected)

    def has_any_connected(self) -> bool:
        return any(connection.connected for connection in self._connections.values())

    def list_connected_servers(self) -> list[str]:
        return [name for name, connection in self._connections.items() if connection.connected]

    def list_all_tools(self) -> list[ToolDescriptor]:
        """Tools of every connected server, connection order then discovery order."""
        tools: list[ToolDescriptor] = []
        for connection in self._connections.values():
            if connection.connected:
                tools.extend(connection.tools)
        return tools

    def resolve(self, tool_name: str) -> ToolConnection | None:
        """Return the first connected connection exposing `tool_name`."""
        for connection in self._connections.values():
            if connection.exposes(tool_name):
                return connection
        return None
