"""Child-process transport for MCP tool servers.

A `ServerHandle` is the process reference the registry owns. The stdio
implementation keeps the `mcp` transport and session inside one dedicated
task: the SDK's cancel scopes must be entered and exited by the same task, and
requests from the registry arrive from whichever task happens to call it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Protocol, Sequence

import anyio
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError
from mcp.types import Tool

from ..env import child_process_env
from .schema import ServerLaunchConfig

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 5.0

_CLOSED_PIPE_ERRORS: tuple[type[BaseException], ...] = (
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    BrokenPipeError,
    ConnectionResetError,
    EOFError,
)


class ServerHandle(Protocol):
    """A spawned tool server the registry can talk to and tear down."""

    async def initialize(self) -> None:
        """Perform the protocol handshake."""

    async def list_tools(self) -> Sequence[Tool]:
        """Return the capability catalog."""

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> Any:
        """Execute a tool and return the raw result."""

    async def close(self) -> None:
        """Close the logical connection."""

    async def release(self) -> None:
        """Release the underlying process resources."""


class ServerLauncher(Protocol):
    async def launch(self, name: str, config: ServerLaunchConfig) -> ServerHandle:
        """Spawn the server described by `config` and return its handle."""


def is_premature_exit(exc: BaseException) -> bool:
    """True when `exc` (or anything it wraps) says the child closed its pipes."""

    pending: list[BaseException] = [exc]
    seen: set[int] = set()
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, _CLOSED_PIPE_ERRORS):
            return True
        if isinstance(current, McpError) and "connection closed" in str(current).lower():
            return True
        if isinstance(current, BaseExceptionGroup):
            pending.extend(current.exceptions)
        for linked in (current.__cause__, current.__context__):
            if linked is not None:
                pending.append(linked)
    return False


class StdioServerHandle:
    """One child process and its MCP session, owned by a dedicated task."""

    def __init__(
        self,
        name: str,
        params: StdioServerParameters,
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ):
        self.name = name
        self._params = params
        self._grace_seconds = grace_seconds
        self._session: ClientSession | None = None
        self._opened: asyncio.Future[None] | None = None
        self._close_requested = asyncio.Event()
        self._release_requested = asyncio.Event()
        self._session_closed = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def open(self) -> None:
        """Spawn the process and open the session streams."""
        self._opened = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._run(), name=f"mcp-server:{self.name}")
        try:
            await self._opened
        except BaseException:
            await self.release()
            raise

    async def _run(self) -> None:
        opened = self._opened
        assert opened is not None
        try:
            async with stdio_client(self._params) as (read_stream, write_stream):
                try:
                    async with ClientSession(read_stream, write_stream) as session:
                        self._session = session
                        opened.set_result(None)
                        await self._close_requested.wait()
                finally:
                    self._session = None
                    self._session_closed.set()
                await self._release_requested.wait()
        except Exception as exc:
            if not opened.done():
                opened.set_exception(exc)
            else:
                logger.warning(
                    "mcp server exited with error server=%s",
                    self.name,
                    exc_info=True,
                    extra={"run_id": "system"},
                )
        finally:
            self._session = None
            self._session_closed.set()
            if not opened.done():
                opened.cancel()

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ConnectionError(f"MCP server {self.name!r} has no open session")
        return self._session

    async def initialize(self) -> None:
        await self._require_session().initialize()

    async def list_tools(self) -> Sequence[Tool]:
        result = await self._require_session().list_tools()
        return list(result.tools)

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> Any:
        return await self._require_session().call_tool(name, arguments=dict(arguments))

    async def close(self) -> None:
        """Leave the session context; the child process stays up until release."""
        task = self._task
        if task is None or task.done():
            return
        self._close_requested.set()
        waiter = asyncio.ensure_future(self._session_closed.wait())
        try:
            await asyncio.wait(
                {waiter, task},
                timeout=self._grace_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
        if not self._session_closed.is_set():
            raise TimeoutError(f"MCP server {self.name!r} did not close its session in time")

    async def release(self) -> None:
        """Terminate the child process and stop the owning task."""
        task = self._task
        if task is None:
            return
        self._close_requested.set()
        self._release_requested.set()
        if not task.done():
            done, _ = await asyncio.wait({task}, timeout=self._grace_seconds)
            if not done:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None


class StdioLauncher:
    """Launches tool servers as stdio child processes."""

    def __init__(self, *, grace_seconds: float = DEFAULT_GRACE_SECONDS):
        self.grace_seconds = grace_seconds

    async def launch(self, name: str, config: ServerLaunchConfig) -> StdioServerHandle:
        params = StdioServerParameters(
            command=config.command,
            args=list(config.args),
            env=child_process_env(config.env),
        )
        logger.info(
            "spawning mcp server server=%s command=%s args=%s",
            name,
            config.command,
            " ".join(config.args),
            extra={"run_id": "system"},
        )
        handle = StdioServerHandle(name, params, grace_seconds=self.grace_seconds)
        await handle.open()
        return handle
