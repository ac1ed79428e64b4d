"""Tests for the tool-server connection registry."""

import anyio
import pytest

from conftest import WEATHER_CONFIG, FakeHandle, FakeLauncher, RecordingSleep, make_tool
from mcp_chat.errors import ConfigError, ConnectTimeout, PrematureExit
from mcp_chat.mcp.registry import ToolConnectionRegistry


def _registry(launcher: FakeLauncher, sleep: RecordingSleep, **kwargs) -> ToolConnectionRegistry:
    registry = ToolConnectionRegistry(launcher, sleep=sleep, **kwargs)
    registry.install_config(WEATHER_CONFIG)
    return registry


class TestConnect:
    """Connection establishment."""

    @pytest.mark.asyncio
    async def test_connect_returns_tagged_tools(self, launcher, sleep):
        launcher.script("weather", FakeHandle([make_tool("forecast", "Get a forecast")]))
        registry = _registry(launcher, sleep)

        tools = await registry.connect("weather")

        assert [tool.name for tool in tools] == ["forecast"]
        assert tools[0].server_name == "weather"
        assert tools[0].description == "Get a forecast"
        assert tools[0].input_schema["type"] == "object"
        assert registry.is_connected("weather")
        assert registry.list_connected_servers() == ["weather"]
        assert launcher.handles[0].initialized

    @pytest.mark.asyncio
    async def test_missing_config_fails_before_spawning(self, launcher, sleep):
        registry = ToolConnectionRegistry(launcher, sleep=sleep)

        with pytest.raises(ConfigError):
            await registry.connect("weather")

        assert launcher.launched == []

    @pytest.mark.asyncio
    async def test_unknown_server_is_not_retried(self, launcher, sleep):
        registry = _registry(launcher, sleep)

        with pytest.raises(ConfigError, match="not found"):
            await registry.connect("nope", retries=5)

        assert launcher.launched == []
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_invalid_entry_is_a_config_error(self, launcher, sleep):
        registry = ToolConnectionRegistry(launcher, sleep=sleep)
        registry.install_config({"mcpServers": {"broken": {"command": "x"}}})

        with pytest.raises(ConfigError, match="command and args"):
            await registry.connect("broken")

        assert launcher.launched == []

    @pytest.mark.asyncio
    async def test_retry_ceiling_raises_last_error(self, launcher, sleep):
        launcher.script(
            "weather", RuntimeError("first"), RuntimeError("second"), RuntimeError("third")
        )
        registry = _registry(launcher, sleep, backoff_seconds=0.5)

        with pytest.raises(RuntimeError, match="third"):
            await registry.connect("weather", retries=2)

        assert launcher.launched == ["weather"] * 3
        assert sleep.calls == [0.5, 0.5]
        assert not registry.is_connected("weather")

    @pytest.mark.asyncio
    async def test_retry_recovers_after_failure(self, launcher, sleep):
        launcher.script("weather", RuntimeError("spawn failed"), FakeHandle([make_tool("forecast")]))
        registry = _registry(launcher, sleep)

        tools = await registry.connect("weather", retries=2)

        assert [tool.name for tool in tools] == ["forecast"]
        assert len(launcher.launched) == 2
        assert sleep.calls == [1.0]

    @pytest.mark.asyncio
    async def test_failed_handshake_releases_process(self, launcher, sleep):
        handle = FakeHandle(init_error=RuntimeError("bad handshake"))
        launcher.script("weather", handle)
        registry = _registry(launcher, sleep)

        with pytest.raises(RuntimeError, match="bad handshake"):
            await registry.connect("weather", retries=0)

        assert handle.closed
        assert handle.released

    @pytest.mark.asyncio
    async def test_closed_pipe_during_handshake_is_premature_exit(self, launcher, sleep):
        launcher.script("weather", FakeHandle(init_error=anyio.ClosedResourceError()))
        registry = _registry(launcher, sleep)

        with pytest.raises(PrematureExit) as excinfo:
            await registry.connect("weather", retries=0)

        assert excinfo.value.server_name == "weather"
        assert "command" in excinfo.value.message

    @pytest.mark.asyncio
    async def test_wrapped_broken_pipe_is_premature_exit(self, launcher, sleep):
        error = RuntimeError("handshake aborted")
        error.__cause__ = BrokenPipeError()
        launcher.script("weather", FakeHandle(init_error=error))
        registry = _registry(launcher, sleep)

        with pytest.raises(PrematureExit):
            await registry.connect("weather", retries=0)

    @pytest.mark.asyncio
    async def test_slow_handshake_times_out_and_is_released(self, launcher, sleep):
        handle = FakeHandle(hang=True)
        launcher.script("weather", handle)
        registry = _registry(launcher, sleep)

        with pytest.raises(ConnectTimeout) as excinfo:
            await registry.connect("weather", retries=0, timeout_ms=20)

        assert isinstance(excinfo.value, TimeoutError)
        assert excinfo.value.timeout_ms == 20
        assert handle.released
        assert not registry.is_connected("weather")

    @pytest.mark.asyncio
    async def test_reconnect_replaces_previous_connection(self, launcher, sleep):
        first = FakeHandle([make_tool("forecast")])
        second = FakeHandle([make_tool("forecast"), make_tool("alerts")])
        launcher.script("weather", first, second)
        registry = _registry(launcher, sleep)

        await registry.connect("weather")
        await registry.connect("weather")

        assert first.closed and first.released
        assert not second.closed
        assert registry.list_connected_servers() == ["weather"]
        assert [tool.name for tool in registry.list_all_tools()] == ["forecast", "alerts"]

    @pytest.mark.asyncio
    async def test_failed_reconnect_leaves_server_disconnected(self, launcher, sleep):
        first = FakeHandle([make_tool("forecast")])
        launcher.script("weather", first, RuntimeError("gone"))
        registry = _registry(launcher, sleep)

        await registry.connect("weather")
        with pytest.raises(RuntimeError):
            await registry.connect("weather", retries=0)

        assert first.released
        assert not registry.is_connected("weather")
        assert registry.list_all_tools() == []
        assert registry.resolve("forecast") is None


class TestDisconnect:
    """Teardown behaviour."""

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_a_noop(self, launcher, sleep):
        registry = _registry(launcher, sleep)

        await registry.disconnect("weather")

        assert not registry.has_any_connected()

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, launcher, sleep):
        handle = FakeHandle([make_tool("forecast")])
        launcher.script("weather", handle)
        registry = _registry(launcher, sleep)
        await registry.connect("weather")

        await registry.disconnect("weather")
        await registry.disconnect("weather")

        assert handle.closed and handle.released
        assert not registry.is_connected("weather")
        assert registry.list_all_tools() == []

    @pytest.mark.asyncio
    async def test_close_failure_still_releases(self, launcher, sleep):
        handle = FakeHandle(close_error=RuntimeError("close failed"))
        launcher.script("weather", handle)
        registry = _registry(launcher, sleep)
        await registry.connect("weather")

        await registry.disconnect("weather")

        assert handle.released
        assert not registry.is_connected("weather")

    @pytest.mark.asyncio
    async def test_disconnect_all_continues_past_failures(self, launcher, sleep):
        broken = FakeHandle(
            close_error=RuntimeError("close failed"), release_error=RuntimeError("kill failed")
        )
        healthy = FakeHandle()
        launcher.script("weather", broken)
        launcher.script("search", healthy)
        registry = _registry(launcher, sleep)
        await registry.connect("weather")
        await registry.connect("search")

        await registry.disconnect_all()

        assert healthy.released
        assert not registry.has_any_connected()
        assert registry.list_connected_servers() == []


class TestResolution:
    """Tool lookup across servers."""

    @pytest.mark.asyncio
    async def test_first_registered_server_wins(self, launcher, sleep):
        launcher.script("weather", FakeHandle([make_tool("lookup")]), FakeHandle([make_tool("lookup")]))
        launcher.script("search", FakeHandle([make_tool("lookup")]))
        registry = _registry(launcher, sleep)
        await registry.connect("weather")
        await registry.connect("search")

        assert registry.resolve("lookup").name == "weather"

        await registry.connect("weather")

        assert registry.resolve("lookup").name == "weather"
        assert registry.list_connected_servers() == ["weather", "search"]

    @pytest.mark.asyncio
    async def test_disconnected_server_tools_are_not_resolved(self, launcher, sleep):
        launcher.script("weather", FakeHandle([make_tool("lookup")]))
        launcher.script("search", FakeHandle([make_tool("lookup")]))
        registry = _registry(launcher, sleep)
        await registry.connect("weather")
        await registry.connect("search")

        await registry.disconnect("weather")

        assert registry.resolve("lookup").name == "search"
        assert registry.resolve("missing") is None
