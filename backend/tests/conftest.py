"""Shared fakes for the chat backend tests.

Nothing here spawns a process or talks to a model API: the registry gets a
scripted launcher and the orchestrator gets a scripted model client.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Mapping, Sequence

import pytest
from mcp.types import CallToolResult, TextContent as MCPTextContent, Tool

from mcp_chat.container import BackendContainer, build_container
from mcp_chat.model import ModelContent, TextContent, ToolUseContent
from mcp_chat.settings import MCPSettings, ModelSettings, Settings


def make_tool(name: str, description: str | None = None) -> Tool:
    return Tool(
        name=name,
        description=description,
        inputSchema={"type": "object", "properties": {"query": {"type": "string"}}},
    )


def text_result(text: str) -> CallToolResult:
    return CallToolResult(content=[MCPTextContent(type="text", text=text)])


def text(value: str) -> TextContent:
    return TextContent(text=value)


def tool_use(name: str, **arguments: Any) -> ToolUseContent:
    return ToolUseContent(id=f"call-{name}", name=name, input=arguments)


class FakeHandle:
    """In-memory stand-in for a spawned tool server."""

    def __init__(
        self,
        tools: Sequence[Tool] = (),
        *,
        init_error: BaseException | None = None,
        hang: bool = False,
        results: Mapping[str, Any] | None = None,
        call_error: BaseException | None = None,
        close_error: BaseException | None = None,
        release_error: BaseException | None = None,
    ):
        self.tools = list(tools)
        self.init_error = init_error
        self.hang = hang
        self.results = dict(results or {})
        self.call_error = call_error
        self.close_error = close_error
        self.release_error = release_error
        self.initialized = False
        self.closed = False
        self.released = False
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def initialize(self) -> None:
        if self.hang:
            await asyncio.Event().wait()
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True

    async def list_tools(self) -> list[Tool]:
        return list(self.tools)

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> Any:
        self.calls.append((name, dict(arguments)))
        if self.call_error is not None:
            raise self.call_error
        return self.results.get(name, text_result(f"{name} ok"))

    async def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error

    async def release(self) -> None:
        self.released = True
        if self.release_error is not None:
            raise self.release_error


class FakeLauncher:
    """Hands out scripted handles (or raises scripted errors) per server name."""

    def __init__(self, plan: Mapping[str, Sequence[FakeHandle | BaseException]] | None = None):
        self.plan = {name: list(steps) for name, steps in (plan or {}).items()}
        self.launched: list[str] = []
        self.handles: list[FakeHandle] = []

    def script(self, name: str, *steps: FakeHandle | BaseException) -> None:
        self.plan.setdefault(name, []).extend(steps)

    async def launch(self, name: str, config: Any) -> FakeHandle:
        self.launched.append(name)
        steps = self.plan.get(name)
        step = steps.pop(0) if steps else FakeHandle()
        if isinstance(step, BaseException):
            raise step
        self.handles.append(step)
        return step


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


Responder = Callable[[dict[str, Any]], list[ModelContent]]


class FakeModelClient:
    """Replays scripted responses and records every request."""

    def __init__(self, *responses: list[ModelContent] | BaseException | Responder):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def create(
        self,
        *,
        model: str,
        messages: Sequence[Mapping[str, Any]],
        max_tokens: int,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> list[ModelContent]:
        request = {
            "model": model,
            "messages": copy.deepcopy(list(messages)),
            "max_tokens": max_tokens,
            "tools": copy.deepcopy(list(tools)) if tools else None,
        }
        self.calls.append(request)
        if not self.responses:
            raise AssertionError("unexpected model call")
        response = self.responses[0] if callable(self.responses[0]) else self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(request)
        return list(response)


def make_settings(
    *,
    api_key: str | None = "test-key",
    connect_retries: int = 0,
    max_tool_iterations: int = 20,
) -> Settings:
    return Settings(
        model=ModelSettings(
            provider="anthropic",
            api_key=api_key,
            base_url=None,
            model_name="claude-test",
            max_tokens=256,
        ),
        mcp=MCPSettings(
            connect_retries=connect_retries,
            connect_timeout_ms=1_000,
            retry_backoff_seconds=0.0,
            max_tool_iterations=max_tool_iterations,
            config_path=None,
        ),
    )


def make_container(
    launcher: FakeLauncher,
    model_client: FakeModelClient,
    *,
    settings: Settings | None = None,
    key_verifier: Any = None,
) -> BackendContainer:
    return build_container(
        settings=settings or make_settings(),
        launcher=launcher,
        sleep=RecordingSleep(),
        client_factory=lambda provider, api_key, base_url: model_client,
        key_verifier=key_verifier,
    )


WEATHER_CONFIG = {
    "mcpServers": {
        "weather": {"command": "weather-server", "args": ["--stdio"]},
        "search": {"command": "search-server", "args": [], "env": {"TOKEN": "x"}},
    }
}


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
