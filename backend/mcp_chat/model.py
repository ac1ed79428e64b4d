"""Model API adapters.

The orchestrator sees every provider through `ModelClient.create`, which takes
a role-tagged history plus an optional tool catalog and returns ordered
content items: plain text or a request to run a tool.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Mapping, Protocol, Sequence, Union

from anthropic import AnthropicError, AsyncAnthropic
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field

from .errors import ModelCallError
from .settings import ModelProvider

logger = logging.getLogger(__name__)

PROBE_MODEL = "claude-3-haiku-20240307"
PROBE_MAX_TOKENS = 10


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseContent(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


ModelContent = Union[TextContent, ToolUseContent]


class ModelClient(Protocol):
    async def create(
        self,
        *,
        model: str,
        messages: Sequence[Mapping[str, Any]],
        max_tokens: int,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> list[ModelContent]:
        """Send one request and return its content items in order."""


def _flatten_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, Mapping) and block.get("type") == "text":
            parts.append(str(block.get("text") or ""))
    return "\n".join(parts)


def _split_system(
    messages: Sequence[Mapping[str, Any]],
) -> tuple[list[str], list[dict[str, Any]]]:
    system: list[str] = []
    chat: list[dict[str, Any]] = []
    for message in messages:
        if message.get("role") == "system":
            text = _flatten_text(message.get("content"))
            if text:
                system.append(text)
            continue
        chat.append(dict(message))
    return system, chat


class AnthropicModelClient:
    """Messages API client built on the official Anthropic SDK."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        *,
        client: AsyncAnthropic | None = None,
    ):
        if client is None:
            client_kwargs: dict[str, Any] = {"api_key": api_key}
            if base_url:
                client_kwargs["base_url"] = base_url
            client = AsyncAnthropic(**client_kwargs)
        self._client = client

    async def create(
        self,
        *,
        model: str,
        messages: Sequence[Mapping[str, Any]],
        max_tokens: int,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> list[ModelContent]:
        system, chat = _split_system(messages)
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": chat,
        }
        if system:
            request["system"] = "\n\n".join(system)
        if tools:
            request["tools"] = [dict(tool) for tool in tools]
            request["tool_choice"] = {"type": "auto"}
        try:
            response = await self._client.messages.create(**request)
        except AnthropicError as exc:
            raise ModelCallError(f"model call failed: {exc}", cause=exc) from exc

        items: list[ModelContent] = []
        for block in response.content:
            if block.type == "text":
                items.append(TextContent(text=block.text))
            elif block.type == "tool_use":
                items.append(
                    ToolUseContent(id=block.id, name=block.name, input=dict(block.input or {}))
                )
        return items


class OpenAIModelClient:
    """Chat Completions client; tool calls are mapped onto tool_use items."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        *,
        client: AsyncOpenAI | None = None,
    ):
        if client is None:
            client_kwargs: dict[str, Any] = {"api_key": api_key}
            if base_url:
                client_kwargs["base_url"] = base_url
            client = AsyncOpenAI(**client_kwargs)
        self._client = client

    async def create(
        self,
        *,
        model: str,
        messages: Sequence[Mapping[str, Any]],
        max_tokens: int,
        tools: Sequence[Mapping[str, Any]] | None = None,
    ) -> list[ModelContent]:
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [
                {"role": message["role"], "content": _flatten_text(message.get("content"))}
                for message in messages
            ],
        }
        if tools:
            request["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool["name"],
                        "description": tool.get("description") or "",
                        "parameters": tool.get("input_schema")
                        or {"type": "object", "properties": {}},
                    },
                }
                for tool in tools
            ]
            request["tool_choice"] = "auto"
        try:
            response = await self._client.chat.completions.create(**request)
        except OpenAIError as exc:
            raise ModelCallError(f"model call failed: {exc}", cause=exc) from exc

        items: list[ModelContent] = []
        if not response.choices:
            return items
        message = response.choices[0].message
        if message.content:
            items.append(TextContent(text=message.content))
        for call in message.tool_calls or []:
            raw_arguments = call.function.arguments or "{}"
            try:
                arguments = json.loads(raw_arguments)
            except json.JSONDecodeError:
                arguments = {"raw": raw_arguments}
            if not isinstance(arguments, dict):
                arguments = {"value": arguments}
            items.append(ToolUseContent(id=call.id, name=call.function.name, input=arguments))
        return items


def build_model_client(
    provider: ModelProvider, api_key: str, base_url: str | None = None
) -> ModelClient:
    """Construct the client for `provider`."""
    if provider == "openai":
        return OpenAIModelClient(api_key, base_url)
    return AnthropicModelClient(api_key, base_url)


async def verify_api_key(api_key: str, base_url: str | None = None) -> str:
    """Send a tiny request with `api_key` and return the responding model id."""
    client_kwargs: dict[str, Any] = {"api_key": api_key}
    if base_url:
        client_kwargs["base_url"] = base_url
    client = AsyncAnthropic(**client_kwargs)
    try:
        response = await client.messages.create(
            model=PROBE_MODEL,
            max_tokens=PROBE_MAX_TOKENS,
            messages=[{"role": "user", "content": "Hello, this is a test."}],
        )
    except AnthropicError as exc:
        raise ModelCallError(f"API key check failed: {exc}", cause=exc) from exc
    finally:
        await client.close()
    return response.model
