"""Agent loop that interleaves model responses with tool invocations.

One `send_message` call walks Requesting -> Interpreting -> Executing and back
until a round requests no tools, a tool call repeats, or the iteration cap is
reached. Tool failures are folded into the transcript; model failures
propagate and nothing is returned.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Sequence

from .config_holder import ModelConfigHolder
from .errors import ToolExecutionError, ToolNotFound
from .mcp.client import ToolInvoker
from .model import ModelClient, ModelContent, ToolUseContent
from .schemas import (
    ContentBlock,
    ConversationMessage,
    TextBlock,
    ToolCall,
    ToolResultBlock,
    ToolUseBlock,
    to_jsonable,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 20

REPEATED_CALL_TEXT = (
    "I was about to call the tool {name} again with arguments it has already been "
    "called with. Let me put together the information gathered so far to answer you."
)
TOOL_PLACEHOLDER_TEXT = "I need to use the tool {name} to answer your question."
SUMMARY_PROMPT = (
    "I asked a question and you tried several tools to answer it, but it seems to "
    "need many tool calls. Based on the information gathered so far, summarize what "
    "you have learned and answer my question as well as you can. The original "
    "question was: {question}"
)


def to_model_history(messages: Sequence[ConversationMessage]) -> list[dict[str, Any]]:
    """Convert stored messages into the role-tagged bodies the model accepts.

    A message with no blocks or a single text block becomes a bare string;
    anything else keeps only its text blocks.
    """
    history: list[dict[str, Any]] = []
    for message in messages:
        blocks = message.content
        content: str | list[dict[str, str]]
        if not blocks:
            content = ""
        elif len(blocks) == 1 and isinstance(blocks[0], TextBlock):
            content = blocks[0].text
        else:
            content = [
                {"type": "text", "text": block.text}
                for block in blocks
                if isinstance(block, TextBlock)
            ]
        history.append({"role": message.role, "content": content})
    return history


def _call_key(item: ToolUseContent) -> tuple[str, str]:
    return item.name, json.dumps(item.input, sort_keys=True, default=str)


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


@dataclass
class _Run:
    """Mutable state of one send_message call."""

    run_id: str
    history: list[dict[str, Any]]
    output: list[ContentBlock] = field(default_factory=list)
    invoked: set[tuple[str, str]] = field(default_factory=set)
    iterations: int = 0
    any_tool_calls: bool = False
    done: bool = False


class ConversationOrchestrator:
    """Drives the multi-turn loop between the model and the tool layer."""

    def __init__(
        self,
        config: ModelConfigHolder,
        invoker: ToolInvoker,
        *,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self.config = config
        self.invoker = invoker
        self.max_iterations = max(1, max_iterations)

    async def send_message(
        self, messages: Sequence[ConversationMessage], *, run_id: str | None = None
    ) -> ConversationMessage:
        """Answer the last message of `messages` and return one assistant message."""
        run = _Run(run_id=run_id or uuid.uuid4().hex, history=to_model_history(messages))
        client = self.config.client()
        tools = self.invoker.catalog()
        logger.info(
            "chat run started messages=%s tools=%s",
            len(messages),
            [tool["name"] for tool in tools],
            extra={"run_id": run.run_id},
        )

        while not run.done and run.iterations < self.max_iterations:
            run.iterations += 1
            items = await self._request(client, run.history, tools)
            called_tool = await self._interpret(run, items)
            if called_tool:
                logger.info(
                    "tool round finished iteration=%s", run.iterations, extra={"run_id": run.run_id}
                )
            else:
                run.done = True

        if not run.done:
            logger.info(
                "tool iteration cap reached max_iterations=%s; requesting summary",
                self.max_iterations,
                extra={"run_id": run.run_id},
            )
            question = messages[-1].text() if messages else ""
            items = await self._request(
                client, [{"role": "user", "content": SUMMARY_PROMPT.format(question=question)}]
            )
            run.output.extend(TextBlock(text=item.text) for item in items if item.type == "text")

        if not run.any_tool_calls and not run.output:
            logger.info("empty model response; retrying without tools", extra={"run_id": run.run_id})
            items = await self._request(client, to_model_history(messages))
            run.output.extend(TextBlock(text=item.text) for item in items if item.type == "text")

        logger.info(
            "chat run finished iterations=%s blocks=%s",
            run.iterations,
            len(run.output),
            extra={"run_id": run.run_id},
        )
        return ConversationMessage(role="assistant", content=run.output)

    async def _request(
        self,
        client: ModelClient,
        history: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> list[ModelContent]:
        return await client.create(
            model=self.config.model_name,
            messages=list(history),
            max_tokens=self.config.max_tokens,
            tools=tools or None,
        )

    async def _interpret(self, run: _Run, items: Sequence[ModelContent]) -> bool:
        """Walk one response in order; return True if any tool ran this round."""
        round_text: list[str] = []
        called_tool = False
        for item in items:
            if item.type == "text":
                run.output.append(TextBlock(text=item.text))
                round_text.append(item.text)
                continue

            key = _call_key(item)
            if key in run.invoked:
                logger.info(
                    "repeated tool call detected tool=%s; stopping",
                    item.name,
                    extra={"run_id": run.run_id},
                )
                run.output.append(TextBlock(text=REPEATED_CALL_TEXT.format(name=item.name)))
                run.done = True
                return called_tool

            run.invoked.add(key)
            called_tool = True
            run.any_tool_calls = True
            await self._execute(run, item, "\n".join(round_text))

        if not called_tool and round_text:
            run.history.append({"role": "assistant", "content": "\n".join(round_text)})
        return called_tool

    async def _execute(self, run: _Run, item: ToolUseContent, text_so_far: str) -> None:
        run.output.append(ToolUseBlock(tool=ToolCall(name=item.name, args=item.input)))
        assistant_entry = {
            "role": "assistant",
            "content": text_so_far or TOOL_PLACEHOLDER_TEXT.format(name=item.name),
        }
        try:
            result = await self.invoker.invoke(item.name, item.input, run_id=run.run_id)
        except (ToolNotFound, ToolExecutionError) as exc:
            run.output.append(
                ToolResultBlock(
                    tool=ToolCall(name=item.name, args=item.input, result={"error": exc.message})
                )
            )
            run.history.append(assistant_entry)
            run.history.append(
                {"role": "user", "content": f"Tool {item.name} call failed: {exc.message}"}
            )
            return

        content = to_jsonable(getattr(result, "content", result))
        run.output.append(
            ToolResultBlock(tool=ToolCall(name=item.name, args=item.input, result=content))
        )
        run.history.append(assistant_entry)
        run.history.append(
            {"role": "user", "content": f"Result of tool {item.name}: {_dump(content)}"}
        )
