"""Tool invoker that routes execution requests to the owning connection."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..errors import ToolExecutionError, ToolNotFound
from .registry import ToolConnectionRegistry

logger = logging.getLogger(__name__)


class ToolInvoker:
    """Resolves a tool name to a connected server and executes it there."""

    def __init__(self, registry: ToolConnectionRegistry):
        self.registry = registry

    def catalog(self) -> list[dict[str, Any]]:
        """Every connected tool, re-expressed for the model call."""
        return [tool.to_model_tool() for tool in self.registry.list_all_tools()]

    async def invoke(
        self, name: str, arguments: Mapping[str, Any], *, run_id: str = "system"
    ) -> Any:
        """Execute `name` on the first connected server exposing it.

        The raw result is returned unchanged. Failures are not retried.
        """
        connection = self.registry.resolve(name)
        if connection is None or connection.handle is None:
            raise ToolNotFound(name)
        logger.info(
            "invoking tool tool=%s server=%s args=%s",
            name,
            connection.name,
            dict(arguments),
            extra={"run_id": run_id},
        )
        try:
            result = await connection.handle.call_tool(name, arguments)
        except Exception as exc:
            logger.error(
                "tool call failed tool=%s server=%s error=%s",
                name,
                connection.name,
                exc,
                extra={"run_id": run_id},
            )
            raise ToolExecutionError(name, exc) from exc
        logger.info("tool call succeeded tool=%s", name, extra={"run_id": run_id})
        return result
