"""Explicit dependency container for backend runtime wiring.

This module is intentionally side-effect free on import. It provides functions
to build and lifecycle-manage the backend dependency graph.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from .config_holder import ClientFactory, ModelConfigHolder
    from .mcp.client import ToolInvoker
    from .mcp.registry import ToolConnectionRegistry
    from .mcp.retries import Sleep
    from .mcp.transport import ServerLauncher
    from .orchestrator import ConversationOrchestrator
    from .settings import Settings

logger = logging.getLogger(__name__)

KeyVerifier = Callable[[str, "str | None"], Awaitable[str]]


@dataclass
class BackendContainer:
    """Holds the constructed runtime dependencies for the backend."""

    settings: Settings
    config_holder: ModelConfigHolder
    registry: ToolConnectionRegistry
    invoker: ToolInvoker
    orchestrator: ConversationOrchestrator
    key_verifier: KeyVerifier


def build_container(
    *,
    settings: "Settings" | None = None,
    launcher: "ServerLauncher" | None = None,
    sleep: "Sleep" | None = None,
    client_factory: "ClientFactory" | None = None,
    key_verifier: KeyVerifier | None = None,
) -> BackendContainer:
    """Construct the backend dependency graph without spawning anything."""

    # Local imports keep this module side-effect-free on import.
    from .config_holder import ModelConfigHolder
    from .mcp.client import ToolInvoker
    from .mcp.registry import ToolConnectionRegistry
    from .model import build_model_client, verify_api_key
    from .orchestrator import ConversationOrchestrator
    from .settings import get_settings

    settings = settings or get_settings()

    config_holder = ModelConfigHolder(
        settings.model, client_factory=client_factory or build_model_client
    )
    registry = ToolConnectionRegistry(
        launcher,
        sleep=sleep or asyncio.sleep,
        backoff_seconds=settings.mcp.retry_backoff_seconds,
    )
    invoker = ToolInvoker(registry)
    orchestrator = ConversationOrchestrator(
        config_holder, invoker, max_iterations=settings.mcp.max_tool_iterations
    )

    return BackendContainer(
        settings=settings,
        config_holder=config_holder,
        registry=registry,
        invoker=invoker,
        orchestrator=orchestrator,
        key_verifier=key_verifier or verify_api_key,
    )


def startup(container: BackendContainer) -> None:
    """Install the launch configuration file named by MCP_CONFIG_PATH, if any."""

    config_path = container.settings.mcp.config_path
    if not config_path:
        return
    text = Path(config_path).read_text(encoding="utf-8")
    container.registry.install_config(text)
    logger.info(
        "mcp config loaded path=%s servers=%s",
        config_path,
        container.registry.installed_server_names(),
        extra={"run_id": "system"},
    )


async def shutdown(container: BackendContainer) -> None:
    """Tear down every tool-server connection owned by the container."""

    await container.registry.disconnect_all()
