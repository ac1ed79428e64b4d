"""FastAPI application bootstrap for the chat backend."""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import get_router
from .container import (
    BackendContainer,
    build_container,
    shutdown as shutdown_container,
    startup as startup_container,
)
from .env import load_dotenv_if_present
from .startup_checks import run_startup_checks


class _ChatRunFilter(logging.Filter):
    """Tag records logged outside a chat run with run_id=system."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = getattr(record, "run_id", "system")
        return True


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s run=%(run_id)s %(message)s"


def _configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(item, _ChatRunFilter) for item in handler.filters):
            handler.addFilter(_ChatRunFilter())


def create_app(container: BackendContainer | None = None) -> FastAPI:
    """Construct the FastAPI application."""
    _configure_logging()
    if container is None:
        load_dotenv_if_present()
        container = build_container()

    app = FastAPI()
    app.state.container = container
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(get_router(container))

    @app.on_event("startup")
    async def _startup() -> None:
        run_startup_checks()
        startup_container(container)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await shutdown_container(container)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


@lru_cache(maxsize=1)
def get_app() -> FastAPI:
    """The process-wide app served by `uvicorn mcp_chat.main:app`."""
    return create_app()


def __getattr__(name: str) -> FastAPI:
    # `app` is built on first access; importing this module spawns nothing.
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
