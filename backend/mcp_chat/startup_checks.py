"""Startup validation to keep deployments predictable."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

NON_NEGATIVE_INT_VARS = ("MCP_CONNECT_RETRIES",)
POSITIVE_INT_VARS = ("MCP_CONNECT_TIMEOUT_MS", "MCP_MAX_TOOL_ITERATIONS", "MODEL_MAX_TOKENS")
MODEL_PROVIDERS = {"anthropic", "openai"}


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _ensure_int(name: str, *, minimum: int) -> None:
    raw = _optional_env(name)
    if raw is None:
        return
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc
    if parsed < minimum:
        raise RuntimeError(f"{name} must be at least {minimum}, got {parsed}")


def _ensure_config_file(path: Path) -> None:
    if not path.is_file():
        raise RuntimeError(f"MCP_CONFIG_PATH does not point to a file: {path}")
    try:
        json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise RuntimeError(f"MCP_CONFIG_PATH {path} is not readable JSON: {exc}") from exc


def run_startup_checks() -> None:
    """Fail fast when configuration is invalid."""
    if os.getenv("SKIP_STARTUP_CHECKS") == "1":
        logger.warning("Startup checks skipped via SKIP_STARTUP_CHECKS=1")
        return

    provider = (_optional_env("MODEL_PROVIDER") or "anthropic").lower()
    if provider not in MODEL_PROVIDERS:
        raise RuntimeError(f"MODEL_PROVIDER must be anthropic|openai, got {provider!r}")

    for var in NON_NEGATIVE_INT_VARS:
        _ensure_int(var, minimum=0)
    for var in POSITIVE_INT_VARS:
        _ensure_int(var, minimum=1)

    backoff = _optional_env("MCP_RETRY_BACKOFF_SECONDS")
    if backoff is not None:
        try:
            float(backoff)
        except ValueError as exc:
            raise RuntimeError(
                f"MCP_RETRY_BACKOFF_SECONDS must be numeric, got {backoff!r}"
            ) from exc

    config_path = _optional_env("MCP_CONFIG_PATH")
    if config_path is not None:
        _ensure_config_file(Path(config_path))

    key_var = "OPENAI_API_KEY" if provider == "openai" else "ANTHROPIC_API_KEY"
    if _optional_env(key_var) is None:
        logger.warning(
            "%s is not set; chat requests fail until a key is posted to /config",
            key_var,
            extra={"run_id": "system"},
        )

    logger.info(
        "Startup checks passed. Environment is valid.",
        extra={"run_id": "system"},
    )


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    try:
        run_startup_checks()
    except Exception as exc:  # pragma: no cover - CLI guard
        logger.error("Startup check failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
