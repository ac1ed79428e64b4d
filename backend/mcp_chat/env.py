"""Environment helpers.

These helpers are intentionally not invoked at import time. Call them explicitly
from application entrypoints to control side effects.
"""

from __future__ import annotations

import os
from typing import Mapping

from dotenv import find_dotenv, load_dotenv


def load_dotenv_if_present() -> None:
    """Load environment variables from a .env file if available."""

    dotenv_path = find_dotenv(filename=".env", usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path)


def child_process_env(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    """Environment for a spawned tool server: ours, then per-server overrides."""

    merged = dict(os.environ)
    if overrides:
        merged.update({str(key): str(value) for key, value in overrides.items()})
    return merged
