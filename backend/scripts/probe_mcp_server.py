"""Connect to one configured MCP server, print its tools, then disconnect.

This is an operational check (not a unit test). It exercises the same
registry the API uses, so a config that works here works for /mcp/connect.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from mcp_chat.env import load_dotenv_if_present
from mcp_chat.errors import ChatBackendError
from mcp_chat.mcp.registry import ToolConnectionRegistry
from mcp_chat.settings import MCPSettings


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Probe an MCP server from an mcpServers config file."
    )
    parser.add_argument("config", type=Path, help="Path to a JSON file with an mcpServers object.")
    parser.add_argument(
        "server",
        nargs="?",
        default=None,
        help="Server name to probe (default: every server in the file).",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=None,
        help="Extra connection attempts (default: MCP_CONNECT_RETRIES or 2).",
    )
    parser.add_argument(
        "--timeout-ms",
        type=int,
        default=None,
        help="Handshake timeout per attempt (default: MCP_CONNECT_TIMEOUT_MS or 10000).",
    )
    parser.add_argument("--json", action="store_true", help="Print tools as JSON.")
    return parser.parse_args()


async def _probe(args: argparse.Namespace) -> int:
    settings = MCPSettings.from_env()
    registry = ToolConnectionRegistry(backoff_seconds=settings.retry_backoff_seconds)
    registry.install_config(args.config.read_text(encoding="utf-8"))
    names = [args.server] if args.server else registry.installed_server_names()
    retries = settings.connect_retries if args.retries is None else args.retries
    timeout_ms = settings.connect_timeout_ms if args.timeout_ms is None else args.timeout_ms

    failures = 0
    try:
        for name in names:
            try:
                tools = await registry.connect(name, retries=retries, timeout_ms=timeout_ms)
            except Exception as exc:
                failures += 1
                print(f"[{name}] FAILED: {exc}")
                continue
            if args.json:
                print(json.dumps({name: [tool.model_dump() for tool in tools]}, indent=2))
                continue
            print(f"[{name}] {len(tools)} tool(s)")
            for tool in tools:
                print(f"  - {tool.name}: {tool.description or ''}")
    finally:
        await registry.disconnect_all()
    return 1 if failures else 0


def main() -> int:
    logging.basicConfig(level=logging.WARNING)
    load_dotenv_if_present()
    args = _parse_args()
    try:
        return asyncio.run(_probe(args))
    except ChatBackendError as exc:
        print(f"Probe failed: {exc.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
