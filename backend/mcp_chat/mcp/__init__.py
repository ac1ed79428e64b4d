"""MCP tool layer: connection registry, transport and invoker."""

from .client import ToolInvoker
from .registry import ToolConnection, ToolConnectionRegistry
from .schema import MCPConfigSet, ServerLaunchConfig, ToolDescriptor
from .transport import ServerHandle, ServerLauncher, StdioLauncher

__all__ = [
    "MCPConfigSet",
    "ServerHandle",
    "ServerLaunchConfig",
    "ServerLauncher",
    "StdioLauncher",
    "ToolConnection",
    "ToolConnectionRegistry",
    "ToolDescriptor",
    "ToolInvoker",
]
