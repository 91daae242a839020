"""
MCP Runtime: stdio tool server client runtime for the chat backend.

Architecture:
    ┌──────────────┐  ToolResult  ┌─────────────┐  JSON-RPC   ┌──────────────┐
    │   Caller     │ ──────────── │ ToolInvoker │ ─────────── │  Tool Server │
    │ (chat/agent) │              │  + Pool     │  stdio pipes│  (subprocess)│
    └──────────────┘              └─────────────┘             └──────────────┘
                                        │ httpx
                                        └──────────── direct fallback (arXiv)

Each tool server is a standalone process that communicates via
stdin/stdout using line-delimited JSON-RPC 2.0 messages.

The ProcessSupervisor spawns and terminates server processes, the
ProtocolSession correlates requests and responses on one process, the
ConnectionPool keeps one live session per server (plus a TTL tool cache),
and the ToolInvoker maps every failure onto a small error taxonomy,
falling back to direct HTTP where a fallback is registered.

The ToolServerManager owns one pool and invoker per configured server.
"""

from mcp_runtime.config import McpConfig, RuntimeSettings, ServerConfig, get_settings, load_config
from mcp_runtime.errors import ErrorKind, ToolRuntimeError
from mcp_runtime.fallback import FallbackClient
from mcp_runtime.invoker import ToolInvoker
from mcp_runtime.manager import ToolServerManager
from mcp_runtime.models import ToolDescriptor, ToolResult
from mcp_runtime.pool import ConnectionPool
from mcp_runtime.server import StdioToolServer, ToolHandler
from mcp_runtime.session import ProtocolSession
from mcp_runtime.supervisor import ProcessSupervisor


# Bridge imports langchain, so it loads on first use
async def invoker_to_langchain_tools(*args, **kwargs):
    from mcp_runtime.bridge import invoker_to_langchain_tools as _impl
    return await _impl(*args, **kwargs)


async def manager_to_langchain_tools(*args, **kwargs):
    from mcp_runtime.bridge import manager_to_langchain_tools as _impl
    return await _impl(*args, **kwargs)


__all__ = [
    "ConnectionPool",
    "ErrorKind",
    "FallbackClient",
    "McpConfig",
    "ProcessSupervisor",
    "ProtocolSession",
    "RuntimeSettings",
    "ServerConfig",
    "StdioToolServer",
    "ToolDescriptor",
    "ToolHandler",
    "ToolInvoker",
    "ToolResult",
    "ToolRuntimeError",
    "ToolServerManager",
    "get_settings",
    "load_config",
    "invoker_to_langchain_tools",
    "manager_to_langchain_tools",
]
