"""
Tool Server Manager: one pooled connection per configured tool server.

The manager is the service object the chat backend holds on to. It is
created explicitly and passed to whatever needs tool invocation; there is
no module-level singleton.

Usage:
    manager = ToolServerManager.from_config(load_config())

    # Or register servers by hand
    manager.register_server("research", ServerConfig(command="python", args=["-m", "mcp_runtime.servers.research"]))

    # Call a tool (the server is started lazily on first use)
    result = await manager.invoke("research", "search_papers", {"query": "transformer models"})

    # Health and stats for a status endpoint
    report = await manager.health_check()

    # Stop everything
    await manager.stop_all()
"""

from __future__ import annotations

import logging
from typing import Any

from mcp_runtime.config import McpConfig, RuntimeSettings, ServerConfig, get_settings
from mcp_runtime.errors import ToolRuntimeError
from mcp_runtime.fallback import FallbackClient
from mcp_runtime.invoker import ToolInvoker
from mcp_runtime.models import ToolDescriptor, ToolResult
from mcp_runtime.pool import ConnectionPool
from mcp_runtime.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


class ToolServerManager:
    """
    Manages the pooled sessions of several tool servers.

    Responsibilities:
    - Build one ConnectionPool + ToolInvoker per server
    - Route tool calls to the correct server
    - Report health, cache status and execution stats
    - Graceful shutdown
    """

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        fallback: FallbackClient | None = None,
        supervisor: ProcessSupervisor | None = None,
    ):
        self.settings = settings or get_settings()
        self.fallback = fallback or FallbackClient.with_defaults(
            timeout=self.settings.fallback_timeout,
            arxiv_base_url=self.settings.arxiv_base_url,
        )
        self._supervisor = supervisor or ProcessSupervisor(self.settings.terminate_grace)
        self._invokers: dict[str, ToolInvoker] = {}

    @classmethod
    def from_config(cls, config: McpConfig, **kwargs: Any) -> "ToolServerManager":
        manager = cls(**kwargs)
        for server_id, server_config in config.servers.items():
            manager.register_server(server_id, server_config)
        return manager

    def register_server(self, server_id: str, config: ServerConfig) -> ToolInvoker:
        """
        Register a tool server (does not start it yet).

        Args:
            server_id: Unique identifier for this server
            config: How to launch it
        """
        if server_id in self._invokers:
            raise ValueError(f"Server already registered: {server_id}")
        pool = ConnectionPool(
            config,
            name=server_id,
            settings=self.settings,
            supervisor=self._supervisor,
        )
        invoker = ToolInvoker(pool, fallback=self.fallback if config.fallback else None)
        self._invokers[server_id] = invoker
        logger.info(f"Registered server: {server_id} ({' '.join([config.command, *config.args])})")
        return invoker

    def invoker(self, server_id: str) -> ToolInvoker:
        invoker = self._invokers.get(server_id)
        if invoker is None:
            raise ValueError(f"Unknown server: {server_id}")
        return invoker

    async def invoke(
        self,
        server_id: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ToolResult:
        """Call a tool on a specific server."""
        return await self.invoker(server_id).invoke(tool_name, arguments, timeout)

    async def list_tools(self, server_id: str) -> list[ToolDescriptor]:
        """List (cached) tools for a server; starts it if needed."""
        return await self.invoker(server_id).list_tools()

    async def find_tool(self, tool_name: str) -> str | None:
        """Return the id of the first server advertising a tool, if any."""
        for server_id, invoker in self._invokers.items():
            try:
                tools = await invoker.list_tools()
            except ToolRuntimeError as e:
                logger.warning(f"Cannot list tools on {server_id}: {e}")
                continue
            if any(t.name == tool_name for t in tools):
                return server_id
        return None

    def list_servers(self) -> dict[str, bool]:
        """List all servers and whether each has a live session."""
        return {
            server_id: invoker.pool.session is not None and invoker.pool.session.is_healthy()
            for server_id, invoker in self._invokers.items()
        }

    def get_status(self) -> dict[str, dict[str, Any]]:
        return {server_id: inv.pool.get_status() for server_id, inv in self._invokers.items()}

    async def health_check(self) -> dict[str, Any]:
        """Probe every server with a (cached) tools/list and report."""
        servers: dict[str, Any] = {}
        healthy = True
        for server_id, invoker in self._invokers.items():
            entry: dict[str, Any] = {}
            try:
                tools = await invoker.list_tools()
                entry["status"] = "healthy"
                entry["tools"] = len(tools)
            except ToolRuntimeError as e:
                healthy = False
                entry["status"] = "unhealthy"
                entry["error"] = {"kind": e.kind.value, "message": str(e)}
            entry["pool"] = invoker.pool.get_status()
            entry["execution_stats"] = invoker.get_execution_stats()
            servers[server_id] = entry
        return {
            "status": "healthy" if healthy else "degraded",
            "fallback_tools": self.fallback.tools,
            "servers": servers,
        }

    async def stop(self, server_id: str) -> None:
        """Stop a tool server."""
        await self.invoker(server_id).pool.close()
        logger.info(f"Stopped {server_id}")

    async def stop_all(self) -> None:
        """Stop all running servers."""
        for server_id in list(self._invokers):
            await self.stop(server_id)

    async def __aenter__(self) -> "ToolServerManager":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop_all()
