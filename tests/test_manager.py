"""Tests for ToolServerManager and the LangChain bridge."""

import json

import httpx
import pytest

from conftest import SAMPLE_FEED, mock_config
from mcp_runtime.bridge import descriptor_to_langchain_tool, invoker_to_langchain_tools, manager_to_langchain_tools
from mcp_runtime.config import McpConfig, ServerConfig
from mcp_runtime.fallback import FallbackClient
from mcp_runtime.manager import ToolServerManager
from mcp_runtime.models import ToolDescriptor


def _manager(settings, supervisor, **servers):
    fallback = FallbackClient.with_defaults(
        timeout=5, transport=httpx.MockTransport(lambda request: httpx.Response(200, text=SAMPLE_FEED)),
    )
    return ToolServerManager.from_config(
        McpConfig(servers=servers), settings=settings, fallback=fallback, supervisor=supervisor,
    )


class TestToolServerManager:

    @pytest.mark.asyncio
    async def test_invoke_routes_to_server(self, settings, supervisor):
        async with _manager(settings, supervisor, mock=mock_config()) as manager:
            assert manager.list_servers() == {"mock": False}

            result = await manager.invoke("mock", "echo", {"message": "routed"})

            assert result.data == {"echoed": "routed"}
            assert manager.list_servers() == {"mock": True}

        assert manager.list_servers() == {"mock": False}

    @pytest.mark.asyncio
    async def test_unknown_server(self, settings, supervisor):
        async with _manager(settings, supervisor) as manager:
            with pytest.raises(ValueError, match="Unknown server"):
                await manager.invoke("missing", "echo", {})

    def test_duplicate_registration(self, settings, supervisor):
        manager = _manager(settings, supervisor, mock=mock_config())
        with pytest.raises(ValueError, match="already registered"):
            manager.register_server("mock", mock_config())

    @pytest.mark.asyncio
    async def test_fallback_can_be_disabled_per_server(self, settings, supervisor):
        servers = {
            "with": ServerConfig(command="/nonexistent/a"),
            "without": ServerConfig(command="/nonexistent/b", fallback=False),
        }
        async with _manager(settings, supervisor, **servers) as manager:
            served = await manager.invoke("with", "search_papers", {"query": "transformer"})
            refused = await manager.invoke("without", "search_papers", {"query": "transformer"})

        assert served.served_by == "fallback"
        assert served.success
        assert refused.error.kind == "Unavailable"

    @pytest.mark.asyncio
    async def test_find_tool(self, settings, supervisor):
        servers = {"broken": ServerConfig(command="/nonexistent/a"), "mock": mock_config()}
        async with _manager(settings, supervisor, **servers) as manager:
            assert await manager.find_tool("search_papers") == "mock"
            assert await manager.find_tool("nope") is None

    @pytest.mark.asyncio
    async def test_health_check(self, settings, supervisor):
        servers = {"broken": ServerConfig(command="/nonexistent/a"), "mock": mock_config()}
        async with _manager(settings, supervisor, **servers) as manager:
            await manager.invoke("mock", "echo", {"message": "x"})
            report = await manager.health_check()

        assert report["status"] == "degraded"
        assert report["fallback_tools"] == ["arxiv_query", "search_papers"]
        mock = report["servers"]["mock"]
        assert mock["status"] == "healthy"
        assert mock["tools"] == 9
        assert mock["execution_stats"]["echo"]["count"] == 1
        assert mock["pool"]["has_active_session"] is True
        broken = report["servers"]["broken"]
        assert broken["status"] == "unhealthy"
        assert broken["error"]["kind"] == "Unavailable"


class TestLangChainBridge:

    @pytest.mark.asyncio
    async def test_tools_call_through_invoker(self, settings, supervisor):
        async with _manager(settings, supervisor, mock=mock_config()) as manager:
            tools = await invoker_to_langchain_tools(manager.invoker("mock"))
            echo = next(t for t in tools if t.name == "echo")

            output = await echo.ainvoke({"message": "from agent"})

        assert echo.description == "Echo a message"
        assert json.loads(output) == {"echoed": "from agent"}

    @pytest.mark.asyncio
    async def test_failures_become_readable_strings(self, settings, supervisor):
        async with _manager(settings, supervisor, mock=mock_config()) as manager:
            tool = descriptor_to_langchain_tool(manager.invoker("mock"), ToolDescriptor(name="fail"))
            output = await tool.ainvoke({})

        assert output.startswith("Error calling mock/fail [ToolError]")
        assert "\n" not in output

    @pytest.mark.asyncio
    async def test_prefix(self, settings, supervisor):
        async with _manager(settings, supervisor, mock=mock_config()) as manager:
            tools = await invoker_to_langchain_tools(manager.invoker("mock"), prefix="mock")
        assert "mock__echo" in {t.name for t in tools}

    @pytest.mark.asyncio
    async def test_manager_tools_skip_unreachable_servers(self, settings, supervisor):
        servers = {"broken": ServerConfig(command="/nonexistent/a"), "mock": mock_config()}
        async with _manager(settings, supervisor, **servers) as manager:
            tools = await manager_to_langchain_tools(manager)
        assert len(tools) == 9
        assert "echo" in {t.name for t in tools}
