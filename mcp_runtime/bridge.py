"""
Bridge between the tool runtime and LangChain.

Converts the tools a server advertises into LangChain StructuredTools so
an agent can call them. Every call goes through a ToolInvoker, so the
agent gets the same timeouts, error mapping and fallback as any other
caller.

Usage:
    from mcp_runtime.bridge import invoker_to_langchain_tools, manager_to_langchain_tools

    # All tools of one server
    tools = await invoker_to_langchain_tools(manager.invoker("research"))

    # All tools of all configured servers
    tools = await manager_to_langchain_tools(manager)
"""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.tools import StructuredTool

from mcp_runtime.errors import ToolRuntimeError
from mcp_runtime.invoker import ToolInvoker
from mcp_runtime.manager import ToolServerManager
from mcp_runtime.models import ToolDescriptor

logger = logging.getLogger(__name__)


def descriptor_to_langchain_tool(
    invoker: ToolInvoker,
    descriptor: ToolDescriptor,
    name: str | None = None,
    description_override: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that proxies one server tool.

    The tool is async-only. Its return value is the JSON of the result
    data on success, or a one-line error string the model can read.

    Args:
        invoker: The invoker bound to the tool's server
        descriptor: The tool as advertised by tools/list
        name: Name exposed to LangChain (defaults to the tool name)
        description_override: Optional override for the tool description

    Returns:
        A StructuredTool whose coroutine calls invoker.invoke().
    """
    tool_name = descriptor.name

    async def _call_tool(**kwargs: Any) -> str:
        result = await invoker.invoke(tool_name, kwargs)
        if result.success:
            if isinstance(result.data, str):
                return result.data
            return json.dumps(result.data, indent=2)
        error = result.error
        return f"Error calling {invoker.pool.name}/{tool_name} [{error.kind}]: {error.message}"

    return StructuredTool.from_function(
        coroutine=_call_tool,
        name=name or tool_name,
        description=description_override or descriptor.description or f"Tool: {invoker.pool.name}/{tool_name}",
        args_schema=_args_schema(descriptor),
    )


async def invoker_to_langchain_tools(invoker: ToolInvoker, prefix: str | None = None) -> list[StructuredTool]:
    """
    Wrap every tool advertised by the invoker's server.

    Args:
        invoker: The invoker for one server
        prefix: Prepended as "{prefix}__{tool}" to avoid name clashes

    Raises:
        ToolRuntimeError: the server's tool list could not be fetched.
    """
    tools = []
    for descriptor in await invoker.list_tools():
        name = f"{prefix}__{descriptor.name}" if prefix else descriptor.name
        tools.append(descriptor_to_langchain_tool(invoker, descriptor, name=name))
    return tools


async def manager_to_langchain_tools(manager: ToolServerManager) -> list[StructuredTool]:
    """
    Wrap the tools of every registered server.

    Servers that cannot be reached are skipped with a warning. Names are
    prefixed with the server id only when two servers share a tool name.
    """
    discovered: dict[str, list[ToolDescriptor]] = {}
    for server_id in manager.list_servers():
        try:
            discovered[server_id] = await manager.list_tools(server_id)
        except ToolRuntimeError as e:
            logger.warning(f"Skipping tools of {server_id}: {e}")

    counts: dict[str, int] = {}
    for descriptors in discovered.values():
        for d in descriptors:
            counts[d.name] = counts.get(d.name, 0) + 1

    tools = []
    for server_id, descriptors in discovered.items():
        invoker = manager.invoker(server_id)
        for d in descriptors:
            name = f"{server_id}__{d.name}" if counts[d.name] > 1 else d.name
            tools.append(descriptor_to_langchain_tool(invoker, d, name=name))
    logger.info(f"Bridged {len(tools)} tools from {len(discovered)} servers")
    return tools


def _args_schema(descriptor: ToolDescriptor) -> dict[str, Any]:
    """JSON schema for the tool arguments, as LangChain expects it."""
    schema = dict(descriptor.input_schema) or {"type": "object", "properties": {}}
    schema.setdefault("type", "object")
    schema.setdefault("properties", {})
    schema.setdefault("title", descriptor.name)
    return schema
