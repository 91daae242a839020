"""
ToolInvoker: the boundary between callers and the tool runtime.

    invoker = ToolInvoker(pool, fallback=FallbackClient.with_defaults())
    result = await invoker.invoke("search_papers", {"query": "transformer models", "max_results": 3})
    if result.success:
        for paper in result.data:
            print(paper["id"], paper["title"])
    else:
        print(result.error.kind, result.error.message)

invoke() never raises for expected failures: every fault from the
supervisor, session or payload decoding is mapped onto the error taxonomy
and returned as ToolResult(success=False).

Tool results are double-encoded by convention. The JSON-RPC response is
the first document; its result carries content blocks, and the first text
block holds the tool's real payload as a second JSON document:

    {"jsonrpc": "2.0", "id": 5, "result": {
        "content": [{"type": "text", "text": "{\\"papers\\": [...]}"}]
    }}

Both decodes are mandatory. A missing or malformed inner document is a
ParseError, never an empty success.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from mcp_runtime.errors import (
    FALLBACK_KINDS,
    ParseError,
    ToolExecutionError,
    ToolRuntimeError,
)
from mcp_runtime.fallback import FallbackClient
from mcp_runtime.models import ToolDescriptor, ToolResult
from mcp_runtime.pool import ConnectionPool
from mcp_runtime.schemas import shape_result, validate_arguments

logger = logging.getLogger(__name__)


class ToolInvoker:
    """Invokes named tools through a pooled session, with optional fallback."""

    def __init__(
        self,
        pool: ConnectionPool,
        fallback: FallbackClient | None = None,
        validate_tool_names: bool | None = None,
    ):
        self.pool = pool
        self.fallback = fallback
        if validate_tool_names is None:
            validate_tool_names = pool.settings.validate_tool_names
        self.validate_tool_names = validate_tool_names
        self._stats: dict[str, dict[str, float]] = {}

    async def invoke(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ToolResult:
        """
        Invoke a tool and return a structured result.

        Args:
            tool_name: Name as advertised by tools/list.
            arguments: Tool arguments (validated for known tools).
            timeout: Per-call timeout; defaults to the server's per-tool timeout.
        """
        started = time.monotonic()
        logger.info(f"Invoking {self.pool.name}/{tool_name}")

        try:
            arguments = validate_arguments(tool_name, arguments)
        except ToolRuntimeError as e:
            return self._failed(tool_name, e, started)

        try:
            payload = await self._invoke_protocol(tool_name, arguments, timeout)
        except ToolRuntimeError as e:
            if e.kind in FALLBACK_KINDS and self.fallback and self.fallback.supports(tool_name):
                result = await self.fallback.invoke(tool_name, arguments, cause=e, started=started)
                self._record(tool_name, result.execution_time_ms)
                return result
            return self._failed(tool_name, e, started)
        except Exception as e:
            # Tracebacks stay on this side of the boundary
            logger.exception(f"Unexpected failure invoking {tool_name}")
            return self._failed(tool_name, ToolExecutionError(f"{type(e).__name__}: {e}"), started)

        elapsed = (time.monotonic() - started) * 1000
        self._record(tool_name, elapsed)
        logger.info(f"{self.pool.name}/{tool_name} completed in {elapsed:.0f}ms")
        return ToolResult.ok(tool_name, shape_result(tool_name, payload), elapsed)

    async def _invoke_protocol(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        timeout: float | None,
    ) -> Any:
        session = await self.pool.get_session()

        if self.validate_tool_names:
            names = {tool.name for tool in await self.pool.list_tools()}
            if tool_name not in names:
                raise ToolExecutionError(
                    f"tool '{tool_name}' not found on {self.pool.name}; available: {sorted(names)}"
                )

        result = await session.call(
            "tools/call",
            {"name": tool_name, "arguments": arguments},
            timeout or self.pool.config.timeout_for(tool_name),
        )
        return decode_tool_payload(tool_name, result)

    async def list_tools(self) -> list[ToolDescriptor]:
        """
        Tools advertised by the server (cached by the pool).

        Raises:
            ToolRuntimeError: the server could not be reached or answered badly.
        """
        return await self.pool.list_tools()

    async def refresh_tools(self) -> list[ToolDescriptor]:
        return await self.pool.refresh_tools()

    def _failed(self, tool_name: str, error: ToolRuntimeError, started: float) -> ToolResult:
        elapsed = (time.monotonic() - started) * 1000
        logger.warning(f"{self.pool.name}/{tool_name} failed after {elapsed:.0f}ms: [{error.kind.value}] {error}")
        return ToolResult.from_exception(tool_name, error, elapsed)

    def _record(self, tool_name: str, elapsed_ms: float) -> None:
        stats = self._stats.setdefault(tool_name, {"count": 0, "avg_time_ms": 0.0})
        stats["count"] += 1
        stats["avg_time_ms"] += (elapsed_ms - stats["avg_time_ms"]) / stats["count"]

    def get_execution_stats(self) -> dict[str, dict[str, float]]:
        return {name: dict(stats) for name, stats in self._stats.items()}


def decode_tool_payload(tool_name: str, result: Any) -> Any:
    """
    Second-stage decode of a tools/call result.

    Raises:
        ParseError: no content blocks, no text block, or invalid inner JSON.
        ToolExecutionError: the server flagged isError, or the payload says
            success is false.
    """
    if not isinstance(result, dict):
        raise ParseError(f"{tool_name}: tools/call result is not an object")

    content = result.get("content")
    if not isinstance(content, list) or not content:
        raise ParseError(f"{tool_name}: tools/call result has no content blocks")

    text = next(
        (
            block.get("text")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str)
        ),
        None,
    )

    if result.get("isError"):
        raise ToolExecutionError(f"{tool_name} failed: {_error_message(text)}")

    if text is None:
        raise ParseError(f"{tool_name}: tools/call result has no text content block")

    try:
        payload = json.loads(text)
    except ValueError as e:
        raise ParseError(f"{tool_name}: tool payload is not valid JSON: {e}") from e

    if isinstance(payload, dict) and payload.get("success") is False:
        raise ToolExecutionError(f"{tool_name} failed: {payload.get('error') or 'no error message'}")
    return payload


def _error_message(text: str | None) -> str:
    if not text:
        return "tool reported an error"
    try:
        inner = json.loads(text)
    except ValueError:
        return text
    if isinstance(inner, dict) and inner.get("error"):
        return str(inner["error"])
    return text
