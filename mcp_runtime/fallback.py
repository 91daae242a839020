"""
Direct-network fallbacks for tools whose server cannot be reached.

When the stdio path fails with Unavailable, StartupTimeout or
RequestTimeout, the invoker hands the call to a FallbackClient if one is
registered for the tool. The fallback performs the same operation over
plain HTTP and returns a ToolResult shaped exactly like the protocol path,
with served_by="fallback". It never raises: it is the last stop before
the caller sees an error.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable

import httpx

from mcp_runtime import arxiv
from mcp_runtime.errors import ErrorKind, ToolRuntimeError
from mcp_runtime.models import ToolResult
from mcp_runtime.schemas import PaperSearchArgs, shape_result

logger = logging.getLogger(__name__)

# handler(arguments, http_client, timeout) -> decoded tool payload
FallbackHandler = Callable[[dict[str, Any], httpx.AsyncClient, float], Awaitable[Any]]

DEFAULT_FALLBACK_TIMEOUT = 15.0


def arxiv_fallback(base_url: str = arxiv.ARXIV_API_URL) -> FallbackHandler:
    """Fallback for the paper-search tools, backed by the public arXiv API."""

    async def handler(arguments: dict[str, Any], client: httpx.AsyncClient, timeout: float) -> Any:
        args = PaperSearchArgs.model_validate(arguments)
        return await arxiv.search_async(args, base_url=base_url, timeout=timeout, client=client)

    return handler


class FallbackClient:
    """Registry of per-tool direct-network substitutes."""

    def __init__(
        self,
        handlers: dict[str, FallbackHandler] | None = None,
        timeout: float = DEFAULT_FALLBACK_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._handlers: dict[str, FallbackHandler] = dict(handlers or {})
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def with_defaults(
        cls,
        timeout: float = DEFAULT_FALLBACK_TIMEOUT,
        arxiv_base_url: str = arxiv.ARXIV_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "FallbackClient":
        handler = arxiv_fallback(arxiv_base_url)
        return cls(
            {"search_papers": handler, "arxiv_query": handler},
            timeout=timeout,
            transport=transport,
        )

    def register(self, tool_name: str, handler: FallbackHandler) -> None:
        self._handlers[tool_name] = handler
        logger.info(f"Registered fallback for tool: {tool_name}")

    def supports(self, tool_name: str) -> bool:
        return tool_name in self._handlers

    @property
    def tools(self) -> list[str]:
        return sorted(self._handlers)

    async def invoke(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        cause: ToolRuntimeError | None = None,
        started: float | None = None,
    ) -> ToolResult:
        """
        Run the fallback for a tool.

        Args:
            tool_name: Tool that failed on the protocol path.
            arguments: The already validated arguments.
            cause: The protocol-path failure, quoted if the fallback fails too.
            started: Monotonic start of the whole call, so the reported time
                includes the failed protocol attempt.
        """
        if started is None:
            started = time.monotonic()
        handler = self._handlers.get(tool_name)
        if handler is None:
            return self._exhausted(tool_name, "no fallback registered", cause, started)

        logger.warning(f"Serving {tool_name} via direct fallback (protocol path: {cause})")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                payload = await handler(arguments, client, self.timeout)
        except httpx.TimeoutException:
            return self._exhausted(tool_name, f"timed out after {self.timeout:g}s", cause, started)
        except httpx.HTTPStatusError as e:
            return self._exhausted(
                tool_name, f"HTTP {e.response.status_code} from {e.request.url.host}", cause, started
            )
        except Exception as e:
            logger.exception(f"Fallback for {tool_name} failed")
            return self._exhausted(tool_name, f"{type(e).__name__}: {e}", cause, started)

        if isinstance(payload, dict) and payload.get("success") is False:
            return self._exhausted(tool_name, str(payload.get("error") or "tool failed"), cause, started)

        elapsed = (time.monotonic() - started) * 1000
        logger.info(f"Fallback for {tool_name} completed in {elapsed:.0f}ms")
        return ToolResult.ok(tool_name, shape_result(tool_name, payload), elapsed, served_by="fallback")

    def _exhausted(
        self,
        tool_name: str,
        reason: str,
        cause: ToolRuntimeError | None,
        started: float,
    ) -> ToolResult:
        elapsed = (time.monotonic() - started) * 1000
        message = f"fallback for {tool_name} failed: {' '.join(reason.split())}"
        if cause is not None:
            message = f"{cause.kind.value}: {cause}; {message}"
        logger.error(message)
        return ToolResult.failure(
            tool_name, ErrorKind.FALLBACK_EXHAUSTED, message, elapsed, served_by="fallback"
        )
