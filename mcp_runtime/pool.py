"""
Connection pool for one tool server.

The pool keeps at most one live ProtocolSession and hands it to every
caller. Calls are dispatched on it concurrently (the session correlates
responses by id), so the pool never queues calls; it only makes sure that
a replacement session is started by exactly one in-flight connect that
all waiting callers share.

It also caches the server's tool list for a TTL window, mirroring the
behavior of the chat backend's tool service:

    pool = ConnectionPool(config, name="research")
    tools = await pool.list_tools()        # round trip, cached
    tools = await pool.list_tools()        # served from cache
    await pool.refresh_tools()             # forced round trip
    await pool.close()
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from mcp_runtime.config import RuntimeSettings, ServerConfig, get_settings
from mcp_runtime.errors import ParseError, ToolRuntimeError, UnavailableError
from mcp_runtime.models import CacheEntry, ToolDescriptor
from mcp_runtime.readiness import ReadinessStrategy
from mcp_runtime.session import ProtocolSession
from mcp_runtime.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


class ConnectionPool:
    """Owns the single pooled session (and tool cache) for one server."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        name: str = "tool-server",
        settings: RuntimeSettings | None = None,
        supervisor: ProcessSupervisor | None = None,
        readiness_factory: Callable[[], ReadinessStrategy] | None = None,
        session_factory: Callable[[], ProtocolSession] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.name = name
        self._settings = settings or get_settings()
        self._supervisor = supervisor or ProcessSupervisor(self._settings.terminate_grace)
        self._readiness_factory = readiness_factory
        self._session_factory = session_factory or self._new_session
        self._clock = clock

        self._session: ProtocolSession | None = None
        self._connecting: asyncio.Future | None = None
        self._tools_refresh: asyncio.Future | None = None
        self._cache: CacheEntry | None = None
        self._closed = False
        self.sessions_started = 0

    def _new_session(self) -> ProtocolSession:
        readiness = self._readiness_factory() if self._readiness_factory else None
        return ProtocolSession(
            self.config,
            name=self.name,
            supervisor=self._supervisor,
            readiness=readiness,
            settings=self._settings,
            clock=self._clock,
        )

    # ── sessions ─────────────────────────────────────────────

    async def get_session(self) -> ProtocolSession:
        """
        Return a ready session, starting or replacing it if needed.

        Raises:
            UnavailableError: the pool is closed or the server cannot start.
            StartupTimeoutError: the replacement never became ready.
        """
        if self._closed:
            raise UnavailableError(f"pool for {self.name} is closed")

        session = self._session
        if session is not None and session.is_healthy():
            if session.idle_seconds() < self._settings.liveness_interval:
                return session
            if await self._still_alive(session):
                return session

        # Single-threaded event loop: no await between check and set
        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._replace_session())
        return await asyncio.shield(self._connecting)

    async def _still_alive(self, session: ProtocolSession) -> bool:
        try:
            await session.ping()
        except ToolRuntimeError as e:
            logger.warning(f"Pooled session {self.name} failed liveness check: {e}")
            return False
        return session.is_healthy()

    async def _replace_session(self) -> ProtocolSession:
        try:
            old, self._session = self._session, None
            if old is not None:
                logger.info(f"Replacing unhealthy session for {self.name} (state={old.state.value})")
                await old.close()

            session = self._session_factory()
            try:
                await session.initialize()
            except BaseException:
                await session.close()
                raise

            if self._closed:
                await session.close()
                raise UnavailableError(f"pool for {self.name} is closed")
            self._session = session
            self.sessions_started += 1
            return session
        finally:
            self._connecting = None

    # ── tool list cache ──────────────────────────────────────

    async def list_tools(self) -> list[ToolDescriptor]:
        """Cached tools/list; a fresh round trip once the TTL has expired."""
        cache = self._cache
        if cache is not None and cache.is_valid(self._clock(), self._settings.tools_cache_ttl):
            logger.debug(f"Returning {len(cache.tools)} cached tools for {self.name}")
            return list(cache.tools)

        if self._tools_refresh is None:
            self._tools_refresh = asyncio.ensure_future(self._fetch_tools())
        return list(await asyncio.shield(self._tools_refresh))

    async def _fetch_tools(self) -> tuple[ToolDescriptor, ...]:
        try:
            session = await self.get_session()
            result = await session.call("tools/list", {})
            tools = parse_tool_list(result)
            self._cache = CacheEntry(tools=tools, timestamp=self._clock())
            logger.info(f"Loaded {len(tools)} tools from {self.name}: {[t.name for t in tools]}")
            return tools
        finally:
            self._tools_refresh = None

    def clear_cache(self) -> None:
        self._cache = None
        logger.info(f"Tool cache cleared for {self.name}")

    async def refresh_tools(self) -> list[ToolDescriptor]:
        self.clear_cache()
        return await self.list_tools()

    # ── shutdown / status ────────────────────────────────────

    async def close(self) -> None:
        """Close the pooled session and refuse further use."""
        self._closed = True
        self._cache = None
        connecting = self._connecting
        if connecting is not None:
            await asyncio.gather(connecting, return_exceptions=True)
        session, self._session = self._session, None
        if session is not None:
            await session.close()
            logger.info(f"Pool for {self.name} closed")

    async def __aenter__(self) -> "ConnectionPool":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def settings(self) -> RuntimeSettings:
        return self._settings

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def session(self) -> ProtocolSession | None:
        return self._session

    def get_status(self) -> dict[str, Any]:
        now = self._clock()
        session = self._session
        cache = self._cache
        return {
            "server": self.name,
            "is_initialized": session is not None,
            "has_active_session": session is not None and session.is_healthy(),
            "session_state": session.state.value if session else None,
            "pid": session.pid if session else None,
            "sessions_started": self.sessions_started,
            "has_cached_tools": cache is not None,
            "cached_tool_count": len(cache.tools) if cache else 0,
            "cache_age": round(cache.age(now), 3) if cache else 0,
            "is_cache_valid": bool(cache and cache.is_valid(now, self._settings.tools_cache_ttl)),
        }


def parse_tool_list(result: Any) -> tuple[ToolDescriptor, ...]:
    """
    Decode a tools/list result.

    Accepts {"tools": [...]} and, from older servers, a bare list.

    Raises:
        ParseError: the result has no usable tool entries.
    """
    entries = result.get("tools") if isinstance(result, dict) else result
    if not isinstance(entries, list):
        raise ParseError("tools/list result has no 'tools' array")
    try:
        return tuple(ToolDescriptor.from_wire(entry) for entry in entries)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ParseError(f"malformed tool descriptor in tools/list: {e}") from e
