"""
Protocol session over one supervised tool server process.

A session owns exactly one subprocess. It performs the initialize
handshake, then multiplexes any number of concurrent calls over the
process's single stdin/stdout pair:

    caller A ──call(id=2)──┐                    ┌──> future[2]
    caller B ──call(id=3)──┼─> write lock ─> stdin
    caller C ──call(id=4)──┘                stdout ─> reader ─┼──> future[3]
                                                               └──> future[4]

Writes are serialized so that every message hits the pipe as one whole
line. Reads are demultiplexed by id, so responses may arrive in any order.
Each call owns its own timeout; a timed-out call is forgotten and its late
response, if any, is dropped. If the process dies, every pending call is
rejected at once with a "connection lost" error.

Usage:
    async with ProtocolSession(config, name="research") as session:
        tools = await session.call("tools/list", {})
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable

from mcp_runtime.config import RuntimeSettings, ServerConfig, get_settings
from mcp_runtime.errors import (
    ConnectionLostError,
    ParseError,
    ProtocolError,
    RequestTimeoutError,
    StartupTimeoutError,
    ToolRuntimeError,
    UnavailableError,
)
from mcp_runtime.models import PendingRequest, SessionState
from mcp_runtime.readiness import ReadinessStrategy, default_readiness
from mcp_runtime.supervisor import ProcessHandle, ProcessSupervisor
from mcp_runtime.transport import JsonRpcNotification, JsonRpcRequest, JsonRpcResponse

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 50


class ProtocolSession:
    """JSON-RPC session with one stdio tool server."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        name: str = "tool-server",
        supervisor: ProcessSupervisor | None = None,
        readiness: ReadinessStrategy | None = None,
        settings: RuntimeSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.name = name
        self._settings = settings or get_settings()
        self._supervisor = supervisor or ProcessSupervisor(self._settings.terminate_grace)
        self._readiness = readiness or default_readiness(config.ready_banner)
        self._clock = clock

        self.state = SessionState.UNINITIALIZED
        self.server_info: dict[str, Any] | None = None
        self.capabilities: dict[str, Any] | None = None
        self.ready_via: str | None = None
        self.last_activity = clock()
        self.request_count = 0

        self._handle: ProcessHandle | None = None
        self._pending: dict[int, PendingRequest] = {}
        self._next_id = 0
        self._write_lock = asyncio.Lock()
        self._ready: asyncio.Future | None = None
        self._init_task: asyncio.Future | None = None
        self._tasks: list[asyncio.Future] = []
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    # ── lifecycle ────────────────────────────────────────────

    async def initialize(self) -> None:
        """
        Spawn the server and complete the handshake.

        Concurrent callers share one handshake; calling it on a ready
        session is a no-op.

        Raises:
            UnavailableError: the process could not be spawned or died.
            StartupTimeoutError: no readiness signal within startup_timeout.
            ProtocolError: the server rejected the handshake.
        """
        if self.state in (SessionState.READY, SessionState.DEGRADED):
            return
        if self.state is SessionState.CLOSED:
            raise ConnectionLostError(f"session for {self.name} is closed")
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        await asyncio.shield(self._init_task)

    async def _initialize(self) -> None:
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self.state = SessionState.STARTING

        try:
            self._handle = await self._supervisor.start(
                self.config.command, self.config.args, self.config.env
            )
        except UnavailableError:
            self.state = SessionState.CLOSED
            raise

        self._tasks = [
            asyncio.ensure_future(self._read_stdout()),
            asyncio.ensure_future(self._read_stderr()),
            asyncio.ensure_future(self._watch_exit()),
        ]

        params = {
            "protocolVersion": self._settings.protocol_version,
            "capabilities": {},
            "clientInfo": {
                "name": self._settings.client_name,
                "version": self._settings.client_version,
            },
        }
        handshake = asyncio.ensure_future(
            self._request("initialize", params, self.config.startup_timeout)
        )
        handshake.add_done_callback(self._on_handshake_done)
        self._tasks.append(handshake)

        timeout = self.config.startup_timeout
        try:
            await asyncio.wait_for(self._ready, timeout)
        except asyncio.TimeoutError:
            error = StartupTimeoutError(
                f"{self.name} did not become ready within {timeout:g}s "
                f"(waiting for {self._readiness.describe()}){self._stderr_hint()}"
            )
            logger.error(str(error))
            await self._shutdown(error)
            raise error from None
        except ToolRuntimeError as e:
            logger.error(f"{self.name} failed to start: {e}")
            await self._shutdown(e)
            raise

        self.state = SessionState.READY
        self.last_activity = self._clock()
        logger.info(f"Session {self.name} ready via {self.ready_via} (pid={self._handle.pid})")

    def _on_handshake_done(self, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            if isinstance(exc, RequestTimeoutError):
                # The startup timeout reports this one
                return
            if self._ready is not None and not self._ready.done():
                self._ready.set_exception(exc)
            elif self.state is not SessionState.CLOSED:
                logger.warning(f"{self.name} handshake failed after banner readiness: {exc}")
            return

        result = task.result()
        if isinstance(result, dict):
            self.server_info = result.get("serverInfo")
            self.capabilities = result.get("capabilities")
        if self._readiness.on_handshake(result):
            self._mark_ready("response")
        if self.state is not SessionState.CLOSED:
            self._tasks.append(asyncio.ensure_future(self._send_initialized()))

    async def _send_initialized(self) -> None:
        try:
            await self.notify("notifications/initialized")
        except ToolRuntimeError as e:
            logger.debug(f"{self.name}: could not send initialized notification: {e}")

    def _mark_ready(self, via: str) -> None:
        if self._ready is not None and not self._ready.done():
            self.ready_via = via
            self._ready.set_result(via)

    async def close(self) -> None:
        """Reject pending calls and terminate the process. Idempotent."""
        if self.state is SessionState.CLOSED and (self._handle is None or self._handle.terminated):
            return
        await self._shutdown(ConnectionLostError(f"session for {self.name} closed"))

    async def _shutdown(self, error: ToolRuntimeError) -> None:
        self.state = SessionState.CLOSED
        self._fail_pending(error)
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(error)
            # Nobody may be waiting on it any more
            self._ready.exception()
        if self._handle is not None:
            await self._supervisor.terminate(self._handle)
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _fail_session(self, error: ToolRuntimeError) -> None:
        """The process went away on its own: invalidate everything now."""
        if self.state is SessionState.CLOSED:
            return
        logger.warning(f"Session {self.name} lost: {error}")
        self.state = SessionState.CLOSED
        self._fail_pending(error)
        if self._ready is not None and not self._ready.done():
            self._ready.set_exception(error)

    def _fail_pending(self, error: ToolRuntimeError) -> None:
        pending, self._pending = self._pending, {}
        for request in pending.values():
            if not request.future.done():
                request.future.set_exception(error)

    async def __aenter__(self) -> "ProtocolSession":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ── calls ────────────────────────────────────────────────

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Send one request and wait for its correlated response.

        Args:
            method: JSON-RPC method name, e.g. "tools/call".
            params: Request parameters.
            timeout: Seconds to wait; defaults to the server's request_timeout.

        Returns:
            The response's "result" member.

        Raises:
            RequestTimeoutError: no response in time (other calls unaffected).
            ProtocolError: the server answered with an error envelope.
            ConnectionLostError: the process died or the session was closed.
        """
        if self.state not in (SessionState.READY, SessionState.DEGRADED):
            if self.state is SessionState.CLOSED:
                raise ConnectionLostError(f"session for {self.name} is closed")
            raise UnavailableError(f"session for {self.name} is not initialized")
        return await self._request(method, params or {}, timeout or self.config.request_timeout)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification; no response is expected."""
        await self._write(JsonRpcNotification(method=method, params=params or {}).encode())

    async def ping(self, timeout: float | None = None) -> None:
        """
        Liveness round trip.

        Any answer, including an error envelope from a server that does not
        implement ping, proves the server is alive.
        """
        try:
            await self._request("ping", {}, timeout or self._settings.liveness_timeout)
        except ProtocolError:
            pass
        except RequestTimeoutError:
            if self.state is SessionState.READY:
                self.state = SessionState.DEGRADED
                logger.warning(f"Session {self.name} degraded: ping timed out")
            raise

    async def _request(self, method: str, params: dict[str, Any], timeout: float) -> Any:
        loop = asyncio.get_running_loop()
        self._next_id += 1
        request = JsonRpcRequest(method=method, params=params, id=self._next_id)
        try:
            data = request.encode()
        except (TypeError, ValueError) as e:
            raise ParseError(f"cannot serialize {method} params: {e}") from e

        future = loop.create_future()
        self._pending[request.id] = PendingRequest(
            id=request.id,
            method=method,
            issued_at=self._clock(),
            timeout=timeout,
            future=future,
        )
        self.request_count += 1

        async def send_and_wait() -> Any:
            await self._write(data)
            return await future

        try:
            return await asyncio.wait_for(send_and_wait(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name}: {method} (id={request.id}) timed out after {timeout:g}s")
            raise RequestTimeoutError(
                f"{method} to {self.name} timed out after {timeout:g}s"
            ) from None
        finally:
            self._pending.pop(request.id, None)

    async def _write(self, data: bytes) -> None:
        async with self._write_lock:
            if self._handle is None or self.state is SessionState.CLOSED:
                raise ConnectionLostError(f"session for {self.name} is closed")
            stdin = self._handle.stdin
            if stdin is None or stdin.is_closing():
                raise ConnectionLostError(f"{self.name} stdin is closed")
            try:
                stdin.write(data)
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise ConnectionLostError(f"cannot write to {self.name}: {e}") from e

    # ── background readers ───────────────────────────────────

    async def _read_stdout(self) -> None:
        reader = self._handle.stdout
        while True:
            try:
                line = await reader.readline()
            except ValueError as e:
                logger.warning(f"[{self.name}] dropped over-long stdout line: {e}")
                continue
            if not line:
                break
            try:
                self._dispatch(line)
            except Exception:
                logger.exception(f"[{self.name}] dropped unprocessable stdout line")
        self._fail_session(ConnectionLostError(
            f"{self.name} closed its output stream{self._stderr_hint()}"
        ))

    def _dispatch(self, line: bytes) -> None:
        response = JsonRpcResponse.from_line(line)
        if response is None:
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                logger.debug(f"[{self.name}] non-protocol output: {text[:200]}")
            return

        request = self._pending.pop(_normalize_id(response.id), None)
        if request is None:
            logger.debug(f"[{self.name}] discarding response for unknown id {response.id!r}")
            return

        self.last_activity = self._clock()
        if self.state is SessionState.DEGRADED:
            self.state = SessionState.READY
            logger.info(f"Session {self.name} recovered")
        if request.future.done():
            return
        if response.is_error:
            request.future.set_exception(ProtocolError.from_envelope(response.error))
        else:
            request.future.set_result(response.result)

    async def _read_stderr(self) -> None:
        reader = self._handle.stderr
        while True:
            try:
                raw = await reader.readline()
            except ValueError:
                continue
            if not raw:
                break
            text = raw.decode("utf-8", errors="replace").rstrip()
            if not text:
                continue
            self._stderr_tail.append(text)
            logger.debug(f"[{self.name}] {text}")
            if self.state is SessionState.STARTING and self._readiness.on_stderr(text):
                self._mark_ready("banner")

    async def _watch_exit(self) -> None:
        code = await asyncio.shield(self._handle.exit_future)
        self._fail_session(ConnectionLostError(
            f"{self.name} exited with code {code}{self._stderr_hint()}"
        ))

    # ── introspection ────────────────────────────────────────

    def is_healthy(self) -> bool:
        return (
            self.state is SessionState.READY
            and self._handle is not None
            and self._handle.is_alive()
        )

    def idle_seconds(self) -> float:
        return self._clock() - self.last_activity

    @property
    def pid(self) -> int | None:
        return self._handle.pid if self._handle is not None else None

    @property
    def handle(self) -> ProcessHandle | None:
        return self._handle

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def stderr_tail(self) -> list[str]:
        return list(self._stderr_tail)

    def _stderr_hint(self) -> str:
        if not self._stderr_tail:
            return ""
        return f"; last stderr: {self._stderr_tail[-1][:300]}"


def _normalize_id(value: Any) -> Any:
    # Some servers echo numeric ids back as strings
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value
