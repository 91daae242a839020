"""
Error taxonomy for the tool runtime.

Lower layers (supervisor, session) raise these exceptions where the fault
is detected. The ToolInvoker is the only place that catches them and turns
them into a failed ToolResult, so callers never need exception handling
for expected failure modes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers in ToolResult.error.kind."""

    UNAVAILABLE = "Unavailable"
    STARTUP_TIMEOUT = "StartupTimeout"
    REQUEST_TIMEOUT = "RequestTimeout"
    PROTOCOL_ERROR = "ProtocolError"
    PARSE_ERROR = "ParseError"
    TOOL_ERROR = "ToolError"
    FALLBACK_EXHAUSTED = "FallbackExhausted"


# Only channel failures are retried through a fallback. A ProtocolError or
# ToolError means the server understood the request and rejected it.
FALLBACK_KINDS = frozenset({
    ErrorKind.UNAVAILABLE,
    ErrorKind.STARTUP_TIMEOUT,
    ErrorKind.REQUEST_TIMEOUT,
})


class ToolRuntimeError(Exception):
    """Base class for every fault raised by the runtime."""

    kind: ErrorKind = ErrorKind.TOOL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        # One line, always
        return " ".join(self.message.split())


class UnavailableError(ToolRuntimeError):
    """The tool server cannot be spawned or is no longer reachable."""

    kind = ErrorKind.UNAVAILABLE


class ConnectionLostError(UnavailableError):
    """The tool server exited or closed its pipes while requests were in flight."""

    def __init__(self, detail: str):
        super().__init__(f"connection lost: {detail}")


class StartupTimeoutError(ToolRuntimeError):
    kind = ErrorKind.STARTUP_TIMEOUT


class RequestTimeoutError(ToolRuntimeError):
    kind = ErrorKind.REQUEST_TIMEOUT


class ProtocolError(ToolRuntimeError):
    """The server answered with a JSON-RPC error envelope."""

    kind = ErrorKind.PROTOCOL_ERROR

    def __init__(self, message: str, code: int | None = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data

    @classmethod
    def from_envelope(cls, error: Any) -> "ProtocolError":
        if isinstance(error, dict):
            code = error.get("code")
            message = error.get("message") or "unknown error"
            prefix = f"JSON-RPC error {code}: " if code is not None else "JSON-RPC error: "
            return cls(prefix + str(message), code=code, data=error.get("data"))
        return cls(f"JSON-RPC error: {error}")


class ParseError(ToolRuntimeError):
    """A response or the tool payload embedded in it could not be decoded."""

    kind = ErrorKind.PARSE_ERROR


class ToolExecutionError(ToolRuntimeError):
    """The tool ran (or was refused before running) and reported failure."""

    kind = ErrorKind.TOOL_ERROR


class FallbackExhaustedError(ToolRuntimeError):
    kind = ErrorKind.FALLBACK_EXHAUSTED


class ConfigError(Exception):
    """Raised when the server configuration file cannot be used."""
