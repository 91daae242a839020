"""Plain data types shared by the session, pool and invoker."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from mcp_runtime.errors import ErrorKind, ParseError, ToolRuntimeError


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool as advertised by a server in its tools/list response."""
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "ToolDescriptor":
        # Older servers advertise "parameters" instead of "inputSchema"
        schema = data.get("inputSchema") or data.get("parameters") or {}
        if not isinstance(schema, dict):
            raise ParseError(f"tool {data.get('name')!r} has a non-object input schema")
        return cls(
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            input_schema=dict(schema),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass
class PendingRequest:
    """One in-flight JSON-RPC call awaiting its correlated response."""
    id: int
    method: str
    issued_at: float
    timeout: float
    future: asyncio.Future


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    READY = "ready"
    DEGRADED = "degraded"
    CLOSED = "closed"


@dataclass(frozen=True)
class ToolErrorInfo:
    kind: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


@dataclass
class ToolResult:
    """
    Outcome of one tool invocation.

    Shaped identically whether it was served over the protocol or by a
    fallback; only served_by differs.
    """
    success: bool
    tool_name: str
    data: Any = None
    error: ToolErrorInfo | None = None
    execution_time_ms: float = 0.0
    served_by: Literal["protocol", "fallback"] = "protocol"

    @classmethod
    def ok(
        cls,
        tool_name: str,
        data: Any,
        execution_time_ms: float,
        served_by: Literal["protocol", "fallback"] = "protocol",
    ) -> "ToolResult":
        return cls(
            success=True,
            tool_name=tool_name,
            data=data,
            execution_time_ms=execution_time_ms,
            served_by=served_by,
        )

    @classmethod
    def failure(
        cls,
        tool_name: str,
        kind: ErrorKind | str,
        message: str,
        execution_time_ms: float,
        served_by: Literal["protocol", "fallback"] = "protocol",
    ) -> "ToolResult":
        kind_name = kind.value if isinstance(kind, ErrorKind) else str(kind)
        return cls(
            success=False,
            tool_name=tool_name,
            error=ToolErrorInfo(kind=kind_name, message=message),
            execution_time_ms=execution_time_ms,
            served_by=served_by,
        )

    @classmethod
    def from_exception(
        cls,
        tool_name: str,
        exc: ToolRuntimeError,
        execution_time_ms: float,
        served_by: Literal["protocol", "fallback"] = "protocol",
    ) -> "ToolResult":
        return cls.failure(tool_name, exc.kind, str(exc), execution_time_ms, served_by)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "tool_name": self.tool_name,
            "execution_time_ms": round(self.execution_time_ms, 1),
            "served_by": self.served_by,
        }
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error.to_dict() if self.error else None
        return result


@dataclass(frozen=True)
class CacheEntry:
    tools: tuple[ToolDescriptor, ...]
    timestamp: float

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_valid(self, now: float, ttl: float) -> bool:
        return self.age(now) < ttl
