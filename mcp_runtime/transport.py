"""
Wire format for the stdio tool protocol.

One JSON-RPC 2.0 message per line over the child's stdin/stdout:

    request       {"jsonrpc": "2.0", "id": 7, "method": "tools/call", "params": {...}}
    notification  {"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}}
    response      {"jsonrpc": "2.0", "id": 7, "result": {...}}
                  {"jsonrpc": "2.0", "id": 7, "error": {"code": -32603, "message": "..."}}

Tool servers also print diagnostics, progress bars and half-written lines to
stdout. Anything that does not decode to a response object is noise and is
dropped by the reader.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

JSONRPC_VERSION = "2.0"


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request."""
    method: str
    params: dict[str, Any]
    id: int

    def to_json(self) -> str:
        return json.dumps({
            "jsonrpc": JSONRPC_VERSION,
            "id": self.id,
            "method": self.method,
            "params": self.params,
        })

    def encode(self) -> bytes:
        """The whole message as one newline-terminated line."""
        return (self.to_json() + "\n").encode("utf-8")


@dataclass
class JsonRpcNotification:
    """JSON-RPC 2.0 notification (no id, no response expected)."""
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({
            "jsonrpc": JSONRPC_VERSION,
            "method": self.method,
            "params": self.params,
        })

    def encode(self) -> bytes:
        return (self.to_json() + "\n").encode("utf-8")


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str
    result: Any = None
    error: Any = None

    @classmethod
    def from_json(cls, data: str) -> "JsonRpcResponse":
        parsed = json.loads(data)
        return cls(
            id=parsed.get("id"),
            result=parsed.get("result"),
            error=parsed.get("error"),
        )

    @classmethod
    def from_line(cls, line: bytes | str) -> "JsonRpcResponse | None":
        """
        Decode one stdout line, or return None if it is not a response.

        Server-initiated requests and notifications carry a "method" and are
        not responses to anything we sent, so they count as noise here.
        """
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.strip()
        if not line:
            return None
        try:
            parsed = json.loads(line)
        except ValueError:
            return None
        if not isinstance(parsed, dict) or "method" in parsed:
            return None
        msg_id = parsed.get("id")
        # Only string and integer ids can match a request we issued
        if isinstance(msg_id, bool) or not isinstance(msg_id, (int, str)):
            return None
        if "result" not in parsed and "error" not in parsed:
            return None
        return cls(id=msg_id, result=parsed.get("result"), error=parsed.get("error"))

    @property
    def is_error(self) -> bool:
        return self.error is not None
