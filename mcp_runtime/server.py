"""
Stdio tool server base class.

A tool server is a standalone process that:
1. Reads JSON-RPC requests from stdin, one per line
2. Dispatches to registered ToolHandlers
3. Writes JSON-RPC responses to stdout, one per line
4. Logs to stderr only, announcing readiness with a banner line

Tool results are double-encoded: the handler's return value is serialized
to JSON and sent as the text of a single content block.

To create a tool server:

    from mcp_runtime.server import StdioToolServer, ToolHandler

    class MyTool(ToolHandler):
        name = "my_tool"
        description = "Does something useful"
        parameters = {
            "input": {"type": "string", "description": "The input"},
        }
        required = ["input"]

        def handle(self, params: dict) -> dict:
            return {"result": f"processed: {params['input']}"}

    if __name__ == "__main__":
        server = StdioToolServer("my-server")
        server.register(MyTool())
        server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, TextIO

from mcp_runtime.readiness import DEFAULT_READY_BANNER

logger = logging.getLogger(__name__)

SERVER_PROTOCOL_VERSION = "2024-11-05"

# JSON-RPC error codes
PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class ToolHandler(ABC):
    """
    Base class for a tool implementation.

    Subclasses define what a tool does. The server handles transport.
    """

    # Subclasses must set these
    name: str = ""
    description: str = ""
    parameters: dict[str, dict] = {}
    required: list[str] = []

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """
        Execute the tool with the given parameters.

        Args:
            params: Dict of parameter name → value

        Returns:
            The tool result (JSON-serialized into a text content block)
        """
        ...

    def get_schema(self) -> dict:
        """Return the tool descriptor for tools/list."""
        schema: dict[str, Any] = {"type": "object", "properties": self.parameters}
        if self.required:
            schema["required"] = list(self.required)
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": schema,
        }


class StdioToolServer:
    """
    JSON-RPC tool server that communicates via stdin/stdout.

    Protocol:
    - One JSON-RPC message per line
    - Supports methods:
        - "initialize" → protocol version, capabilities, server info
        - "ping"       → health check
        - "tools/list" → {"tools": [descriptor, ...]}
        - "tools/call" → {"content": [{"type": "text", "text": "<json>"}]}
    - Notifications (no id) are accepted and ignored
    """

    def __init__(
        self,
        name: str = "tool-server",
        version: str = "1.0.0",
        banner: str | None = DEFAULT_READY_BANNER,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ):
        self.name = name
        self.version = version
        self.banner = banner
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, handler: ToolHandler) -> None:
        """Register a tool handler."""
        if not handler.name:
            raise ValueError(f"ToolHandler {handler.__class__.__name__} has no name")
        self._handlers[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def run(self) -> None:
        """
        Main loop: read requests from stdin, dispatch, write responses to stdout.

        This blocks until stdin is closed (parent process terminates).
        """
        logger.info(f"Tool server starting with {len(self._handlers)} tools: "
                    f"{list(self._handlers.keys())}")
        if self.banner:
            # The client may key readiness off this line
            print(f"[{self.name}] {self.banner}", file=sys.stderr, flush=True)

        for line in self._stdin:
            self.handle_line(line)

    def handle_line(self, line: str) -> None:
        """Process one raw input line."""
        line = line.strip()
        if not line:
            return

        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            self._write_error(None, PARSE_ERROR, f"Parse error: {e}")
            return
        if not isinstance(request, dict):
            self._write_error(None, PARSE_ERROR, "Parse error: expected a JSON object")
            return

        request_id = request.get("id")
        method = request.get("method", "")
        params = request.get("params") or {}

        if request_id is None:
            logger.debug(f"Notification: {method}")
            return

        try:
            result = self._dispatch(method, params)
        except LookupError as e:
            self._write_error(request_id, METHOD_NOT_FOUND, str(e))
            return
        except Exception as e:
            self._write_error(request_id, INTERNAL_ERROR, str(e))
            return
        self._write_result(request_id, result)

    def _dispatch(self, method: str, params: dict) -> Any:
        """Route a method call to the appropriate handler."""

        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion", SERVER_PROTOCOL_VERSION),
                "capabilities": {"tools": {}},
                "serverInfo": {"name": self.name, "version": self.version},
            }

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": [h.get_schema() for h in self._handlers.values()]}

        if method == "tools/call":
            return self._call_tool(params.get("name", ""), params.get("arguments") or {})

        raise LookupError(f"Unknown method: '{method}'")

    def _call_tool(self, tool_name: str, arguments: dict) -> dict:
        handler = self._handlers.get(tool_name)
        if not handler:
            return _content(
                {"success": False, "error": f"Unknown tool: {tool_name}", "tool_name": tool_name},
                is_error=True,
            )
        try:
            result = handler.handle(arguments)
        except Exception as e:
            logger.exception(f"Tool {tool_name} failed")
            return _content(
                {"success": False, "error": str(e), "tool_name": tool_name},
                is_error=True,
            )
        return _content(result)

    def _write_result(self, request_id: Any, result: Any) -> None:
        """Write a JSON-RPC success response to stdout."""
        self._write({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _write_error(self, request_id: Any, code: int, message: str) -> None:
        """Write a JSON-RPC error response to stdout."""
        self._write({
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        })

    def _write(self, message: dict) -> None:
        self._stdout.write(json.dumps(message) + "\n")
        self._stdout.flush()


def _content(payload: Any, is_error: bool = False) -> dict:
    result: dict[str, Any] = {"content": [{"type": "text", "text": json.dumps(payload, indent=2)}]}
    if is_error:
        result["isError"] = True
    return result


def configure_server_logging(level: int = logging.INFO) -> None:
    """Send server logs to stderr; stdout carries the protocol."""
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )
