"""Tests for the stdio tool server framework and the bundled servers."""

import io
import json

import httpx

from conftest import SAMPLE_FEED
from mcp_runtime.server import METHOD_NOT_FOUND, PARSE_ERROR, StdioToolServer, ToolHandler
from mcp_runtime.servers.research import ArxivQueryTool, PaperSearchTool


class EchoTool(ToolHandler):
    name = "echo"
    description = "Echoes back the input message"
    parameters = {"message": {"type": "string", "description": "The message to echo back"}}
    required = ["message"]

    def handle(self, params):
        message = params.get("message", "")
        return {"echoed": message, "length": len(message)}


def _serve(server, *messages):
    """Feed raw lines to a server and return the decoded responses."""
    out = io.StringIO()
    server._stdout = out
    for message in messages:
        server.handle_line(message if isinstance(message, str) else json.dumps(message))
    return [json.loads(line) for line in out.getvalue().splitlines()]


def _echo_server():
    server = StdioToolServer("echo-server")
    server.register(EchoTool())
    return server


class TestStdioToolServer:
    def test_initialize(self):
        [response] = _serve(_echo_server(), {
            "jsonrpc": "2.0", "id": 1, "method": "initialize",
            "params": {"protocolVersion": "2024-11-05", "capabilities": {}},
        })
        assert response["id"] == 1
        assert response["result"]["serverInfo"]["name"] == "echo-server"
        assert response["result"]["protocolVersion"] == "2024-11-05"

    def test_tools_list(self):
        [response] = _serve(_echo_server(), {"jsonrpc": "2.0", "id": 2, "method": "tools/list", "params": {}})
        [tool] = response["result"]["tools"]
        assert tool["name"] == "echo"
        assert tool["inputSchema"]["required"] == ["message"]

    def test_tools_call_double_encodes(self):
        [response] = _serve(_echo_server(), {
            "jsonrpc": "2.0", "id": 3, "method": "tools/call",
            "params": {"name": "echo", "arguments": {"message": "hi"}},
        })
        [block] = response["result"]["content"]
        assert block["type"] == "text"
        assert json.loads(block["text"]) == {"echoed": "hi", "length": 2}
        assert "isError" not in response["result"]

    def test_unknown_tool_is_flagged(self):
        [response] = _serve(_echo_server(), {
            "jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": {"name": "nope"},
        })
        assert response["result"]["isError"] is True
        assert "Unknown tool" in json.loads(response["result"]["content"][0]["text"])["error"]

    def test_unknown_method(self):
        [response] = _serve(_echo_server(), {"jsonrpc": "2.0", "id": 5, "method": "resources/list"})
        assert response["error"]["code"] == METHOD_NOT_FOUND

    def test_notifications_and_blank_lines_get_no_response(self):
        responses = _serve(
            _echo_server(),
            {"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}},
            "   ",
        )
        assert responses == []

    def test_garbage_is_parse_error(self):
        [response] = _serve(_echo_server(), "{not json")
        assert response["id"] is None
        assert response["error"]["code"] == PARSE_ERROR


class TestResearchServer:
    def _server(self, handler):
        client = httpx.Client(transport=httpx.MockTransport(handler))
        server = StdioToolServer("research-server")
        server.register(PaperSearchTool(client, "http://arxiv.test/api/query"))
        server.register(ArxivQueryTool(client, "http://arxiv.test/api/query"))
        return server

    def _call(self, server, name, arguments):
        [response] = _serve(server, {
            "jsonrpc": "2.0", "id": 1, "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        })
        return response["result"], json.loads(response["result"]["content"][0]["text"])

    def test_search_papers(self):
        server = self._server(lambda request: httpx.Response(200, text=SAMPLE_FEED))
        _, payload = self._call(server, "search_papers", {"query": "transformer", "max_results": 2})

        assert payload["success"] is True
        assert [p["id"] for p in payload["papers"]] == ["2401.00001v1", "2401.00002v2"]

    def test_both_tools_listed(self):
        server = self._server(lambda request: httpx.Response(200, text=SAMPLE_FEED))
        [response] = _serve(server, {"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        assert [t["name"] for t in response["result"]["tools"]] == ["search_papers", "arxiv_query"]

    def test_invalid_arguments(self):
        server = self._server(lambda request: httpx.Response(200, text=SAMPLE_FEED))
        _, payload = self._call(server, "arxiv_query", {"max_results": 5})
        assert payload["success"] is False
        assert "Invalid arguments" in payload["error"]

    def test_upstream_failure(self):
        server = self._server(lambda request: httpx.Response(502))
        _, payload = self._call(server, "search_papers", {"query": "x"})
        assert payload["success"] is False
        assert "arXiv API request failed" in payload["error"]
