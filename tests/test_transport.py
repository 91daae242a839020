"""Tests for the line-delimited JSON-RPC wire format."""

import json

import pytest

from mcp_runtime.errors import ConnectionLostError, ErrorKind, ProtocolError, UnavailableError
from mcp_runtime.transport import JsonRpcNotification, JsonRpcRequest, JsonRpcResponse


class TestEncoding:
    def test_request_is_one_terminated_line(self):
        data = JsonRpcRequest(method="tools/call", params={"text": "a\nb"}, id=7).encode()

        assert data.endswith(b"\n")
        assert data.count(b"\n") == 1
        assert json.loads(data) == {
            "jsonrpc": "2.0",
            "id": 7,
            "method": "tools/call",
            "params": {"text": "a\nb"},
        }

    def test_notification_has_no_id(self):
        message = json.loads(JsonRpcNotification(method="notifications/initialized").encode())
        assert "id" not in message
        assert message["method"] == "notifications/initialized"


class TestFromLine:
    def test_result_response(self):
        response = JsonRpcResponse.from_line(b'{"jsonrpc":"2.0","id":3,"result":{"ok":true}}\n')
        assert response.id == 3
        assert response.result == {"ok": True}
        assert not response.is_error

    def test_error_response(self):
        response = JsonRpcResponse.from_line('{"jsonrpc":"2.0","id":4,"error":{"code":-32601,"message":"nope"}}')
        assert response.is_error
        assert response.error["code"] == -32601

    @pytest.mark.parametrize("line", [
        b"",
        b"   \n",
        b"Loading model weights... 45%\n",
        b'{"jsonrpc":"2.0","id":5,"res',
        b"[1, 2, 3]",
        b'{"jsonrpc":"2.0","method":"notifications/progress","params":{}}',
        b'{"jsonrpc":"2.0","id":6,"method":"sampling/createMessage","params":{}}',
        b'{"jsonrpc":"2.0","result":{}}',
        b'{"jsonrpc":"2.0","id":7}',
        b'{"jsonrpc":"2.0","id":[1],"result":{}}',
        b'{"jsonrpc":"2.0","id":{"n":1},"result":{}}',
        b'{"jsonrpc":"2.0","id":true,"result":{}}',
        b'{"jsonrpc":"2.0","id":1.5,"result":{}}',
    ])
    def test_noise_is_not_a_response(self, line):
        assert JsonRpcResponse.from_line(line) is None

    def test_invalid_utf8_is_tolerated(self):
        assert JsonRpcResponse.from_line(b"\xff\xfe garbage") is None


class TestErrors:
    def test_protocol_error_from_envelope(self):
        error = ProtocolError.from_envelope({"code": -32603, "message": "boom", "data": {"x": 1}})
        assert error.kind is ErrorKind.PROTOCOL_ERROR
        assert error.code == -32603
        assert error.data == {"x": 1}
        assert str(error) == "JSON-RPC error -32603: boom"

    def test_messages_render_on_one_line(self):
        error = ProtocolError.from_envelope({"code": 1, "message": "Traceback:\n  line 1\n  line 2"})
        assert "\n" not in str(error)

    def test_connection_lost_is_unavailable(self):
        error = ConnectionLostError("server exited with code 1")
        assert isinstance(error, UnavailableError)
        assert error.kind is ErrorKind.UNAVAILABLE
        assert str(error).startswith("connection lost")
