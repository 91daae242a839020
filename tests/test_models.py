"""Tests for readiness strategies and the shared data types."""

import pytest

from mcp_runtime.errors import ErrorKind, RequestTimeoutError
from mcp_runtime.models import CacheEntry, ToolDescriptor, ToolResult
from mcp_runtime.readiness import AnyReadiness, BannerReadiness, ResponseReadiness, default_readiness


class TestReadiness:
    def test_banner_matches_case_insensitively(self):
        strategy = BannerReadiness()
        assert strategy.on_stderr("[research] Server started successfully on stdio")
        assert not strategy.on_stderr("loading configuration")
        assert not strategy.on_handshake({"serverInfo": {}})

    def test_case_sensitive_banner(self):
        strategy = BannerReadiness("READY", case_sensitive=True)
        assert strategy.on_stderr("READY")
        assert not strategy.on_stderr("ready")

    def test_empty_marker_rejected(self):
        with pytest.raises(ValueError):
            BannerReadiness("")

    def test_default_is_response_or_banner(self):
        strategy = default_readiness()
        assert isinstance(strategy, AnyReadiness)
        assert strategy.on_handshake({})
        assert strategy.on_stderr("server started successfully")

    def test_no_banner_means_response_only(self):
        assert isinstance(default_readiness(None), ResponseReadiness)


class TestToolResult:
    def test_success_dict(self):
        result = ToolResult.ok("search_papers", [{"id": "1"}], 12.345)
        assert result.to_dict() == {
            "success": True,
            "tool_name": "search_papers",
            "execution_time_ms": 12.3,
            "served_by": "protocol",
            "data": [{"id": "1"}],
        }

    def test_failure_from_exception(self):
        result = ToolResult.from_exception("sleep", RequestTimeoutError("tools/call\ntimed out"), 5000)
        assert not result.success
        assert result.data is None
        assert result.error.kind == ErrorKind.REQUEST_TIMEOUT.value
        assert result.error.message == "tools/call timed out"


class TestCacheEntry:
    def test_validity_window(self):
        entry = CacheEntry(tools=(ToolDescriptor(name="a"),), timestamp=100.0)
        assert entry.is_valid(now=399.9, ttl=300)
        assert not entry.is_valid(now=400.0, ttl=300)
        assert entry.age(150.0) == 50.0
