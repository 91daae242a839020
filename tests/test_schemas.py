"""Tests for argument validation and result shaping."""

import pytest

from mcp_runtime.errors import ErrorKind, ToolExecutionError
from mcp_runtime.schemas import PaperSearchArgs, shape_result, validate_arguments


class TestValidateArguments:
    def test_known_tool_sends_only_given_keys(self):
        args = validate_arguments("search_papers", {"query": "rl", "max_results": "5"})
        assert args == {"query": "rl", "max_results": 5}

    def test_extra_keys_pass_through(self):
        args = validate_arguments("arxiv_query", {"keywords": ["rl"], "trace_id": "abc"})
        assert args["trace_id"] == "abc"

    @pytest.mark.parametrize("arguments, problem", [
        ({}, "either 'query' or 'keywords' is required"),
        ({"query": "rl", "max_results": 0}, "max_results"),
        ({"query": "rl", "max_results": 51}, "max_results"),
        ({"query": "rl", "days_back": 400}, "days_back"),
        ({"query": "rl", "sort_by": "citations"}, "sort_by"),
        ({"query": "   "}, "either 'query' or 'keywords' is required"),
    ])
    def test_invalid_paper_search(self, arguments, problem):
        with pytest.raises(ToolExecutionError, match=problem) as excinfo:
            validate_arguments("search_papers", arguments)
        assert excinfo.value.kind is ErrorKind.TOOL_ERROR

    def test_unknown_tool_needs_json_object(self):
        assert validate_arguments("echo", None) == {}
        assert validate_arguments("echo", {"message": "x"}) == {"message": "x"}
        with pytest.raises(ToolExecutionError, match="must be a JSON object"):
            validate_arguments("echo", ["x"])
        with pytest.raises(ToolExecutionError, match="not JSON-serializable"):
            validate_arguments("echo", {"when": object()})


class TestPaperSearchArgs:
    def test_search_keywords(self):
        assert PaperSearchArgs(keywords=["rl", " ", "llm"]).search_keywords() == ["rl", "llm"]
        assert PaperSearchArgs(query="rl").search_keywords() == ["rl"]

    def test_defaults(self):
        args = PaperSearchArgs(query="rl")
        assert args.max_results == 10
        assert args.days_back == 365
        assert args.sort_by == "relevance"


class TestShapeResult:
    def test_known_tool_returns_papers(self):
        assert shape_result("search_papers", {"success": True, "papers": [1, 2]}) == [1, 2]

    def test_unknown_tool_returns_whole_payload(self):
        assert shape_result("echo", {"echoed": "x"}) == {"echoed": "x"}

    def test_missing_key_returns_payload(self):
        assert shape_result("search_papers", {"results": []}) == {"results": []}
