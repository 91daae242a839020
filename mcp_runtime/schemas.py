"""
Argument and result contracts for tools known in advance.

Arguments are untyped JSON at the wire boundary. For the tools we know
about, a pydantic model keyed by tool name validates (and coerces) the
arguments before anything is written to the server. Unknown tools only
need a JSON object that serializes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from mcp_runtime.errors import ToolExecutionError


class PaperSearchArgs(BaseModel):
    """Arguments for the paper-search tools (search_papers, arxiv_query)."""

    model_config = ConfigDict(extra="allow")

    query: str | None = None
    keywords: list[str] | None = None
    max_results: int = Field(default=10, ge=1, le=50)
    categories: list[str] = Field(default_factory=list)
    recent_only: bool = False
    days_back: int = Field(default=365, ge=1, le=365)
    sort_by: Literal["relevance", "date"] = "relevance"

    @model_validator(mode="after")
    def needs_query_or_keywords(self) -> "PaperSearchArgs":
        if not (self.query and self.query.strip()) and not self.keywords:
            raise ValueError("either 'query' or 'keywords' is required")
        return self

    def search_keywords(self) -> list[str]:
        if self.keywords:
            return [k for k in self.keywords if k.strip()]
        return [self.query.strip()] if self.query else []


@dataclass(frozen=True)
class ToolSpec:
    """What the runtime knows about a tool before talking to any server."""
    name: str
    arguments: type[BaseModel]
    result_key: str | None = None  # member of the inner payload returned as data
    description: str = ""


KNOWN_TOOLS: dict[str, ToolSpec] = {
    "search_papers": ToolSpec(
        name="search_papers",
        arguments=PaperSearchArgs,
        result_key="papers",
        description="Search arXiv for academic papers",
    ),
    "arxiv_query": ToolSpec(
        name="arxiv_query",
        arguments=PaperSearchArgs,
        result_key="papers",
        description="Search arXiv with keywords, categories and date filtering",
    ),
}


def get_tool_spec(tool_name: str) -> ToolSpec | None:
    return KNOWN_TOOLS.get(tool_name)


def validate_arguments(tool_name: str, arguments: Any) -> dict[str, Any]:
    """
    Validate tool arguments before they go on the wire.

    Known tools are checked against their model; the caller's keys are sent
    (coerced), defaults are left for the server to apply.

    Raises:
        ToolExecutionError: the arguments are invalid.
    """
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ToolExecutionError(
            f"arguments for {tool_name} must be a JSON object, got {type(arguments).__name__}"
        )

    spec = get_tool_spec(tool_name)
    if spec is not None:
        try:
            model = spec.arguments.model_validate(arguments)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolExecutionError(f"invalid arguments for {tool_name}: {problems}") from e
        return model.model_dump(mode="json", exclude_unset=True)

    try:
        json.dumps(arguments)
    except (TypeError, ValueError) as e:
        raise ToolExecutionError(f"arguments for {tool_name} are not JSON-serializable: {e}") from e
    return arguments


def shape_result(tool_name: str, payload: Any) -> Any:
    """Pick the member of a decoded tool payload that callers receive as data."""
    spec = get_tool_spec(tool_name)
    if spec is None or spec.result_key is None:
        return payload
    if isinstance(payload, dict) and spec.result_key in payload:
        return payload[spec.result_key]
    return payload
