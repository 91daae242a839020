"""
Research tool server: arXiv paper search over stdio.

Launch:
    python -m mcp_runtime.servers.research

Test manually:
    echo '{"jsonrpc":"2.0","method":"tools/list","params":{},"id":1}' | python -m mcp_runtime.servers.research
    echo '{"jsonrpc":"2.0","method":"tools/call","params":{"name":"search_papers","arguments":{"query":"transformer models","max_results":3}},"id":2}' | python -m mcp_runtime.servers.research

Environment:
    ARXIV_BASE_URL   override the arXiv API endpoint
    ARXIV_TIMEOUT    HTTP timeout in seconds (default 15)
"""

import logging
import os

import httpx
from pydantic import ValidationError

from mcp_runtime import arxiv
from mcp_runtime.schemas import PaperSearchArgs
from mcp_runtime.server import StdioToolServer, ToolHandler, configure_server_logging

logger = logging.getLogger(__name__)

_PAPER_SEARCH_PARAMETERS = {
    "query": {
        "type": "string",
        "description": "Free-text search query (used when keywords is not given)",
    },
    "keywords": {
        "type": "array",
        "items": {"type": "string"},
        "description": 'Keywords to search for, OR-combined (e.g., ["RL", "LLM", "agents"])',
    },
    "max_results": {
        "type": "number",
        "description": "Maximum papers to return (1-50)",
        "minimum": 1,
        "maximum": 50,
        "default": 10,
    },
    "recent_only": {
        "type": "boolean",
        "description": "Only papers submitted in the last days_back days",
        "default": False,
    },
    "days_back": {
        "type": "number",
        "description": "Window in days when recent_only is true",
        "minimum": 1,
        "maximum": 365,
        "default": 365,
    },
    "categories": {
        "type": "array",
        "items": {"type": "string"},
        "description": 'arXiv categories (e.g., ["cs.AI", "cs.LG", "cs.CL"])',
        "default": [],
    },
    "sort_by": {
        "type": "string",
        "enum": ["relevance", "date"],
        "description": "Sort by relevance or submission date",
        "default": "relevance",
    },
}


class PaperSearchTool(ToolHandler):
    name = "search_papers"
    description = "Search arXiv for academic papers matching a query or keyword list."
    parameters = _PAPER_SEARCH_PARAMETERS

    def __init__(self, client: httpx.Client, base_url: str):
        self._client = client
        self._base_url = base_url

    def handle(self, params: dict) -> dict:
        try:
            args = PaperSearchArgs.model_validate(params)
        except ValidationError as e:
            return {"success": False, "error": f"Invalid arguments: {e.errors()[0]['msg']}"}

        try:
            result = arxiv.search(args, base_url=self._base_url, client=self._client)
        except httpx.HTTPError as e:
            return {"success": False, "error": f"arXiv API request failed: {e}"}
        except ValueError as e:
            return {"success": False, "error": str(e)}

        logger.info(f"Found {result['total_results']} papers in {result['execution_time']}ms")
        return result


class ArxivQueryTool(PaperSearchTool):
    name = "arxiv_query"
    description = (
        "ArXiv search with multiple keywords, categories, date filtering, "
        "and relevance scoring."
    )


def build_server() -> StdioToolServer:
    base_url = os.environ.get("ARXIV_BASE_URL", arxiv.ARXIV_API_URL)
    timeout = float(os.environ.get("ARXIV_TIMEOUT", "15"))
    client = httpx.Client(timeout=timeout)

    server = StdioToolServer("research-server", version="2.0.0")
    server.register(PaperSearchTool(client, base_url))
    server.register(ArxivQueryTool(client, base_url))
    return server


if __name__ == "__main__":
    configure_server_logging()
    build_server().run()
