"""
arXiv search: query building, Atom parsing and relevance scoring.

Shared by the bundled research tool server and by the direct-network
fallback, so both paths return byte-for-byte the same record shape:

    {
      "id": "2401.01234v1",
      "title": "...",
      "summary": "...",
      "authors": [{"name": "..."}],
      "published": "2024-01-02T18:00:00Z",
      "updated": "...",
      "categories": ["cs.LG", "cs.AI"],
      "pdf_url": "http://arxiv.org/pdf/2401.01234v1.pdf",
      "abstract_url": "http://arxiv.org/abs/2401.01234v1",
      "relevance_score": 4,
      "keyword_matches": ["transformer"],
      "age_days": 120
    }
"""

from __future__ import annotations

import logging
import re
import time
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from mcp_runtime.schemas import PaperSearchArgs

logger = logging.getLogger(__name__)

ARXIV_API_URL = "http://export.arxiv.org/api/query"
USER_AGENT = "Research-Assistant-MCP/1.0"

_NS = {"atom": "http://www.w3.org/2005/Atom"}
_ABS_PREFIX = re.compile(r"^https?://arxiv\.org/abs/")


def build_search_query(args: PaperSearchArgs, today: datetime | None = None) -> str:
    """
    Build an arXiv search_query expression.

    Keywords are quoted and OR-joined, categories become a cat: filter and
    recent_only adds a submittedDate window of days_back days.
    """
    keywords = args.search_keywords()
    query = "(" + " OR ".join(f'"{k}"' for k in keywords) + ")" if keywords else ""

    if args.categories:
        category_filter = " OR ".join(f"cat:{c}" for c in args.categories)
        query = f"({query}) AND ({category_filter})" if query else f"({category_filter})"

    if args.recent_only:
        end = today or datetime.now(timezone.utc)
        start = end - timedelta(days=args.days_back)
        window = f"submittedDate:[{start:%Y%m%d} TO {end:%Y%m%d}]"
        query = f"{window} AND ({query})" if query else window

    return query or "all:*"


def build_request_params(args: PaperSearchArgs, search_query: str) -> dict[str, str]:
    # Over-fetch so scoring has something to discard
    sort_by = "submittedDate" if args.sort_by == "date" else "relevance"
    return {
        "search_query": search_query,
        "start": "0",
        "max_results": str(args.max_results * 2),
        "sortBy": sort_by,
        "sortOrder": "descending",
    }


def parse_feed(xml_text: str, now: datetime | None = None) -> list[dict[str, Any]]:
    """
    Parse an arXiv Atom feed into paper records.

    Entries without an id or title are skipped.

    Raises:
        ValueError: the document is not well-formed XML.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ValueError(f"malformed arXiv response: {e}") from e

    now = now or datetime.now(timezone.utc)
    papers = []
    for entry in root.findall("atom:entry", _NS):
        paper = _parse_entry(entry, now)
        if paper is not None:
            papers.append(paper)
    return papers


def _text(entry: ET.Element, tag: str) -> str:
    node = entry.find(f"atom:{tag}", _NS)
    if node is None or node.text is None:
        return ""
    return " ".join(node.text.split())


def _parse_entry(entry: ET.Element, now: datetime) -> dict[str, Any] | None:
    paper_id = _ABS_PREFIX.sub("", _text(entry, "id"))
    title = _text(entry, "title")
    if not paper_id or not title:
        logger.debug(f"Skipping arXiv entry without id/title: {paper_id!r}")
        return None

    published = _text(entry, "published")
    authors = [
        {"name": " ".join(name.text.split())}
        for name in entry.findall("atom:author/atom:name", _NS)
        if name.text
    ]
    categories = [
        c.get("term") for c in entry.findall("atom:category", _NS) if c.get("term")
    ]

    paper: dict[str, Any] = {
        "id": paper_id,
        "title": title,
        "summary": _text(entry, "summary"),
        "authors": authors,
        "published": published,
        "updated": _text(entry, "updated"),
        "categories": categories,
        "pdf_url": f"http://arxiv.org/pdf/{paper_id}.pdf",
        "abstract_url": f"http://arxiv.org/abs/{paper_id}",
    }
    try:
        published_at = datetime.fromisoformat(published.replace("Z", "+00:00"))
        paper["age_days"] = (now - published_at).days
    except ValueError:
        paper["age_days"] = None
    return paper


def score_papers(papers: list[dict[str, Any]], keywords: list[str]) -> list[dict[str, Any]]:
    """Rank by keyword hits: a title hit counts three times a summary hit."""
    scored = []
    for paper in papers:
        title = paper.get("title", "").lower()
        summary = paper.get("summary", "").lower()
        score = 0
        matches = []
        for keyword in keywords:
            needle = keyword.lower()
            if not needle:
                continue
            hits = title.count(needle) * 3 + summary.count(needle)
            score += hits
            if needle in title or needle in summary:
                matches.append(keyword)
        scored.append({**paper, "relevance_score": score, "keyword_matches": matches})
    # sorted() is stable, so equal scores keep arXiv's own ordering
    return sorted(scored, key=lambda p: p["relevance_score"], reverse=True)


def build_result(
    args: PaperSearchArgs,
    search_query: str,
    xml_text: str,
    started: float,
) -> dict[str, Any]:
    """Parse, score and trim a feed into the tool's result document."""
    all_papers = parse_feed(xml_text)
    keywords = args.search_keywords()
    papers = score_papers(all_papers, keywords)[: args.max_results]
    search_params: dict[str, Any] = {
        "keywords": keywords,
        "recent_only": args.recent_only,
        "categories": args.categories,
        "sort_by": args.sort_by,
    }
    if args.recent_only:
        search_params["days_back"] = args.days_back
    return {
        "success": True,
        "papers": papers,
        "total_results": len(papers),
        "search_params": search_params,
        "execution_time": round((time.monotonic() - started) * 1000),
        "debug_info": {
            "original_results": len(all_papers),
            "final_query": search_query,
            "xml_length": len(xml_text),
        },
    }


def _headers() -> dict[str, str]:
    return {"User-Agent": USER_AGENT, "Accept": "application/atom+xml"}


def search(
    args: PaperSearchArgs,
    base_url: str = ARXIV_API_URL,
    timeout: float = 15.0,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    """Blocking search, used inside the stdio tool server."""
    started = time.monotonic()
    search_query = build_search_query(args)
    params = build_request_params(args, search_query)
    logger.info(f"arXiv request: {search_query}")

    owns_client = client is None
    client = client or httpx.Client(timeout=timeout)
    try:
        response = client.get(base_url, params=params, headers=_headers())
        response.raise_for_status()
    finally:
        if owns_client:
            client.close()
    return build_result(args, search_query, response.text, started)


async def search_async(
    args: PaperSearchArgs,
    base_url: str = ARXIV_API_URL,
    timeout: float = 15.0,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Non-blocking search, used by the direct-network fallback."""
    started = time.monotonic()
    search_query = build_search_query(args)
    params = build_request_params(args, search_query)
    logger.info(f"arXiv request (direct): {search_query}")

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout)
    try:
        response = await client.get(base_url, params=params, headers=_headers())
        response.raise_for_status()
    finally:
        if owns_client:
            await client.aclose()
    return build_result(args, search_query, response.text, started)
