from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from personfinder.config import settings
from personfinder.models.search import SearchHit
from personfinder.services.logger import logger


async def search(
    query: str,
    *,
    max_results: int = 5,
    search_depth: str = "basic",
) -> list[SearchHit]:
    """Execute a Tavily web search. Returns [] on any failure."""
    if not settings.tavily_api_key:
        logger.warning("TAVILY_API_KEY is not configured; skipping Tavily search")
        return []

    client = AsyncTavilyClient(api_key=settings.tavily_api_key)
    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "topic": "general",
    }
    try:
        response = await client.search(**kwargs)
    except Exception as e:
        logger.error(f"Tavily search failed for {query!r}: {e}")
        return []

    results = [
        SearchHit(
            title=r.get("title") or "",
            url=r.get("url") or "",
            snippet=r.get("content") or "",
            provider="tavily",
        )
        for r in (response or {}).get("results", [])
        if isinstance(r, dict)
    ]
    logger.info(f"Tavily returned {len(results)} results for {query!r}")
    return results
