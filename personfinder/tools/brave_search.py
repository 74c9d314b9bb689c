from __future__ import annotations

from typing import Any

import httpx

from personfinder.config import settings
from personfinder.models.search import SearchHit
from personfinder.services.logger import logger

BRAVE_SEARCH_PATH = "/res/v1/web/search"
DIRECTORY_PAGE_MARKER = "linkedin.com/pub/dir/"


def map_web_results(items: Any) -> list[SearchHit]:
    """Normalize Brave `web.results`, dropping LinkedIn directory listings."""
    if not isinstance(items, list):
        return []
    mapped: list[SearchHit] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        url = item.get("url") or ""
        if DIRECTORY_PAGE_MARKER in url.lower():
            continue
        mapped.append(
            SearchHit(
                title=item.get("title") or "",
                url=url,
                snippet=item.get("description") or "",
                provider="brave",
            )
        )
    return mapped


async def search(query: str, *, max_results: int = 5) -> list[SearchHit]:
    """Execute a Brave web search. Returns [] on any failure."""
    if not settings.brave_api_key:
        logger.warning("BRAVE_API_KEY is not configured; skipping Brave search")
        return []

    params: dict[str, Any] = {"q": query, "count": max_results}
    try:
        async with httpx.AsyncClient(
            base_url=settings.brave_base_url,
            timeout=settings.search_provider_timeout_s,
        ) as client:
            response = await client.get(
                BRAVE_SEARCH_PATH,
                params=params,
                headers={
                    "Accept": "application/json",
                    "X-Subscription-Token": settings.brave_api_key,
                },
            )
            response.raise_for_status()
            payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Brave search failed for {query!r}: {e}")
        return []

    web = payload.get("web") if isinstance(payload, dict) else None
    results = map_web_results((web or {}).get("results"))
    logger.info(f"Brave returned {len(results)} results for {query!r}")
    return results
