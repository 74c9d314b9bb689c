from __future__ import annotations

import re
from typing import Any

import httpx

from personfinder.config import settings
from personfinder.models.search import SearchHit
from personfinder.services.logger import logger

PERPLEXITY_SEARCH_PATH = "/search"
MAX_TOKENS_PER_PAGE = 1024

_BULK_DUMP_URL_RE = re.compile(r"\.(csv|tsv|xlsx?|pdf|docx?)$", re.IGNORECASE)
_URL_MENTION_RE = re.compile(r"https?://", re.IGNORECASE)


def is_low_signal(hit: SearchHit) -> bool:
    """Bulk data dumps and link farms that drown the extractor in unrelated names."""
    if _BULK_DUMP_URL_RE.search((hit.url or "").lower()):
        return True

    snippet = (hit.snippet or "").lower()
    url_mentions = len(_URL_MENTION_RE.findall(snippet))
    if url_mentions >= 3:
        return True
    if "profileurl" in snippet and url_mentions >= 2:
        return True
    if len(snippet) > 1200 and url_mentions >= 2:
        return True
    return False


def map_results(items: Any) -> list[SearchHit]:
    if not isinstance(items, list):
        return []
    return [
        SearchHit(
            title=item.get("title") or "",
            url=item.get("url") or "",
            snippet=item.get("snippet") or "",
            provider="perplexity",
        )
        for item in items
        if isinstance(item, dict)
    ]


async def search(query: str, *, max_results: int = 5) -> list[SearchHit]:
    """Execute a Perplexity Search API query. Returns [] on any failure."""
    if not settings.perplexity_api_key:
        logger.warning("PERPLEXITY_API_KEY is not configured; skipping Perplexity search")
        return []

    body = {
        "query": query,
        "max_results": max_results,
        "max_tokens_per_page": MAX_TOKENS_PER_PAGE,
    }
    try:
        async with httpx.AsyncClient(
            base_url=settings.perplexity_base_url,
            timeout=settings.search_provider_timeout_s,
        ) as client:
            response = await client.post(
                PERPLEXITY_SEARCH_PATH,
                json=body,
                headers={"Authorization": f"Bearer {settings.perplexity_api_key}"},
            )
            response.raise_for_status()
            payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Perplexity search failed for {query!r}: {e}")
        return []

    mapped = map_results(payload.get("results") if isinstance(payload, dict) else None)
    results = [h for h in mapped if not is_low_signal(h)]
    if len(results) != len(mapped):
        logger.info(f"Dropped {len(mapped) - len(results)} low-signal Perplexity results")
    logger.info(f"Perplexity returned {len(results)} results for {query!r}")
    return results
