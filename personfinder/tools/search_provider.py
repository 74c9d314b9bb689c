from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Optional

from personfinder.config import settings
from personfinder.models.search import SearchHit
from personfinder.services.logger import logger
from personfinder.tools import brave_search, perplexity_search, tavily_search

# Provider name -> module exposing `async search(query, *, max_results)`.
PROVIDERS = {
    "perplexity": perplexity_search,
    "brave": brave_search,
    "tavily": tavily_search,
}


@dataclass
class SearchResponse:
    hits: list[SearchHit]
    counts: dict[str, int] = field(default_factory=dict)


async def search_one(
    provider: str,
    query: str,
    *,
    max_results: int,
    timeout_s: float,
) -> list[SearchHit]:
    """Run one provider raced against `timeout_s`; never raises."""
    module = PROVIDERS.get(provider)
    if module is None:
        logger.warning(f"Unknown search provider {provider!r}; skipping")
        return []
    try:
        hits = await asyncio.wait_for(module.search(query, max_results=max_results), timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.warning(f"{provider} search timed out after {timeout_s}s for {query!r}")
        return []
    except Exception as e:
        logger.error(f"{provider} search raised for {query!r}: {e}")
        return []
    return [replace(h, provider=provider) for h in hits or []]


async def search(
    query: str,
    *,
    providers: Optional[list[str]] = None,
    max_results: Optional[int] = None,
    timeout_s: Optional[float] = None,
) -> SearchResponse:
    """Fan `query` out to every configured provider concurrently.

    Hits are returned grouped in provider order, each tagged with its provider.
    """
    names = providers if providers is not None else settings.search_provider_list
    limit = max_results or settings.search_max_results_per_provider
    timeout = timeout_s or settings.search_provider_timeout_s

    results = await asyncio.gather(
        *(search_one(name, query, max_results=limit, timeout_s=timeout) for name in names)
    )
    hits: list[SearchHit] = []
    counts: dict[str, int] = {}
    for name, provider_hits in zip(names, results):
        counts[name] = len(provider_hits)
        hits.extend(provider_hits)
    logger.info(f"Search fan-out for {query!r}: {counts}")
    return SearchResponse(hits=hits, counts=counts)
