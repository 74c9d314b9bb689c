"""Query -> providers -> extraction -> merge -> store."""
from __future__ import annotations

from typing import Optional

from personfinder.config import settings
from personfinder.models.person import Person
from personfinder.services.cache import Cache, get_cache
from personfinder.services.extraction import ExtractionPipeline, linkedin_fallback
from personfinder.services.logger import log_event, logger
from personfinder.services.merger import merge_candidates
from personfinder.services.person_store import PersonStore, get_person_store, persist_candidates
from personfinder.tools import search_provider


def normalize_query(query: str) -> str:
    return (query or "").strip().lower()


def search_cache_key(query: str) -> str:
    return f"search:{normalize_query(query)}"


async def search_and_extract(
    query: str,
    *,
    pipeline: Optional[ExtractionPipeline] = None,
    store: Optional[PersonStore] = None,
) -> list[Person]:
    pipeline = pipeline or ExtractionPipeline()
    store = get_person_store() if store is None else store

    response = await search_provider.search(query)
    hits = response.hits
    log_event("search_results", f"{len(hits)} hits for {query!r}", counts=response.counts)

    candidates = merge_candidates(await pipeline.run(hits))
    if not candidates:
        candidates = linkedin_fallback(hits)
        logger.warning(f"No extracted candidates for {query!r}; LinkedIn fallback produced {len(candidates)}")

    persons = await persist_candidates(store, candidates)
    logger.info(f"search_and_extract complete for {query!r}: {len(persons)} persons")
    return persons


async def search_and_extract_cached(
    query: str,
    *,
    cache: Optional[Cache] = None,
    pipeline: Optional[ExtractionPipeline] = None,
    store: Optional[PersonStore] = None,
) -> list[Person]:
    """Cached `search_and_extract`; empty results are cached for a shorter window."""
    cache = get_cache() if cache is None else cache
    key = search_cache_key(query)
    lookup = cache.get(key)
    if lookup.hit:
        logger.info(f"Search cache hit for {query!r}")
        return list(lookup.value or [])

    persons = await search_and_extract(query, pipeline=pipeline, store=store)
    ttl = settings.search_cache_ttl_s if persons else settings.search_cache_empty_ttl_s
    cache.set(key, persons, ttl)
    logger.info(f"Search cache set for {query!r}: {len(persons)} persons, ttl {ttl}s")
    return persons
