"""Search-result compaction, model extraction and the LinkedIn fallback.

The model is asked for one JSON object per call. Each call gets a smaller slice
of the hits than the last (12, 8, then 5) and the first call that produces a
schema-valid response wins. Nothing here raises on a bad model response; the
worst case is an empty candidate list.
"""
from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Union
from urllib.parse import unquote, urlsplit

import httpx
from bs4 import BeautifulSoup
from openai import APITimeoutError
from pydantic import ValidationError

from personfinder.config import settings
from personfinder.errors import ExtractionError, ExtractionTimeout
from personfinder.llm_client import CompletionClient, client as default_client
from personfinder.models.person import (
    RECOGNIZED_PROVIDERS,
    Candidate,
    SocialLinks,
    SourceRef,
    validate_candidates,
)
from personfinder.models.search import SearchHit
from personfinder.services.logger import logger
from personfinder.services.normalizers import normalize_candidate
from personfinder.services.prompt_store import render_prompt

TITLE_MAX_CHARS = 160
SNIPPET_MAX_CHARS = 500
VARIANT_SIZES = (12, 8, 5)
FALLBACK_CONFIDENCE = 0.2

RawHit = Union[SearchHit, Mapping[str, Any]]

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_PROFILE_URL_RE = re.compile(r"linkedin\.com/in/", re.IGNORECASE)


@dataclass
class CompactHit:
    title: str
    url: str
    snippet: str
    provider: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "url": self.url, "snippet": self.snippet, "provider": self.provider}


def _field(hit: RawHit, name: str) -> Any:
    if isinstance(hit, Mapping):
        return hit.get(name)
    return getattr(hit, name, None)


def _plain_text(value: Any) -> str:
    text = value if isinstance(value, str) else ""
    if "<" in text and ">" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


class ResultCompactor:
    """Shrink raw hits to the shape and size sent to the model."""

    def __init__(self, title_max: int = TITLE_MAX_CHARS, snippet_max: int = SNIPPET_MAX_CHARS):
        self.title_max = title_max
        self.snippet_max = snippet_max

    def compact_hit(self, hit: RawHit) -> CompactHit:
        url = _field(hit, "url") or _field(hit, "link") or ""
        return CompactHit(
            title=_plain_text(_field(hit, "title"))[: self.title_max],
            url=str(url).strip(),
            snippet=_plain_text(_field(hit, "snippet"))[: self.snippet_max],
            provider=_field(hit, "provider") or None,
        )

    def compact(self, hits: Sequence[RawHit], cap: int) -> list[CompactHit]:
        return [self.compact_hit(h) for h in list(hits)[:cap]]

    def variants(self, hits: Sequence[RawHit], sizes: Iterable[int] = VARIANT_SIZES) -> list[list[CompactHit]]:
        return [self.compact(hits, size) for size in sizes]


def recover_json(text: Optional[str]) -> str:
    """Pull the outermost JSON object out of noisy model output.

    A fenced block is unwrapped first. Without any braces the trimmed text is
    returned unchanged and will fail to parse downstream.
    """
    trimmed = (text or "").strip()
    fenced = _FENCE_RE.search(trimmed)
    body = fenced.group(1) if fenced else trimmed
    start = body.find("{")
    end = body.rfind("}")
    if start != -1 and end > start:
        return body[start : end + 1]
    return body.strip()


def _is_timeout(exc: BaseException) -> bool:
    return isinstance(exc, (asyncio.TimeoutError, APITimeoutError, httpx.TimeoutException))


class ExtractionPipeline:
    """Turn raw search hits into normalized candidates with shrinking retries."""

    def __init__(
        self,
        llm: Optional[CompletionClient] = None,
        *,
        compactor: Optional[ResultCompactor] = None,
        timeout_s: Optional[float] = None,
        variant_sizes: Sequence[int] = VARIANT_SIZES,
    ):
        self._llm = llm
        self.compactor = compactor or ResultCompactor()
        self.timeout_s = settings.extraction_timeout_s if timeout_s is None else timeout_s
        self.variant_sizes = tuple(variant_sizes)

    @property
    def llm(self) -> CompletionClient:
        if self._llm is None:
            self._llm = default_client()
        return self._llm

    def build_prompts(self, compact: list[CompactHit]) -> tuple[str, str]:
        system_prompt = render_prompt("extraction.system")
        user_prompt = render_prompt(
            "extraction.user",
            providers="|".join(RECOGNIZED_PROVIDERS),
            input=json.dumps([h.to_dict() for h in compact], ensure_ascii=False),
        )
        return system_prompt, user_prompt

    async def _attempt(self, compact: list[CompactHit]) -> list[Candidate]:
        system_prompt, user_prompt = self.build_prompts(compact)
        try:
            content = await asyncio.wait_for(
                self.llm.complete(system_prompt, user_prompt),
                timeout=self.timeout_s,
            )
        except Exception as e:
            if _is_timeout(e):
                raise ExtractionTimeout(f"extraction call timed out after {self.timeout_s}s") from e
            raise ExtractionError(f"extraction call failed: {e}") from e

        if not content or not content.strip():
            raise ExtractionError("empty model response")

        cleaned = recover_json(content)
        try:
            payload = json.loads(cleaned)
        except ValueError as e:
            raise ExtractionError(f"unparsable model JSON: {cleaned[:200]!r}") from e

        try:
            candidates = validate_candidates(payload)
        except ValidationError as e:
            raise ExtractionError(f"model JSON failed validation: {e.error_count()} errors") from e

        return [normalize_candidate(c) for c in candidates]

    async def run(self, hits: Sequence[RawHit]) -> list[Candidate]:
        if not hits:
            return []

        variants = self.compactor.variants(hits, self.variant_sizes)
        for attempt, compact in enumerate(variants, start=1):
            try:
                candidates = await self._attempt(compact)
            except ExtractionTimeout as e:
                logger.warning(f"Extraction timed out (attempt {attempt}, {len(compact)} hits); trying a smaller context: {e}")
                continue
            except ExtractionError as e:
                logger.error(f"Extraction failed (attempt {attempt}, {len(compact)} hits): {e}")
                continue
            logger.info(f"Extraction succeeded (attempt {attempt}): {len(candidates)} candidates")
            return candidates

        logger.warning(f"All {len(variants)} extraction attempts failed; returning no candidates")
        return []


def _name_from_title(title: Optional[str]) -> Optional[str]:
    text = (title or "").strip()
    if not text:
        return None
    first = text.split("|")[0].split(" - ")[0].strip()
    if re.search(r"linkedin|profile", first, re.IGNORECASE):
        return None
    return first or None


def _name_from_profile_url(url: str) -> Optional[str]:
    parts = [p for p in urlsplit(url).path.split("/") if p]
    lowered = [p.lower() for p in parts]
    if "in" in lowered:
        after = lowered.index("in") + 1
        handle = parts[after] if after < len(parts) else ""
    else:
        handle = parts[0] if parts else ""
    raw = re.sub(r"[-_]+", " ", unquote(handle)).strip()
    if not raw:
        return None
    return " ".join(w[:1].upper() + w[1:] for w in raw.split())


def linkedin_fallback(hits: Sequence[RawHit]) -> list[Candidate]:
    """Minimal low-confidence candidates from LinkedIn profile hits."""
    by_url: dict[str, Candidate] = {}
    for hit in hits:
        url = str(_field(hit, "url") or _field(hit, "link") or "").strip()
        if not url or not _PROFILE_URL_RE.search(url):
            continue
        clean_url = url.split("?")[0]
        if clean_url in by_url:
            continue

        full_name = _name_from_title(_plain_text(_field(hit, "title"))) or _name_from_profile_url(clean_url)
        if not full_name:
            continue

        provider = (_field(hit, "provider") or "").strip().lower()
        sources = [SourceRef(provider=provider, url=clean_url)] if provider in RECOGNIZED_PROVIDERS else []
        by_url[clean_url] = Candidate(
            full_name=full_name,
            social=SocialLinks(linkedin=clean_url),
            sources=sources,
            confidence=FALLBACK_CONFIDENCE,
        )
    return list(by_url.values())
