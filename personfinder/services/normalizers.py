"""Field canonicalization for extracted person candidates."""
from __future__ import annotations

import re
from typing import Iterable, Optional

from personfinder.models.person import Candidate, RelatedPerson, SourceRef

LINKEDIN_PROFILE_BASE = "https://www.linkedin.com/in/"
DEFAULT_COUNTRY_CODE = "1"

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_PUNCT_RE = re.compile(r"[^\w\s,]")

_LOCATION_SYNONYMS: dict[str, str] = {
    "us": "United States",
    "usa": "United States",
    "united states": "United States",
    "united states of america": "United States",
    "uk": "United Kingdom",
    "united kingdom": "United Kingdom",
    "england": "United Kingdom",
    "scotland": "United Kingdom",
    "wales": "United Kingdom",
    "northern ireland": "United Kingdom",
    "nyc": "New York, USA",
    "new york city": "New York, USA",
    "bay area": "San Francisco Bay Area, USA",
    "sfo": "San Francisco Bay Area, USA",
    "san francisco bay area": "San Francisco Bay Area, USA",
}


def uniq_ci(values: Iterable[Optional[str]]) -> list[str]:
    """Case-insensitive dedup keeping the first-seen (trimmed) form and order."""
    seen: set[str] = set()
    out: list[str] = []
    for value in values or []:
        if not value:
            continue
        trimmed = value.strip()
        key = trimmed.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(trimmed)
    return out


def canonicalize_linkedin(link: Optional[str]) -> Optional[str]:
    if not link:
        return None
    link = link.strip()
    if not link:
        return None
    if _URL_RE.match(link):
        return link
    handle = link
    if handle.startswith("@"):
        handle = handle[1:]
    if handle.startswith("in/"):
        handle = handle[3:]
    return f"{LINKEDIN_PROFILE_BASE}{handle}"


def _location_key(loc: str) -> str:
    key = _PUNCT_RE.sub("", loc.lower())
    key = re.sub(r"\s*,\s*", ", ", key)
    return " ".join(key.split())


def canonicalize_location(loc: Optional[str]) -> str:
    s = (loc or "").strip()
    if not s:
        return s

    key = _location_key(s)
    if key in _LOCATION_SYNONYMS:
        return _LOCATION_SYNONYMS[key]
    if "new york, ny" in key:
        return "New York, USA"

    s = re.sub(r"\s*,\s*", ", ", s)
    return re.sub(r"\s+", " ", s).strip()


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def normalize_phone(phone: str) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        return f"+{DEFAULT_COUNTRY_CODE}{digits}"
    if digits.startswith(DEFAULT_COUNTRY_CODE):
        return f"+{digits}"
    return digits


def related_person_key(person: RelatedPerson) -> tuple[str, str]:
    return (person.full_name.strip().lower(), (person.linkedin or "").strip().lower())


def source_key(source: SourceRef) -> tuple[str, str]:
    return (source.provider, (source.url or "").strip())


def dedupe_related_people(people: Iterable[RelatedPerson]) -> list[RelatedPerson]:
    by_key: dict[tuple[str, str], RelatedPerson] = {}
    for person in people:
        key = related_person_key(person)
        if key not in by_key:
            by_key[key] = person
    return list(by_key.values())


def dedupe_sources(sources: Iterable[SourceRef]) -> list[SourceRef]:
    """Dedup by (provider, url); the first non-empty note wins."""
    by_key: dict[tuple[str, str], SourceRef] = {}
    for source in sources:
        key = source_key(source)
        existing = by_key.get(key)
        if existing is None:
            by_key[key] = source
        elif not existing.note and source.note:
            by_key[key] = existing.model_copy(update={"note": source.note})
    return list(by_key.values())


def normalize_candidate(candidate: Candidate) -> Candidate:
    social = candidate.social.model_copy(
        update={"linkedin": canonicalize_linkedin(candidate.social.linkedin)}
    )
    return candidate.model_copy(
        update={
            "professions": uniq_ci(candidate.professions),
            "employers": uniq_ci(candidate.employers),
            "education": uniq_ci(candidate.education),
            "emails": uniq_ci(normalize_email(e) for e in candidate.emails),
            "phones": uniq_ci(normalize_phone(p) for p in candidate.phones),
            "locations": uniq_ci(canonicalize_location(loc) for loc in candidate.locations),
            "social": social,
            "related_people": dedupe_related_people(candidate.related_people),
            "sources": dedupe_sources(candidate.sources),
        }
    )
