"""Fuzzy text helpers shared by option generation, filtering and ranking."""
from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Optional

LOC_STOP = frozenset({"city", "province", "state", "governorate", "region", "area", "district"})

UNKNOWNISH = frozenset(
    {
        "unknown",
        "unk",
        "n/a",
        "na",
        "none",
        "null",
        "not specified",
        "unspecified",
        "not applicable",
        "-",
        "—",
    }
)

_UNKNOWN_PREFIX_RE = re.compile(r"^unknown\b")
_ENUM_RE = re.compile(r"^\s*[(\[{]?\s*\d+\s*[)\]}.\-:]\s*")
_BULLET_RE = re.compile(r"^\s*[•\-]\s+")

_CERT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bcertificate\b",
        r"\bcertification\b",
        r"\bcertified\b",
        r"\blicen[cs]e\b",
        r"\bcredential\b",
        r"\bworkshop\b",
        r"\btraining\b",
        r"\bbootcamp\b",
        r"\bshort course\b",
    )
]
_DEGREE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\buniversity\b",
        r"\bcollege\b",
        r"\bschool\b",
        r"\bacademy\b",
        r"\binstitute\b",
        r"\binstitut\b",
        r"\bpolytechnic\b",
        r"\biiit\b",
        r"\bbachelor'?s?\b",
        r"\bmaster'?s?\b",
        r"\bb\.?s\.?(?=\W|$)",
        r"\bm\.?s\.?(?=\W|$)",
        r"\bbsc\b",
        r"\bmsc\b",
        r"\bphd\b",
        r"\bdoctor\b",
        r"\bmba\b",
        r"\bjd\b",
        r"\bmd\b",
    )
]


def norm_key(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value or "")
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def canon_text(value: Optional[str]) -> str:
    text = strip_diacritics(value or "").lower().strip()
    text = re.sub(r"[^a-z0-9\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def text_tokens(value: Optional[str]) -> list[str]:
    return [t for t in canon_text(value).split(" ") if t]


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    if not set_a or not set_b:
        return 0.0
    inter = len(set_a & set_b)
    union = len(set_a | set_b)
    return inter / union if union else 0.0


def loose_match(a: Optional[str], b: Optional[str], min_jaccard: float = 0.5) -> bool:
    """Containment either way, or token Jaccard at or above `min_jaccard`."""
    ca, cb = canon_text(a), canon_text(b)
    if not ca or not cb:
        return False
    if ca == cb or ca in cb or cb in ca:
        return True
    return jaccard(ca.split(" "), cb.split(" ")) >= min_jaccard


def contains_ci(values: Iterable[str], wanted: Optional[str]) -> bool:
    key = norm_key(wanted)
    if not key:
        return False
    return any(norm_key(v) == key for v in values or [])


def contains_loose(values: Iterable[str], wanted: Optional[str]) -> bool:
    if not wanted or not wanted.strip():
        return False
    return any(loose_match(v, wanted) for v in values or [])


def _canon_location(value: Optional[str]) -> str:
    text = strip_diacritics(value or "").lower().strip()
    text = text.replace("-", " ")
    text = re.sub(r"\s*,\s*", ", ", text)
    return re.sub(r"\s+", " ", text)


def location_tokens(value: Optional[str]) -> list[str]:
    return [
        t
        for t in re.split(r"[, ]+", _canon_location(value))
        if t and t not in LOC_STOP and len(t) > 1
    ]


def location_match(a: Optional[str], b: Optional[str]) -> bool:
    ca, cb = _canon_location(a), _canon_location(b)
    if not ca or not cb:
        return False
    if ca == cb or ca in cb or cb in ca:
        return True
    ta, tb = location_tokens(a), location_tokens(b)
    if not ta or not tb:
        return False
    return all(t in tb for t in ta) or all(t in ta for t in tb)


def contains_location(values: Iterable[str], wanted: Optional[str]) -> bool:
    if not wanted:
        return False
    return any(location_match(v, wanted) for v in values or [])


def is_unknownish(value: Optional[str]) -> bool:
    key = norm_key(value)
    if not key or key in UNKNOWNISH:
        return True
    return bool(_UNKNOWN_PREFIX_RE.match(key))


def display_label(value: str) -> str:
    """Strip leading enumeration/bullet markers; the filter value keeps the original."""
    text = _ENUM_RE.sub("", value or "", count=1)
    text = _BULLET_RE.sub("", text, count=1)
    return re.sub(r"\s+", " ", text).strip()


def is_certification(entry: str) -> bool:
    return any(p.search(entry) for p in _CERT_PATTERNS)


def has_higher_education_hint(entry: str) -> bool:
    return any(p.search(entry) for p in _DEGREE_PATTERNS)


def is_higher_education(entry: Optional[str]) -> bool:
    if not entry or is_unknownish(entry):
        return False
    cleaned = display_label(entry)
    return has_higher_education_hint(cleaned) and not is_certification(cleaned)


def sanitize_education(entries: Iterable[str]) -> list[str]:
    """Higher-education entries only, display-cleaned and deduplicated."""
    seen: set[str] = set()
    out: list[str] = []
    for raw in entries or []:
        if not is_higher_education(raw):
            continue
        cleaned = display_label(raw.strip())
        key = norm_key(cleaned)
        if key and key not in seen:
            seen.add(key)
            out.append(cleaned)
    return out
