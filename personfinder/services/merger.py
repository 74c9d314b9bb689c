"""Resolve duplicate candidates into canonical entities.

Candidates are folded in the order they were emitted. Scalar fields keep the
first non-empty value, so the same inputs in a different order may produce
different names; list fields are order-independent unions.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional, TypeVar
from uuid import uuid4

from personfinder.models.person import SOCIAL_SLOTS, Candidate
from personfinder.services.normalizers import (
    dedupe_related_people,
    dedupe_sources,
    normalize_email,
    uniq_ci,
)

C = TypeVar("C", bound=Candidate)

PROFILE_PATTERN = re.compile(r"linkedin\.com/in/", re.IGNORECASE)

_LIST_FIELDS = ("professions", "employers", "education", "emails", "phones", "locations")
_NAME_FIELDS = ("full_name", "first_name", "middle_name", "last_name")


def normalize_profile_link(url: Optional[str]) -> str:
    """Lowercase, drop scheme, `www.`, query string, fragment and trailing slash."""
    text = (url or "").strip().lower()
    if not text:
        return ""
    text = re.sub(r"^[a-z][a-z0-9+.\-]*://", "", text)
    if text.startswith("www."):
        text = text[4:]
    text = re.split(r"[?#]", text, maxsplit=1)[0]
    return text.rstrip("/")


def _normalize_name(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (value or "").strip().lower())


def identity_key(candidate: Candidate) -> str:
    """First identity rule that yields a non-empty key wins."""
    profile = normalize_profile_link(candidate.social.linkedin)
    if profile:
        return f"profile:{profile}"

    for source in candidate.sources:
        if source.url and PROFILE_PATTERN.search(source.url):
            profile = normalize_profile_link(source.url)
            if profile:
                return f"profile:{profile}"

    for email in candidate.emails:
        email = normalize_email(email)
        if email:
            return f"email:{email}"

    for phone in candidate.phones:
        digits = re.sub(r"\D", "", phone or "")
        if digits:
            return f"phone:{digits}"

    name = _normalize_name(candidate.full_name)
    if name and candidate.employers:
        employer = _normalize_name(candidate.employers[0])
        if employer:
            return f"name_emp:{name}|{employer}"
    if name:
        return f"name:{name}"

    return f"synthetic:{uuid4().hex}"


def merge_pair(existing: C, incoming: Candidate) -> C:
    """Fold `incoming` into `existing`; returns a new model of `existing`'s type."""
    update: dict = {}

    for name in _NAME_FIELDS:
        if not getattr(existing, name):
            value = getattr(incoming, name)
            if value:
                update[name] = value

    for name in _LIST_FIELDS:
        update[name] = uniq_ci([*getattr(existing, name), *getattr(incoming, name)])

    update["related_people"] = dedupe_related_people(
        [*existing.related_people, *incoming.related_people]
    )
    update["sources"] = dedupe_sources([*existing.sources, *incoming.sources])

    social_update = {
        slot: getattr(incoming.social, slot)
        for slot in SOCIAL_SLOTS
        if not getattr(existing.social, slot) and getattr(incoming.social, slot)
    }
    update["social"] = existing.social.model_copy(update=social_update)

    if existing.age is None and incoming.age is not None:
        update["age"] = incoming.age
    if existing.gender is None and incoming.gender is not None:
        update["gender"] = incoming.gender

    update["confidence"] = max(existing.confidence, incoming.confidence)
    return existing.model_copy(update=update)


def merge_candidates(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Group by identity key and merge each group, keeping first-seen group order."""
    merged: dict[str, Candidate] = {}
    for candidate in candidates:
        key = identity_key(candidate)
        if key in merged:
            merged[key] = merge_pair(merged[key], candidate)
        else:
            merged[key] = candidate
    return list(merged.values())
