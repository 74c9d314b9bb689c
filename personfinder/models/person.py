"""Person candidate models and the schema boundary for model output.

Everything the extraction model returns passes through `validate_candidates`
before any other code looks at it. Field names on the wire are camelCase
(`fullName`, `relatedPeople`); attributes are snake_case.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

RECOGNIZED_PROVIDERS = ("perplexity", "gemini", "brave", "tavily")
SOCIAL_SLOTS = ("instagram", "facebook", "twitter", "linkedin", "tiktok")
GENDERS = ("male", "female", "other")


def _clean_string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValueError("expected a list of strings")
    cleaned: list[str] = []
    for item in value:
        if item is None:
            continue
        if not isinstance(item, str):
            raise ValueError("expected a list of strings")
        item = item.strip()
        if item:
            cleaned.append(item)
    return cleaned


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("expected a string or null")
    value = value.strip()
    return value or None


def _none_as_empty_list(value: Any) -> Any:
    return [] if value is None else value


StringList = Annotated[list[str], BeforeValidator(_clean_string_list)]
OptionalText = Annotated[Optional[str], BeforeValidator(_optional_text)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SocialLinks(_CamelModel):
    instagram: OptionalText = None
    facebook: OptionalText = None
    twitter: OptionalText = None
    linkedin: OptionalText = None
    tiktok: OptionalText = None


class RelatedPerson(_CamelModel):
    full_name: str
    relation: OptionalText = None
    linkedin: OptionalText = None

    @field_validator("full_name", mode="before")
    @classmethod
    def _require_name(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("fullName is required")
        return value.strip()


class SourceRef(_CamelModel):
    provider: str
    url: OptionalText = None
    note: OptionalText = None


class Candidate(_CamelModel):
    """A provisional person record produced by one extraction attempt."""

    full_name: str
    first_name: OptionalText = None
    middle_name: OptionalText = None
    last_name: OptionalText = None
    professions: StringList = Field(default_factory=list)
    employers: StringList = Field(default_factory=list)
    education: StringList = Field(default_factory=list)
    emails: StringList = Field(default_factory=list)
    phones: StringList = Field(default_factory=list)
    social: SocialLinks = Field(default_factory=SocialLinks)
    age: Optional[int] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    locations: StringList = Field(default_factory=list)
    related_people: list[RelatedPerson] = Field(default_factory=list)
    sources: list[SourceRef] = Field(default_factory=list)
    confidence: float = 0.5

    @field_validator("full_name", mode="before")
    @classmethod
    def _require_full_name(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("fullName is required")
        return value.strip()

    @field_validator("social", mode="before")
    @classmethod
    def _social_default(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("age", mode="before")
    @classmethod
    def _coerce_age(cls, value: Any) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("age must be a number or null")
        return int(round(value))

    @field_validator("gender", mode="before")
    @classmethod
    def _coerce_gender(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        return lowered if lowered in GENDERS else None

    @field_validator("related_people", mode="before")
    @classmethod
    def _related_default(cls, value: Any) -> Any:
        return _none_as_empty_list(value)

    @field_validator("sources", mode="before")
    @classmethod
    def _keep_recognized_sources(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("sources must be a list")
        kept: list[Any] = []
        for item in value:
            if isinstance(item, SourceRef):
                if item.provider in RECOGNIZED_PROVIDERS:
                    kept.append(item)
                continue
            if not isinstance(item, dict):
                raise ValueError("source entries must be objects")
            provider = item.get("provider")
            if not isinstance(provider, str):
                continue
            provider = provider.strip().lower()
            if provider not in RECOGNIZED_PROVIDERS:
                continue
            kept.append({**item, "provider": provider})
        return kept

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        if value is None:
            return 0.5
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("confidence must be a number")
        return min(max(float(value), 0.0), 1.0)


class CandidatesResponse(_CamelModel):
    candidates: list[Candidate] = Field(default_factory=list)

    @field_validator("candidates", mode="before")
    @classmethod
    def _candidates_default(cls, value: Any) -> Any:
        return _none_as_empty_list(value)


class Person(Candidate):
    """A canonical entity as held by the person store."""

    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def validate_candidates(payload: Any) -> list[Candidate]:
    """Parse recovered model JSON into candidates or raise `pydantic.ValidationError`."""
    return CandidatesResponse.model_validate(payload).candidates
