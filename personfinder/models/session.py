from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

NONE_ANSWER = "none"


class FlowState(str, Enum):
    Q1 = "q1"
    Q2 = "q2"
    Q3 = "q3"
    Q4 = "q4"
    DONE = "done"


# Which answer slot each question fills.
ANSWER_SLOTS: dict[FlowState, str] = {
    FlowState.Q1: "profession",
    FlowState.Q2: "location",
    FlowState.Q3: "employer",
    FlowState.Q4: "education",
}


@dataclass
class Answers:
    """Four answer slots; each is unset (None), a concrete value, or "none"."""

    profession: Optional[str] = None
    location: Optional[str] = None
    employer: Optional[str] = None
    education: Optional[str] = None

    def get(self, slot: str) -> Optional[str]:
        return getattr(self, slot)

    def set(self, slot: str, value: str) -> None:
        if slot not in ANSWER_SLOTS.values():
            raise KeyError(f"Unknown answer slot: {slot}")
        setattr(self, slot, value)

    def concrete(self, slot: str) -> Optional[str]:
        """Return the slot's value when it is a real answer, else None."""
        value = getattr(self, slot)
        if value is None or value == NONE_ANSWER:
            return None
        return value

    def is_none(self, slot: str) -> bool:
        return getattr(self, slot) == NONE_ANSWER

    def has_concrete(self) -> bool:
        return any(self.concrete(slot) for slot in ANSWER_SLOTS.values())

    def any_none(self) -> bool:
        return any(self.is_none(slot) for slot in ANSWER_SLOTS.values())

    def all_none(self) -> bool:
        return all(self.is_none(slot) for slot in ANSWER_SLOTS.values())

    def to_dict(self) -> dict[str, Optional[str]]:
        return {slot: getattr(self, slot) for slot in ANSWER_SLOTS.values()}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Answers":
        data = data or {}
        return cls(**{slot: data.get(slot) for slot in ANSWER_SLOTS.values()})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    query: str
    cache_key: str
    candidate_ids: list[str] = field(default_factory=list)
    answers: Answers = field(default_factory=Answers)
    flow_state: FlowState = FlowState.Q1
    from_cache: bool = False
    expanded: bool = False
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)

    def touch(self) -> None:
        self.updated_at = _utc_now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "cache_key": self.cache_key,
            "candidate_ids": list(self.candidate_ids),
            "answers": self.answers.to_dict(),
            "flow_state": self.flow_state.value,
            "from_cache": self.from_cache,
            "expanded": self.expanded,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        created_at = data.get("created_at")
        updated_at = data.get("updated_at")
        return cls(
            id=str(data["id"]),
            query=data["query"],
            cache_key=data["cache_key"],
            candidate_ids=[str(c) for c in data.get("candidate_ids") or []],
            answers=Answers.from_dict(data.get("answers")),
            flow_state=FlowState(data.get("flow_state", FlowState.Q1.value)),
            from_cache=bool(data.get("from_cache", False)),
            expanded=bool(data.get("expanded", False)),
            created_at=datetime.fromisoformat(created_at) if isinstance(created_at, str) else created_at or _utc_now(),
            updated_at=datetime.fromisoformat(updated_at) if isinstance(updated_at, str) else updated_at or _utc_now(),
        )
