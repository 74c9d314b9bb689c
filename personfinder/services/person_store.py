from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Protocol
from uuid import uuid4

from personfinder.config import settings
from personfinder.errors import StoreError
from personfinder.models.person import Candidate, Person
from personfinder.models.session import Session
from personfinder.services.logger import log_db_operation
from personfinder.services.merger import merge_pair

MatchKey = tuple[str, Optional[str]]


def match_key_for(candidate: Candidate) -> MatchKey:
    """Upsert key: exact full name plus the (possibly empty) LinkedIn profile."""
    return (candidate.full_name, candidate.social.linkedin or None)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PersonStore(Protocol):
    async def upsert(self, match_key: MatchKey, record: Candidate) -> Person: ...
    async def find_by_id(self, person_id: str) -> Person | None: ...
    async def find_many(self, person_ids: list[str]) -> list[Person]: ...


class SessionStore(Protocol):
    async def create(self, session: Session) -> Session: ...
    async def get(self, session_id: str) -> Session | None: ...
    async def save(self, session: Session) -> Session: ...


def enrich(existing: Person, record: Candidate) -> Person:
    """Merge `record` into a stored person; never drops a stored field."""
    merged = merge_pair(existing, record)
    return merged.model_copy(update={"updated_at": _utc_now()})


def new_person(record: Candidate) -> Person:
    now = _utc_now()
    return Person.model_validate(
        {**record.model_dump(), "id": uuid4().hex, "created_at": now, "updated_at": now}
    )


class InMemoryPersonStore:
    def __init__(self) -> None:
        self._by_id: dict[str, Person] = {}
        self._id_by_key: dict[MatchKey, str] = {}

    async def upsert(self, match_key: MatchKey, record: Candidate) -> Person:
        person_id = self._id_by_key.get(match_key)
        if person_id is not None:
            person = enrich(self._by_id[person_id], record)
            operation = "update"
        else:
            person = new_person(record)
            self._id_by_key[match_key] = person.id
            operation = "insert"
        self._by_id[person.id] = person
        log_db_operation(operation, "persons", "success", details=person.id)
        return person

    async def find_by_id(self, person_id: str) -> Person | None:
        return self._by_id.get(person_id)

    async def find_many(self, person_ids: list[str]) -> list[Person]:
        return [self._by_id[pid] for pid in person_ids if pid in self._by_id]

    def __len__(self) -> int:
        return len(self._by_id)


class InMemorySessionStore:
    """Sessions are stored as serialized dicts so unsaved mutations are not visible."""

    def __init__(self) -> None:
        self._sessions: dict[str, dict] = {}

    async def create(self, session: Session) -> Session:
        if session.id in self._sessions:
            raise StoreError(f"Session already exists: {session.id}")
        self._sessions[session.id] = session.to_dict()
        log_db_operation("insert", "sessions", "success", details=session.id)
        return session

    async def get(self, session_id: str) -> Session | None:
        data = self._sessions.get(session_id)
        return Session.from_dict(data) if data is not None else None

    async def save(self, session: Session) -> Session:
        if session.id not in self._sessions:
            raise StoreError(f"Cannot save unknown session: {session.id}")
        session.touch()
        self._sessions[session.id] = session.to_dict()
        log_db_operation("update", "sessions", "success", details=session.id)
        return session


async def persist_candidates(store: PersonStore, candidates: list[Candidate]) -> list[Person]:
    """Upsert each candidate in order; duplicates by match key collapse to one person."""
    persons: list[Person] = []
    seen: set[str] = set()
    for candidate in candidates:
        person = await store.upsert(match_key_for(candidate), candidate)
        if person.id not in seen:
            seen.add(person.id)
            persons.append(person)
    return persons


_person_store: PersonStore | None = None
_session_store: SessionStore | None = None


def _backend() -> str:
    backend = settings.store_backend.lower().strip()
    if backend not in ("memory", "postgres"):
        raise ValueError(f"Unsupported STORE_BACKEND: {settings.store_backend}")
    return backend


def get_person_store() -> PersonStore:
    global _person_store
    if _person_store is None:
        if _backend() == "postgres":
            from personfinder.services.database import PostgresPersonStore

            _person_store = PostgresPersonStore()
        else:
            _person_store = InMemoryPersonStore()
    return _person_store


def get_session_store() -> SessionStore:
    global _session_store
    if _session_store is None:
        if _backend() == "postgres":
            from personfinder.services.database import PostgresSessionStore

            _session_store = PostgresSessionStore()
        else:
            _session_store = InMemorySessionStore()
    return _session_store
