"""PostgreSQL person and session stores using asyncpg."""

from __future__ import annotations

import json
from typing import Any

import asyncpg

from personfinder.config import settings
from personfinder.errors import StoreError
from personfinder.models.person import Candidate, Person
from personfinder.models.session import Session
from personfinder.services.logger import log_db_operation
from personfinder.services.person_store import MatchKey, enrich, new_person

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS persons (
    id TEXT PRIMARY KEY,
    full_name TEXT NOT NULL,
    linkedin TEXT NOT NULL DEFAULT '',
    data JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (full_name, linkedin)
);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    data JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

# Connection pool
_pool: asyncpg.Pool | None = None


def _db_available() -> bool:
    """Check if database is configured."""
    return bool(settings.database_url)


async def get_pool() -> asyncpg.Pool:
    """Get or create the connection pool, applying the schema on first use."""
    global _pool
    if not _db_available():
        raise StoreError("Database not configured. Set DATABASE_URL in .env")
    if _pool is None:
        pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.database_pool_min,
            max_size=settings.database_pool_max,
        )
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_DDL)
        log_db_operation("create_schema", "persons,sessions", "success")
        _pool = pool
    return _pool


async def close_pool() -> None:
    """Close the database connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def _coerce_json_object(value: Any) -> dict[str, Any]:
    """JSONB comes back as text without a registered codec."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _person_from_row(row: Any) -> Person:
    return Person.model_validate(_coerce_json_object(row["data"]))


class PostgresPersonStore:
    async def upsert(self, match_key: MatchKey, record: Candidate) -> Person:
        full_name, linkedin = match_key
        pool = await get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        SELECT id, data FROM persons
                        WHERE full_name = $1 AND linkedin = $2
                        FOR UPDATE
                        """,
                        full_name,
                        linkedin or "",
                    )
                    if row:
                        person = enrich(_person_from_row(row), record)
                        await conn.execute(
                            """
                            UPDATE persons SET data = $1, updated_at = now()
                            WHERE id = $2
                            """,
                            person.model_dump_json(),
                            person.id,
                        )
                        operation = "update"
                    else:
                        person = new_person(record)
                        await conn.execute(
                            """
                            INSERT INTO persons (id, full_name, linkedin, data)
                            VALUES ($1, $2, $3, $4)
                            """,
                            person.id,
                            full_name,
                            linkedin or "",
                            person.model_dump_json(),
                        )
                        operation = "insert"
        except asyncpg.PostgresError as e:
            log_db_operation("upsert", "persons", "error", error=str(e))
            raise StoreError(f"Person upsert failed: {e}") from e

        log_db_operation(operation, "persons", "success", details=person.id)
        return person

    async def find_by_id(self, person_id: str) -> Person | None:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT data FROM persons WHERE id = $1", person_id)
        return _person_from_row(row) if row else None

    async def find_many(self, person_ids: list[str]) -> list[Person]:
        if not person_ids:
            return []
        pool = await get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch("SELECT id, data FROM persons WHERE id = ANY($1::text[])", person_ids)
        by_id = {row["id"]: _person_from_row(row) for row in rows}
        return [by_id[pid] for pid in person_ids if pid in by_id]


class PostgresSessionStore:
    async def create(self, session: Session) -> Session:
        pool = await get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    "INSERT INTO sessions (id, data) VALUES ($1, $2)",
                    session.id,
                    json.dumps(session.to_dict()),
                )
        except asyncpg.PostgresError as e:
            log_db_operation("insert", "sessions", "error", error=str(e))
            raise StoreError(f"Session create failed: {e}") from e
        log_db_operation("insert", "sessions", "success", details=session.id)
        return session

    async def get(self, session_id: str) -> Session | None:
        pool = await get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT data FROM sessions WHERE id = $1", session_id)
        if not row:
            return None
        return Session.from_dict(_coerce_json_object(row["data"]))

    async def save(self, session: Session) -> Session:
        session.touch()
        pool = await get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(
                "UPDATE sessions SET data = $1, updated_at = now() WHERE id = $2",
                json.dumps(session.to_dict()),
                session.id,
            )
        if status.endswith(" 0"):
            raise StoreError(f"Cannot save unknown session: {session.id}")
        log_db_operation("update", "sessions", "success", details=session.id)
        return session
