"""Session orchestration for the disambiguation funnel.

`start` runs (or serves from cache) the search/extraction pipeline and binds
the resulting persons to a new session; `advance` records one answer and
returns the next artifact. Questions with nothing to pick are answered with
"none" automatically and never reach the caller.
"""
from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Awaitable, Callable, Optional, Union

from personfinder.config import settings
from personfinder.errors import (
    InvalidQueryError,
    PersonFinderError,
    SessionNotFoundError,
    StaleAnswerError,
)
from personfinder.models.person import Person
from personfinder.models.schemas import (
    AnswerPayload,
    FlowArtifact,
    SessionDetailResponse,
    StartSessionResponse,
)
from personfinder.models.session import ANSWER_SLOTS, NONE_ANSWER, FlowState, Session
from personfinder.services import funnel
from personfinder.services.cache import Cache, get_cache
from personfinder.services.logger import log_flow_step, logger
from personfinder.services.person_store import (
    PersonStore,
    SessionStore,
    get_person_store,
    get_session_store,
)
from personfinder.services.search import normalize_query, search_and_extract, search_and_extract_cached

Searcher = Callable[[str], Awaitable[list[Person]]]

EXPANSION_STEPS = (FlowState.Q4, FlowState.Q3, FlowState.Q2, FlowState.Q1)


def query_cache_key(query: str) -> str:
    return f"q:{normalize_query(query)}"


def _uniq_queries(queries: list[str]) -> list[str]:
    out: list[str] = []
    for q in queries:
        q = re.sub(r"\s+", " ", q).strip()
        if q and q not in out:
            out.append(q)
    return out


def expansion_queries(query: str, session: Session, step: FlowState) -> list[str]:
    """LinkedIn-oriented query variants for a secondary search after `step`."""
    base = query.strip()
    prof = session.answers.concrete("profession") or ""
    loc = session.answers.concrete("location") or ""
    emp = session.answers.concrete("employer") or ""
    edu = session.answers.concrete("education") or ""

    if step == FlowState.Q1:
        return _uniq_queries([
            f"{base} site:linkedin.com/in",
            f"{base} LinkedIn profile",
            f"{base} profile site:linkedin.com",
            f"{base} people LinkedIn",
        ])
    if step == FlowState.Q2:
        if loc:
            return _uniq_queries([
                f"{base} {prof} {loc} site:linkedin.com/in",
                f"{base} {prof} {loc} LinkedIn",
                f'"{base}" {prof} {loc} site:linkedin.com',
                f"{base} {prof} {loc} people LinkedIn",
                f"{base} {prof} site:linkedin.com/in",
            ])
        return _uniq_queries([
            f"{base} {prof} site:linkedin.com/in",
            f"{base} {prof} LinkedIn",
            f'{prof} "{base}" site:linkedin.com',
            f"{base} {prof} people",
        ])
    if step == FlowState.Q3:
        return _uniq_queries([
            f"{base} {prof} {loc} site:linkedin.com/in",
            f"{base} {prof} {loc} LinkedIn",
            f'"{base}" {prof} {loc} site:linkedin.com',
            f"{base} {loc} people LinkedIn",
        ])
    if step == FlowState.Q4:
        return _uniq_queries([
            f"{base} {emp} site:linkedin.com/in",
            f"{base} {emp} LinkedIn",
            f"{base} {prof} {emp} site:linkedin.com",
            f"{base} {edu} alumni LinkedIn",
        ])
    return _uniq_queries([f"{base} site:linkedin.com/in", f"{base} LinkedIn"])


def expansion_fingerprint(session: Session, step: str) -> str:
    payload = json.dumps(
        {
            "sid": session.id,
            "q": normalize_query(session.query),
            "answers": session.answers.to_dict(),
            "step": step,
        },
        sort_keys=True,
    )
    return f"expand:{session.id}:{payload}"


class DisambiguationFlow:
    def __init__(
        self,
        *,
        person_store: Optional[PersonStore] = None,
        session_store: Optional[SessionStore] = None,
        cache: Optional[Cache] = None,
        searcher: Optional[Searcher] = None,
        expansion_searcher: Optional[Searcher] = None,
        secondary_search_enabled: Optional[bool] = None,
    ):
        self.person_store = get_person_store() if person_store is None else person_store
        self.session_store = get_session_store() if session_store is None else session_store
        self.cache = get_cache() if cache is None else cache
        self._searcher = searcher
        self._expansion_searcher = expansion_searcher
        self.secondary_search_enabled = (
            settings.secondary_search_enabled if secondary_search_enabled is None else secondary_search_enabled
        )
        # One in-flight expansion per session; a second caller skips instead of waiting.
        self._expansion_locks: dict[str, asyncio.Lock] = {}

    async def _search(self, query: str) -> list[Person]:
        if self._searcher is not None:
            return await self._searcher(query)
        return await search_and_extract(query, store=self.person_store)

    async def _expansion_search(self, query: str) -> list[Person]:
        if self._expansion_searcher is not None:
            return await self._expansion_searcher(query)
        return await search_and_extract_cached(query, cache=self.cache, store=self.person_store)

    # --- public operations ---

    async def start(self, query: str) -> StartSessionResponse:
        query = (query or "").strip()
        if not query:
            raise InvalidQueryError("query is required")

        cache_key = query_cache_key(query)
        lookup = self.cache.get(cache_key)
        from_cache = bool(lookup.hit and lookup.value)
        if from_cache:
            persons: list[Person] = list(lookup.value)
            logger.info(f"Query cache hit for {query!r}: {len(persons)} persons")
        else:
            persons = await self._search(query)
            if persons:
                self.cache.set(cache_key, persons, settings.query_cache_ttl_s)
                logger.info(f"Query cache miss for {query!r}; cached {len(persons)} persons")
            else:
                logger.info(f"Query cache miss for {query!r}; no persons found")

        session = Session(
            query=query,
            cache_key=cache_key,
            candidate_ids=[str(p.id) for p in persons],
            from_cache=from_cache,
        )
        await self.session_store.create(session)
        log_flow_step(session.id, "start", "created", {"query": query, "candidates": len(persons)})

        artifact = await self._render(session, persons)
        return StartSessionResponse(session_id=session.id, question=artifact)

    async def advance(
        self,
        session_id: str,
        answer: Optional[Union[AnswerPayload, dict[str, Any]]] = None,
    ) -> FlowArtifact:
        session = await self.session_store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        candidates = await self.person_store.find_many(session.candidate_ids)

        if answer is not None:
            if isinstance(answer, dict):
                answer = AnswerPayload.model_validate(answer)
            state = session.flow_state
            if state == FlowState.DONE:
                log_flow_step(session.id, answer.question_id, "ignored", {"reason": "session done"})
            elif answer.question_id != state.value:
                raise StaleAnswerError(session.id, answer.question_id, state.value)
            else:
                await self._record(session, candidates, state, answer.selected)

        return await self._render(session, candidates)

    async def get_detail(self, session_id: str) -> SessionDetailResponse:
        session = await self.session_store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        candidates = await self.person_store.find_many(session.candidate_ids)
        return SessionDetailResponse(
            id=session.id,
            query=session.query,
            flow_state=session.flow_state.value,
            answers=session.answers.to_dict(),
            cache_key=session.cache_key,
            candidates=[c.model_dump(mode="json", by_alias=True) for c in candidates],
        )

    # --- internals ---

    async def _record(self, session: Session, candidates: list[Person], state: FlowState, selected: str) -> None:
        """Record one answer, advance the state and persist the session once."""
        resolved = funnel.resolve_answer(state, selected, session.answers, candidates)
        session.answers.set(ANSWER_SLOTS[state], resolved)
        session.flow_state = funnel.next_state(state, session.answers)
        log_flow_step(
            session.id,
            state.value,
            "answered",
            {"selected": selected, "resolved": resolved, "next": session.flow_state.value},
        )

        if resolved != NONE_ANSWER and not funnel.filter_strict(session.answers, candidates):
            if self.secondary_search_enabled:
                added = await self._expand(session, candidates, state)
                log_flow_step(session.id, state.value, "expanded", {"added": len(added)})
            else:
                logger.info(f"Zero strict matches after {state.value}; secondary search disabled")

        await self.session_store.save(session)

    async def _render(self, session: Session, candidates: list[Person]) -> FlowArtifact:
        while session.flow_state != FlowState.DONE:
            state = session.flow_state
            question = funnel.build_question(state, session.id, session.answers, candidates)
            if question.selectable():
                log_flow_step(session.id, state.value, "question", {"options": len(question.options)})
                return question
            log_flow_step(session.id, state.value, "auto_skipped", {"reason": "no selectable options"})
            await self._record(session, candidates, state, NONE_ANSWER)

        return await self._finish(session, candidates)

    async def _finish(self, session: Session, candidates: list[Person]) -> FlowArtifact:
        if funnel.is_no_match(session.answers):
            log_flow_step(session.id, "done", "no_match")
            return funnel.no_match()

        selection = funnel.match_candidates(session.answers, candidates)
        if not selection.candidates and self.secondary_search_enabled:
            selection = await self._last_chance_expansion(session, candidates)
        if not selection.candidates:
            selection = funnel.fall_back(session.answers, candidates)
            if selection.best_effort:
                logger.warning(
                    f"No filtered matches for session {session.id}; "
                    f"returning best-effort candidate {selection.candidates[0].full_name!r}"
                )

        final = funnel.assemble_final(
            selection,
            session.answers,
            from_cache=session.from_cache,
            expanded=session.expanded,
        )
        log_flow_step(
            session.id,
            "done",
            "results",
            {"results": len(final.results), "tier": selection.tier, "cache_used": final.cache_used},
        )
        return final

    async def _last_chance_expansion(self, session: Session, candidates: list[Person]) -> funnel.Selection:
        final_key = expansion_fingerprint(session, "final")
        if self.cache.get(final_key).hit:
            return funnel.Selection([], "empty")

        logger.warning(f"Final candidates empty for session {session.id}; attempting last-chance expansion")
        selection = funnel.Selection([], "empty")
        for step in EXPANSION_STEPS:
            added = await self._expand(session, candidates, step)
            if not added:
                continue
            selection = funnel.match_candidates(session.answers, candidates)
            log_flow_step(session.id, step.value, "last_chance", {"added": len(added), "matched": len(selection.candidates)})
            if selection.candidates:
                break

        if session.expanded:
            await self.session_store.save(session)
        self.cache.set(final_key, True, settings.expansion_fingerprint_ttl_s)
        return selection

    async def _expand(
        self,
        session: Session,
        candidates: list[Person],
        step: FlowState,
    ) -> list[Person]:
        """Secondary search appending new persons to `candidates` and the session."""
        key = expansion_fingerprint(session, step.value)
        if self.cache.get(key).hit:
            return []
        lock = self._expansion_locks.setdefault(session.id, asyncio.Lock())
        if lock.locked():
            logger.info(f"Expansion already running for session {session.id}; skipping")
            return []

        try:
            async with lock:
                existing = {str(c.id) for c in candidates}
                added: list[Person] = []
                for query in expansion_queries(session.query, session, step):
                    try:
                        found = await self._expansion_search(query)
                    except PersonFinderError as e:
                        logger.warning(f"Expansion search failed for {query!r}: {e}")
                        continue
                    for person in found:
                        if str(person.id) not in existing:
                            existing.add(str(person.id))
                            added.append(person)
                    if added:
                        break

                if added:
                    candidates.extend(added)
                    session.candidate_ids.extend(str(p.id) for p in added)
                    session.expanded = True
                    logger.info(f"Expanded session {session.id} after {step.value}: +{len(added)} candidates")
                self.cache.set(key, True, settings.expansion_fingerprint_ttl_s)
                return added
        finally:
            self._expansion_locks.pop(session.id, None)


_flow: DisambiguationFlow | None = None


def get_flow() -> DisambiguationFlow:
    global _flow
    if _flow is None:
        _flow = DisambiguationFlow()
    return _flow
