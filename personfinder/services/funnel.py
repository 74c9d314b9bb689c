"""Disambiguation funnel policy.

Pure functions over (answers, candidates): the state transition table, option
generation, answer resolution, the strict/relaxed/best-effort filter cascade and
final result assembly. Session loading, saving and auto-skip live in
`personfinder.services.flow`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from personfinder.config import settings
from personfinder.models.person import Candidate, Person
from personfinder.models.schemas import (
    FinalResults,
    NoMatch,
    PersonResult,
    Question,
    QuestionContext,
    QuestionOption,
)
from personfinder.models.session import ANSWER_SLOTS, NONE_ANSWER, Answers, FlowState
from personfinder.services.matching import (
    contains_ci,
    contains_location,
    contains_loose,
    display_label,
    is_higher_education,
    is_unknownish,
    location_match,
    norm_key,
    sanitize_education,
)

NONE_OPTION = QuestionOption(id="none", label="None of these", value=NONE_ANSWER)
NONE_INPUTS = frozenset({"none", "none of these"})

Condition = Callable[[Answers], bool]


def _always(answers: Answers) -> bool:
    return True


def _profession_and_location_concrete(answers: Answers) -> bool:
    return bool(answers.concrete("profession") and answers.concrete("location"))


def _profession_and_location_none(answers: Answers) -> bool:
    return answers.is_none("profession") and answers.is_none("location")


# Evaluated top to bottom per state; the first matching condition wins.
TRANSITIONS: dict[FlowState, list[tuple[Condition, FlowState]]] = {
    FlowState.Q1: [(_always, FlowState.Q2)],
    FlowState.Q2: [
        (_profession_and_location_concrete, FlowState.DONE),
        (_always, FlowState.Q3),
    ],
    FlowState.Q3: [
        (_profession_and_location_none, FlowState.Q4),
        (_always, FlowState.DONE),
    ],
    FlowState.Q4: [(_always, FlowState.DONE)],
}


def next_state(state: FlowState, answers: Answers) -> FlowState:
    """State after the answer for `state` has been recorded in `answers`."""
    if state == FlowState.DONE:
        return FlowState.DONE
    for condition, target in TRANSITIONS[state]:
        if condition(answers):
            return target
    raise ValueError(f"No transition from {state.value}")


@dataclass(frozen=True)
class QuestionSpec:
    slot: str
    title: str
    option_prefix: str
    next_on_select: str
    # Earlier slots whose "none" widens this question's option cap.
    widened_by: tuple[str, ...]


QUESTION_SPECS: dict[FlowState, QuestionSpec] = {
    FlowState.Q1: QuestionSpec("profession", "What is their profession?", "prof", "q2", ()),
    FlowState.Q2: QuestionSpec("location", "Where are they located?", "loc", "q3", ("profession",)),
    FlowState.Q3: QuestionSpec("employer", "Where do they work?", "emp", "q4", ("profession", "location")),
    FlowState.Q4: QuestionSpec(
        "education", "Where did they study?", "edu", "done", ("profession", "location", "employer")
    ),
}

SLOT_ORDER = tuple(ANSWER_SLOTS.values())


def option_cap(state: FlowState, answers: Answers) -> int:
    spec = QUESTION_SPECS[state]
    extended = any(answers.is_none(slot) for slot in spec.widened_by)
    return settings.max_options(state.value, extended=extended)


# --- Per-slot field access and matching ---


def slot_values(candidate: Candidate, slot: str) -> list[str]:
    if slot == "profession":
        return list(candidate.professions)
    if slot == "location":
        return list(candidate.locations)
    if slot == "employer":
        return list(candidate.employers)
    if slot == "education":
        return list(candidate.education)
    raise KeyError(f"Unknown answer slot: {slot}")


def option_source_values(candidate: Candidate, slot: str) -> list[str]:
    """Values a question aggregates; q1 counts only the primary profession."""
    if slot == "profession":
        return candidate.professions[:1]
    return slot_values(candidate, slot)


def matches_strict(candidate: Candidate, slot: str, value: str) -> bool:
    if slot == "location":
        return contains_location(candidate.locations, value)
    return contains_ci(slot_values(candidate, slot), value)


def matches_relaxed(candidate: Candidate, slot: str, value: str) -> bool:
    if slot == "location":
        return contains_location(candidate.locations, value)
    return contains_loose(slot_values(candidate, slot), value)


# --- Option generation ---


def scope_candidates(state: FlowState, answers: Answers, candidates: Sequence[Candidate]) -> list[Candidate]:
    """Candidates matching the nearest earlier concrete answer, or all of them."""
    slot = QUESTION_SPECS[state].slot
    earlier = SLOT_ORDER[: SLOT_ORDER.index(slot)]
    for prior in reversed(earlier):
        value = answers.concrete(prior)
        if value:
            return [c for c in candidates if matches_strict(c, prior, value)]
    return list(candidates)


def aggregate_values(candidates: Sequence[Candidate], slot: str) -> list[tuple[str, int]]:
    """Case-insensitive counts keeping first-seen casing; frequency desc, then alphabetical."""
    counts: dict[str, list] = {}
    for candidate in candidates:
        for raw in option_source_values(candidate, slot):
            value = (raw or "").strip()
            if not value or is_unknownish(value):
                continue
            key = norm_key(value)
            if key in counts:
                counts[key][1] += 1
            else:
                counts[key] = [value, 1]
    return sorted(
        ((label, count) for label, count in counts.values()),
        key=lambda item: (-item[1], item[0].casefold(), item[0]),
    )


def build_options(state: FlowState, answers: Answers, candidates: Sequence[Candidate]) -> list[QuestionOption]:
    """Selectable options for `state` plus the trailing "None of these"."""
    spec = QUESTION_SPECS[state]
    values = aggregate_values(scope_candidates(state, answers, candidates), spec.slot)
    if not values:
        values = aggregate_values(candidates, spec.slot)

    if state == FlowState.Q4:
        degrees = [(v, n) for v, n in values if is_higher_education(v)]
        if degrees:
            values = degrees

    values = values[: option_cap(state, answers)]
    options = [
        QuestionOption(id=f"{spec.option_prefix}_{i}", label=display_label(value) or value, value=value)
        for i, (value, _count) in enumerate(values)
    ]
    options.append(NONE_OPTION.model_copy())
    return options


def build_question(
    state: FlowState,
    session_id: str,
    answers: Answers,
    candidates: Sequence[Candidate],
) -> Question:
    spec = QUESTION_SPECS[state]
    return Question(
        question_id=state.value,
        title=spec.title,
        options=build_options(state, answers, candidates),
        context=QuestionContext(session_id=session_id),
        next_on_select=spec.next_on_select,
    )


# --- Answer resolution ---


def resolve_answer(
    state: FlowState,
    selected: Optional[str],
    answers: Answers,
    candidates: Sequence[Candidate],
) -> str:
    """Map an option id or free text to the value recorded for `state`."""
    text = (selected or "").strip()
    lowered = text.lower()
    if not text or lowered in NONE_INPUTS:
        return NONE_ANSWER

    options = [o for o in build_options(state, answers, candidates) if o.value != NONE_ANSWER]
    for option in options:
        if option.id.lower() == lowered:
            return option.value
    for option in options:
        if option.label.lower() == lowered:
            return option.value
    for option in options:
        if option.value.lower() == lowered:
            return option.value

    if state == FlowState.Q2:
        for candidate in candidates:
            for location in candidate.locations:
                if not is_unknownish(location) and location_match(location, text):
                    return location

    return text


# --- Filtering and ranking ---


def _concrete_answers(answers: Answers) -> list[tuple[str, str]]:
    return [(slot, answers.concrete(slot)) for slot in SLOT_ORDER if answers.concrete(slot)]


def filter_strict(answers: Answers, candidates: Sequence[Candidate]) -> list[Candidate]:
    wanted = _concrete_answers(answers)
    return [c for c in candidates if all(matches_strict(c, slot, value) for slot, value in wanted)]


def filter_relaxed(answers: Answers, candidates: Sequence[Candidate]) -> list[Candidate]:
    wanted = _concrete_answers(answers)
    return [c for c in candidates if all(matches_relaxed(c, slot, value) for slot, value in wanted)]


# (exact points, loose points) per slot; location has no loose tier.
SCORE_WEIGHTS: dict[str, tuple[int, int]] = {
    "profession": (3, 2),
    "location": (2, 0),
    "employer": (3, 2),
    "education": (2, 1),
}


@dataclass(frozen=True)
class CandidateScore:
    score: int
    strict_matches: int
    contacts: int


def score_candidate(answers: Answers, candidate: Candidate) -> CandidateScore:
    score = 0
    strict_matches = 0
    for slot, value in _concrete_answers(answers):
        exact_points, loose_points = SCORE_WEIGHTS[slot]
        if matches_strict(candidate, slot, value):
            score += exact_points
            strict_matches += 1
        elif loose_points and matches_relaxed(candidate, slot, value):
            score += loose_points
    contacts = len(candidate.emails) + len(candidate.phones)
    return CandidateScore(score=score, strict_matches=strict_matches, contacts=contacts)


def best_effort(answers: Answers, candidates: Sequence[Candidate]) -> Optional[Candidate]:
    """Single top-ranked candidate with a positive score, if any."""
    scored = [(score_candidate(answers, c), c) for c in candidates]
    scored = [(s, c) for s, c in scored if s.score > 0]
    if not scored:
        return None
    scored.sort(
        key=lambda item: (
            -item[0].score,
            -item[0].strict_matches,
            -item[0].contacts,
            -item[1].confidence,
            item[1].full_name.casefold(),
        )
    )
    return scored[0][1]


@dataclass
class Selection:
    candidates: list[Candidate]
    tier: str  # "strict" | "relaxed" | "best_effort" | "empty"

    @property
    def best_effort(self) -> bool:
        return self.tier == "best_effort"


def match_candidates(answers: Answers, candidates: Sequence[Candidate]) -> Selection:
    """Strict filter, then relaxed when strict is empty and a concrete answer exists."""
    strict = filter_strict(answers, candidates)
    if strict:
        return Selection(strict, "strict")
    if not answers.has_concrete():
        return Selection([], "empty")

    relaxed = filter_relaxed(answers, candidates)
    if relaxed:
        return Selection(relaxed, "relaxed")
    return Selection([], "empty")


def fall_back(answers: Answers, candidates: Sequence[Candidate]) -> Selection:
    top = best_effort(answers, candidates) if answers.has_concrete() else None
    if top is not None:
        return Selection([top], "best_effort")
    return Selection([], "empty")


def select_candidates(answers: Answers, candidates: Sequence[Candidate]) -> Selection:
    """Strict, then relaxed, then best-effort; later tiers need a concrete answer."""
    selection = match_candidates(answers, candidates)
    if selection.candidates:
        return selection
    return fall_back(answers, candidates)


# --- Result assembly ---


def to_person_result(person: Person, answers: Answers, *, back_fill: bool) -> PersonResult:
    def first_or_answer(values: list[str], slot: str) -> Optional[str]:
        if values:
            return values[0]
        return answers.concrete(slot) if back_fill else None

    education = sanitize_education(person.education)
    if not education and back_fill and answers.concrete("education"):
        education = [answers.concrete("education")]

    return PersonResult(
        person_id=str(person.id),
        full_name=person.full_name,
        first_name=person.first_name,
        middle_name=person.middle_name,
        last_name=person.last_name,
        profession=first_or_answer(person.professions, "profession"),
        location=first_or_answer(person.locations, "location"),
        employer=first_or_answer(person.employers, "employer"),
        education=education,
        emails=list(person.emails),
        phones=list(person.phones),
        social=person.social,
        age=person.age,
        gender=person.gender,
        related_people=list(person.related_people),
        sources=list(person.sources),
        confidence=person.confidence,
    )


def is_no_match(answers: Answers) -> bool:
    return answers.all_none()


def cache_used(*, from_cache: bool, answers: Answers, expanded: bool) -> bool:
    return from_cache and not answers.any_none() and not expanded


def assemble_final(
    selection: Selection,
    answers: Answers,
    *,
    from_cache: bool,
    expanded: bool,
) -> FinalResults:
    results = [
        to_person_result(person, answers, back_fill=selection.best_effort)
        for person in selection.candidates
    ]
    return FinalResults(
        results=results,
        cache_used=cache_used(from_cache=from_cache, answers=answers, expanded=expanded),
    )


def no_match() -> NoMatch:
    return NoMatch()
