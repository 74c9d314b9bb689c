from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from personfinder.models.person import RelatedPerson, SocialLinks, SourceRef


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Funnel artifacts ---


class QuestionOption(_WireModel):
    id: str
    label: str
    value: str


class QuestionContext(_WireModel):
    session_id: str


class Question(_WireModel):
    question_id: Literal["q1", "q2", "q3", "q4"]
    title: str
    type: Literal["single_select"] = "single_select"
    options: list[QuestionOption]
    has_none_of_these: bool = True
    selected_option_id: Optional[str] = None
    context: QuestionContext
    next_on_select: Literal["q2", "q3", "q4", "done"]

    def selectable(self) -> list[QuestionOption]:
        return [o for o in self.options if o.value != "none"]


class PersonResult(_WireModel):
    person_id: str
    full_name: str
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    profession: Optional[str] = None
    location: Optional[str] = None
    employer: Optional[str] = None
    education: list[str] = Field(default_factory=list)
    emails: list[str] = Field(default_factory=list)
    phones: list[str] = Field(default_factory=list)
    social: SocialLinks = Field(default_factory=SocialLinks)
    age: Optional[int] = None
    gender: Optional[str] = None
    related_people: list[RelatedPerson] = Field(default_factory=list)
    sources: list[SourceRef] = Field(default_factory=list)
    confidence: float = 0.5


class FinalResults(_WireModel):
    question_id: Literal["done"] = "done"
    results: list[PersonResult]
    cache_used: bool


class NoMatch(_WireModel):
    question_id: Literal["no_match"] = "no_match"


FlowArtifact = Union[Question, FinalResults, NoMatch]


# --- Requests ---


class StartSessionRequest(_WireModel):
    query: str


class AnswerPayload(_WireModel):
    question_id: str
    selected: str


class NextRequest(_WireModel):
    session_id: str
    answer: Optional[AnswerPayload] = None


# --- Responses ---


class StartSessionResponse(_WireModel):
    session_id: str
    question: FlowArtifact


class SessionDetailResponse(_WireModel):
    id: str
    query: str
    flow_state: str
    answers: dict[str, Optional[str]]
    cache_key: str
    candidates: list[dict[str, Any]]
