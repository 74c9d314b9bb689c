"""Tests for API routes."""
import pytest
from fastapi.testclient import TestClient

from personfinder.main import app
from personfinder.models.person import Candidate, Person, SocialLinks
from personfinder.services.cache import TTLCache
from personfinder.services.flow import DisambiguationFlow, get_flow
from personfinder.services.person_store import (
    InMemoryPersonStore,
    InMemorySessionStore,
    persist_candidates,
)

CANDIDATES = [
    Candidate(full_name="Jane Doe", professions=["Nurse"], locations=["Boston, USA"]),
    Candidate(
        full_name="Jane Doe",
        professions=["Teacher"],
        locations=["Denver, USA"],
        emails=["jd@example.com"],
        social=SocialLinks(linkedin="https://www.linkedin.com/in/jane-doe-denver"),
    ),
]


def build_flow(candidates=CANDIDATES):
    person_store = InMemoryPersonStore()

    async def searcher(query):
        return await persist_candidates(person_store, candidates)

    return DisambiguationFlow(
        person_store=person_store,
        session_store=InMemorySessionStore(),
        cache=TTLCache(),
        searcher=searcher,
        secondary_search_enabled=False,
    )


@pytest.fixture
def client():
    flow = build_flow()
    app.dependency_overrides[get_flow] = lambda: flow
    yield TestClient(app)
    app.dependency_overrides.clear()


def start(client, query="Jane Doe"):
    response = client.post("/api/session", json={"query": query})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "personfinder"


def test_start_session_returns_first_question(client):
    data = start(client)

    assert data["sessionId"]
    question = data["question"]
    assert question["questionId"] == "q1"
    assert question["type"] == "single_select"
    assert question["hasNoneOfThese"] is True
    assert question["nextOnSelect"] == "q2"
    assert question["context"] == {"sessionId": data["sessionId"]}
    assert [o["value"] for o in question["options"]] == ["Nurse", "Teacher", "none"]


@pytest.mark.parametrize("body", [{"query": "   "}, {}, {"query": 42}])
def test_start_session_rejects_bad_query(client, body):
    response = client.post("/api/session", json=body)
    assert response.status_code == 400


def test_walk_to_results(client):
    session_id = start(client)["sessionId"]

    q2 = client.post(
        "/api/next",
        json={"sessionId": session_id, "answer": {"questionId": "q1", "selected": "prof_1"}},
    )
    assert q2.status_code == 200
    assert q2.json()["questionId"] == "q2"
    assert [o["value"] for o in q2.json()["options"]] == ["Denver, USA", "none"]

    done = client.post(
        "/api/next",
        json={"sessionId": session_id, "answer": {"questionId": "q2", "selected": "loc_0"}},
    )
    assert done.status_code == 200
    payload = done.json()
    assert payload["questionId"] == "done"
    assert payload["cacheUsed"] is False
    assert len(payload["results"]) == 1
    result = payload["results"][0]
    assert result["fullName"] == "Jane Doe"
    assert result["profession"] == "Teacher"
    assert result["location"] == "Denver, USA"
    assert result["emails"] == ["jd@example.com"]


def test_next_without_answer_repeats_question(client):
    session_id = start(client)["sessionId"]

    response = client.post("/api/next", json={"sessionId": session_id})

    assert response.status_code == 200
    assert response.json()["questionId"] == "q1"


def test_no_match_payload(client):
    session_id = start(client)["sessionId"]
    payload = None
    for question_id in ("q1", "q2"):
        response = client.post(
            "/api/next",
            json={"sessionId": session_id, "answer": {"questionId": question_id, "selected": "none"}},
        )
        payload = response.json()

    # Neither candidate has employers or education, so q3 and q4 are skipped.
    assert payload == {"questionId": "no_match"}


def test_next_errors(client):
    session_id = start(client)["sessionId"]

    missing = client.post("/api/next", json={"sessionId": "nope"})
    assert missing.status_code == 404

    blank = client.post("/api/next", json={"sessionId": "  "})
    assert blank.status_code == 400

    no_id = client.post("/api/next", json={})
    assert no_id.status_code == 400

    stale = client.post(
        "/api/next",
        json={"sessionId": session_id, "answer": {"questionId": "q2", "selected": "Boston"}},
    )
    assert stale.status_code == 409


def test_get_session(client):
    session_id = start(client)["sessionId"]

    response = client.get(f"/api/session/{session_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == session_id
    assert data["query"] == "Jane Doe"
    assert data["flowState"] == "q1"
    assert data["cacheKey"] == "q:jane doe"
    assert data["answers"] == {"profession": None, "location": None, "employer": None, "education": None}
    assert [c["fullName"] for c in data["candidates"]] == ["Jane Doe", "Jane Doe"]
    assert data["candidates"][0]["id"]

    assert client.get("/api/session/unknown").status_code == 404


def test_unhandled_errors_return_500():
    class BrokenFlow:
        async def start(self, query):
            raise RuntimeError("database exploded")

    app.dependency_overrides[get_flow] = lambda: BrokenFlow()
    try:
        response = TestClient(app, raise_server_exceptions=False).post(
            "/api/session", json={"query": "Jane Doe"}
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


def test_internal_value_errors_are_not_client_errors():
    flow = build_flow()

    async def broken_searcher(query):
        # A malformed stored row surfaces as a pydantic ValidationError (a ValueError).
        return [Person.model_validate({"id": "p1"})]

    flow._searcher = broken_searcher
    app.dependency_overrides[get_flow] = lambda: flow
    try:
        response = TestClient(app, raise_server_exceptions=False).post(
            "/api/session", json={"query": "Jane Doe"}
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
