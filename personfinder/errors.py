"""Exception classes for personfinder."""


class PersonFinderError(Exception):
    """Base exception for all personfinder errors."""


class SessionNotFoundError(PersonFinderError, LookupError):
    """Raised when a disambiguation session does not exist."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class StaleAnswerError(PersonFinderError):
    """Raised when an answer targets a question the session is no longer on."""

    def __init__(self, session_id: str, question_id: str, flow_state: str):
        super().__init__(
            f"Answer for {question_id} does not match session {session_id} state {flow_state}"
        )
        self.session_id = session_id
        self.question_id = question_id
        self.flow_state = flow_state


class StoreError(PersonFinderError):
    """Raised when a persistence operation fails."""


class ExtractionError(PersonFinderError):
    """Raised inside the extraction pipeline when a model attempt is unusable."""


class ExtractionTimeout(ExtractionError):
    """Raised when a model attempt exceeds its time budget."""


class InvalidQueryError(PersonFinderError, ValueError):
    """Raised when a search query is empty after trimming."""
