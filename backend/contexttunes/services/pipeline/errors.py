"""Typed pipeline failures.

Per-source failures are not exceptions: they are ``Failure`` / ``TimedOut``
provider results and only lower the snapshot's completeness.
"""


class PipelineError(Exception):
    """Base class for failures surfaced to the caller."""


class InsufficientContext(PipelineError):
    """No signal source succeeded; there is nothing to recommend from."""

    def __init__(self, outcomes: dict[str, str] | None = None):
        self.outcomes = outcomes or {}
        super().__init__(f"No context source succeeded: {self.outcomes}")


class RecommendationServiceError(PipelineError):
    """Non-2xx response (``status_code`` set) or a transport failure (``status_code`` None)."""

    def __init__(self, status_code: int | None, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Recommendation service error {status_code}: {body[:200]}")


class MalformedResponse(PipelineError):
    """2xx response whose body does not match the expected schema."""


class RequestInProgress(PipelineError):
    """A request is already aggregating or requesting on this orchestrator."""


class Cancelled(PipelineError):
    """The caller cancelled the request."""
