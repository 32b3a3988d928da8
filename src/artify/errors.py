"""Typed errors surfaced by the store, ledger, workflow and proxies."""

from __future__ import annotations


class ArtifyError(Exception):
    """Base class for all domain errors."""

    code = "error"


class Unauthorized(ArtifyError):
    """No session, or the session token could not be verified."""

    code = "unauthorized"

    def __init__(self, message: str = "Please sign in") -> None:
        super().__init__(message)


class NotFoundError(ArtifyError):
    """Raised when a project or user record does not exist."""

    code = "not_found"


class ConflictError(ArtifyError):
    """A save referenced a stale project version."""

    code = "conflict"

    def __init__(self, project_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Project {project_id} was modified elsewhere "
            f"(saving version {expected}, stored version {actual}); reload and retry"
        )
        self.project_id = project_id
        self.expected = expected
        self.actual = actual


class InsufficientCredits(ArtifyError):
    code = "insufficient_credits"

    def __init__(self, user_id: str, balance: int, cost: int) -> None:
        super().__init__(f"Not enough credits: {cost} needed, {balance} available")
        self.user_id = user_id
        self.balance = balance
        self.cost = cost


class StagePrerequisiteError(ArtifyError):
    """The current stage still has required steps outstanding."""

    code = "stage_prerequisite"

    def __init__(self, stage: str, missing: list[str]) -> None:
        super().__init__(f"Stage '{stage}' is missing required steps: {', '.join(missing)}")
        self.stage = stage
        self.missing = missing


class UpstreamUnavailable(ArtifyError):
    """A third-party API failed or is not configured."""

    code = "upstream_unavailable"

    def __init__(self, message: str = "Upstream unavailable", status_code: int = 502) -> None:
        super().__init__(message)
        self.status_code = status_code


class AgentError(ArtifyError):
    """Raised by a validation agent; contained by the pipeline as a finding."""

    code = "agent_error"
