"""Artify data models."""

from artify.models.credits import CreditInfo
from artify.models.project import STAGE_ORDER, Project, ProjectSummary, Stage
from artify.models.session import SessionUser
from artify.models.validation import AgentOutcome, Finding, Severity, ValidationResult, Verdict

__all__ = [
    "STAGE_ORDER",
    "AgentOutcome",
    "CreditInfo",
    "Finding",
    "Project",
    "ProjectSummary",
    "SessionUser",
    "Severity",
    "Stage",
    "ValidationResult",
    "Verdict",
]
