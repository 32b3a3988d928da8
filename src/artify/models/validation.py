"""Validation findings and results."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel


class Verdict(StrEnum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class Severity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    BLOCKING = "blocking"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.BLOCKING: 2}


class AgentOutcome(BaseModel):
    """What a single agent reports for one piece of content."""

    verdict: Verdict
    message: str
    severity: Severity = Severity.INFO


class Finding(BaseModel):
    agent_name: str
    verdict: Verdict
    message: str
    severity: Severity


class ValidationResult(BaseModel):
    """Aggregated output of one pipeline run. Contains no timestamps."""

    overall: str  # "pass", "fail" or "partial"
    findings: list[Finding]
    completion_percentage: int = 0
    content_hash: str = ""

    def failed(self, *, min_severity: Severity = Severity.BLOCKING) -> list[Finding]:
        return [
            f
            for f in self.findings
            if f.verdict == Verdict.FAIL and f.severity.rank >= min_severity.rank
        ]

    def to_response(self) -> dict[str, Any]:
        return {"_v": "1.0", **self.model_dump(mode="json")}
