"""Project aggregate and workflow stages."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from artify.models.validation import ValidationResult


class Stage(StrEnum):
    IDEA = "idea"
    IKIGAI = "ikigai"
    SPARKS = "sparks"
    REMIX = "remix"
    FINALIZE = "finalize"
    GAMELOOP = "gameloop"
    CARD = "card"

    @property
    def position(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)


def _now() -> str:
    return datetime.now(UTC).isoformat()


class Project(BaseModel):
    """One user's in-progress game concept."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    version: int = 0
    stage: Stage = Stage.IDEA
    content: dict[str, dict[str, Any]] = Field(default_factory=dict)
    completed_steps: list[str] = Field(default_factory=list)
    furthest_stage: Stage = Stage.IDEA
    stage_steps: dict[str, list[str]] = Field(default_factory=dict)
    validation: ValidationResult | None = None
    archived: bool = False
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)

    @property
    def title(self) -> str:
        return (self.content.get("finalize") or {}).get("title") or ""

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_response(self, *, detail: str = "summary") -> dict[str, Any]:
        data: dict[str, Any] = {
            "_v": "1.0",
            "id": self.id,
            "title": self.title,
            "stage": str(self.stage),
            "version": self.version,
            "archived": self.archived,
        }
        if detail != "summary":
            data.update(
                {
                    "content": self.content,
                    "completed_steps": self.completed_steps,
                    "furthest_stage": str(self.furthest_stage),
                    "validation": self.validation.to_response() if self.validation else None,
                    "created_at": self.created_at,
                    "updated_at": self.updated_at,
                }
            )
        return data


class ProjectSummary(BaseModel):
    """Lightweight listing row for a user's projects."""

    id: str
    title: str
    stage: Stage
    version: int
    archived: bool
    updated_at: str

    @classmethod
    def from_project(cls, project: Project) -> ProjectSummary:
        return cls(
            id=project.id,
            title=project.title,
            stage=project.stage,
            version=project.version,
            archived=project.archived,
            updated_at=project.updated_at,
        )

    def to_response(self) -> dict[str, Any]:
        return {"_v": "1.0", **self.model_dump(mode="json")}
