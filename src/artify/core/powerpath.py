"""Power-Path Workflow: the guided stage machine from raw idea to concept card.

Each stage lists the step ids that must be completed before the project may
move past it. ``furthest_stage`` remembers how far the project has ever
progressed, so revisiting earlier stages loses nothing and returning forward
to an already-reached stage needs no re-approval.
"""

import logging
from typing import Any

from pydantic import BaseModel

from artify.core.projects import ProjectStore
from artify.errors import StagePrerequisiteError
from artify.events.bus import EventBus
from artify.events.types import EventType
from artify.models.project import STAGE_ORDER, Project, Stage

logger = logging.getLogger(__name__)

REQUIRED_STEPS: dict[Stage, tuple[str, ...]] = {
    Stage.IDEA: ("onboarding", "describe-idea"),
    Stage.IKIGAI: ("place-chips", "find-overlaps"),
    Stage.SPARKS: ("generate-sparks", "select-spark"),
    Stage.REMIX: ("review-constraints",),
    Stage.FINALIZE: ("set-title", "write-concept"),
    Stage.GAMELOOP: ("build-loop",),
    Stage.CARD: (),
}

ALREADY_COMPLETE = "already complete"


class PowerPathState(BaseModel):
    """Workflow cursor derived from a project."""

    stage: Stage
    furthest_stage: Stage
    completed_steps: list[str]
    required_steps: list[str]
    missing_steps: list[str]
    is_complete: bool
    is_terminal: bool

    def to_response(self) -> dict[str, Any]:
        return {"_v": "1.0", **self.model_dump(mode="json")}


class Transition(BaseModel):
    """Outcome of a stage move; ``changed`` is False for no-ops."""

    project: Project
    changed: bool
    message: str

    def to_response(self) -> dict[str, Any]:
        return {
            "_v": "1.0",
            "changed": self.changed,
            "message": self.message,
            "project": self.project.to_response(),
        }


def missing_steps(project: Project, stage: Stage | None = None) -> list[str]:
    """Required steps of ``stage`` (default: current stage) not yet completed."""
    stage = stage or project.stage
    if stage == project.stage:
        done = set(project.completed_steps)
    else:
        done = set(project.stage_steps.get(str(stage), []))
    return [step for step in REQUIRED_STEPS[stage] if step not in done]


def get_state(project: Project) -> PowerPathState:
    missing = missing_steps(project)
    return PowerPathState(
        stage=project.stage,
        furthest_stage=project.furthest_stage,
        completed_steps=list(project.completed_steps),
        required_steps=list(REQUIRED_STEPS[project.stage]),
        missing_steps=missing,
        is_complete=not missing,
        is_terminal=project.stage == STAGE_ORDER[-1],
    )


class PowerPathWorkflow:
    """Applies Power-Path transitions and persists each one."""

    def __init__(self, projects: ProjectStore, event_bus: EventBus) -> None:
        self._projects = projects
        self._event_bus = event_bus

    async def complete_step(self, project: Project, step_id: str) -> Project:
        """Mark a required step of the current stage as done.

        Raises:
            ValueError: If ``step_id`` is not a step of the current stage
            ConflictError: If ``project`` is stale
        """
        if step_id not in REQUIRED_STEPS[project.stage]:
            raise ValueError(
                f"Unknown step '{step_id}' for stage '{project.stage}'. "
                f"Expected one of {list(REQUIRED_STEPS[project.stage])}"
            )
        if step_id in project.completed_steps:
            return project

        completed = [*project.completed_steps, step_id]
        saved = await self._projects.save(
            project.model_copy(
                update={
                    "completed_steps": completed,
                    "stage_steps": {**project.stage_steps, str(project.stage): completed},
                }
            )
        )
        logger.info("Project %s completed step %s/%s", saved.id, saved.stage, step_id)
        await self._event_bus.emit(
            EventType.STEP_COMPLETED,
            {"project_id": saved.id, "stage": str(saved.stage), "step": step_id},
        )
        return saved

    async def advance_stage(self, project: Project) -> Transition:
        """Move to the next stage once the current one is complete.

        Raises:
            StagePrerequisiteError: Listing the current stage's missing steps
        """
        if project.stage == STAGE_ORDER[-1]:
            return Transition(project=project, changed=False, message=ALREADY_COMPLETE)

        missing = missing_steps(project)
        if missing:
            raise StagePrerequisiteError(str(project.stage), missing)

        target = STAGE_ORDER[project.stage.position + 1]
        return await self._move(project, target, restart=True)

    async def go_to_stage(self, project: Project, stage: Stage | str) -> Transition:
        """Jump to any stage already reached, or forward past completed stages.

        Raises:
            StagePrerequisiteError: For the first stage in the way with missing steps
        """
        target = Stage(stage)
        if target == project.stage:
            return Transition(project=project, changed=False, message=f"already at {target}")

        if target.position > project.furthest_stage.position:
            for between in STAGE_ORDER[project.stage.position : target.position]:
                missing = missing_steps(project, between)
                if missing:
                    raise StagePrerequisiteError(str(between), missing)

        return await self._move(project, target)

    async def update_content(
        self, project: Project, stage: Stage | str, payload: dict[str, Any]
    ) -> Project:
        """Merge ``payload`` into the content section of ``stage`` and save."""
        key = str(Stage(stage))
        section = {**project.content.get(key, {}), **payload}
        return await self._projects.save(
            project.model_copy(update={"content": {**project.content, key: section}})
        )

    async def _move(
        self, project: Project, target: Stage, *, restart: bool = False
    ) -> Transition:
        steps = [] if restart else list(project.stage_steps.get(str(target), []))
        furthest = max(project.furthest_stage, target, key=lambda s: s.position)
        direction = "back" if target.position < project.stage.position else "forward"
        saved = await self._projects.save(
            project.model_copy(
                update={
                    "stage": target,
                    "furthest_stage": furthest,
                    "completed_steps": steps,
                    "stage_steps": {**project.stage_steps, str(target): steps},
                }
            )
        )
        logger.info("Project %s moved %s: %s -> %s", saved.id, direction, project.stage, target)
        await self._event_bus.emit(
            EventType.STAGE_CHANGED,
            {"project_id": saved.id, "from": str(project.stage), "to": str(target)},
        )
        return Transition(project=saved, changed=True, message=f"moved to {target}")
