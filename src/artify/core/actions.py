"""Paid actions: debit, run, save, and refund when anything goes wrong."""

import logging
from collections.abc import Awaitable, Callable

from artify.auth.session import require_session
from artify.config import Config
from artify.core.credits import VIDEO_UNLOCK, CreditLedger
from artify.core.projects import ProjectStore
from artify.core.validation import EnrichmentAgent, ValidationPipeline
from artify.models.project import Project
from artify.models.session import SessionUser

logger = logging.getLogger(__name__)

Action = Callable[[Project], Awaitable[Project]]


class PaidActionRunner:
    """Runs credit-gated operations against a user's project.

    The action works on the last saved version and its result is saved only
    when it completes. A failed, cancelled or conflicting run leaves the
    stored project untouched and the debit is refunded.
    """

    def __init__(
        self,
        projects: ProjectStore,
        ledger: CreditLedger,
        pipeline: ValidationPipeline,
        config: Config,
    ) -> None:
        self._projects = projects
        self._ledger = ledger
        self._pipeline = pipeline
        self._config = config

    async def run(
        self,
        session: SessionUser | None,
        project_id: str,
        cost: int,
        action: Action,
        *,
        reason: str = "action",
    ) -> Project:
        """Charge ``cost`` credits and run ``action`` on the project.

        Raises:
            Unauthorized: If there is no session
            NotFoundError: If the project does not belong to the caller
            InsufficientCredits: If the caller cannot afford ``cost``
        """
        user = require_session(session)
        project = await self._projects.load_for_user(project_id, user.user_id)
        await self._ledger.ensure_account(user.user_id, user.email)

        async with self._ledger.charge(user.user_id, cost, reason=reason):
            updated = await action(project)
            saved = await self._projects.save(updated)

        logger.info("Paid action %s on project %s cost %d credit(s)", reason, saved.id, cost)
        return saved

    async def validate_with_enrichment(
        self,
        session: SessionUser | None,
        project_id: str,
        agents: list[tuple[str, EnrichmentAgent]],
    ) -> Project:
        """Core validation plus enrichment agents, stored on the project."""

        async def _enrich(project: Project) -> Project:
            result = await self._pipeline.enrich(
                project.content, agents, timeout=self._config.enrichment_timeout
            )
            return project.model_copy(update={"validation": result})

        return await self.run(
            session,
            project_id,
            self._config.enrichment_cost,
            _enrich,
            reason="validation enrichment",
        )

    async def unlock_video(self, session: SessionUser | None) -> None:
        """Grant the video unlock, debiting ``video_unlock_cost`` first when set."""
        user = require_session(session)
        await self._ledger.ensure_account(user.user_id, user.email)
        cost = self._config.video_unlock_cost
        if cost <= 0:
            await self._ledger.grant_unlock(user.user_id, VIDEO_UNLOCK)
            return
        if await self._ledger.has_unlock(user.user_id, VIDEO_UNLOCK):
            return
        async with self._ledger.charge(user.user_id, cost, reason="video unlock"):
            await self._ledger.grant_unlock(user.user_id, VIDEO_UNLOCK)
