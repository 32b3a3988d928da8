"""Project Store: versioned persistence of projects with optimistic concurrency."""

import logging
from datetime import UTC, datetime

from artify.core.sync import SyncOutbox
from artify.errors import ConflictError, NotFoundError
from artify.events.bus import EventBus
from artify.events.types import EventType
from artify.models.project import Project, ProjectSummary
from artify.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class ProjectStore:
    """Local-first project persistence.

    Every save is a compare-and-swap on ``version``. Saved snapshots are queued
    on the optional outbox for best-effort replay into the remote copy. The
    store never re-runs validation; callers decide when to validate.
    """

    def __init__(
        self,
        store: StorageBackend,
        event_bus: EventBus,
        *,
        outbox: SyncOutbox | None = None,
        auto_sync: bool = True,
    ) -> None:
        """Initialize ProjectStore.

        Args:
            store: Local durable storage backend
            event_bus: Event bus for emitting events
            outbox: Optional sync outbox feeding the remote copy
            auto_sync: Schedule a background sync after every write
        """
        self._store = store
        self._event_bus = event_bus
        self._outbox = outbox
        self._auto_sync = auto_sync

    @property
    def outbox(self) -> SyncOutbox | None:
        return self._outbox

    async def create(self, user_id: str) -> Project:
        """Create an empty project at stage ``idea`` and version 0.

        Args:
            user_id: Owner of the new project

        Returns:
            Created Project instance
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id cannot be empty")

        project = Project(user_id=user_id)
        await self._store.insert_project(project.to_storage())
        logger.info("Created project %s for user %s", project.id, user_id)

        await self._event_bus.emit(
            EventType.PROJECT_CREATED,
            {"project_id": project.id, "user_id": user_id},
        )
        self._queue_sync(project)
        return project

    async def load(self, project_id: str) -> Project:
        """Load a project by ID.

        Raises:
            NotFoundError: If no project has this ID
        """
        data = await self._store.get_project(project_id)
        if not data:
            raise NotFoundError(f"Project not found: {project_id}")
        return Project(**data)

    async def load_for_user(self, project_id: str, user_id: str) -> Project:
        """Load a project owned by ``user_id``; other users' projects look absent."""
        project = await self.load(project_id)
        if project.user_id != user_id:
            raise NotFoundError(f"Project not found: {project_id}")
        return project

    async def save(self, project: Project) -> Project:
        """Persist a project whose ``version`` is the one it was loaded at.

        Args:
            project: Project carrying the caller's last-seen version

        Returns:
            The saved Project with ``version`` incremented and ``updated_at`` refreshed

        Raises:
            ConflictError: If the stored version differs from ``project.version``
            NotFoundError: If the project was never created
        """
        saved = project.model_copy(
            update={
                "version": project.version + 1,
                "updated_at": datetime.now(UTC).isoformat(),
            }
        )
        applied = await self._store.compare_and_swap_project(
            saved.to_storage(), expected_version=project.version
        )
        if not applied:
            current = await self._store.get_project(project.id)
            if current is None:
                raise NotFoundError(f"Project not found: {project.id}")
            logger.warning(
                "Rejected stale save of project %s: v%d given, v%d stored",
                project.id,
                project.version,
                current["version"],
            )
            await self._event_bus.emit(
                EventType.PROJECT_CONFLICT,
                {
                    "project_id": project.id,
                    "expected": project.version,
                    "actual": current["version"],
                },
            )
            raise ConflictError(project.id, project.version, current["version"])

        logger.info("Saved project %s at v%d (stage=%s)", saved.id, saved.version, saved.stage)
        await self._event_bus.emit(
            EventType.PROJECT_SAVED,
            {"project_id": saved.id, "version": saved.version, "stage": str(saved.stage)},
        )
        self._queue_sync(saved)
        return saved

    async def list_for_user(
        self, user_id: str, *, include_archived: bool = False
    ) -> list[ProjectSummary]:
        """List a user's projects, most recently updated first."""
        rows = await self._store.list_projects(user_id, include_archived=include_archived)
        return [ProjectSummary.from_project(Project(**row)) for row in rows]

    async def archive(self, project: Project) -> Project:
        """Archive a project. Archived projects keep their content."""
        archived = await self.save(project.model_copy(update={"archived": True}))
        await self._event_bus.emit(EventType.PROJECT_ARCHIVED, {"project_id": archived.id})
        return archived

    async def reset(self, user_id: str) -> Project:
        """Start over with a fresh project; the previous ones are left untouched."""
        return await self.create(user_id)

    def _queue_sync(self, project: Project) -> None:
        if self._outbox is None:
            return
        self._outbox.enqueue(project.to_storage())
        if self._auto_sync:
            self._outbox.schedule()
