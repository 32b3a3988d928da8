"""Event type constants for Artify."""

from enum import StrEnum


class EventType(StrEnum):
    PROJECT_CREATED = "project.created"
    PROJECT_SAVED = "project.saved"
    PROJECT_ARCHIVED = "project.archived"
    PROJECT_CONFLICT = "project.conflict"

    STEP_COMPLETED = "powerpath.step_completed"
    STAGE_CHANGED = "powerpath.stage_changed"

    VALIDATION_COMPLETED = "validation.completed"

    CREDITS_DEBITED = "credits.debited"
    CREDITS_REFUNDED = "credits.refunded"
    CREDITS_RESET = "credits.reset"
    UNLOCK_GRANTED = "credits.unlock_granted"

    SYNC_SUCCEEDED = "sync.succeeded"
    SYNC_PENDING = "sync.pending"
