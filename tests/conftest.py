"""Shared test fixtures for Artify."""

from __future__ import annotations

from pathlib import Path

import pytest

from artify.config import Config
from artify.core.credits import CreditLedger
from artify.core.projects import ProjectStore
from artify.events.bus import EventBus
from artify.storage.sqlite_store import SQLiteStore

_ENV_VARS = (
    "ARTIFY_WORKSPACE",
    "ARTIFY_LOG_LEVEL",
    "ADMIN_EMAILS",
    "ARTIFY_MOCK_AUTH",
    "LOUDLY_API_KEY",
    "ARTIFY_JWT_SECRET",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def tmp_db(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
async def store(tmp_db: Path) -> SQLiteStore:
    s = SQLiteStore(tmp_db)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(workspace_path=tmp_path)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def projects(store: SQLiteStore, bus: EventBus) -> ProjectStore:
    return ProjectStore(store, bus)


@pytest.fixture
def ledger(store: SQLiteStore, bus: EventBus) -> CreditLedger:
    return CreditLedger(store, bus)


@pytest.fixture
def ready_content() -> dict:
    """Content that passes every required agent."""
    return {
        "idea": {
            "team_size": "solo",
            "time_horizon": "3 months",
            "vibe_chips": ["cozy", "mysterious"],
            "platform": "PC",
        },
        "finalize": {
            "title": "Lantern Keeper",
            "concept": "Guide lost spirits home through a shifting lighthouse maze.",
        },
    }
