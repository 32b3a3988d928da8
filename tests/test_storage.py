"""Tests for the SQLite storage backend."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import aiosqlite

from artify.storage.sqlite_store import SQLiteStore


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _project(pid: str = "p1", version: int = 0, **overrides) -> dict:
    data = {
        "id": pid,
        "user_id": "u1",
        "version": version,
        "stage": "idea",
        "content": {},
        "completed_steps": [],
        "furthest_stage": "idea",
        "stage_steps": {},
        "validation": None,
        "archived": False,
        "created_at": _now(),
        "updated_at": _now(),
    }
    data.update(overrides)
    return data


# --- Initialization ---


async def test_initialize_creates_db(tmp_path):
    db_path = tmp_path / "nested" / "test.db"
    store = SQLiteStore(db_path)
    await store.initialize()
    assert db_path.exists()
    await store.close()


async def test_initialize_wal_mode(store: SQLiteStore):
    cursor = await store.db.execute("PRAGMA journal_mode")
    row = await cursor.fetchone()
    assert row[0] == "wal"


async def test_double_initialize(tmp_path):
    store = SQLiteStore(tmp_path / "test.db")
    await store.initialize()
    await store.initialize()
    await store.close()


async def test_initialize_adds_credit_cycle_column(tmp_path):
    db_path = tmp_path / "old.db"
    async with aiosqlite.connect(str(db_path)) as db:
        await db.execute(
            "CREATE TABLE users (user_id TEXT PRIMARY KEY, email TEXT, balance INTEGER"
            " NOT NULL DEFAULT 0, cap INTEGER, plan TEXT, created_at TEXT NOT NULL,"
            " updated_at TEXT)"
        )
        await db.commit()

    store = SQLiteStore(db_path)
    await store.initialize()
    await store.create_user("u1", None, credits_reset_at="2026-02-01T00:00:00+00:00")
    assert (await store.get_user("u1"))["credits_reset_at"] == "2026-02-01T00:00:00+00:00"
    await store.close()


# --- Projects ---


async def test_insert_and_get_project(store: SQLiteStore):
    await store.insert_project(_project(content={"idea": {"platform": "PC"}}))
    row = await store.get_project("p1")
    assert row["content"] == {"idea": {"platform": "PC"}}
    assert row["completed_steps"] == []
    assert row["stage_steps"] == {}
    assert row["archived"] is False


async def test_get_missing_project(store: SQLiteStore):
    assert await store.get_project("nope") is None


async def test_compare_and_swap_applies_on_matching_version(store: SQLiteStore):
    await store.insert_project(_project())
    ok = await store.compare_and_swap_project(
        _project(version=1, stage="ikigai"), expected_version=0
    )
    assert ok is True
    row = await store.get_project("p1")
    assert row["version"] == 1
    assert row["stage"] == "ikigai"


async def test_compare_and_swap_rejects_stale_version(store: SQLiteStore):
    await store.insert_project(_project(version=3))
    ok = await store.compare_and_swap_project(
        _project(version=3, content={"x": {}}), expected_version=2
    )
    assert ok is False
    row = await store.get_project("p1")
    assert row["version"] == 3
    assert row["content"] == {}


async def test_upsert_inserts_then_only_moves_forward(store: SQLiteStore):
    assert await store.upsert_project(_project(version=2)) is True
    assert await store.upsert_project(_project(version=1, stage="card")) is False
    assert (await store.get_project("p1"))["stage"] == "idea"
    assert await store.upsert_project(_project(version=3, stage="remix")) is True
    assert (await store.get_project("p1"))["stage"] == "remix"


async def test_list_projects_newest_first_and_archived_filter(store: SQLiteStore):
    await store.insert_project(_project("a", updated_at="2026-01-01T00:00:00+00:00"))
    await store.insert_project(_project("b", updated_at="2026-02-01T00:00:00+00:00"))
    await store.insert_project(
        _project("c", archived=True, updated_at="2026-03-01T00:00:00+00:00")
    )
    await store.insert_project(_project("d", user_id="someone-else"))

    rows = await store.list_projects("u1")
    assert [r["id"] for r in rows] == ["b", "a"]

    rows = await store.list_projects("u1", include_archived=True)
    assert [r["id"] for r in rows] == ["c", "b", "a"]


# --- Users & credits ---


async def test_create_and_get_user(store: SQLiteStore):
    await store.create_user("u1", "a@b.c", balance=5, cap=50, plan="starter")
    user = await store.get_user("u1")
    assert user["balance"] == 5
    assert user["cap"] == 50
    assert user["unlocks"] == []


async def test_debit_is_conditional(store: SQLiteStore):
    await store.create_user("u1", None, balance=3)
    assert await store.debit_credits("u1", 5, reason="big") is None
    assert (await store.get_user("u1"))["balance"] == 3
    assert await store.debit_credits("u1", 2, reason="small") == 1


async def test_refund_clamps_to_cap(store: SQLiteStore):
    await store.create_user("u1", None, balance=49, cap=50)
    assert await store.refund_credits("u1", 5, reason="refund") == 50


async def test_refund_uncapped(store: SQLiteStore):
    await store.create_user("u1", None, balance=1)
    assert await store.refund_credits("u1", 5, reason="refund") == 6


async def test_refund_unknown_user(store: SQLiteStore):
    assert await store.refund_credits("ghost", 5, reason="refund") is None
    assert await store.get_credit_log("ghost") == []


async def test_reset_credits_refills_to_cap(store: SQLiteStore):
    await store.create_user("u1", None, balance=7, cap=50, plan="starter")
    await store.create_user("u2", None, balance=7)
    next_reset = "2026-03-01T00:00:00+00:00"

    assert await store.reset_credits("u1", credits_reset_at=next_reset, reason="cycle") == 50
    assert (await store.get_user("u1"))["credits_reset_at"] == next_reset
    assert (await store.get_credit_log("u1"))[0]["delta"] == 43
    assert await store.reset_credits("u2", credits_reset_at=next_reset, reason="cycle") is None


async def test_failed_debit_keeps_concurrent_writes(store: SQLiteStore):
    await store.create_user("a", None, balance=10)
    await store.create_user("b", None, balance=0)
    await store.insert_project(_project())

    results = await asyncio.gather(
        store.debit_credits("a", 4, reason="enrich"),
        store.debit_credits("b", 1, reason="enrich"),
        store.compare_and_swap_project(_project(version=1, stage="ikigai"), expected_version=0),
        store.refund_credits("a", 1, reason="refund"),
    )
    assert results[1] is None
    assert results[2] is True
    assert (await store.get_user("a"))["balance"] == 7
    assert (await store.get_project("p1"))["version"] == 1
    assert len(await store.get_credit_log("a")) == 2


async def test_add_unlock_idempotent(store: SQLiteStore):
    await store.create_user("u1", None)
    assert await store.add_unlock("u1", "video") is True
    assert await store.add_unlock("u1", "video") is False
    assert (await store.get_user("u1"))["unlocks"] == ["video"]


async def test_credit_log_records_movements(store: SQLiteStore):
    await store.create_user("u1", None, balance=10)
    await store.debit_credits("u1", 4, reason="enrich")
    await store.refund_credits("u1", 4, reason="refund: enrich")
    log = await store.get_credit_log("u1")
    assert [(e["delta"], e["balance_after"]) for e in log] == [(4, 10), (-4, 6)]


async def test_get_stats(store: SQLiteStore):
    await store.insert_project(_project())
    await store.create_user("u1", None)
    stats = await store.get_stats()
    assert stats["projects"] == 1
    assert stats["users"] == 1
    assert stats["stages"] == {"idea": 1}
