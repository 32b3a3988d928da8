"""SQLite storage backend with WAL mode and version-checked writes."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from artify.storage.base import StorageBackend

logger = logging.getLogger(__name__)

_PROJECT_JSON_FIELDS = ["content", "completed_steps", "stage_steps", "validation"]

_PROJECT_COLUMNS = (
    "id",
    "user_id",
    "version",
    "stage",
    "content",
    "completed_steps",
    "furthest_stage",
    "stage_steps",
    "validation",
    "archived",
    "created_at",
    "updated_at",
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _project_params(project: dict[str, Any]) -> dict[str, Any]:
    """Keep only known columns and serialize JSON fields."""
    params = {col: project.get(col) for col in _PROJECT_COLUMNS}
    params["archived"] = 1 if params.get("archived") else 0
    return _serialize_json_fields(params, _PROJECT_JSON_FIELDS)


class SQLiteStore(StorageBackend):
    """SQLite-based storage for projects, users and the credit log."""

    def __init__(self, db_path: Path, *, wal_mode: bool = True) -> None:
        self.db_path = db_path
        self.wal_mode = wal_mode
        self._db: aiosqlite.Connection | None = None
        # One connection means one transaction; writers take turns from execute to commit
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create database and apply schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        if self.wal_mode:
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._db.executescript(_load_sql("workspace.sql"))
        await self._add_missing_columns()
        await self._db.commit()
        logger.info("Initialized SQLite store at %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        return self._db

    # --- Project operations ---

    async def insert_project(self, project: dict[str, Any]) -> dict[str, Any]:
        async with self._write_lock:
            await self.db.execute(
                """INSERT INTO projects (id, user_id, version, stage, content,
                   completed_steps, furthest_stage, stage_steps, validation, archived,
                   created_at, updated_at)
                   VALUES (:id, :user_id, :version, :stage, :content,
                   :completed_steps, :furthest_stage, :stage_steps, :validation, :archived,
                   :created_at, :updated_at)""",
                _project_params(project),
            )
            await self.db.commit()
        return project

    async def get_project(self, project_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
        row = await cursor.fetchone()
        return _project_row(row) if row else None

    async def compare_and_swap_project(
        self, project: dict[str, Any], *, expected_version: int
    ) -> bool:
        params = _project_params(project)
        params["expected_version"] = expected_version
        async with self._write_lock:
            cursor = await self.db.execute(
                """UPDATE projects SET version = :version, stage = :stage,
                   content = :content, completed_steps = :completed_steps,
                   furthest_stage = :furthest_stage, stage_steps = :stage_steps,
                   validation = :validation, archived = :archived,
                   updated_at = :updated_at
                   WHERE id = :id AND version = :expected_version""",
                params,
            )
            await self.db.commit()
        return cursor.rowcount > 0

    async def upsert_project(self, project: dict[str, Any]) -> bool:
        async with self._write_lock:
            cursor = await self.db.execute(
                """INSERT INTO projects (id, user_id, version, stage, content,
                   completed_steps, furthest_stage, stage_steps, validation, archived,
                   created_at, updated_at)
                   VALUES (:id, :user_id, :version, :stage, :content,
                   :completed_steps, :furthest_stage, :stage_steps, :validation, :archived,
                   :created_at, :updated_at)
                   ON CONFLICT(id) DO UPDATE SET
                       version = excluded.version,
                       stage = excluded.stage,
                       content = excluded.content,
                       completed_steps = excluded.completed_steps,
                       furthest_stage = excluded.furthest_stage,
                       stage_steps = excluded.stage_steps,
                       validation = excluded.validation,
                       archived = excluded.archived,
                       updated_at = excluded.updated_at
                   WHERE excluded.version > projects.version""",
                _project_params(project),
            )
            await self.db.commit()
        return cursor.rowcount > 0

    async def list_projects(
        self, user_id: str, *, include_archived: bool = False
    ) -> list[dict[str, Any]]:
        if include_archived:
            cursor = await self.db.execute(
                "SELECT * FROM projects WHERE user_id = ? ORDER BY updated_at DESC",
                (user_id,),
            )
        else:
            cursor = await self.db.execute(
                "SELECT * FROM projects WHERE user_id = ? AND archived = 0"
                " ORDER BY updated_at DESC",
                (user_id,),
            )
        rows = await cursor.fetchall()
        return [_project_row(row) for row in rows]

    # --- User / credit operations ---

    async def create_user(
        self,
        user_id: str,
        email: str | None,
        *,
        balance: int = 0,
        cap: int | None = None,
        plan: str | None = None,
        credits_reset_at: str | None = None,
    ) -> dict[str, Any]:
        now = _now()
        async with self._write_lock:
            await self.db.execute(
                """INSERT INTO users (user_id, email, balance, cap, plan, credits_reset_at,
                   created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (user_id, email, balance, cap, plan, credits_reset_at, now, now),
            )
            await self.db.commit()
        return {
            "user_id": user_id,
            "email": email,
            "balance": balance,
            "cap": cap,
            "plan": plan,
            "credits_reset_at": credits_reset_at,
            "unlocks": [],
            "created_at": now,
            "updated_at": now,
        }

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
        row = await cursor.fetchone()
        if not row:
            return None
        user = dict(row)
        cursor = await self.db.execute(
            "SELECT feature FROM user_unlocks WHERE user_id = ? ORDER BY feature", (user_id,)
        )
        user["unlocks"] = [r["feature"] for r in await cursor.fetchall()]
        return user

    async def set_plan(
        self,
        user_id: str,
        plan: str | None,
        *,
        cap: int | None,
        credits_reset_at: str | None = None,
    ) -> bool:
        async with self._write_lock:
            cursor = await self.db.execute(
                """UPDATE users SET plan = ?, cap = ?, balance = ?, credits_reset_at = ?,
                   updated_at = ? WHERE user_id = ?""",
                (plan, cap, cap or 0, credits_reset_at, _now(), user_id),
            )
            await self.db.commit()
        return cursor.rowcount > 0

    async def reset_credits(
        self, user_id: str, *, credits_reset_at: str, reason: str
    ) -> int | None:
        async with self._write_lock:
            before = await self._balance(user_id)
            cursor = await self.db.execute(
                """UPDATE users SET balance = cap, credits_reset_at = ?, updated_at = ?
                   WHERE user_id = ? AND cap IS NOT NULL""",
                (credits_reset_at, _now(), user_id),
            )
            if cursor.rowcount == 0:
                await self.db.commit()
                return None
            balance = await self._balance(user_id)
            await self._log_credit(user_id, balance - before, balance, reason)
            await self.db.commit()
        return balance

    async def debit_credits(self, user_id: str, cost: int, *, reason: str) -> int | None:
        async with self._write_lock:
            cursor = await self.db.execute(
                """UPDATE users SET balance = balance - ?, updated_at = ?
                   WHERE user_id = ? AND balance >= ?""",
                (cost, _now(), user_id, cost),
            )
            if cursor.rowcount == 0:
                # Nothing changed; close the empty transaction
                await self.db.commit()
                return None
            balance = await self._balance(user_id)
            await self._log_credit(user_id, -cost, balance, reason)
            await self.db.commit()
        return balance

    async def refund_credits(self, user_id: str, amount: int, *, reason: str) -> int | None:
        async with self._write_lock:
            cursor = await self.db.execute(
                """UPDATE users SET
                       balance = CASE WHEN cap IS NULL THEN balance + :amount
                                      ELSE MAX(balance, MIN(cap, balance + :amount)) END,
                       updated_at = :now
                   WHERE user_id = :user_id""",
                {"amount": amount, "now": _now(), "user_id": user_id},
            )
            if cursor.rowcount == 0:
                await self.db.commit()
                return None
            balance = await self._balance(user_id)
            await self._log_credit(user_id, amount, balance, reason)
            await self.db.commit()
        return balance

    async def add_unlock(self, user_id: str, feature: str) -> bool:
        async with self._write_lock:
            cursor = await self.db.execute(
                "INSERT OR IGNORE INTO user_unlocks (user_id, feature, granted_at)"
                " VALUES (?, ?, ?)",
                (user_id, feature, _now()),
            )
            await self.db.commit()
        return cursor.rowcount > 0

    async def get_credit_log(self, user_id: str, *, limit: int = 20) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            "SELECT * FROM credit_log WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )
        return [dict(row) for row in await cursor.fetchall()]

    async def _balance(self, user_id: str) -> int:
        cursor = await self.db.execute("SELECT balance FROM users WHERE user_id = ?", (user_id,))
        row = await cursor.fetchone()
        return row["balance"] if row else 0

    async def _log_credit(self, user_id: str, delta: int, balance: int, reason: str) -> None:
        await self.db.execute(
            """INSERT INTO credit_log (user_id, delta, balance_after, reason, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (user_id, delta, balance, reason, _now()),
        )

    async def _add_missing_columns(self) -> None:
        """Bring users tables created before the credit cycle up to date."""
        cursor = await self.db.execute("PRAGMA table_info(users)")
        columns = {row["name"] for row in await cursor.fetchall()}
        if "credits_reset_at" not in columns:
            await self.db.execute("ALTER TABLE users ADD COLUMN credits_reset_at TEXT")
            logger.info("Added users.credits_reset_at")

    # --- Stats ---

    async def get_stats(self) -> dict[str, Any]:
        counts: dict[str, int] = {}
        for table in ("projects", "users", "credit_log"):
            cursor = await self.db.execute(f"SELECT COUNT(*) FROM {table}")
            row = await cursor.fetchone()
            counts[table] = row[0] if row else 0

        cursor = await self.db.execute(
            "SELECT stage, COUNT(*) AS count FROM projects WHERE archived = 0 GROUP BY stage"
        )
        stages = {row["stage"]: row["count"] for row in await cursor.fetchall()}

        return {
            "projects": counts["projects"],
            "users": counts["users"],
            "credit_movements": counts["credit_log"],
            "stages": stages,
            "db_path": str(self.db_path),
        }


# --- Helpers ---


def _load_sql(filename: str) -> str:
    """Load SQL file from the schema package."""
    schema_dir = Path(__file__).parent.parent / "schema"
    return (schema_dir / filename).read_text()


def _project_row(row: aiosqlite.Row) -> dict[str, Any]:
    """Convert a projects row to a dict, deserializing JSON fields."""
    d = dict(row)
    for key in _PROJECT_JSON_FIELDS:
        if isinstance(d.get(key), str):
            try:
                d[key] = json.loads(d[key])
            except (json.JSONDecodeError, TypeError):
                logger.warning("Corrupt JSON in projects.%s for %s", key, d.get("id"))
                d[key] = None
    d["archived"] = bool(d.get("archived"))
    if d.get("content") is None:
        d["content"] = {}
    if d.get("completed_steps") is None:
        d["completed_steps"] = []
    if d.get("stage_steps") is None:
        d["stage_steps"] = {}
    return d


def _serialize_json_fields(data: dict[str, Any], fields: list[str]) -> dict[str, Any]:
    """Serialize dict/list fields to JSON strings for SQLite storage."""
    result = dict(data)
    for field in fields:
        if field in result and not isinstance(result[field], str) and result[field] is not None:
            result[field] = json.dumps(result[field], sort_keys=True)
    return result
