"""FastMCP server: 5 consolidated tools, 1 resource, 3 HTTP routes."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Any, Literal

from fastmcp import FastMCP
from pydantic import Field
from starlette.requests import Request
from starlette.responses import JSONResponse

from artify import __version__
from artify.auth.session import SessionProvider, bearer_token, require_session
from artify.config import Config
from artify.core.actions import PaidActionRunner
from artify.core.credits import CreditLedger
from artify.core.export import (
    concept_markdown,
    export_filename,
    journey_summary,
    project_json,
)
from artify.core.powerpath import PowerPathWorkflow, get_state
from artify.core.projects import ProjectStore
from artify.core.sync import SyncOutbox
from artify.core.validation import ValidationPipeline, genre_market_agent, readiness_report
from artify.errors import ArtifyError, InsufficientCredits, Unauthorized, UpstreamUnavailable
from artify.events.bus import EventBus
from artify.events.types import EventType
from artify.integrations.loudly import GenreClient
from artify.models.project import Project
from artify.models.session import SessionUser
from artify.storage.base import StorageBackend
from artify.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

_TOKEN_HELP = "Session token; ignored when mock auth is enabled"


def _json(data: dict[str, Any]) -> str:
    return json.dumps(data, default=str)


def _ok(data: dict[str, Any]) -> str:
    """Return a versioned JSON success response."""
    return _json({**data, "_v": "1.0"})


def _err(msg: str, code: str = "invalid_request") -> str:
    """Return a versioned JSON error response."""
    return _json({"_v": "1.0", "error": msg, "code": code})


def create_server(
    db_path: str,
    config: Config | None = None,
    *,
    genre_client: GenreClient | None = None,
    remote: StorageBackend | None = None,
) -> FastMCP:
    """Create the FastMCP server.

    Args:
        db_path: Local SQLite database file
        config: Loaded configuration; ``Config.load()`` when omitted
        genre_client: Genre catalogue client; built from ``config`` when omitted
        remote: Optional remote copy fed by the sync outbox
    """
    cfg = config or Config.load()
    mcp = FastMCP("artify", version=__version__)

    state: dict[str, Any] = {}
    _lock = asyncio.Lock()

    async def _init() -> dict[str, Any]:
        async with _lock:
            if "init_failed" in state:
                raise RuntimeError(f"Artify init previously failed for {db_path}")
            if "projects" not in state:
                try:
                    store = SQLiteStore(Path(db_path), wal_mode=cfg.wal_mode)
                    await store.initialize()
                except Exception as e:
                    state["init_failed"] = True
                    logger.error("Failed to initialize database: %s", e)
                    raise RuntimeError(f"Artify init failed: {db_path}") from e
                bus = EventBus()
                outbox = None
                if remote is not None:
                    outbox = SyncOutbox(
                        remote,
                        bus,
                        base_delay=cfg.sync_base_delay,
                        max_delay=cfg.sync_max_delay,
                        max_retries=cfg.sync_max_retries,
                    )
                projects = ProjectStore(store, bus, outbox=outbox)
                pipeline = ValidationPipeline(blocking_threshold=cfg.blocking_threshold)
                ledger = CreditLedger(store, bus)
                state["store"] = store
                state["bus"] = bus
                state["outbox"] = outbox
                state["projects"] = projects
                state["workflow"] = PowerPathWorkflow(projects, bus)
                state["pipeline"] = pipeline
                state["ledger"] = ledger
                state["runner"] = PaidActionRunner(projects, ledger, pipeline, cfg)
                state["sessions"] = SessionProvider(cfg)
                state["genres"] = genre_client or GenreClient.from_config(cfg)
        return state

    async def _session(s: dict[str, Any], token: str | None) -> SessionUser:
        user = require_session(s["sessions"].resolve(token))
        await s["ledger"].ensure_account(user.user_id, user.email)
        return user

    async def _project(
        s: dict[str, Any], user: SessionUser, project_id: str | None, version: int | None
    ) -> Project:
        """Load the caller's project; a given ``version`` makes the next save check it."""
        if not project_id or not project_id.strip():
            raise ValueError("project_id is required")
        project = await s["projects"].load_for_user(project_id.strip(), user.user_id)
        if version is not None:
            project = project.model_copy(update={"version": version})
        return project

    # ── ar_project ────────────────────────────────────────────

    @mcp.tool()
    async def ar_project(
        action: Annotated[
            Literal["create", "load", "save", "list", "archive", "reset"],
            Field(description="create | load | save | list | archive | reset"),
        ],
        token: Annotated[str | None, Field(description=_TOKEN_HELP)] = None,
        project_id: Annotated[
            str | None,
            Field(description="Project ID (load, save, archive)"),
        ] = None,
        version: Annotated[
            int | None,
            Field(description="Version the caller last saw (save: required, archive)", ge=0),
        ] = None,
        content: Annotated[
            dict[str, dict[str, Any]] | None,
            Field(description="Full per-stage content to store (save)"),
        ] = None,
        include_archived: Annotated[
            bool,
            Field(description="Include archived projects (list)"),
        ] = False,
        detail: Annotated[
            str,
            Field(description="summary or full (load, default: full)"),
        ] = "full",
    ) -> str:
        """Create, load, save and list game-concept projects. Saves carry the version the caller loaded; a stale version is rejected with code "conflict" and the caller must reload.

Actions: create (new empty project), load, save (replace content), list (newest first), archive, reset (start over with a fresh project)."""  # noqa: E501
        s = await _init()
        try:
            user = await _session(s, token)

            if action == "create":
                project = await s["projects"].create(user.user_id)
                return _ok(project.to_response(detail="full"))

            if action == "reset":
                project = await s["projects"].reset(user.user_id)
                return _ok(project.to_response(detail="full"))

            if action == "list":
                summaries = await s["projects"].list_for_user(
                    user.user_id, include_archived=include_archived
                )
                items = [p.to_response() for p in summaries]
                return _ok({"count": len(items), "projects": items})

            if action == "save":
                if version is None:
                    return _err("version is required for save")
                if content is None:
                    return _err("content is required for save")
                project = await _project(s, user, project_id, version)
                saved = await s["projects"].save(project.model_copy(update={"content": content}))
                return _ok(saved.to_response(detail="full"))

            project = await _project(s, user, project_id, version)
            if action == "load":
                return _ok(project.to_response(detail=detail))
            if action == "archive":
                archived = await s["projects"].archive(project)
                return _ok(archived.to_response())
        except ArtifyError as e:
            return _err(str(e), e.code)
        except ValueError as e:
            return _err(str(e))

        return _err(f"Unknown action: {action}")

    # ── ar_path ───────────────────────────────────────────────

    @mcp.tool()
    async def ar_path(
        action: Annotated[
            Literal["status", "complete_step", "advance", "goto", "update_content"],
            Field(description="status | complete_step | advance | goto | update_content"),
        ],
        project_id: Annotated[str, Field(description="Project ID")],
        token: Annotated[str | None, Field(description=_TOKEN_HELP)] = None,
        version: Annotated[
            int | None,
            Field(description="Version the caller last saw; checked on write", ge=0),
        ] = None,
        step_id: Annotated[
            str | None,
            Field(description="Step of the current stage (complete_step)"),
        ] = None,
        stage: Annotated[
            str | None,
            Field(description="Target stage (goto) or content section (update_content)"),
        ] = None,
        payload: Annotated[
            dict[str, Any] | None,
            Field(description="Fields merged into the stage's content (update_content)"),
        ] = None,
    ) -> str:
        """Walk the Power Path: idea → ikigai → sparks → remix → finalize → gameloop → card. Each stage's required steps must be completed before advancing; earlier stages can always be revisited.

Actions: status (current stage and missing steps), complete_step, advance (next stage), goto (any reached stage), update_content (merge fields into a stage's content)."""  # noqa: E501
        s = await _init()
        workflow: PowerPathWorkflow = s["workflow"]
        try:
            user = await _session(s, token)
            project = await _project(s, user, project_id, version)

            if action == "status":
                return _ok(get_state(project).to_response())

            if action == "complete_step":
                if not step_id or not step_id.strip():
                    return _err("step_id is required for complete_step")
                saved = await workflow.complete_step(project, step_id.strip())
                return _ok(
                    {"project": saved.to_response(), "state": get_state(saved).to_response()}
                )

            if action == "advance":
                return _ok((await workflow.advance_stage(project)).to_response())

            if action == "goto":
                if not stage:
                    return _err("stage is required for goto")
                return _ok((await workflow.go_to_stage(project, stage)).to_response())

            if action == "update_content":
                if not stage:
                    return _err("stage is required for update_content")
                if not payload:
                    return _err("payload is required for update_content")
                saved = await workflow.update_content(project, stage, payload)
                return _ok(saved.to_response(detail="full"))
        except ArtifyError as e:
            return _err(str(e), e.code)
        except ValueError as e:
            return _err(str(e))

        return _err(f"Unknown action: {action}")

    # ── ar_validate ───────────────────────────────────────────

    @mcp.tool()
    async def ar_validate(
        action: Annotated[
            Literal["run", "readiness", "enrich"],
            Field(description="run | readiness | enrich"),
        ],
        project_id: Annotated[str, Field(description="Project ID")],
        token: Annotated[str | None, Field(description=_TOKEN_HELP)] = None,
        store_result: Annotated[
            bool,
            Field(description="Save the result on the project (run)"),
        ] = False,
    ) -> str:
        """Validate a project's concept with the ordered agent pipeline. Core checks are free and deterministic; enrich adds market agents, costs credits and is refunded if it fails.

Actions: run (core agents), readiness (what still blocks the concept), enrich (paid: core plus market agents, saved on the project)."""  # noqa: E501
        s = await _init()
        try:
            user = await _session(s, token)

            if action == "enrich":
                agents = [("genre-market", genre_market_agent(s["genres"].list_genres))]
                saved = await s["runner"].validate_with_enrichment(user, project_id, agents)
                credits = await s["ledger"].get_credits(user.user_id)
                return _ok(
                    {
                        "project": saved.to_response(),
                        "validation": saved.validation.to_response(),
                        "balance": credits.balance,
                    }
                )

            project = await _project(s, user, project_id, None)
            result = s["pipeline"].validate(project.content)
            await s["bus"].emit(
                EventType.VALIDATION_COMPLETED,
                {"project_id": project.id, "overall": result.overall},
            )

            if action == "run":
                if store_result:
                    await s["projects"].save(project.model_copy(update={"validation": result}))
                return _ok(result.to_response())

            if action == "readiness":
                return _ok(
                    {
                        **readiness_report(result),
                        "summary": journey_summary(project),
                    }
                )
        except ArtifyError as e:
            return _err(str(e), e.code)
        except ValueError as e:
            return _err(str(e))

        return _err(f"Unknown action: {action}")

    # ── ar_credits ────────────────────────────────────────────

    @mcp.tool()
    async def ar_credits(
        action: Annotated[
            Literal["balance", "unlock", "has_unlock", "set_plan", "history"],
            Field(description="balance | unlock | has_unlock | set_plan | history"),
        ],
        token: Annotated[str | None, Field(description=_TOKEN_HELP)] = None,
        feature: Annotated[
            str,
            Field(description="Feature unlock to check (has_unlock)"),
        ] = "video",
        plan: Annotated[
            str | None,
            Field(description="starter | pro, or omit to clear (set_plan, admin only)"),
        ] = None,
        user_id: Annotated[
            str | None,
            Field(description="Account to change (set_plan, defaults to the caller)"),
        ] = None,
        limit: Annotated[
            int,
            Field(description="Max entries 1-100 (history)", ge=1, le=100),
        ] = 20,
    ) -> str:
        """Credit balance, one-time unlocks and plans.

Actions: balance, unlock (grant the video unlock), has_unlock, set_plan (admin only), history (recent credit movements)."""  # noqa: E501
        s = await _init()
        ledger: CreditLedger = s["ledger"]
        try:
            user = await _session(s, token)

            if action == "balance":
                info = await ledger.get_credits(user.user_id)
                return _ok(
                    {**info.to_response(), "has_access": await ledger.has_access(user.user_id)}
                )

            if action == "unlock":
                await s["runner"].unlock_video(user)
                return _ok({"success": True})

            if action == "has_unlock":
                return _ok(
                    {
                        "feature": feature,
                        "unlocked": await ledger.has_unlock(user.user_id, feature),
                    }
                )

            if action == "set_plan":
                if not user.is_admin:
                    raise Unauthorized("Admin access required")
                target = user_id or user.user_id
                info = await ledger.set_plan(target, plan)
                return _ok(info.to_response())

            if action == "history":
                entries = await s["store"].get_credit_log(user.user_id, limit=limit)
                return _ok({"count": len(entries), "entries": entries})
        except ArtifyError as e:
            return _err(str(e), e.code)
        except ValueError as e:
            return _err(str(e))

        return _err(f"Unknown action: {action}")

    # ── ar_export ─────────────────────────────────────────────

    @mcp.tool()
    async def ar_export(
        action: Annotated[
            Literal["markdown", "json", "summary"],
            Field(description="markdown | json | summary"),
        ],
        project_id: Annotated[str, Field(description="Project ID")],
        token: Annotated[str | None, Field(description=_TOKEN_HELP)] = None,
    ) -> str:
        """Export a concept: markdown write-up, raw JSON, or the plain-text journey summary."""
        s = await _init()
        try:
            user = await _session(s, token)
            project = await _project(s, user, project_id, None)
        except ArtifyError as e:
            return _err(str(e), e.code)
        except ValueError as e:
            return _err(str(e))

        if action == "markdown":
            return _ok(
                {
                    "filename": export_filename(project, "md"),
                    "content": concept_markdown(project),
                }
            )
        if action == "json":
            return _ok(
                {"filename": export_filename(project, "json"), "content": project_json(project)}
            )
        if action == "summary":
            return _ok({"content": journey_summary(project)})

        return _err(f"Unknown action: {action}")

    # ── Resources (1) ─────────────────────────────────────────

    @mcp.resource("ar://status")
    async def ar_resource_status() -> str:
        """Store statistics, sync status and recent events."""
        s = await _init()
        outbox: SyncOutbox | None = s["outbox"]
        return _ok(
            {
                "store": await s["store"].get_stats(),
                "sync": str(outbox.status()) if outbox else "disabled",
                "pending_sync": len(outbox.pending()) if outbox else 0,
                "recent_events": s["bus"].recent(10),
            }
        )

    # ── HTTP routes ───────────────────────────────────────────

    @mcp.custom_route("/video-unlock", methods=["POST"])
    async def video_unlock(request: Request) -> JSONResponse:
        s = await _init()
        try:
            session = s["sessions"].resolve(bearer_token(request.headers.get("authorization")))
            await s["runner"].unlock_video(session)
        except Unauthorized:
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        except InsufficientCredits as e:
            return JSONResponse({"error": str(e), "code": e.code}, status_code=402)
        except Exception:
            logger.exception("Video unlock failed")
            return JSONResponse({"error": "Failed to unlock"}, status_code=500)
        return JSONResponse({"success": True})

    @mcp.custom_route("/genres", methods=["GET"])
    async def genres(request: Request) -> JSONResponse:
        s = await _init()
        try:
            data = await s["genres"].list_genres(dict(request.query_params) or None)
        except UpstreamUnavailable as e:
            return JSONResponse({"error": str(e)}, status_code=e.status_code)
        return JSONResponse(data)

    @mcp.custom_route("/debug", methods=["GET"])
    async def debug(request: Request) -> JSONResponse:
        return JSONResponse(cfg.public_flags())

    return mcp
