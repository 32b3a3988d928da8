"""Tests for credit-gated actions."""

from __future__ import annotations

import asyncio

import pytest

from artify.config import Config
from artify.core.actions import PaidActionRunner
from artify.core.credits import VIDEO_UNLOCK, CreditLedger
from artify.core.projects import ProjectStore
from artify.core.validation import ValidationPipeline
from artify.errors import ConflictError, InsufficientCredits, NotFoundError, Unauthorized
from artify.models.session import SessionUser
from artify.models.validation import AgentOutcome, Severity, Verdict

USER = SessionUser(user_id="u1", email="u1@example.com")


@pytest.fixture
def runner(projects: ProjectStore, ledger: CreditLedger, config: Config) -> PaidActionRunner:
    return PaidActionRunner(projects, ledger, ValidationPipeline(), config)


async def _funded(ledger: CreditLedger, store, balance: int = 5) -> None:
    await ledger.ensure_account(USER.user_id, USER.email)
    await store.refund_credits(USER.user_id, balance, reason="seed")


async def test_run_requires_session(runner: PaidActionRunner, projects: ProjectStore):
    project = await projects.create("u1")
    with pytest.raises(Unauthorized):
        await runner.run(None, project.id, 1, lambda p: p)


async def test_run_saves_and_debits(runner, projects, ledger, store):
    await _funded(ledger, store)
    project = await projects.create("u1")

    async def rename(p):
        return p.model_copy(update={"content": {"finalize": {"title": "New"}}})

    saved = await runner.run(USER, project.id, 2, rename, reason="rename")
    assert saved.version == 1
    assert (await projects.load(project.id)).title == "New"
    assert (await ledger.get_credits("u1")).balance == 3


async def test_failed_action_refunds_and_keeps_project(runner, projects, ledger, store):
    await _funded(ledger, store)
    project = await projects.create("u1")

    async def crash(p):
        raise RuntimeError("model unavailable")

    with pytest.raises(RuntimeError):
        await runner.run(USER, project.id, 2, crash)
    assert (await ledger.get_credits("u1")).balance == 5
    assert (await projects.load(project.id)).version == 0


async def test_cancelled_action_refunds(runner, projects, ledger, store):
    await _funded(ledger, store)
    project = await projects.create("u1")
    started = asyncio.Event()

    async def slow(p):
        started.set()
        await asyncio.sleep(10)
        return p

    task = asyncio.create_task(runner.run(USER, project.id, 2, slow))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert (await ledger.get_credits("u1")).balance == 5
    assert (await projects.load(project.id)).version == 0


async def test_conflicting_save_refunds(runner, projects, ledger, store):
    await _funded(ledger, store)
    project = await projects.create("u1")

    async def edit_elsewhere(p):
        await projects.save(p)
        return p

    with pytest.raises(ConflictError):
        await runner.run(USER, project.id, 2, edit_elsewhere)
    assert (await ledger.get_credits("u1")).balance == 5


async def test_insufficient_credits_never_runs(runner, projects, ledger):
    project = await projects.create("u1")
    called = False

    async def action(p):
        nonlocal called
        called = True
        return p

    with pytest.raises(InsufficientCredits):
        await runner.run(USER, project.id, 1, action)
    assert called is False


async def test_other_users_project(runner, projects):
    project = await projects.create("someone-else")
    with pytest.raises(NotFoundError):
        await runner.run(USER, project.id, 0, lambda p: p)


async def test_validate_with_enrichment_stores_result(
    runner, projects, ledger, store, ready_content
):
    await _funded(ledger, store)
    project = await projects.create("u1")
    project = await projects.save(project.model_copy(update={"content": ready_content}))

    async def market(content):
        return AgentOutcome(verdict=Verdict.PASS, message="fine", severity=Severity.INFO)

    saved = await runner.validate_with_enrichment(USER, project.id, [("genre-market", market)])
    assert saved.validation is not None
    assert saved.validation.findings[-1].agent_name == "genre-market"
    assert (await projects.load(project.id)).validation == saved.validation
    assert (await ledger.get_credits("u1")).balance == 4


async def test_unlock_video_is_free_by_default(runner, ledger):
    await runner.unlock_video(USER)
    await runner.unlock_video(USER)
    assert await ledger.has_unlock("u1", VIDEO_UNLOCK)
    assert (await ledger.get_credits("u1")).balance == 0


async def test_unlock_video_with_cost(projects, ledger, store, config):
    runner = PaidActionRunner(
        projects, ledger, ValidationPipeline(), config.with_overrides(video_unlock_cost=3)
    )
    with pytest.raises(InsufficientCredits):
        await runner.unlock_video(USER)
    assert not await ledger.has_unlock("u1", VIDEO_UNLOCK)

    await _funded(ledger, store, 4)
    await runner.unlock_video(USER)
    await runner.unlock_video(USER)
    assert await ledger.has_unlock("u1", VIDEO_UNLOCK)
    assert (await ledger.get_credits("u1")).balance == 1
