"""Background maintenance tasks."""

import asyncio
from datetime import datetime, timedelta

from sqlalchemy import func, select

from esg_auth.models.auth_session import AuthMethod, AuthSession
from esg_auth.models.webauthn_challenge import CeremonyType, WebAuthnChallenge
from esg_auth.services.account_service import AccountService
from esg_auth.tasks.scheduler import MaintenanceScheduler, ScheduledTask, run_cleanup_now


async def seed_expired_rows(session_factory):
    async with session_factory() as session:
        account = await AccountService(session).create_account("ivan@esg-lite.ru")
        past = datetime.utcnow() - timedelta(hours=1)
        session.add(WebAuthnChallenge(
            challenge="stale",
            account_id=account.id,
            ceremony=CeremonyType.AUTHENTICATION.value,
            expires_at=past,
        ))
        session.add(AuthSession(
            account_id=account.id,
            token_jti="stale-jti",
            role=account.role,
            method=AuthMethod.PASSKEY.value,
            expires_at=past,
        ))
        await session.commit()


async def count(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(func.count(model.id)))).scalar_one()


def test_task_schedule():
    task = ScheduledTask(name="t", func=None, interval_seconds=60)
    assert not task.should_run()

    task.next_run = datetime.now() - timedelta(seconds=1)
    assert task.should_run()
    task.mark_started()
    assert not task.should_run()
    task.mark_completed()
    assert not task.should_run()
    assert task.next_run > task.last_run


async def test_run_cleanup_now(session_factory):
    await seed_expired_rows(session_factory)

    results = await run_cleanup_now(session_factory)
    assert results == {"challenges_cleaned": 1, "sessions_cleaned": 1, "magic_links_cleaned": 0}
    assert await count(session_factory, WebAuthnChallenge) == 0
    assert await count(session_factory, AuthSession) == 0


async def test_run_due_only_runs_due_tasks(session_factory):
    await seed_expired_rows(session_factory)
    scheduler = MaintenanceScheduler(interval_seconds=60, session_factory=session_factory)
    scheduler.tasks["challenge_cleanup"].next_run = datetime.now() - timedelta(seconds=1)

    await scheduler.run_due()

    status = scheduler.get_task_status()["tasks"]
    assert status["challenge_cleanup"]["last_result"] == 1
    assert status["session_cleanup"]["last_run"] is None
    assert await count(session_factory, AuthSession) == 1


async def test_failing_task_is_rescheduled(session_factory):
    async def broken(factory):
        raise RuntimeError("boom")

    scheduler = MaintenanceScheduler(session_factory=session_factory)
    scheduler.add_task("broken", broken, interval_seconds=30)
    task = scheduler.tasks["broken"]
    task.next_run = datetime.now() - timedelta(seconds=1)

    await scheduler.run_due()
    assert task.last_run is not None
    assert not task.running
    assert not task.should_run()


async def test_start_and_stop(session_factory):
    scheduler = MaintenanceScheduler(poll_seconds=0.01, session_factory=session_factory)
    scheduler.start()
    assert scheduler.get_task_status()["scheduler_running"]
    await asyncio.sleep(0.05)

    await scheduler.stop()
    assert not scheduler.running
    assert scheduler._loop_task is None
