"""
Background task scheduler for database maintenance.

Expired challenges, sessions and magic-link tokens are purged periodically
so the tables stay small; correctness never depends on these tasks, since
every read path also checks expiry.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from esg_auth.database import AsyncSessionLocal
from esg_auth.services.challenge_service import ChallengeService
from esg_auth.services.magic_link_service import MagicLinkService
from esg_auth.services.session_service import SessionService

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """Represents a scheduled background task."""
    name: str
    func: Callable[[], Awaitable[int]]
    interval_seconds: int
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    last_result: Optional[int] = None
    enabled: bool = True
    running: bool = False

    def __post_init__(self):
        """Calculate next run time after initialization."""
        if self.next_run is None:
            self.next_run = datetime.now() + timedelta(seconds=self.interval_seconds)

    def should_run(self) -> bool:
        """Check if task should run now."""
        return (
            self.enabled
            and not self.running
            and self.next_run is not None
            and datetime.now() >= self.next_run
        )

    def mark_completed(self):
        """Mark task as completed and schedule next run."""
        self.last_run = datetime.now()
        self.next_run = self.last_run + timedelta(seconds=self.interval_seconds)
        self.running = False

    def mark_started(self):
        self.running = True


async def purge_challenges(session_factory=AsyncSessionLocal) -> int:
    async with session_factory() as session:
        return await ChallengeService(session).purge_expired()


async def purge_sessions(session_factory=AsyncSessionLocal) -> int:
    async with session_factory() as session:
        return await SessionService(session).purge_expired()


async def purge_magic_links(session_factory=AsyncSessionLocal) -> int:
    async with session_factory() as session:
        return await MagicLinkService(session).purge_expired()


async def run_cleanup_now(session_factory=AsyncSessionLocal) -> Dict[str, int]:
    """Run every purge once and report how many rows each removed."""
    results = {
        "challenges_cleaned": await purge_challenges(session_factory),
        "sessions_cleaned": await purge_sessions(session_factory),
        "magic_links_cleaned": await purge_magic_links(session_factory),
    }
    logger.info(f"Manual cleanup completed: {results}")
    return results


class MaintenanceScheduler:
    """Runs the purge tasks on an interval inside the application's event loop."""

    def __init__(
        self,
        interval_seconds: int = 900,
        poll_seconds: float = 10,
        session_factory=AsyncSessionLocal,
    ):
        self.tasks: Dict[str, ScheduledTask] = {}
        self.poll_seconds = poll_seconds
        self.session_factory = session_factory
        self.running = False
        self._loop_task: Optional[asyncio.Task] = None

        self.add_task("challenge_cleanup", purge_challenges, interval_seconds)
        self.add_task("session_cleanup", purge_sessions, interval_seconds)
        self.add_task("magic_link_cleanup", purge_magic_links, interval_seconds)

    def add_task(self, name: str, func: Callable, interval_seconds: int, enabled: bool = True):
        """Add a new scheduled task."""
        self.tasks[name] = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            enabled=enabled,
        )
        logger.info(f"Added background task: {name} (interval: {interval_seconds}s)")

    def start(self) -> None:
        """Start the scheduler loop as a background asyncio task."""
        if self.running:
            logger.warning("Task scheduler is already running")
            return
        self.running = True
        self._loop_task = asyncio.create_task(self._run())
        logger.info("Background task scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler and wait for the loop to exit."""
        self.running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
            logger.info("Background task scheduler stopped")

    async def run_due(self) -> None:
        """Run every task whose next run time has passed."""
        for task in list(self.tasks.values()):
            if task.should_run():
                await self._execute_task(task)

    async def _run(self) -> None:
        while self.running:
            try:
                await self.run_due()
                await asyncio.sleep(self.poll_seconds)
            except asyncio.CancelledError:
                logger.info("Task scheduler cancelled")
                raise
            except Exception as e:
                logger.error(f"Error in task scheduler: {e}", exc_info=True)
                await asyncio.sleep(self.poll_seconds * 3)

    async def _execute_task(self, task: ScheduledTask) -> None:
        logger.debug(f"Executing background task: {task.name}")
        task.mark_started()
        try:
            task.last_result = await task.func(self.session_factory)
            if task.last_result:
                logger.info(f"Task {task.name} removed {task.last_result} row(s)")
        except Exception as e:
            logger.error(f"Task failed: {task.name} - {e}", exc_info=True)
        finally:
            # Completed even on failure so a broken task cannot spin
            task.mark_completed()

    def get_task_status(self) -> Dict[str, Any]:
        """Get status of all scheduled tasks."""
        return {
            "scheduler_running": self.running,
            "tasks": {
                name: {
                    "enabled": task.enabled,
                    "running": task.running,
                    "interval_seconds": task.interval_seconds,
                    "last_run": task.last_run.isoformat() if task.last_run else None,
                    "last_result": task.last_result,
                    "next_run": task.next_run.isoformat() if task.next_run else None,
                }
                for name, task in self.tasks.items()
            },
        }
