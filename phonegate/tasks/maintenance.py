# tasks/maintenance.py
"""
Periodic cleanup of expired revocation and session records.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from ..auth.gateway import AuthGateway
from ..auth.token_blacklist import BlacklistService
from ..db import Database

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    blacklist_entries: int = 0
    sessions: int = 0
    limiter_keys: int = 0


async def run_sweep(database: Database, gateway: AuthGateway) -> SweepResult:
    """Reap blacklist entries and sessions past their natural expiry."""
    result = SweepResult()
    async with database.get_session() as db:
        result.blacklist_entries = await BlacklistService.reap(db, now=gateway.clock())
        result.sessions = await gateway.sessions.cleanup_expired(db)
    result.limiter_keys = await gateway.guard.limiter.purge()
    return result


class MaintenanceTask:
    """Runs :func:`run_sweep` every ``interval`` seconds until stopped."""

    def __init__(self, database: Database, gateway: AuthGateway, interval: int = 3600):
        self.database = database
        self.gateway = gateway
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = await run_sweep(self.database, self.gateway)
                logger.info(
                    f"Maintenance sweep removed {result.blacklist_entries} blacklist entries "
                    f"and {result.sessions} sessions"
                )
            except Exception as e:
                # Keep the loop alive; the next sweep retries
                logger.exception(f"Maintenance sweep failed: {e}")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
