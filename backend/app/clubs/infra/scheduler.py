"""Runs the clubs maintenance jobs on fixed intervals.

Two jobs are registered: invitation expiry sweeps lapsed pending invitations
and the capacity integrity check repairs ride counters. Intervals come from
settings unless given explicitly.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.settings import settings

INVITATION_EXPIRY_JOB = "clubs-invitation-expiry"
CAPACITY_INTEGRITY_JOB = "clubs-capacity-integrity"


class MaintenanceJob(Protocol):
    async def run_once(self) -> object: ...


class ClubsMaintenanceScheduler:
    """Owns the AsyncIOScheduler that drives clubs maintenance."""

    def __init__(self) -> None:
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._intervals: dict[str, int] = {}
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def register(
        self,
        *,
        invitation_expiry: MaintenanceJob,
        capacity_integrity: MaintenanceJob,
        expiry_minutes: Optional[int] = None,
        integrity_minutes: Optional[int] = None,
    ) -> None:
        """Register both jobs; calling again replaces them with the new intervals."""
        self._add(
            INVITATION_EXPIRY_JOB,
            invitation_expiry.run_once,
            expiry_minutes or settings.clubs_invitation_expiry_interval_minutes,
        )
        self._add(
            CAPACITY_INTEGRITY_JOB,
            capacity_integrity.run_once,
            integrity_minutes or settings.clubs_capacity_integrity_interval_minutes,
        )

    def _add(self, job_id: str, func: Callable[[], Awaitable[object]], minutes: int) -> None:
        if minutes < 1:
            raise ValueError(f"{job_id} interval must be at least one minute")
        self._scheduler.add_job(func, trigger=IntervalTrigger(minutes=minutes), id=job_id, replace_existing=True)
        self._intervals[job_id] = minutes

    def start(self) -> None:
        if not self._started:
            self._scheduler.start()
            self._started = True

    def shutdown(self) -> None:
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False

    def intervals(self) -> dict[str, int]:
        """Minutes between runs for each registered maintenance job."""
        registered = {job.id for job in self._scheduler.get_jobs()}
        return {job_id: minutes for job_id, minutes in self._intervals.items() if job_id in registered}


__all__ = [
    "CAPACITY_INTEGRITY_JOB",
    "INVITATION_EXPIRY_JOB",
    "ClubsMaintenanceScheduler",
    "MaintenanceJob",
]
