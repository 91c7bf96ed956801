"""Scheduled maintenance — yearly usage reset and daily cleanup.

One ``MaintenanceOrchestrator`` is built at startup and owns one asyncio task
per enabled job. Schedules are evaluated in ``CRON_TZ`` so "midnight" and
"January 1st" do not depend on the host clock.

A failed run is handed to the job's ``on_error`` hook and is not retried;
the next firing is the retry. Runs are not serialised against each other.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from siamleave.common.constants import ResetStrategy
from siamleave.config import Settings
from siamleave.maintenance.service import LeaveQuotaCleanupService, LeaveTypeCleanupService

logger = logging.getLogger(__name__)

RESET_PATH = "/api/v1/leave-quota-reset/reset"


# ── Schedules ───────────────────────────────────────────────────────


class Schedule(Protocol):
    def next_after(self, now: datetime) -> datetime: ...


@dataclass(frozen=True)
class DailyAt:
    """Every day at ``hour:minute`` wall-clock time in ``now``'s zone."""

    hour: int
    minute: int = 0

    def next_after(self, now: datetime) -> datetime:
        at = time(self.hour, self.minute)
        candidate = datetime.combine(now.date(), at, tzinfo=now.tzinfo)
        if candidate <= now:
            candidate = datetime.combine(now.date() + timedelta(days=1), at, tzinfo=now.tzinfo)
        return candidate


@dataclass(frozen=True)
class YearlyAt:
    """Once a year on ``month``/``day`` at ``hour:minute``."""

    month: int = 1
    day: int = 1
    hour: int = 0
    minute: int = 0

    def next_after(self, now: datetime) -> datetime:
        at = time(self.hour, self.minute)
        candidate = datetime.combine(date(now.year, self.month, self.day), at, tzinfo=now.tzinfo)
        if candidate <= now:
            candidate = datetime.combine(
                date(now.year + 1, self.month, self.day), at, tzinfo=now.tzinfo
            )
        return candidate


# ── Jobs ────────────────────────────────────────────────────────────


def log_job_error(name: str, exc: BaseException) -> None:
    """Default ``on_error``: log with traceback and let the schedule continue."""
    logger.error("Scheduled job %s failed: %s", name, exc, exc_info=exc)


@dataclass
class ScheduledJob:
    name: str
    schedule: Schedule
    func: Callable[[], Awaitable[Any]]
    on_error: Callable[[str, BaseException], None] = field(default=log_job_error)

    async def run_once(self) -> Any:
        """Run the job body once. Errors go to ``on_error`` and yield ``None``."""
        try:
            return await self.func()
        except Exception as exc:
            self.on_error(self.name, exc)
            return None


def seconds_until(when: datetime, now: datetime) -> float:
    # aware datetimes sharing a tzinfo subtract as wall time, so go through UTC
    delta = when.astimezone(timezone.utc) - now.astimezone(timezone.utc)
    return max(delta.total_seconds(), 0.0)


# ═════════════════════════════════════════════════════════════════════
# MaintenanceOrchestrator
# ═════════════════════════════════════════════════════════════════════


class MaintenanceOrchestrator:
    """Owns the background maintenance tasks of one process."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.tz = settings.business_tz
        self.quota_cleanup = LeaveQuotaCleanupService(session_factory)
        self.type_cleanup = LeaveTypeCleanupService(session_factory)
        self._http_transport = http_transport
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def reset_url(self) -> str:
        return self.settings.API_BASE_URL.rstrip("/") + RESET_PATH

    def _now(self) -> datetime:
        return datetime.now(self.tz)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def jobs(self) -> list[ScheduledJob]:
        """Jobs enabled by configuration."""
        s = self.settings
        jobs: list[ScheduledJob] = []
        if s.ENABLE_YEARLY_RESET_CRON:
            jobs.append(
                ScheduledJob(
                    name="yearly-leave-reset",
                    schedule=YearlyAt(1, 1, s.YEARLY_RESET_HOUR, s.YEARLY_RESET_MINUTE),
                    func=self.run_yearly_reset,
                )
            )
        if s.ENABLE_LEAVE_TYPE_CLEANUP_CRON or s.ENABLE_LEAVE_QUOTA_CLEANUP_CRON:
            jobs.append(
                ScheduledJob(
                    name="daily-leave-cleanup",
                    schedule=DailyAt(s.DAILY_CLEANUP_HOUR, s.DAILY_CLEANUP_MINUTE),
                    func=self.run_daily_cleanup,
                )
            )
        return jobs

    # ── Lifecycle ───────────────────────────────────────────────────

    def start(self) -> None:
        if self.running:
            return
        for job in self.jobs():
            self._tasks[job.name] = asyncio.create_task(
                self._run_forever(job), name=f"maintenance:{job.name}"
            )
            logger.info(
                "Scheduled %s, next run %s (%s)",
                job.name,
                job.schedule.next_after(self._now()).isoformat(),
                self.settings.CRON_TZ,
            )
        if not self._tasks:
            logger.info("All scheduled maintenance jobs are disabled")

    async def stop(self) -> None:
        """Cancel every job task and wait for it to finish. Safe to repeat."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Stopped %d scheduled maintenance job(s)", len(tasks))

    async def _run_forever(self, job: ScheduledJob) -> None:
        next_run = job.schedule.next_after(self._now())
        while True:
            await asyncio.sleep(seconds_until(next_run, self._now()))
            logger.info("Running scheduled job %s", job.name)
            await job.run_once()
            # the timer may wake just before the slot; never pick that slot again
            next_run = job.schedule.next_after(max(self._now(), next_run))

    # ── Job bodies ──────────────────────────────────────────────────

    async def run_yearly_reset(self) -> Optional[dict[str, Any]]:
        """Ask the reset endpoint to zero usage for positions whose quota
        does not carry over. Returns its JSON body, or ``None`` on failure."""

        payload = {"force": False, "strategy": ResetStrategy.zero.value}
        timeout = httpx.Timeout(self.settings.RESET_REQUEST_TIMEOUT_SECONDS)
        try:
            async with httpx.AsyncClient(transport=self._http_transport, timeout=timeout) as client:
                response = await client.post(self.reset_url, json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Yearly leave reset rejected: %s %s",
                exc.response.status_code, exc.response.text,
            )
            return None
        except httpx.HTTPError as exc:
            logger.error("Yearly leave reset request failed: %r", exc, exc_info=True)
            return None

        logger.info("Yearly leave reset executed: %s", body)
        return body

    async def run_daily_cleanup(self) -> dict[str, Any]:
        """Leave type cleanup, then quota cleanup. A failing stage is logged
        and does not stop the other."""

        results: dict[str, Any] = {}
        if self.settings.ENABLE_LEAVE_TYPE_CLEANUP_CRON:
            try:
                results["leave_types"] = await self.type_cleanup.auto_cleanup_orphaned_leave_types()
            except Exception:
                logger.exception("Scheduled leave type cleanup failed")

        if self.settings.ENABLE_LEAVE_QUOTA_CLEANUP_CRON:
            try:
                results["leave_quotas"] = await self.quota_cleanup.auto_cleanup_orphaned_quotas()
            except Exception:
                logger.exception("Scheduled leave quota cleanup failed")

        return results
