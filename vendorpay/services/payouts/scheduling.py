"""Payout schedule computation and the in-memory scheduled-job registry.

The registry is derived state: vendor accounts hold the interval and minimum,
and `JobRegistry` is rebuilt from them at startup.
"""

import asyncio
import itertools
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum

from vendorpay.common.errors import ValidationError


RUN_HOUR = 2


class ScheduleInterval(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


INTERVAL_DESCRIPTIONS = {
    ScheduleInterval.DAILY: "Daily at 2:00 AM",
    ScheduleInterval.WEEKLY: "Weekly on Monday at 2:00 AM",
    ScheduleInterval.BIWEEKLY: "Every 14 days at 2:00 AM from the last run",
    ScheduleInterval.MONTHLY: "Monthly on the 1st at 2:00 AM",
}

# Job statuses.
JOB_SCHEDULED = "scheduled"
JOB_PROCESSING = "processing"
JOB_FAILED = "failed"
JOB_DISABLED = "disabled"


def parse_interval(value: str | ScheduleInterval) -> ScheduleInterval:
    try:
        return ScheduleInterval(str(getattr(value, "value", value)).lower())
    except ValueError as exc:
        raise ValidationError(f"unknown schedule interval: {value}", {"interval": str(value)}) from exc


def _at_run_hour(moment: datetime) -> datetime:
    return moment.replace(hour=RUN_HOUR, minute=0, second=0, microsecond=0)


def _next_monday_slot(now: datetime) -> datetime:
    # Monday is weekday 0. Strictly after `now`: Monday 01:00 -> same day 02:00.
    candidate = _at_run_hour(now + timedelta(days=(7 - now.weekday()) % 7))
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


def compute_next_execution(
    interval: str | ScheduleInterval,
    now: datetime,
    last_executed: datetime | None = None,
) -> datetime:
    """Return the next 02:00 run slot for `interval` (in `now`'s timezone).

    - daily: the next calendar day, even when `now` is before 02:00 today.
    - weekly: the first Monday 02:00 strictly after `now`.
    - biweekly: `last_executed` + 14 days at 02:00, stepped forward in 14-day
      increments until after `now`; without a previous run, the weekly slot.
    - monthly: the 1st of the following month.
    """

    interval = parse_interval(interval)
    if interval is ScheduleInterval.DAILY:
        return _at_run_hour(now + timedelta(days=1))
    if interval is ScheduleInterval.WEEKLY:
        return _next_monday_slot(now)
    if interval is ScheduleInterval.BIWEEKLY:
        if last_executed is None:
            return _next_monday_slot(now)
        if last_executed.tzinfo is None and now.tzinfo is not None:
            last_executed = last_executed.replace(tzinfo=now.tzinfo)
        candidate = _at_run_hour(last_executed + timedelta(days=14))
        while candidate <= now:
            candidate += timedelta(days=14)
        return candidate
    if now.month == 12:
        return _at_run_hour(now.replace(year=now.year + 1, month=1, day=1))
    return _at_run_hour(now.replace(month=now.month + 1, day=1))


@dataclass
class ScheduledJob:
    """Cached scheduling state for one vendor."""

    vendor_account_id: str
    external_account_ref: str
    interval: ScheduleInterval
    minimum_amount: int
    next_execution: datetime
    currency: str = "usd"
    status: str = JOB_SCHEDULED
    retry_count: int = 0
    last_executed: datetime | None = None
    last_error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # Stamped by JobRegistry.put; a reschedule replaces the job with a new generation.
    generation: int = 0

    def is_due(self, now: datetime) -> bool:
        return self.status == JOB_SCHEDULED and self.next_execution <= now

    def snapshot(self) -> dict:
        return {
            "scheduled": True,
            "vendor_account_id": self.vendor_account_id,
            "status": self.status,
            "interval": self.interval.value,
            "schedule": INTERVAL_DESCRIPTIONS[self.interval],
            "next_execution": self.next_execution,
            "minimum_amount": self.minimum_amount,
            "retry_count": self.retry_count,
            "last_executed": self.last_executed,
            "last_error": self.last_error,
        }


class JobRegistry:
    """Concurrency-safe map of vendor id -> ScheduledJob.

    Readers get copies so callers never mutate registry state outside the lock.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, ScheduledJob] = {}
        self._lock = asyncio.Lock()
        self._generations = itertools.count(1)

    async def put(self, job: ScheduledJob) -> ScheduledJob:
        async with self._lock:
            stored = replace(job, generation=next(self._generations))
            self._jobs[job.vendor_account_id] = stored
            return replace(stored)

    async def get(self, vendor_account_id: str) -> ScheduledJob | None:
        async with self._lock:
            job = self._jobs.get(vendor_account_id)
            return replace(job) if job else None

    async def remove(self, vendor_account_id: str) -> None:
        async with self._lock:
            self._jobs.pop(vendor_account_id, None)

    async def update(self, vendor_account_id: str, **changes) -> ScheduledJob | None:
        async with self._lock:
            job = self._jobs.get(vendor_account_id)
            if job is None:
                return None
            for key, value in changes.items():
                setattr(job, key, value)
            return replace(job)

    async def settle(self, claimed: ScheduledJob, **changes) -> ScheduledJob | None:
        """Apply a finished run's result to the job it was claimed from.

        Returns None, changing nothing, when the job was removed or replaced
        (for example by a schedule update) while the run was in flight.
        """

        async with self._lock:
            job = self._jobs.get(claimed.vendor_account_id)
            if job is None or job.generation != claimed.generation:
                return None
            for key, value in changes.items():
                setattr(job, key, value)
            return replace(job)

    async def expedite(self, vendor_account_id: str, now: datetime) -> ScheduledJob | None:
        """Pull a scheduled job forward so the next tick runs it."""

        async with self._lock:
            job = self._jobs.get(vendor_account_id)
            if job is None or job.status != JOB_SCHEDULED:
                return None
            if job.next_execution > now:
                job.next_execution = now
            return replace(job)

    async def claim_due(self, now: datetime) -> list[ScheduledJob]:
        """Flip every due job to `processing` and return copies of them."""

        async with self._lock:
            due = [job for job in self._jobs.values() if job.is_due(now)]
            for job in due:
                job.status = JOB_PROCESSING
                job.last_executed = now
            return [replace(job) for job in due]

    async def all(self) -> list[ScheduledJob]:
        async with self._lock:
            return [replace(job) for job in self._jobs.values()]

    async def clear(self) -> None:
        async with self._lock:
            self._jobs.clear()

    def __len__(self) -> int:
        return len(self._jobs)
