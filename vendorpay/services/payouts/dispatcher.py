"""Scheduled and batch dispatch of payout runs.

The dispatcher claims due jobs from the registry, runs the processor for each
on a bounded pool, and applies the retry policy to whatever comes back.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from vendorpay.common.config import PayoutConfig
from vendorpay.common.errors import PayoutError, ValidationError
from vendorpay.common.events import PAYOUT_JOB_EXHAUSTED
from vendorpay.common.logging import logger
from vendorpay.common.metrics import active_processors, jobs_exhausted_total, retries_total, scheduled_jobs
from vendorpay.common.outbox import enqueue_event
from vendorpay.services.payouts import repository
from vendorpay.services.payouts.models import OutboxEvent
from vendorpay.services.payouts.processor import PayoutOutcome, PayoutProcessor
from vendorpay.services.payouts.retry import Disposition, backoff_delay, classify, error_kind
from vendorpay.services.payouts.scheduling import (
    JOB_DISABLED,
    JOB_FAILED,
    JOB_PROCESSING,
    JOB_SCHEDULED,
    JobRegistry,
    ScheduledJob,
    compute_next_execution,
)


@dataclass
class BatchRequest:
    vendor_account_id: str
    amount: int
    currency: str | None = None
    description: str = "Batch payout"


class JobDispatcher:
    """Drives scheduled payouts and ad-hoc batches through the processor."""

    def __init__(
        self,
        session_factory,
        registry: JobRegistry,
        processor: PayoutProcessor,
        config: PayoutConfig,
        clock: Callable[[], datetime] | None = None,
        service_name: str = "payouts",
    ) -> None:
        self.session_factory = session_factory
        self.registry = registry
        self.processor = processor
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.service_name = service_name
        self._pool = asyncio.Semaphore(max(1, config.max_concurrent_processors))
        self._stop = asyncio.Event()
        self._running = False
        self.last_tick_at: datetime | None = None

    async def run_forever(self) -> None:
        """Tick immediately, then every `tick_interval_seconds` until `stop()`."""

        self._stop.clear()
        self._running = True
        logger.info("payout_scheduler_started interval_s=%s", self.config.tick_interval_seconds)
        while not self._stop.is_set():
            try:
                await self.run_due_jobs()
            except Exception:
                logger.exception("payout_scheduler_tick_failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.config.tick_interval_seconds)
            except asyncio.TimeoutError:
                pass
        self._running = False
        logger.info("payout_scheduler_stopped")

    def stop(self) -> None:
        self._stop.set()

    @property
    def running(self) -> bool:
        return self._running

    async def run_due_jobs(self, now: datetime | None = None) -> dict[str, int]:
        """Run every due job once; returns counts by how each job ended."""

        now = now or self.clock()
        self.last_tick_at = now
        summary = {"due": 0, "paid": 0, "skipped": 0, "deferred": 0, "retrying": 0, "failed": 0}
        if not self.config.enabled:
            logger.info("payouts_disabled skipping tick")
            return summary

        await self.release_expired_holds(now)
        due = await self.registry.claim_due(now)
        summary["due"] = len(due)
        if due:
            logger.info("payout_tick due=%s", len(due))
        results = await asyncio.gather(*(self._run_job(job, now) for job in due), return_exceptions=True)
        for job, result in zip(due, results):
            if isinstance(result, Exception):
                logger.error("payout_job_crashed vendor_id=%s error=%r", job.vendor_account_id, result)
                result = await self._retry(job, now, result, None)
            elif isinstance(result, BaseException):
                raise result
            summary[result] += 1
        await self._refresh_job_gauges()
        return summary

    async def release_expired_holds(self, now: datetime) -> list[str]:
        """Lift holds past their release date and queue the freed vendors."""

        with self.session_factory() as db:
            released = repository.release_expired_holds(db, now)
            vendor_ids = sorted({hold.vendor_account_id for hold in released})
            db.commit()
        for vendor_id in vendor_ids:
            logger.info("payout_hold_expired vendor_id=%s", vendor_id)
            await self.queue_after_release(vendor_id, now)
        return vendor_ids

    async def queue_after_release(self, vendor_account_id: str, now: datetime) -> bool:
        """Make a just-released vendor due now when it has enough pending to pay."""

        job = await self.registry.get(vendor_account_id)
        if job is None or job.status != JOB_SCHEDULED:
            return False
        with self.session_factory() as db:
            vendor = repository.get_vendor(db, vendor_account_id)
            if vendor is None or repository.active_holds(db, vendor_account_id):
                return False
            pending = repository.pending_amount(
                db, vendor_account_id, now, vendor.hold_period_days, currency=job.currency
            )
        if pending < job.minimum_amount:
            return False
        await self.registry.expedite(vendor_account_id, now)
        logger.info("payout_queued_after_release vendor_id=%s pending=%s", vendor_account_id, pending)
        return True

    async def _run_job(self, job: ScheduledJob, now: datetime) -> str:
        async with self._pool:
            active_processors.labels(service=self.service_name).inc()
            try:
                return await self._execute(job, now)
            finally:
                active_processors.labels(service=self.service_name).dec()

    async def _execute(self, job: ScheduledJob, now: datetime) -> str:
        with self.session_factory() as db:
            vendor = repository.get_vendor(db, job.vendor_account_id)
            hold_days = vendor.hold_period_days if vendor else 0
            pending = repository.pending_amount(db, job.vendor_account_id, now, hold_days, currency=job.currency)

        if pending < job.minimum_amount:
            logger.info(
                "payout_below_minimum vendor_id=%s pending=%s minimum=%s",
                job.vendor_account_id,
                pending,
                job.minimum_amount,
            )
            await self._advance(job, now, last_error=None, reset_retries=False)
            return "skipped"

        amount = min(pending, self.config.maximum_payout_amount)
        try:
            outcome = await self.processor.process_vendor_payout(
                job.vendor_account_id,
                amount,
                currency=job.currency,
                description=f"Scheduled {job.interval.value} payout",
                trigger="scheduled",
            )
        except PayoutError as exc:
            return await self._apply_policy(job, now, exc)

        if outcome.success:
            await self._advance(job, now, last_error=None, reset_retries=True)
            return "paid"
        return await self._apply_policy(job, now, outcome.error, outcome)

    async def _apply_policy(
        self,
        job: ScheduledJob,
        now: datetime,
        error: BaseException,
        outcome: PayoutOutcome | None = None,
    ) -> str:
        disposition = classify(error)
        message = str(getattr(error, "message", error))
        vendor_id = job.vendor_account_id

        if disposition is Disposition.DEFER:
            await self._settle(job, status=JOB_SCHEDULED)
            return "deferred"

        if disposition in (Disposition.RESCHEDULE, Disposition.ESCALATE):
            await self._advance(job, now, last_error=message, reset_retries=False)
            return "skipped" if disposition is Disposition.RESCHEDULE else "failed"

        if disposition is Disposition.RETRY:
            return await self._retry(job, now, error, outcome)

        kind = error_kind(error).value
        await self._settle(job, status=JOB_FAILED, last_error=message)
        if outcome is None:
            # Rejected before the processor could leave its own record.
            with self.session_factory() as db:
                repository.record_failure(
                    db,
                    vendor_id,
                    kind,
                    message,
                    {
                        "interval": job.interval.value,
                        "currency": job.currency,
                        "trigger": "scheduled",
                        "error": error.to_dict() if isinstance(error, PayoutError) else {"message": message},
                    },
                    retry_count=job.retry_count,
                    requires_manual_review=True,
                )
                db.commit()
        logger.error("payout_job_fatal vendor_id=%s kind=%s error=%s", vendor_id, kind, message)
        return "failed"

    async def _retry(
        self,
        job: ScheduledJob,
        now: datetime,
        error: BaseException,
        outcome: PayoutOutcome | None,
    ) -> str:
        """Back off and reschedule, or exhaust the job once `max_retries` is reached."""

        retry_count = job.retry_count + 1
        kind = error_kind(error).value
        retries_total.labels(service=self.service_name, kind=kind).inc()
        if retry_count >= self.config.max_retries:
            await self._exhaust(job, retry_count, error, outcome)
            return "failed"

        next_execution = now + backoff_delay(retry_count, self.config.retry_base_delay_ms)
        await self._settle(
            job,
            status=JOB_SCHEDULED,
            retry_count=retry_count,
            next_execution=next_execution,
            last_error=str(getattr(error, "message", error)),
        )
        logger.warning(
            "payout_retry_scheduled vendor_id=%s retry=%s next=%s kind=%s",
            job.vendor_account_id,
            retry_count,
            next_execution.isoformat(),
            kind,
        )
        return "retrying"

    async def _settle(self, job: ScheduledJob, **changes) -> None:
        if await self.registry.settle(job, **changes) is None:
            # A schedule update replaced the job mid-run; its new slot wins.
            logger.info("payout_job_superseded vendor_id=%s", job.vendor_account_id)

    async def _advance(self, job: ScheduledJob, now: datetime, last_error: str | None, reset_retries: bool) -> None:
        changes: dict[str, Any] = {
            "status": JOB_SCHEDULED,
            "next_execution": compute_next_execution(job.interval, now, last_executed=now),
            "last_error": last_error,
        }
        if reset_retries:
            changes["retry_count"] = 0
        await self._settle(job, **changes)

    async def _exhaust(
        self,
        job: ScheduledJob,
        retry_count: int,
        error: BaseException,
        outcome: PayoutOutcome | None,
    ) -> None:
        """Take the job out of rotation and leave a manual-review record."""

        message = str(getattr(error, "message", error))
        kind = error_kind(error).value
        await self._settle(job, status=JOB_FAILED, retry_count=retry_count, last_error=message)
        with self.session_factory() as db:
            repository.record_failure(
                db,
                job.vendor_account_id,
                kind,
                f"retries exhausted after {retry_count} attempts: {message}",
                {"interval": job.interval.value, "last_payout_id": outcome.payout_id if outcome else None},
                retry_count=retry_count,
                requires_manual_review=True,
                payout_id=outcome.payout_id if outcome else None,
            )
            enqueue_event(
                db,
                OutboxEvent,
                PAYOUT_JOB_EXHAUSTED,
                job.vendor_account_id,
                job.vendor_account_id,
                {"vendor_account_id": job.vendor_account_id, "retry_count": retry_count, "error_kind": kind},
            )
            db.commit()
        jobs_exhausted_total.labels(service=self.service_name).inc()
        logger.error(
            "payout_job_exhausted vendor_id=%s retries=%s kind=%s", job.vendor_account_id, retry_count, kind
        )

    async def _refresh_job_gauges(self) -> None:
        counts = {JOB_SCHEDULED: 0, JOB_PROCESSING: 0, JOB_FAILED: 0, JOB_DISABLED: 0}
        for job in await self.registry.all():
            counts[job.status] = counts.get(job.status, 0) + 1
        for status, count in counts.items():
            scheduled_jobs.labels(service=self.service_name, status=status).set(count)

    async def process_batch(self, requests: list[BatchRequest]) -> dict[str, Any]:
        """Run many vendor payouts in chunks of `batch_size` with a pause between chunks.

        One vendor's failure never stops the rest of the batch.
        """

        results: list[dict[str, Any]] = []
        size = max(1, self.config.batch_size)
        for start in range(0, len(requests), size):
            chunk = requests[start : start + size]
            if start:
                await asyncio.sleep(self.config.batch_delay_ms / 1000.0)
            outcomes = await asyncio.gather(
                *(self._run_batch_item(item) for item in chunk), return_exceptions=True
            )
            for item, outcome in zip(chunk, outcomes):
                if isinstance(outcome, PayoutOutcome):
                    results.append(outcome.to_dict())
                    continue
                if not isinstance(outcome, Exception):
                    raise outcome
                if not isinstance(outcome, PayoutError):
                    logger.error("batch_item_crashed vendor_id=%s error=%r", item.vendor_account_id, outcome)
                error = outcome if isinstance(outcome, PayoutError) else PayoutError(str(outcome))
                results.append(
                    {
                        "success": False,
                        "vendor_account_id": item.vendor_account_id,
                        "payout_id": None,
                        "status": None,
                        "amount": 0,
                        "error": error.to_dict(),
                        "should_retry": error.retryable,
                    }
                )
        successful = sum(1 for r in results if r["success"])
        logger.info("payout_batch_complete total=%s successful=%s", len(results), successful)
        return {
            "total_processed": len(results),
            "successful": successful,
            "failed": len(results) - successful,
            "total_amount": sum(r["amount"] for r in results if r["success"]),
            "results": results,
        }

    async def _run_batch_item(self, item: BatchRequest) -> PayoutOutcome:
        if not item.vendor_account_id:
            raise ValidationError("vendor_account_id is required")
        async with self._pool:
            return await self.processor.process_vendor_payout(
                item.vendor_account_id,
                item.amount,
                currency=item.currency,
                description=item.description,
                trigger="batch",
            )
