"""Payout service facade.

Wires the lock table, job registry, processor and dispatcher together and
exposes the operations behind the admin API: manual triggers, schedule
management, holds, reconciliation and reporting. Also owns the outbox
publisher loop.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError

from vendorpay.common.config import PayoutConfig
from vendorpay.common.errors import EligibilityError, NotFoundError, ValidationError
from vendorpay.common.events import KafkaBus
from vendorpay.common.logging import logger
from vendorpay.common.outbox import drain_outbox
from vendorpay.services.payouts import repository
from vendorpay.services.payouts.dispatcher import BatchRequest, JobDispatcher
from vendorpay.services.payouts.gateway import TransferGateway
from vendorpay.services.payouts.locks import VendorLockTable
from vendorpay.services.payouts.models import (
    HOLD_TYPES,
    VENDOR_ACTIVE,
    OutboxEvent,
    PayoutHold,
    PayoutRecord,
    VendorAccount,
)
from vendorpay.services.payouts.processor import PayoutOutcome, PayoutProcessor
from vendorpay.services.payouts.scheduling import (
    INTERVAL_DESCRIPTIONS,
    JOB_DISABLED,
    JOB_SCHEDULED,
    JobRegistry,
    ScheduledJob,
    compute_next_execution,
    parse_interval,
)


def payout_to_dict(payout: PayoutRecord, include_line_items: bool = False) -> dict[str, Any]:
    data = {
        "id": payout.id,
        "vendor_account_id": payout.vendor_account_id,
        "amount": payout.amount,
        "fee_amount": payout.fee_amount,
        "currency": payout.currency,
        "status": payout.status,
        "booking_count": payout.booking_count,
        "description": payout.description,
        "period_start": repository.as_utc(payout.period_start),
        "period_end": repository.as_utc(payout.period_end),
        "external_transfer_ref": payout.external_transfer_ref,
        "external_payout_ref": payout.external_payout_ref,
        "arrival_date": repository.as_utc(payout.arrival_date),
        "failure_reason": payout.failure_reason,
        "created_at": repository.as_utc(payout.created_at),
    }
    if include_line_items:
        data["line_items"] = [
            {
                "ledger_entry_id": item.ledger_entry_id,
                "gross_amount": item.gross_amount,
                "fee_amount": item.fee_amount,
                "net_amount": item.net_amount,
            }
            for item in payout.line_items
        ]
    return data


def hold_to_dict(hold: PayoutHold) -> dict[str, Any]:
    return {
        "id": hold.id,
        "vendor_account_id": hold.vendor_account_id,
        "hold_type": hold.hold_type,
        "reason": hold.reason,
        "description": hold.description,
        "status": hold.status,
        "placed_by": hold.placed_by,
        "placed_at": repository.as_utc(hold.placed_at),
        "release_date": repository.as_utc(hold.release_date),
        "lifted_at": repository.as_utc(hold.lifted_at),
        "lift_reason": hold.lift_reason,
        "lifted_by": hold.lifted_by,
    }


class PayoutService:
    """Owns scheduler state and the admin-facing payout operations."""

    def __init__(
        self,
        session_factory,
        gateway: TransferGateway,
        config: PayoutConfig,
        clock: Callable[[], datetime] | None = None,
        kafka: KafkaBus | None = None,
        service_name: str = "payouts",
    ) -> None:
        self.session_factory = session_factory
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.service_name = service_name
        self.kafka = kafka or KafkaBus()
        self.locks = VendorLockTable()
        self.registry = JobRegistry()
        self.processor = PayoutProcessor(
            session_factory, gateway, config, locks=self.locks, clock=self.clock, service_name=service_name
        )
        self.dispatcher = JobDispatcher(
            session_factory, self.registry, self.processor, config, clock=self.clock, service_name=service_name
        )

    def _vendor_minimum(self, vendor: VendorAccount) -> int:
        if vendor.minimum_payout_amount is not None:
            return vendor.minimum_payout_amount
        return self.config.minimum_payout_amount

    async def rehydrate(self) -> int:
        """Rebuild the job registry from vendor accounts; returns the job count."""

        await self.registry.clear()
        with self.session_factory() as db:
            vendors = repository.list_schedulable_vendors(db)
            last_runs = {v.id: repository.last_payout_at(db, v.id) for v in vendors}
        for vendor in vendors:
            await self.schedule_vendor(vendor, last_executed=last_runs[vendor.id])
        logger.info("payout_registry_rehydrated jobs=%s", len(vendors))
        return len(vendors)

    async def schedule_vendor(
        self,
        vendor: VendorAccount,
        last_executed: datetime | None = None,
        status: str = JOB_SCHEDULED,
    ) -> ScheduledJob:
        """Create or replace the vendor's job with a freshly computed next run.

        Replacing the job supersedes any run still in flight for the old one.
        """

        interval = parse_interval(vendor.schedule_interval or self.config.schedule_interval)
        job = await self.registry.put(
            ScheduledJob(
                vendor_account_id=vendor.id,
                external_account_ref=vendor.external_account_ref,
                interval=interval,
                minimum_amount=self._vendor_minimum(vendor),
                next_execution=compute_next_execution(interval, self.clock(), last_executed=last_executed),
                currency=vendor.currency or self.config.default_currency,
                status=status,
                last_executed=last_executed,
            )
        )
        logger.info(
            "payout_job_scheduled vendor_id=%s interval=%s status=%s next=%s",
            vendor.id,
            job.interval.value,
            job.status,
            job.next_execution.isoformat(),
        )
        return job

    async def update_vendor_schedule(
        self,
        vendor_account_id: str,
        interval: str | None = None,
        minimum_amount: int | None = None,
        enabled: bool | None = None,
    ) -> dict[str, Any]:
        """Persist schedule settings on the vendor and refresh its job."""

        if interval is not None:
            interval = parse_interval(interval).value
        if minimum_amount is not None and minimum_amount < self.config.payout_floor_amount:
            raise ValidationError(
                f"Minimum payout amount must be at least {self.config.payout_floor_amount} minor units",
                {"minimum_amount": minimum_amount},
            )
        with self.session_factory() as db:
            vendor = repository.get_vendor(db, vendor_account_id)
            if vendor is None:
                raise NotFoundError("Vendor account not found", {"vendor_account_id": vendor_account_id})
            if interval is not None:
                vendor.schedule_interval = interval
            if minimum_amount is not None:
                vendor.minimum_payout_amount = minimum_amount
            if enabled is not None:
                vendor.payouts_enabled = enabled
            db.commit()
            last_executed = repository.last_payout_at(db, vendor.id)

        if vendor.status != VENDOR_ACTIVE:
            await self.registry.remove(vendor.id)
            logger.info("payout_schedule_removed vendor_id=%s status=%s", vendor.id, vendor.status)
        elif not vendor.payouts_enabled:
            await self.schedule_vendor(vendor, last_executed, status=JOB_DISABLED)
        else:
            await self.schedule_vendor(vendor, last_executed)
        return await self.get_schedule_status(vendor.id)

    async def get_schedule_status(self, vendor_account_id: str) -> dict[str, Any]:
        job = await self.registry.get(vendor_account_id)
        if job is None:
            return {"scheduled": False, "vendor_account_id": vendor_account_id}
        return job.snapshot()

    async def trigger_manual_payout(
        self,
        vendor_account_id: str,
        amount: int | None = None,
        currency: str | None = None,
        description: str = "Manual payout",
        force: bool = False,
    ) -> PayoutOutcome:
        """Run a payout now, outside the schedule.

        Without `amount` the vendor's whole pending balance is requested.
        Unless `force` is set, the request must meet the vendor minimum.
        """

        now = self.clock()
        with self.session_factory() as db:
            vendor = repository.get_vendor(db, vendor_account_id)
            if vendor is None:
                raise NotFoundError("Vendor account not found", {"vendor_account_id": vendor_account_id})
            currency = (currency or vendor.currency or self.config.default_currency).lower()
            pending = repository.pending_amount(db, vendor.id, now, vendor.hold_period_days, currency=currency)
            minimum = self._vendor_minimum(vendor)

        requested = amount if amount is not None else min(pending, self.config.maximum_payout_amount)
        if not force and requested < minimum:
            raise EligibilityError(
                f"Payout amount {requested} is below the vendor minimum of {minimum}",
                {"amount": requested, "minimum": minimum, "pending_amount": pending},
            )
        return await self.processor.process_vendor_payout(
            vendor_account_id,
            requested,
            currency=currency,
            description=description,
            metadata={"forced": force},
            trigger="manual",
        )

    async def process_batch(self, requests: list[BatchRequest]) -> dict[str, Any]:
        return await self.dispatcher.process_batch(requests)

    async def reconcile(self, payout_id: str, action: str, note: str | None = None) -> PayoutOutcome:
        if action == "resume":
            return await self.processor.resume_reconciliation(payout_id)
        if action == "abandon":
            if not note:
                raise ValidationError("a note is required to abandon a reconciliation", {"payout_id": payout_id})
            return await self.processor.abandon_reconciliation(payout_id, note)
        raise ValidationError(f"unknown reconciliation action: {action}", {"action": action})

    def payout_history(
        self,
        vendor_account_id: str,
        status: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            if repository.get_vendor(db, vendor_account_id) is None:
                raise NotFoundError("Vendor account not found", {"vendor_account_id": vendor_account_id})
            rows = repository.payout_history(db, vendor_account_id, status, start_date, end_date, limit, offset)
            return [payout_to_dict(row) for row in rows]

    def payout_statistics(self, vendor_account_id: str) -> dict[str, Any]:
        with self.session_factory() as db:
            if repository.get_vendor(db, vendor_account_id) is None:
                raise NotFoundError("Vendor account not found", {"vendor_account_id": vendor_account_id})
            return repository.payout_statistics(db, vendor_account_id, self.clock())

    def place_hold(
        self,
        vendor_account_id: str,
        reason: str,
        description: str | None = None,
        placed_by: str | None = None,
        hold_type: str = "manual",
        duration_days: int | None = None,
    ) -> dict[str, Any]:
        """Block payouts for a vendor; a `duration_days` hold expires on its own."""

        if hold_type not in HOLD_TYPES:
            raise ValidationError(f"unknown hold type: {hold_type}", {"hold_type": hold_type})
        if duration_days is not None and duration_days <= 0:
            raise ValidationError("duration_days must be positive", {"duration_days": duration_days})
        now = self.clock()
        with self.session_factory() as db:
            if repository.get_vendor(db, vendor_account_id) is None:
                raise NotFoundError("Vendor account not found", {"vendor_account_id": vendor_account_id})
            existing = repository.active_holds(db, vendor_account_id)
            if existing:
                raise EligibilityError(
                    "Payout hold already exists for this vendor",
                    {"vendor_account_id": vendor_account_id, "hold_id": existing[0].id},
                )
            hold = PayoutHold(
                vendor_account_id=vendor_account_id,
                hold_type=hold_type,
                reason=reason,
                description=description,
                placed_by=placed_by,
                placed_at=now,
                release_date=now + timedelta(days=duration_days) if duration_days else None,
            )
            db.add(hold)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise EligibilityError(
                    "Payout hold already exists for this vendor", {"vendor_account_id": vendor_account_id}
                ) from exc
            logger.info(
                "payout_hold_placed vendor_id=%s hold_id=%s type=%s reason=%s",
                vendor_account_id,
                hold.id,
                hold_type,
                reason,
            )
            return hold_to_dict(hold)

    async def lift_hold(
        self,
        vendor_account_id: str,
        lift_reason: str | None = None,
        lifted_by: str | None = None,
    ) -> dict[str, Any]:
        """Lift the vendor's active hold and queue a payout if enough is pending."""

        now = self.clock()
        with self.session_factory() as db:
            if repository.get_vendor(db, vendor_account_id) is None:
                raise NotFoundError("Vendor account not found", {"vendor_account_id": vendor_account_id})
            holds = repository.active_holds(db, vendor_account_id)
            if not holds:
                raise NotFoundError("No active payout hold found", {"vendor_account_id": vendor_account_id})
            repository.lift_holds(holds, now, lift_reason, lifted_by)
            db.commit()
        logger.info("payout_holds_lifted vendor_id=%s count=%s", vendor_account_id, len(holds))
        queued = await self.dispatcher.queue_after_release(vendor_account_id, now)
        return {"vendor_account_id": vendor_account_id, "lifted": len(holds), "payout_queued": queued}

    def extend_hold(self, vendor_account_id: str, additional_days: int, reason: str | None = None) -> dict[str, Any]:
        """Push the active hold's release date out; an open-ended hold starts counting from now."""

        if additional_days <= 0:
            raise ValidationError("additional_days must be positive", {"additional_days": additional_days})
        with self.session_factory() as db:
            holds = repository.active_holds(db, vendor_account_id)
            if not holds:
                raise NotFoundError("No active payout hold found", {"vendor_account_id": vendor_account_id})
            hold = holds[0]
            base = repository.as_utc(hold.release_date) or self.clock()
            hold.release_date = base + timedelta(days=additional_days)
            db.commit()
            logger.info(
                "payout_hold_extended vendor_id=%s hold_id=%s days=%s reason=%s",
                vendor_account_id,
                hold.id,
                additional_days,
                reason,
            )
            return hold_to_dict(hold)

    def hold_history(
        self, vendor_account_id: str, limit: int = 50, offset: int = 0, include_active: bool = True
    ) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            if repository.get_vendor(db, vendor_account_id) is None:
                raise NotFoundError("Vendor account not found", {"vendor_account_id": vendor_account_id})
            holds = repository.hold_history(db, vendor_account_id, limit, offset, include_active)
            return [hold_to_dict(hold) for hold in holds]

    def reconciliation_report(self, limit: int = 100) -> dict[str, Any]:
        """Parked payouts plus failures flagged for manual review."""

        with self.session_factory() as db:
            parked = repository.all_open_reconciliations(db, limit)
            failures = repository.manual_review_failures(db, limit)
            return {
                "reconciliation_required": [payout_to_dict(p, include_line_items=True) for p in parked],
                "manual_review_failures": [
                    {
                        "id": f.id,
                        "vendor_account_id": f.vendor_account_id,
                        "payout_id": f.payout_id,
                        "error_kind": f.error_kind,
                        "error_message": f.error_message,
                        "retry_count": f.retry_count,
                        "created_at": repository.as_utc(f.created_at),
                    }
                    for f in failures
                ],
            }

    async def scheduler_statistics(self) -> dict[str, Any]:
        jobs = await self.registry.all()
        by_status: dict[str, int] = {}
        for job in jobs:
            by_status[job.status] = by_status.get(job.status, 0) + 1
        upcoming = sorted((j for j in jobs if j.status == JOB_SCHEDULED), key=lambda j: j.next_execution)
        return {
            "enabled": self.config.enabled,
            "running": self.dispatcher.running,
            "total_jobs": len(jobs),
            "jobs_by_status": by_status,
            "active_payouts": sorted(self.locks.held()),
            "last_tick_at": self.dispatcher.last_tick_at,
            "next_execution": upcoming[0].next_execution if upcoming else None,
            "intervals": {k.value: v for k, v in INTERVAL_DESCRIPTIONS.items()},
            "max_concurrent_processors": self.config.max_concurrent_processors,
        }

    async def outbox_publisher(self, poll_interval: float = 0.5) -> None:
        """Continuously publish and ack pending outbox events."""

        while True:
            result = await drain_outbox(self.session_factory, OutboxEvent, self.kafka.publish, self.service_name)
            if result["failed"] or not result["sent"]:
                await asyncio.sleep(poll_interval)
