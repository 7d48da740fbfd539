"""Payout processor: one vendor payout from lock to settlement.

A run moves through Locked -> Validated -> Calculated -> RecordCreated ->
TransferRequested -> Settled | Failed | ReconciliationRequired, and always
releases the vendor lock on the way out.

Pre-flight problems (bad amount, vendor already being paid) raise before any
side effect. Everything after the lock is reported through `PayoutOutcome`
and leaves a failure record behind when it goes wrong.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import NAMESPACE_URL, uuid5

from vendorpay.common.config import PayoutConfig
from vendorpay.common.errors import (
    ConcurrencyError,
    EligibilityError,
    ErrorKind,
    GatewayError,
    NotFoundError,
    PayoutError,
    ReconciliationRequired,
    ValidationError,
)
from vendorpay.common.events import PAYOUT_FAILED, PAYOUT_RECONCILIATION_REQUIRED, TOPIC_BY_STATUS
from vendorpay.common.logging import log_context, logger, trace_id_ctx
from vendorpay.common.metrics import (
    lock_contention_total,
    payout_amount_cents_total,
    payout_attempts_total,
    payout_failures_total,
    payout_latency_seconds,
    payout_outcomes_total,
)
from vendorpay.common.outbox import enqueue_event
from vendorpay.common.state_machine import FAILED, IN_TRANSIT, PAID, PROCESSING, RECONCILIATION_REQUIRED
from vendorpay.common.tracing import get_tracer
from vendorpay.services.payouts import repository
from vendorpay.services.payouts.fees import allocate_fee, compute_net
from vendorpay.services.payouts.gateway import GatewayPayout, TransferGateway, TransferResult
from vendorpay.services.payouts.locks import VendorLockTable
from vendorpay.services.payouts.models import (
    UNPAID_PAYOUT_STATUSES,
    VENDOR_ACTIVE,
    LedgerEntry,
    OutboxEvent,
    PayoutLineItem,
    PayoutRecord,
    PayoutTimeline,
    VendorAccount,
)
from vendorpay.services.payouts.retry import error_kind
from vendorpay.services.payouts.selection import select_for_payout


tracer = get_tracer(__name__)


@dataclass
class PayoutOutcome:
    """Result of one processor run, successful or not."""

    success: bool
    vendor_account_id: str
    payout_id: str | None = None
    status: str | None = None
    amount: int = 0
    fee_amount: int = 0
    currency: str | None = None
    booking_count: int = 0
    external_payout_ref: str | None = None
    arrival_date: datetime | None = None
    error: PayoutError | None = None

    @property
    def retryable(self) -> bool:
        return bool(self.error and self.error.retryable)

    @property
    def error_kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "vendor_account_id": self.vendor_account_id,
            "payout_id": self.payout_id,
            "status": self.status,
            "amount": self.amount,
            "fee_amount": self.fee_amount,
            "currency": self.currency,
            "booking_count": self.booking_count,
            "external_payout_ref": self.external_payout_ref,
            "arrival_date": self.arrival_date.isoformat() if self.arrival_date else None,
            "error": self.error.to_dict() if self.error else None,
            "should_retry": self.retryable,
        }


@dataclass
class _Batch:
    """What was committed in the RecordCreated step."""

    payout_id: str
    vendor_account_id: str
    destination: str
    amount: int
    fee_amount: int
    currency: str
    idempotency_key: str
    entry_ids: list[str]
    metadata: dict[str, Any] = field(default_factory=dict)


def batch_idempotency_key(vendor_account_id: str, entry_ids: list[str]) -> str:
    """Stable key for a vendor + entry set; a retry over the same unpaid entries reuses it."""

    return str(uuid5(NAMESPACE_URL, f"vendorpay:{vendor_account_id}:{','.join(entry_ids)}"))


class PayoutProcessor:
    """Runs vendor payouts under a per-vendor lock."""

    def __init__(
        self,
        session_factory,
        gateway: TransferGateway,
        config: PayoutConfig,
        locks: VendorLockTable | None = None,
        clock: Callable[[], datetime] | None = None,
        service_name: str = "payouts",
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.config = config
        self.locks = locks or VendorLockTable()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.service_name = service_name

    def validate_request(self, amount: int, currency: str) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise ValidationError("amount must be an integer number of minor units", {"amount": amount})
        if amount < self.config.payout_floor_amount:
            raise ValidationError(
                f"Payout amount must be at least {self.config.payout_floor_amount} minor units",
                {"amount": amount, "minimum": self.config.payout_floor_amount},
            )
        if amount > self.config.maximum_payout_amount:
            raise ValidationError(
                f"Payout amount cannot exceed {self.config.maximum_payout_amount} minor units",
                {"amount": amount, "maximum": self.config.maximum_payout_amount},
            )
        if currency not in self.config.supported_currencies:
            raise ValidationError(f"unsupported currency: {currency}", {"currency": currency})

    async def process_vendor_payout(
        self,
        vendor_account_id: str,
        amount: int,
        currency: str | None = None,
        description: str = "Vendor payout",
        metadata: dict[str, Any] | None = None,
        trigger: str = "manual",
    ) -> PayoutOutcome:
        """Pay out up to `amount` of a vendor's eligible ledger entries.

        Raises `ValidationError` for an out-of-range amount and
        `ConcurrencyError` when the vendor already has a payout in flight.
        """

        currency = (currency or self.config.default_currency).lower()
        self.validate_request(amount, currency)
        payout_attempts_total.labels(service=self.service_name, trigger=trigger).inc()
        try:
            async with self.locks.hold(vendor_account_id):
                with log_context(vendor_id=vendor_account_id):
                    with tracer.start_as_current_span("payout.process") as span:
                        span.set_attribute("vendor.id", vendor_account_id)
                        span.set_attribute("payout.requested_amount", amount)
                        with payout_latency_seconds.labels(service=self.service_name).time():
                            outcome = await self._run_locked(
                                vendor_account_id, amount, currency, description, metadata or {}, trigger
                            )
                        span.set_attribute("payout.status", outcome.status or "none")
                        return outcome
        except ConcurrencyError:
            lock_contention_total.labels(service=self.service_name).inc()
            logger.warning("payout_lock_held vendor_id=%s", vendor_account_id)
            raise

    async def _run_locked(
        self,
        vendor_account_id: str,
        amount: int,
        currency: str,
        description: str,
        metadata: dict[str, Any],
        trigger: str,
    ) -> PayoutOutcome:
        context = {
            "vendor_account_id": vendor_account_id,
            "requested_amount": amount,
            "currency": currency,
            "description": description,
            "trigger": trigger,
            "metadata": metadata,
        }
        try:
            batch = self._create_payout_record(vendor_account_id, amount, currency, description, metadata)
        except PayoutError as exc:
            return self._fail(vendor_account_id, exc, context)
        except Exception as exc:
            logger.exception("payout_record_create_failed vendor_id=%s", vendor_account_id)
            return self._fail(vendor_account_id, PayoutError(f"unexpected error: {exc}"), context)

        context["payout_id"] = batch.payout_id
        with log_context(payout_id=batch.payout_id):
            return await self._settle(batch, context)

    def _fee_percent(self, vendor: VendorAccount):
        if vendor.fee_percent is not None:
            return vendor.fee_percent
        return self.config.default_fee_percent

    def _load_eligible_vendor(self, db, vendor_account_id: str) -> VendorAccount:
        vendor = repository.get_vendor(db, vendor_account_id)
        if vendor is None:
            raise NotFoundError("Vendor account not found", {"vendor_account_id": vendor_account_id})
        if vendor.status != VENDOR_ACTIVE:
            raise EligibilityError(
                f"Vendor account status is {vendor.status}, payouts disabled", {"status": vendor.status}
            )
        if not vendor.payouts_enabled:
            raise EligibilityError("Payouts not enabled for vendor account", {"payouts_enabled": False})
        holds = repository.active_holds(db, vendor.id)
        if holds:
            raise EligibilityError(
                f"Payouts on hold: {holds[0].reason or 'manual hold'}", {"hold_id": holds[0].id}
            )
        pending_reconciliation = repository.open_reconciliations(db, vendor.id)
        if pending_reconciliation:
            raise EligibilityError(
                "Previous payout is awaiting reconciliation",
                {"payout_id": pending_reconciliation[0].id},
            )
        return vendor

    def _carried_entries(self, db, previous: PayoutRecord, amount: int) -> list[LedgerEntry] | None:
        """The failed attempt's entries when all are still unpaid, else None (fresh selection)."""

        entry_ids = [item.ledger_entry_id for item in previous.line_items]
        entries = repository.entries_by_ids(db, entry_ids)
        if len(entries) != len(entry_ids) or any(e.payout_status not in UNPAID_PAYOUT_STATUSES for e in entries):
            logger.warning(
                "payout_retry_entries_changed vendor_id=%s previous_payout_id=%s",
                previous.vendor_account_id,
                previous.id,
            )
            return None
        carried_total = sum(e.net_amount for e in entries)
        if carried_total > amount:
            raise EligibilityError(
                "A failed payout awaiting retry needs a larger amount",
                {"previous_payout_id": previous.id, "required_amount": carried_total, "requested_amount": amount},
            )
        return entries

    def _create_payout_record(
        self,
        vendor_account_id: str,
        amount: int,
        currency: str,
        description: str,
        metadata: dict[str, Any],
    ) -> _Batch:
        """Validate eligibility, price and select the batch, and persist intent atomically."""

        now = self.clock()
        with self.session_factory() as db:
            vendor = self._load_eligible_vendor(db, vendor_account_id)
            fee_percent = self._fee_percent(vendor)

            previous = repository.retryable_failed_payout(db, vendor.id, currency)
            carried = self._carried_entries(db, previous, amount) if previous is not None else None
            if carried is not None:
                # Same entries, same amounts, same key: the gateway dedupes a transfer that did go through.
                selected = carried
                fee, net = previous.fee_amount, previous.amount
                key = previous.idempotency_key
                logger.info(
                    "payout_retry_carried vendor_id=%s previous_payout_id=%s entries=%s",
                    vendor.id,
                    previous.id,
                    len(selected),
                )
            else:
                fee, net = compute_net(fee_percent, amount)
                entries = repository.eligible_entries(db, vendor.id, now, vendor.hold_period_days, currency=currency)
                selected = select_for_payout(entries, amount)
                if not selected:
                    raise EligibilityError(
                        "No eligible ledger entries fit within the requested amount",
                        {"requested_amount": amount, "eligible_count": len(entries)},
                    )
                selected_total = sum(e.net_amount for e in selected)
                if selected_total != amount:
                    logger.info(
                        "payout_selection_short vendor_id=%s requested=%s selected=%s entries=%s",
                        vendor.id,
                        amount,
                        selected_total,
                        len(selected),
                    )
                    fee, net = compute_net(fee_percent, selected_total)
                key = batch_idempotency_key(vendor.id, [e.id for e in selected])

            entry_ids = [e.id for e in selected]
            payout = PayoutRecord(
                vendor_account_id=vendor.id,
                amount=net,
                fee_amount=fee,
                currency=currency,
                status=PROCESSING,
                period_start=selected[0].created_at,
                period_end=selected[-1].created_at,
                booking_count=len(selected),
                idempotency_key=key,
                description=description,
                retry_of_payout_id=previous.id if previous is not None else None,
            )
            db.add(payout)
            db.flush()

            line_fees = allocate_fee(fee, [e.net_amount for e in selected])
            line_net_total = 0
            for entry, line_fee in zip(selected, line_fees):
                db.add(
                    PayoutLineItem(
                        payout_id=payout.id,
                        ledger_entry_id=entry.id,
                        gross_amount=entry.net_amount,
                        fee_amount=line_fee,
                        net_amount=entry.net_amount - line_fee,
                        currency=entry.currency,
                    )
                )
                line_net_total += entry.net_amount - line_fee
            if line_net_total != payout.amount:
                raise RuntimeError(
                    f"line items ({line_net_total}) do not sum to payout amount ({payout.amount})"
                )
            db.add(PayoutTimeline(payout_id=payout.id, from_state=None, to_state=PROCESSING, reason="payout_created"))
            db.commit()

            logger.info(
                "payout_record_created payout_id=%s vendor_id=%s amount=%s fee=%s entries=%s",
                payout.id,
                vendor.id,
                net,
                fee,
                len(selected),
            )
            return _Batch(
                payout_id=payout.id,
                vendor_account_id=vendor.id,
                destination=vendor.external_account_ref,
                amount=net,
                fee_amount=fee,
                currency=currency,
                idempotency_key=key,
                entry_ids=entry_ids,
                metadata={**metadata, "description": description},
            )

    async def _call_gateway(self, operation: str, call):
        timeout = self.config.processing_timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise GatewayError(
                f"gateway {operation} exceeded {self.config.processing_timeout_ms}ms",
                ErrorKind.NETWORK_TIMEOUT,
                {"operation": operation, "timeout_ms": self.config.processing_timeout_ms},
            ) from exc
        except PayoutError:
            raise
        except Exception as exc:
            raise GatewayError(
                f"gateway {operation} raised {type(exc).__name__}: {exc}",
                ErrorKind.INTERNAL,
                {"operation": operation},
            ) from exc

    async def _settle(self, batch: _Batch, context: dict[str, Any]) -> PayoutOutcome:
        """Transfer, then pay out, then finalize; partial success escalates."""

        gateway_metadata = {
            **batch.metadata,
            "payout_id": batch.payout_id,
            "vendor_account_id": batch.vendor_account_id,
            "platform_fee": batch.fee_amount,
            "booking_count": len(batch.entry_ids),
        }
        transfer: TransferResult | None = None
        try:
            transfer = await self._call_gateway(
                "transfer",
                self.gateway.transfer(
                    destination=batch.destination,
                    amount=batch.amount,
                    currency=batch.currency,
                    metadata=gateway_metadata,
                    idempotency_key=f"{batch.idempotency_key}:transfer",
                ),
            )
            gateway_payout = await self._call_gateway(
                "payout",
                self.gateway.payout(
                    amount=batch.amount,
                    currency=batch.currency,
                    metadata={**gateway_metadata, "transfer_id": transfer.id},
                    on_behalf_of=batch.destination,
                    idempotency_key=f"{batch.idempotency_key}:payout",
                ),
            )
        except PayoutError as exc:
            if transfer is None:
                return self._fail(batch.vendor_account_id, exc, context, payout_id=batch.payout_id)
            return self._escalate(batch, exc, context, transfer_ref=transfer.id)

        return self._finalize(batch, transfer, gateway_payout, context)

    def _finalize(
        self,
        batch: _Batch,
        transfer: TransferResult,
        gateway_payout: GatewayPayout,
        context: dict[str, Any],
    ) -> PayoutOutcome:
        status = PAID if gateway_payout.status == "paid" else IN_TRANSIT
        now = self.clock()
        arrival = gateway_payout.arrival_date.isoformat() if gateway_payout.arrival_date else None
        try:
            with self.session_factory() as db:
                payout = db.get(PayoutRecord, batch.payout_id)
                repository.transition_payout(
                    db,
                    payout,
                    status,
                    reason="gateway_payout_created",
                    external_transfer_ref=transfer.id,
                    external_payout_ref=gateway_payout.id,
                    arrival_date=gateway_payout.arrival_date,
                    failure_reason=None,
                )
                repository.mark_entries_paid_out(db, batch.entry_ids, batch.payout_id, now)
                enqueue_event(
                    db,
                    OutboxEvent,
                    TOPIC_BY_STATUS[status],
                    batch.payout_id,
                    trace_id_ctx.get() or batch.payout_id,
                    {
                        "vendor_account_id": batch.vendor_account_id,
                        "amount": batch.amount,
                        "fee_amount": batch.fee_amount,
                        "currency": batch.currency,
                        "external_payout_ref": gateway_payout.id,
                        "arrival_date": arrival,
                    },
                )
                db.commit()
        except Exception as exc:
            # Money has moved; the record must not fall back to plain failure.
            logger.exception("payout_finalize_failed payout_id=%s", batch.payout_id)
            return self._escalate(
                batch,
                PayoutError(f"finalize failed after gateway success: {exc}"),
                context,
                transfer_ref=transfer.id,
                payout_ref=gateway_payout.id,
            )

        payout_outcomes_total.labels(service=self.service_name, status=status).inc()
        payout_amount_cents_total.labels(service=self.service_name, currency=batch.currency).inc(batch.amount)
        logger.info(
            "payout_settled payout_id=%s vendor_id=%s amount=%s fee=%s status=%s gateway_payout=%s",
            batch.payout_id,
            batch.vendor_account_id,
            batch.amount,
            batch.fee_amount,
            status,
            gateway_payout.id,
        )
        return PayoutOutcome(
            success=True,
            vendor_account_id=batch.vendor_account_id,
            payout_id=batch.payout_id,
            status=status,
            amount=batch.amount,
            fee_amount=batch.fee_amount,
            currency=batch.currency,
            booking_count=len(batch.entry_ids),
            external_payout_ref=gateway_payout.id,
            arrival_date=gateway_payout.arrival_date,
        )

    def _escalate(
        self,
        batch: _Batch,
        cause: PayoutError,
        context: dict[str, Any],
        transfer_ref: str,
        payout_ref: str | None = None,
    ) -> PayoutOutcome:
        """Park the payout in `reconciliation_required`; no ledger entry is marked paid."""

        error = ReconciliationRequired(
            f"transfer {transfer_ref} succeeded but payout did not complete: {cause.message}",
            payout_id=batch.payout_id,
            details={"cause": cause.to_dict(), "transfer_ref": transfer_ref, "payout_ref": payout_ref},
        )
        with self.session_factory() as db:
            payout = db.get(PayoutRecord, batch.payout_id)
            if payout.status != RECONCILIATION_REQUIRED:
                repository.transition_payout(
                    db,
                    payout,
                    RECONCILIATION_REQUIRED,
                    reason=f"partial_transfer:{cause.kind.value}",
                    external_transfer_ref=transfer_ref,
                    external_payout_ref=payout_ref,
                    failure_reason=error.message,
                )
            repository.record_failure(
                db,
                batch.vendor_account_id,
                error.kind.value,
                error.message,
                {**context, "error": error.to_dict()},
                requires_manual_review=True,
                payout_id=batch.payout_id,
            )
            enqueue_event(
                db,
                OutboxEvent,
                PAYOUT_RECONCILIATION_REQUIRED,
                batch.payout_id,
                trace_id_ctx.get() or batch.payout_id,
                {"vendor_account_id": batch.vendor_account_id, "transfer_ref": transfer_ref, "reason": cause.message},
            )
            db.commit()

        payout_outcomes_total.labels(service=self.service_name, status=RECONCILIATION_REQUIRED).inc()
        payout_failures_total.labels(service=self.service_name, kind=error.kind.value).inc()
        logger.error(
            "payout_reconciliation_required payout_id=%s vendor_id=%s transfer=%s cause=%s",
            batch.payout_id,
            batch.vendor_account_id,
            transfer_ref,
            cause.kind.value,
        )
        return PayoutOutcome(
            success=False,
            vendor_account_id=batch.vendor_account_id,
            payout_id=batch.payout_id,
            status=RECONCILIATION_REQUIRED,
            amount=batch.amount,
            fee_amount=batch.fee_amount,
            currency=batch.currency,
            booking_count=len(batch.entry_ids),
            error=error,
        )

    def _fail(
        self,
        vendor_account_id: str,
        error: PayoutError,
        context: dict[str, Any],
        payout_id: str | None = None,
    ) -> PayoutOutcome:
        """Record a failed attempt.

        Fatal kinds are flagged for manual review. Eligibility blocks (hold,
        restricted account, open reconciliation) only skip this cycle and are
        recorded unflagged.
        """

        amount = fee = 0
        currency = context.get("currency")
        with self.session_factory() as db:
            if payout_id is not None:
                payout = db.get(PayoutRecord, payout_id)
                amount, fee, currency = payout.amount, payout.fee_amount, payout.currency
                repository.transition_payout(
                    db,
                    payout,
                    FAILED,
                    reason=f"gateway_failed:{error.kind.value}",
                    failure_reason=error.message,
                    failure_kind=error.kind.value,
                )
                enqueue_event(
                    db,
                    OutboxEvent,
                    PAYOUT_FAILED,
                    payout_id,
                    trace_id_ctx.get() or payout_id,
                    {"vendor_account_id": vendor_account_id, "error": error.to_dict()},
                )
            repository.record_failure(
                db,
                vendor_account_id,
                error.kind.value,
                error.message,
                {**context, "error": error.to_dict()},
                requires_manual_review=not error.retryable and error.kind is not ErrorKind.ELIGIBILITY,
                payout_id=payout_id,
            )
            db.commit()

        payout_outcomes_total.labels(service=self.service_name, status=FAILED).inc()
        payout_failures_total.labels(service=self.service_name, kind=error_kind(error).value).inc()
        logger.warning(
            "payout_failed vendor_id=%s payout_id=%s kind=%s retryable=%s error=%s",
            vendor_account_id,
            payout_id,
            error.kind.value,
            error.retryable,
            error.message,
        )
        return PayoutOutcome(
            success=False,
            vendor_account_id=vendor_account_id,
            payout_id=payout_id,
            status=FAILED if payout_id else None,
            amount=amount,
            fee_amount=fee,
            currency=currency,
            error=error,
        )

    async def resume_reconciliation(self, payout_id: str) -> PayoutOutcome:
        """Re-issue transfer + payout for a parked payout with its original keys.

        The gateway deduplicates the transfer by idempotency key, so funds are
        not sent twice; on success the payout is finalized normally.
        """

        batch = self._load_parked_batch(payout_id)
        context = {"vendor_account_id": batch.vendor_account_id, "payout_id": payout_id, "trigger": "reconcile"}
        async with self.locks.hold(batch.vendor_account_id):
            # Status may have moved between the first read and taking the lock.
            batch = self._load_parked_batch(payout_id)
            try:
                transfer = await self._call_gateway(
                    "transfer",
                    self.gateway.transfer(
                        destination=batch.destination,
                        amount=batch.amount,
                        currency=batch.currency,
                        metadata={"payout_id": payout_id, "vendor_account_id": batch.vendor_account_id},
                        idempotency_key=f"{batch.idempotency_key}:transfer",
                    ),
                )
                gateway_payout = await self._call_gateway(
                    "payout",
                    self.gateway.payout(
                        amount=batch.amount,
                        currency=batch.currency,
                        metadata={"payout_id": payout_id, "transfer_id": transfer.id},
                        on_behalf_of=batch.destination,
                        idempotency_key=f"{batch.idempotency_key}:payout",
                    ),
                )
            except PayoutError as exc:
                with self.session_factory() as db:
                    repository.record_failure(
                        db,
                        batch.vendor_account_id,
                        exc.kind.value,
                        f"reconciliation resume failed: {exc.message}",
                        {**context, "error": exc.to_dict()},
                        requires_manual_review=True,
                        payout_id=payout_id,
                    )
                    db.commit()
                logger.warning("payout_resume_failed payout_id=%s kind=%s", payout_id, exc.kind.value)
                return PayoutOutcome(
                    success=False,
                    vendor_account_id=batch.vendor_account_id,
                    payout_id=payout_id,
                    status=RECONCILIATION_REQUIRED,
                    amount=batch.amount,
                    fee_amount=batch.fee_amount,
                    currency=batch.currency,
                    booking_count=len(batch.entry_ids),
                    error=exc,
                )
            return self._finalize(batch, transfer, gateway_payout, context)

    async def abandon_reconciliation(self, payout_id: str, note: str) -> PayoutOutcome:
        """Close a parked payout as failed after manual investigation.

        Its ledger entries were never marked paid, so they return to the pool.
        """

        batch = self._load_parked_batch(payout_id)
        async with self.locks.hold(batch.vendor_account_id):
            batch = self._load_parked_batch(payout_id)
            with self.session_factory() as db:
                payout = db.get(PayoutRecord, payout_id)
                repository.transition_payout(
                    db, payout, FAILED, reason="reconciliation_abandoned", failure_reason=f"abandoned: {note}"
                )
                enqueue_event(
                    db,
                    OutboxEvent,
                    PAYOUT_FAILED,
                    payout_id,
                    trace_id_ctx.get() or payout_id,
                    {"vendor_account_id": batch.vendor_account_id, "reason": "reconciliation_abandoned", "note": note},
                )
                db.commit()
        logger.info("payout_reconciliation_abandoned payout_id=%s note=%s", payout_id, note)
        return PayoutOutcome(
            success=True,
            vendor_account_id=batch.vendor_account_id,
            payout_id=payout_id,
            status=FAILED,
            amount=batch.amount,
            fee_amount=batch.fee_amount,
            currency=batch.currency,
            booking_count=len(batch.entry_ids),
        )

    def _load_parked_batch(self, payout_id: str) -> _Batch:
        with self.session_factory() as db:
            payout = db.get(PayoutRecord, payout_id)
            if payout is None:
                raise NotFoundError("Payout not found", {"payout_id": payout_id})
            if payout.status != RECONCILIATION_REQUIRED:
                raise ValidationError(
                    f"Payout is {payout.status}, not awaiting reconciliation",
                    {"payout_id": payout_id, "status": payout.status},
                )
            vendor = repository.get_vendor(db, payout.vendor_account_id)
            if vendor is None:
                raise NotFoundError("Vendor account not found", {"vendor_account_id": payout.vendor_account_id})
            return _Batch(
                payout_id=payout.id,
                vendor_account_id=vendor.id,
                destination=vendor.external_account_ref,
                amount=payout.amount,
                fee_amount=payout.fee_amount,
                currency=payout.currency,
                idempotency_key=payout.idempotency_key,
                entry_ids=[item.ledger_entry_id for item in payout.line_items],
            )
