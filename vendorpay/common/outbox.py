"""Transactional outbox for payout lifecycle events.

`enqueue_event` runs inside the same session that changes payout or job state.
`drain_outbox` is one publisher cycle: claim a batch, hand each row to the
publish callable, then ack or requeue it.
"""

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from sqlalchemy import func, or_, select, update

from vendorpay.common.events import EventEnvelope
from vendorpay.common.logging import logger
from vendorpay.common.metrics import outbox_oldest_pending_age_seconds, outbox_pending_total

PENDING = "PENDING"
PROCESSING = "PROCESSING"
SENT = "SENT"


def enqueue_event(db, outbox_model, topic: str, aggregate_id: str, trace_id: str, payload: dict) -> None:
    envelope = EventEnvelope(event_type=topic, aggregate_id=aggregate_id, trace_id=trace_id, payload=payload)
    db.add(
        outbox_model(
            aggregate_type="payout",
            aggregate_id=aggregate_id,
            event_type=topic,
            topic=topic,
            payload=envelope.model_dump(mode="json"),
            status=PENDING,
        )
    )


def claim_outbox_batch(db, outbox_model, limit: int = 100, stale_after_seconds: int = 30) -> list[dict]:
    """Claim pending rows, and rows stuck in PROCESSING longer than `stale_after_seconds`."""

    table = outbox_model.__table__
    now = datetime.now(timezone.utc)
    stale_before = now - timedelta(seconds=stale_after_seconds)
    candidates = (
        select(table.c.id)
        .where(
            or_(
                table.c.status == PENDING,
                (table.c.status == PROCESSING) & (table.c.sent_at < stale_before),
            )
        )
        .order_by(table.c.created_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .scalar_subquery()
    )
    rows = db.execute(
        update(table)
        .where(table.c.id.in_(candidates))
        .values(status=PROCESSING, sent_at=now)
        .returning(table.c.id, table.c.topic, table.c.payload, table.c.created_at)
    ).all()
    rows = sorted(rows, key=lambda row: row.created_at)
    return [{"id": row.id, "topic": row.topic, "payload": row.payload} for row in rows]


def _settle_claim(db, outbox_model, event_id: str, status: str, sent_at) -> None:
    table = outbox_model.__table__
    db.execute(
        update(table)
        .where(table.c.id == event_id, table.c.status == PROCESSING)
        .values(status=status, sent_at=sent_at)
    )


def mark_outbox_sent(db, outbox_model, event_id: str) -> None:
    _settle_claim(db, outbox_model, event_id, SENT, datetime.now(timezone.utc))


def requeue_outbox_event(db, outbox_model, event_id: str) -> None:
    _settle_claim(db, outbox_model, event_id, PENDING, None)


def update_outbox_backlog_metrics(db, outbox_model, service_name: str) -> int:
    """Refresh backlog gauges; returns the number of unsent rows."""

    table = outbox_model.__table__
    unsent = table.c.status.in_((PENDING, PROCESSING))
    pending_count, oldest = db.execute(
        select(func.count(), func.min(table.c.created_at)).select_from(table).where(unsent)
    ).one()
    age_seconds = 0.0
    if oldest is not None:
        if oldest.tzinfo is None:
            oldest = oldest.replace(tzinfo=timezone.utc)
        age_seconds = max(0.0, (datetime.now(timezone.utc) - oldest).total_seconds())
    outbox_pending_total.labels(service=service_name).set(float(pending_count))
    outbox_oldest_pending_age_seconds.labels(service=service_name).set(age_seconds)
    return pending_count


async def drain_outbox(
    session_factory,
    outbox_model,
    publish: Callable[[str, EventEnvelope], Awaitable[None]],
    service_name: str,
    limit: int = 100,
) -> dict[str, int]:
    with session_factory() as db:
        rows = claim_outbox_batch(db, outbox_model, limit=limit)
        db.commit()

    sent = failed = 0
    for row in rows:
        try:
            await publish(row["topic"], EventEnvelope(**row["payload"]))
        except Exception as exc:
            failed += 1
            logger.exception("outbox_publish_failed event_id=%s topic=%s error=%s", row["id"], row["topic"], exc)
            with session_factory() as db:
                requeue_outbox_event(db, outbox_model, row["id"])
                db.commit()
            continue
        sent += 1
        with session_factory() as db:
            mark_outbox_sent(db, outbox_model, row["id"])
            db.commit()

    with session_factory() as db:
        update_outbox_backlog_metrics(db, outbox_model, service_name)
    return {"claimed": len(rows), "sent": sent, "failed": failed}
