import asyncio

from sqlalchemy import select

from vendorpay.common.events import PAYOUT_PAID
from vendorpay.common.outbox import drain_outbox, enqueue_event
from vendorpay.services.payouts.models import OutboxEvent


def _stage(session_factory, count: int) -> None:
    with session_factory() as db:
        for idx in range(count):
            enqueue_event(db, OutboxEvent, PAYOUT_PAID, f"po_{idx}", "trace-1", {"amount": 1_000 + idx})
        db.commit()


def _statuses(session_factory) -> list[str]:
    with session_factory() as db:
        return sorted(row.status for row in db.execute(select(OutboxEvent)).scalars())


def test_drain_publishes_and_marks_sent(session_factory):
    _stage(session_factory, 2)
    published = []

    async def publish(topic, envelope):
        published.append((topic, envelope.aggregate_id, envelope.payload["amount"]))

    result = asyncio.run(drain_outbox(session_factory, OutboxEvent, publish, "payouts"))

    assert result == {"claimed": 2, "sent": 2, "failed": 0}
    assert sorted(published) == [(PAYOUT_PAID, "po_0", 1_000), (PAYOUT_PAID, "po_1", 1_001)]
    assert _statuses(session_factory) == ["SENT", "SENT"]


def test_failed_publish_is_requeued_and_retried(session_factory):
    _stage(session_factory, 1)

    async def broken(topic, envelope):
        raise ConnectionError("broker unavailable")

    first = asyncio.run(drain_outbox(session_factory, OutboxEvent, broken, "payouts"))
    assert first == {"claimed": 1, "sent": 0, "failed": 1}
    assert _statuses(session_factory) == ["PENDING"]

    async def ok(topic, envelope):
        return None

    second = asyncio.run(drain_outbox(session_factory, OutboxEvent, ok, "payouts"))
    assert second["sent"] == 1
    assert _statuses(session_factory) == ["SENT"]


def test_empty_outbox_claims_nothing(session_factory):
    async def publish(topic, envelope):
        raise AssertionError("nothing to publish")

    assert asyncio.run(drain_outbox(session_factory, OutboxEvent, publish, "payouts"))["claimed"] == 0
