"""Kafka envelope + producer helpers for payout lifecycle events.

Payout outcomes are written to the outbox in the same transaction as the state
change; the publisher loop ships them through `KafkaBus`.
"""

import json
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from aiokafka import AIOKafkaProducer
from pydantic import BaseModel, Field

from vendorpay.common.config import settings


PAYOUT_PAID = "payouts.paid"
PAYOUT_IN_TRANSIT = "payouts.in_transit"
PAYOUT_FAILED = "payouts.failed"
PAYOUT_RECONCILIATION_REQUIRED = "payouts.reconciliation_required"
PAYOUT_JOB_EXHAUSTED = "payouts.job_exhausted"

TOPIC_BY_STATUS = {
    "paid": PAYOUT_PAID,
    "in_transit": PAYOUT_IN_TRANSIT,
    "failed": PAYOUT_FAILED,
    "reconciliation_required": PAYOUT_RECONCILIATION_REQUIRED,
}


class EventEnvelope(BaseModel):
    """Canonical event shape sent across Kafka topics."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    aggregate_id: str
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: str
    payload: dict[str, Any]


class KafkaBus:
    """Lazy Kafka producer wrapper used by the outbox publisher."""

    def __init__(self, bootstrap_servers: str | None = None) -> None:
        self._bootstrap_servers = bootstrap_servers or settings.kafka_bootstrap_servers
        self._producer: AIOKafkaProducer | None = None

    async def producer(self) -> AIOKafkaProducer:
        if self._producer is None:
            self._producer = AIOKafkaProducer(bootstrap_servers=self._bootstrap_servers)
            await self._producer.start()
        return self._producer

    async def publish(self, topic: str, event: EventEnvelope) -> None:
        producer = await self.producer()
        await producer.send_and_wait(topic, json.dumps(event.model_dump()).encode("utf-8"))

    async def close(self) -> None:
        if self._producer:
            await self._producer.stop()
            self._producer = None
