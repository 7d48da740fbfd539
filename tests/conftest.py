"""Shared fixtures: in-memory database, scripted gateway, fixed clock."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from vendorpay.common.config import PayoutConfig
from vendorpay.common.db import Base, make_session_factory
from vendorpay.services.payouts import models  # noqa: F401  registers tables
from vendorpay.services.payouts.gateway import GatewayPayout, TransferResult
from vendorpay.services.payouts.models import (
    ENTRY_COMPLETED,
    PAYOUT_STATUS_ELIGIBLE,
    VENDOR_ACTIVE,
    LedgerEntry,
    VendorAccount,
)

# Monday 2026-03-02 01:00 UTC.
NOW = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)


class FakeGateway:
    """Records calls and fails on demand."""

    def __init__(self) -> None:
        self.transfers: list[dict] = []
        self.payouts: list[dict] = []
        self.transfer_error: Exception | None = None
        self.payout_error: Exception | None = None
        self.payout_status = "pending"
        self.delay = 0.0

    async def transfer(self, destination, amount, currency, metadata, idempotency_key):
        self.transfers.append(
            {
                "destination": destination,
                "amount": amount,
                "currency": currency,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.transfer_error:
            raise self.transfer_error
        return TransferResult(id=f"tr_{len(self.transfers)}", status="paid")

    async def payout(self, amount, currency, metadata, on_behalf_of, idempotency_key):
        self.payouts.append(
            {
                "amount": amount,
                "currency": currency,
                "metadata": metadata,
                "on_behalf_of": on_behalf_of,
                "idempotency_key": idempotency_key,
            }
        )
        if self.payout_error:
            raise self.payout_error
        return GatewayPayout(
            id=f"po_{len(self.payouts)}",
            status=self.payout_status,
            arrival_date=NOW + timedelta(days=2),
            created_at=NOW,
        )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def config():
    return PayoutConfig(retry_base_delay_ms=60_000, batch_delay_ms=0, processing_timeout_ms=2_000)


@pytest.fixture
def clock():
    return lambda: NOW


def add_vendor(session_factory, **overrides) -> str:
    vendor_id = overrides.pop("id", str(uuid4()))
    values = {
        "id": vendor_id,
        "external_account_ref": f"acct_{vendor_id[:8]}",
        "status": VENDOR_ACTIVE,
        "payouts_enabled": True,
        "fee_percent": Decimal("5.00"),
        "schedule_interval": "weekly",
        "currency": "usd",
    }
    values.update(overrides)
    with session_factory() as db:
        db.add(VendorAccount(**values))
        db.commit()
    return vendor_id


def add_entries(
    session_factory, vendor_id: str, amounts: list[int], age_days: int = 10, currency: str = "usd"
) -> list[str]:
    """Add completed, unpaid entries; earlier amounts are older."""

    ids = []
    with session_factory() as db:
        for idx, amount in enumerate(amounts):
            entry = LedgerEntry(
                id=str(uuid4()),
                vendor_account_id=vendor_id,
                gross_amount=amount,
                fee_amount=0,
                net_amount=amount,
                currency=currency,
                status=ENTRY_COMPLETED,
                payout_status=PAYOUT_STATUS_ELIGIBLE,
                created_at=NOW - timedelta(days=age_days) + timedelta(minutes=idx),
            )
            db.add(entry)
            ids.append(entry.id)
        db.commit()
    return ids
