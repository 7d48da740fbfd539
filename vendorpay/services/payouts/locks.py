"""Per-vendor single-flight locks for payout execution."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from vendorpay.common.errors import ConcurrencyError


class VendorLockTable:
    """Non-blocking exclusive locks keyed by vendor account id.

    A second caller for a held vendor is rejected, not queued. Release is tied
    to the `hold()` context so every exit path frees the vendor.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()
        self._guard = asyncio.Lock()

    @asynccontextmanager
    async def hold(self, vendor_account_id: str) -> AsyncIterator[None]:
        async with self._guard:
            if vendor_account_id in self._held:
                raise ConcurrencyError(
                    "payout already in progress for this vendor",
                    {"vendor_account_id": vendor_account_id},
                )
            self._held.add(vendor_account_id)
        try:
            yield
        finally:
            # Plain set removal: must not await here, a cancelled task still releases.
            self._held.discard(vendor_account_id)

    def is_held(self, vendor_account_id: str) -> bool:
        return vendor_account_id in self._held

    def held(self) -> frozenset[str]:
        return frozenset(self._held)
