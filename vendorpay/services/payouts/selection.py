"""Ledger entry selection for a payout batch."""

from typing import Protocol, Sequence, TypeVar


class HasNetAmount(Protocol):
    net_amount: int


EntryT = TypeVar("EntryT", bound=HasNetAmount)


def select_for_payout(entries: Sequence[EntryT], cap_amount: int) -> list[EntryT]:
    """Pick entries oldest-first while the running net total stays within `cap_amount`.

    Selection stops at the first entry that would overflow the cap; later,
    smaller entries are left for a future cycle rather than packed around it.
    `entries` must already be ordered by creation time.
    """

    selected: list[EntryT] = []
    running_total = 0
    for entry in entries:
        if running_total + entry.net_amount > cap_amount:
            break
        selected.append(entry)
        running_total += entry.net_amount
    return selected
