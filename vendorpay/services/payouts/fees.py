"""Platform fee arithmetic on integer minor units."""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Sequence

from vendorpay.common.errors import ValidationError


HUNDRED = Decimal(100)


def compute_net(fee_percent, gross_amount: int) -> tuple[int, int]:
    """Split `gross_amount` into `(fee, net)`.

    The fee is rounded half away from zero to the minor unit and the net is the
    remainder, so `fee + net == gross_amount` always holds.
    """

    if gross_amount < 0:
        raise ValidationError("gross amount must be non-negative", {"gross_amount": gross_amount})
    rate = Decimal(str(fee_percent))
    if rate < 0 or rate > HUNDRED:
        raise ValidationError("fee percent must be between 0 and 100", {"fee_percent": str(rate)})
    fee = int((Decimal(gross_amount) * rate / HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return fee, gross_amount - fee


def allocate_fee(total_fee: int, shares: Sequence[int]) -> list[int]:
    """Distribute `total_fee` across `shares` proportionally (largest remainder).

    Each part gets the floor of its exact share; leftover cents go to the parts
    with the largest fractional remainders, earlier positions winning ties.
    """

    if not shares:
        if total_fee:
            raise ValidationError("cannot allocate a fee over zero shares", {"total_fee": total_fee})
        return []
    total = sum(shares)
    if total == 0:
        return [0 for _ in shares]

    exact = [Decimal(total_fee) * Decimal(share) / Decimal(total) for share in shares]
    parts = [int(value.to_integral_value(rounding=ROUND_FLOOR)) for value in exact]
    leftover = total_fee - sum(parts)
    ranked = sorted(range(len(shares)), key=lambda i: (-(exact[i] - parts[i]), i))
    for i in ranked[:leftover]:
        parts[i] += 1
    return parts
