"""Application-fee computation for charges through connected accounts."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from meterpay.core.exceptions import InvalidInputError
from meterpay.schemas.connect import FeeSplit


def clamp_fee_percent(fee_percent: Any) -> Decimal:
    percent = Decimal(str(fee_percent))
    if not percent.is_finite():
        raise InvalidInputError("fee percent must be a finite number")
    return min(max(percent, Decimal("0")), Decimal("100"))


def calculate_fee(amount: int, fee_percent: Any) -> FeeSplit:
    """Split ``amount`` (minor units) into the platform fee and the account's net.

    The fee is rounded half-up to a whole minor unit, so
    ``application_fee_amount + net_amount == amount`` always holds.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidInputError("amount must be an integer number of minor units")
    if amount < 0:
        raise InvalidInputError("amount must be >= 0")
    percent = clamp_fee_percent(fee_percent)
    fee = (Decimal(amount) * percent / Decimal(100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    application_fee_amount = int(fee)
    return FeeSplit(
        application_fee_amount=application_fee_amount,
        net_amount=amount - application_fee_amount,
    )
