from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

from proxyrent.core.exceptions import InvalidArgumentError

CENT = Decimal("0.01")

Amount = Union[Decimal, int, float, str]


def to_money(value: Amount) -> Decimal:
    """Coerce to a Decimal rounded to the currency minor unit."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidArgumentError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise InvalidArgumentError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def positive_money(value: Amount, field: str = "amount") -> Decimal:
    amount = to_money(value)
    if amount <= 0:
        raise InvalidArgumentError(f"{field} must be positive", details={field: str(amount)})
    return amount
