from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"Invalid amount: {value!r}") from exc
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def apply_rate(gross_amount: Decimal, rate_percent: Decimal) -> Decimal:
    return to_money(Decimal(gross_amount) * Decimal(rate_percent) / Decimal(100))


def money_sum(values) -> Decimal:
    total = ZERO
    for value in values:
        total += to_money(value)
    return to_money(total)
