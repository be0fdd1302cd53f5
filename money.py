"""Integer minor-unit arithmetic and the two percentage boundary conversions.

Money is always an ``int`` of minor units. Percentages are ``Decimal``
points in ``[0, 100]`` and are the only fractional quantity; every
conversion between the two rounds half away from zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from errors import BudgetError, ErrorCode, OutOfRangeError
from models import AllocationType

HUNDRED = Decimal("100")
CENT = Decimal("0.01")
# matches the scale of CategoryAllocation.allocation_value
VALUE_PLACES = Decimal("0.000001")

CURRENCY_DECIMALS: dict[str, int] = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "JPY": 0,
    "CAD": 2,
    "AUD": 2,
    "CHF": 2,
    "CNY": 2,
    "INR": 2,
    "KWD": 3,
    "BHD": 3,
    "OMR": 3,
    "TND": 3,
}

Number = Union[int, float, Decimal, str]


def as_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Expected a number, got bool")
    if isinstance(value, float):
        # 33.33 must stay 33.33, not its binary expansion
        return Decimal(repr(value))
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def round_half_away(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_percentage(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def ratio_percentage(part: int, whole: int) -> Decimal:
    """``part / whole`` as percentage points, 2 decimals; 0 for a zero base."""
    if whole == 0:
        return Decimal("0")
    return round_percentage(Decimal(part) * HUNDRED / Decimal(whole))


def scale_by_percentage(points: Decimal, income_minor: int) -> int:
    # Unchecked: callers validating totals may legitimately pass > 100.
    return round_half_away(Decimal(income_minor) * points / HUNDRED)


def percentage_to_minor(percent: Number, income_minor: int) -> int:
    points = as_decimal(percent)
    if not points.is_finite() or points < 0 or points > HUNDRED:
        raise OutOfRangeError(f"Percentage must be between 0 and 100, got {percent}")
    return scale_by_percentage(points, income_minor)


def minor_to_percentage(amount_minor: int, income_minor: int) -> Decimal:
    return ratio_percentage(amount_minor, income_minor)


@dataclass(frozen=True)
class Percentage:
    points: Decimal

    def __post_init__(self) -> None:
        points = as_decimal(self.points)
        if not points.is_finite() or points < 0 or points > HUNDRED:
            raise OutOfRangeError(
                f"Percentage must be between 0 and 100, got {self.points}"
            )
        object.__setattr__(self, "points", points)

    def to_minor(self, income_minor: int) -> int:
        return scale_by_percentage(self.points, income_minor)


@dataclass(frozen=True)
class FixedAmount:
    minor: int

    @property
    def value(self) -> Decimal:
        return Decimal(self.minor)

    def amount_for(self, income_minor: int) -> int:
        return self.minor


@dataclass(frozen=True)
class PercentageShare:
    percentage: Percentage

    @property
    def value(self) -> Decimal:
        return self.percentage.points

    def amount_for(self, income_minor: int) -> int:
        return self.percentage.to_minor(income_minor)


AllocationRule = Union[FixedAmount, PercentageShare]


def allocation_rule(allocation_type: object, value: Number) -> AllocationRule:
    """Validate a raw ``(type, value)`` pair and build its tagged rule."""
    try:
        kind = AllocationType(allocation_type)
    except ValueError as exc:
        raise BudgetError(
            f"Invalid allocation type: {allocation_type!r}",
            ErrorCode.invalid_allocation_type,
        ) from exc

    try:
        amount = as_decimal(value)
    except (TypeError, ValueError) as exc:
        raise BudgetError(
            "Allocation value must be a valid number",
            ErrorCode.invalid_allocation_value,
        ) from exc
    if not amount.is_finite():
        raise BudgetError(
            "Allocation value must be a valid number",
            ErrorCode.invalid_allocation_value,
        )
    if amount < 0:
        raise BudgetError(
            "Allocation value must be non-negative",
            ErrorCode.allocation_value_negative,
        )

    if kind == AllocationType.percentage:
        if amount > HUNDRED:
            raise BudgetError(
                "Percentage allocation cannot exceed 100%",
                ErrorCode.percentage_exceeds_100,
            )
        # stored at six places, so derive amounts from the stored value
        return PercentageShare(
            Percentage(amount.quantize(VALUE_PLACES, rounding=ROUND_HALF_UP))
        )

    if amount != amount.to_integral_value():
        raise BudgetError(
            "Fixed allocations must be whole minor units",
            ErrorCode.invalid_allocation_value,
        )
    return FixedAmount(int(amount))


def get_currency_decimals(currency: str) -> int:
    try:
        return CURRENCY_DECIMALS[currency]
    except KeyError:
        raise ValueError(f"Invalid currency code: {currency}") from None


def to_major_units(minor: int, currency: str) -> Decimal:
    decimals = get_currency_decimals(currency)
    if isinstance(minor, bool) or not isinstance(minor, int):
        raise ValueError("Minor units must be an integer")
    return Decimal(minor).scaleb(-decimals)
