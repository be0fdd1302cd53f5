from decimal import Decimal

import pytest

from errors import BudgetError, ErrorCode, OutOfRangeError
from money import (
    FixedAmount,
    Percentage,
    PercentageShare,
    allocation_rule,
    minor_to_percentage,
    percentage_to_minor,
    to_major_units,
)


def test_percentage_boundaries() -> None:
    assert percentage_to_minor(0, 123_456) == 0
    assert percentage_to_minor(100, 123_457) == 123_457
    assert percentage_to_minor(100, 0) == 0


def test_percentage_to_minor_keeps_fractional_points() -> None:
    assert percentage_to_minor(33.33, 500_000) == 166_650
    assert percentage_to_minor(33.333, 500_000) == 166_665
    assert percentage_to_minor(Decimal("12.5"), 1_000) == 125


def test_percentage_to_minor_rounds_half_away_from_zero() -> None:
    # banker's rounding would give 0 and 2 for these
    assert percentage_to_minor(50, 1) == 1
    assert percentage_to_minor(50, 5) == 3
    assert percentage_to_minor(12.5, 4) == 1


@pytest.mark.parametrize("percent", [-0.01, 100.01, float("nan"), float("inf")])
def test_percentage_to_minor_rejects_out_of_range(percent) -> None:
    with pytest.raises(OutOfRangeError) as exc_info:
        percentage_to_minor(percent, 100_000)
    assert exc_info.value.code == ErrorCode.percentage_out_of_range


def test_minor_to_percentage_rounds_to_two_decimals() -> None:
    assert minor_to_percentage(166_650, 500_000) == Decimal("33.33")
    assert minor_to_percentage(1, 3) == Decimal("33.33")
    assert minor_to_percentage(2, 3) == Decimal("66.67")


def test_minor_to_percentage_with_zero_income_is_zero() -> None:
    assert minor_to_percentage(5_000, 0) == 0


def test_percentage_value_type_is_bounded() -> None:
    assert Percentage(Decimal("12.5")).to_minor(1_000) == 125
    with pytest.raises(OutOfRangeError):
        Percentage(Decimal("150"))


def test_allocation_rule_builds_tagged_variants() -> None:
    assert allocation_rule("fixed", 2_500) == FixedAmount(2_500)
    rule = allocation_rule("percentage", "12.5")
    assert isinstance(rule, PercentageShare)
    assert rule.amount_for(10_000) == 1_250


@pytest.mark.parametrize(
    "allocation_type, value, code",
    [
        ("weekly", 10, ErrorCode.invalid_allocation_type),
        ("fixed", -1, ErrorCode.allocation_value_negative),
        ("percentage", -0.5, ErrorCode.allocation_value_negative),
        ("percentage", 100.5, ErrorCode.percentage_exceeds_100),
        ("fixed", 10.5, ErrorCode.invalid_allocation_value),
        ("fixed", float("nan"), ErrorCode.invalid_allocation_value),
    ],
)
def test_allocation_rule_rejections(allocation_type, value, code) -> None:
    with pytest.raises(BudgetError) as exc_info:
        allocation_rule(allocation_type, value)
    assert exc_info.value.code == code


def test_allocation_rule_rounds_percentages_to_stored_precision() -> None:
    rule = allocation_rule("percentage", Decimal("33.3333335"))
    assert rule.value == Decimal("33.333334")
    assert rule.amount_for(1_000_000_000) == 333_333_340
    assert allocation_rule("fixed", "120000").value == Decimal("120000")


def test_major_unit_display() -> None:
    assert to_major_units(1_999, "EUR") == Decimal("19.99")
    assert to_major_units(12_345, "KWD") == Decimal("12.345")
    assert to_major_units(1_234, "JPY") == Decimal("1234")

    with pytest.raises(ValueError):
        to_major_units(1, "XYZ")
    with pytest.raises(ValueError):
        to_major_units(1.5, "USD")
