"""Pure allocation calculator.

Every function derives its result from its arguments only. Budgets and
allocations are read through attributes, so ORM records and detached copies
work alike. Money stays integral; rates are kept as exact ``Decimal`` values
until the final conversion to minor units or rounded percentage points.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from models import AllocationType, Budget, CategoryAllocation
from money import (
    Percentage,
    percentage_to_minor,
    ratio_percentage,
    round_half_away,
    scale_by_percentage,
)
from periods import month_range

TOTAL_PERCENTAGE_EXCEEDED = "Total percentage allocations exceed 100%"
TOTAL_ALLOCATIONS_EXCEEDED = "Total allocations exceed budget income"


@dataclass(frozen=True)
class BudgetSummary:
    total_income_minor: int
    total_allocated_minor: int
    total_spent_minor: int
    total_remaining_minor: int
    allocation_percentage: Decimal
    spending_percentage: Decimal
    unallocated_minor: int


@dataclass(frozen=True)
class CategorySummary:
    category_id: str
    allocated_minor: int
    spent_minor: int
    remaining_minor: int
    usage_percentage: Decimal
    allocation_percentage: Decimal
    is_overspent: bool


@dataclass(frozen=True)
class AllocationValidation:
    is_valid: bool
    errors: list[str]
    total_fixed_minor: int
    total_percentage: Decimal
    projected_total_minor: int


@dataclass(frozen=True)
class MetricChange:
    current: int
    previous: int
    change: int
    change_percentage: Decimal


@dataclass(frozen=True)
class BudgetComparison:
    income: MetricChange
    allocation: MetricChange
    spending: MetricChange


@dataclass(frozen=True)
class SpendingProjection:
    days_in_month: int
    days_elapsed: int
    total_spent_minor: int
    daily_spending_rate: Decimal
    projected_spending_minor: int
    projected_remaining_minor: int
    categories_at_risk: list[str] = field(default_factory=list)


def allocation_amount(allocation: CategoryAllocation, income_minor: int) -> int:
    kind = AllocationType(allocation.allocation_type)
    if kind == AllocationType.fixed:
        return allocation.allocated_minor
    if kind == AllocationType.percentage:
        return percentage_to_minor(allocation.allocation_value, income_minor)
    raise TypeError(f"Unhandled allocation type: {kind!r}")


def calculate_total_allocated(
    allocations: Iterable[CategoryAllocation], income_minor: int
) -> int:
    return sum(allocation_amount(a, income_minor) for a in allocations)


def calculate_remaining_budget(
    budget: Budget, allocations: Iterable[CategoryAllocation]
) -> int:
    # Remaining-to-allocate is a planning figure: always planned income.
    income = budget.planned_income_minor
    return income - calculate_total_allocated(allocations, income)


def calculate_category_remaining(allocation: CategoryAllocation) -> int:
    return allocation.allocated_minor - allocation.spent_minor


def calculate_budget_summary(
    budget: Budget, allocations: Sequence[CategoryAllocation]
) -> BudgetSummary:
    income = budget.planned_income_minor
    allocated = sum(a.allocated_minor for a in allocations)
    spent = sum(a.spent_minor for a in allocations)
    return BudgetSummary(
        total_income_minor=income,
        total_allocated_minor=allocated,
        total_spent_minor=spent,
        total_remaining_minor=allocated - spent,
        allocation_percentage=ratio_percentage(allocated, income),
        spending_percentage=ratio_percentage(spent, allocated),
        unallocated_minor=income - allocated,
    )


def calculate_category_summary(
    allocation: CategoryAllocation, income_minor: int
) -> CategorySummary:
    return CategorySummary(
        category_id=allocation.category_id,
        allocated_minor=allocation.allocated_minor,
        spent_minor=allocation.spent_minor,
        remaining_minor=calculate_category_remaining(allocation),
        usage_percentage=ratio_percentage(
            allocation.spent_minor, allocation.allocated_minor
        ),
        allocation_percentage=ratio_percentage(allocation.allocated_minor, income_minor),
        is_overspent=allocation.spent_minor > allocation.allocated_minor,
    )


def validate_allocation_totals(
    allocations: Iterable[CategoryAllocation], income_minor: int
) -> AllocationValidation:
    total_fixed = 0
    total_percentage = Decimal("0")
    for allocation in allocations:
        kind = AllocationType(allocation.allocation_type)
        if kind == AllocationType.fixed:
            total_fixed += allocation.allocated_minor
        elif kind == AllocationType.percentage:
            total_percentage += Percentage(allocation.allocation_value).points
        else:
            raise TypeError(f"Unhandled allocation type: {kind!r}")

    # The combined share may exceed 100 here, so scale without range checks.
    projected = total_fixed + scale_by_percentage(total_percentage, income_minor)

    errors: list[str] = []
    if total_percentage > 100:
        errors.append(TOTAL_PERCENTAGE_EXCEEDED)
    if projected > income_minor:
        errors.append(TOTAL_ALLOCATIONS_EXCEEDED)

    return AllocationValidation(
        is_valid=not errors,
        errors=errors,
        total_fixed_minor=total_fixed,
        total_percentage=total_percentage,
        projected_total_minor=projected,
    )


def calculate_rollover_amount(allocation: CategoryAllocation) -> int:
    if not allocation.rollover:
        return 0
    remaining = calculate_category_remaining(allocation)
    return remaining if remaining > 0 else 0


def calculate_total_rollover(allocations: Iterable[CategoryAllocation]) -> int:
    return sum(calculate_rollover_amount(a) for a in allocations)


def _metric_change(current: int, previous: int) -> MetricChange:
    change = current - previous
    # A zero base has no meaningful ratio; report 0 rather than infinity.
    return MetricChange(
        current=current,
        previous=previous,
        change=change,
        change_percentage=ratio_percentage(change, previous),
    )


def compare_budgets(
    current: Budget,
    previous: Budget,
    *,
    current_allocations: Iterable[CategoryAllocation],
    previous_allocations: Iterable[CategoryAllocation],
) -> BudgetComparison:
    return BudgetComparison(
        income=_metric_change(current.actual_income_minor, previous.actual_income_minor),
        allocation=_metric_change(
            current.total_allocated_minor, previous.total_allocated_minor
        ),
        spending=_metric_change(
            sum(a.spent_minor for a in current_allocations),
            sum(a.spent_minor for a in previous_allocations),
        ),
    )


def project_spending(
    budget: Budget, allocations: Sequence[CategoryAllocation], as_of: date
) -> SpendingProjection:
    month_days = month_range(budget.month).end.day
    elapsed = min(max(as_of.day, 1), month_days)

    total_spent = sum(a.spent_minor for a in allocations)
    daily_rate = Decimal(total_spent) / Decimal(elapsed)
    projected = round_half_away(daily_rate * month_days)

    at_risk = [
        a.category_id
        for a in allocations
        if round_half_away(Decimal(a.spent_minor) / Decimal(elapsed) * month_days)
        > a.allocated_minor
    ]

    return SpendingProjection(
        days_in_month=month_days,
        days_elapsed=elapsed,
        total_spent_minor=total_spent,
        daily_spending_rate=daily_rate,
        projected_spending_minor=projected,
        projected_remaining_minor=budget.total_allocated_minor - projected,
        categories_at_risk=at_risk,
    )
