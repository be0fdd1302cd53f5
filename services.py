from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from calculator import (
    AllocationValidation,
    BudgetComparison,
    BudgetSummary,
    CategorySummary,
    SpendingProjection,
    calculate_budget_summary,
    calculate_category_summary,
    calculate_remaining_budget,
    calculate_total_allocated,
    calculate_total_rollover,
    compare_budgets,
    project_spending,
    validate_allocation_totals,
)
from config import Settings, get_settings
from errors import BudgetError, ConflictError, ErrorCode, NotFoundError
from models import (
    AllocationType,
    Budget,
    BudgetStatus,
    Category,
    CategoryAllocation,
    new_id,
    utcnow,
)
from money import allocation_rule, percentage_to_minor
from periods import add_months, is_month_in_future, is_valid_month, local_today
from schemas import (
    AllocationIn,
    AllocationRequest,
    AllocationUpdate,
    BudgetIn,
    BudgetUpdate,
    CategoryIn,
)

logger = logging.getLogger(__name__)

IdFactory = Callable[[], str]
Clock = Callable[[], date]
UpdateT = TypeVar("UpdateT", bound=BaseModel)

BUDGET_IMMUTABLE_FIELDS = ("id", "budget_id", "user_id", "month", "created_at")
ALLOCATION_IMMUTABLE_FIELDS = (
    "id",
    "allocation_id",
    "budget_id",
    "category_id",
    "created_at",
)
BUDGET_MONEY_FIELDS = (
    "planned_income_minor",
    "actual_income_minor",
    "total_allocated_minor",
)


def _coerce_update(
    changes: Union[UpdateT, Mapping[str, object]],
    model: type[UpdateT],
    immutable: tuple[str, ...],
) -> dict[str, object]:
    """Return the fields an update actually sets.

    Update DTOs have no immutable members; a plain mapping naming one is
    rejected before it ever reaches the DTO.
    """
    if not isinstance(changes, model):
        blocked = [name for name in immutable if name in changes]
        if blocked:
            raise BudgetError(
                f"Cannot update {blocked[0]}", ErrorCode.immutable_field_update
            )
        changes = model(**changes)
    return {
        key: value
        for key, value in changes.model_dump(exclude_unset=True).items()
        if value is not None
    }


class CategoryService:
    def __init__(self, session: Session, *, id_factory: Optional[IdFactory] = None):
        self.session = session
        self.id_factory = id_factory or new_id

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == data.user_id,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(
            id=self.id_factory(),
            user_id=data.user_id,
            name=data.name.strip(),
            icon=data.icon,
            color=data.color,
            order=data.order,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_created: id={category.id}")
        return category

    def get(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found", ErrorCode.category_not_found)
        return category

    def list_for_user(
        self, user_id: str, include_archived: bool = False
    ) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == user_id)
            .order_by(Category.order, Category.name)
        )
        if not include_archived:
            stmt = stmt.where(Category.archived_at.is_(None))
        return list(self.session.scalars(stmt).all())

    def archive(self, category_id: str) -> Category:
        category = self.get(category_id)
        category.archived_at = utcnow()
        self.session.commit()
        return category

    def restore(self, category_id: str) -> Category:
        category = self.get(category_id)
        category.archived_at = None
        self.session.commit()
        return category


class BudgetService:
    """Budget store: owns the write-time invariants of the monthly envelope."""

    def __init__(
        self,
        session: Session,
        *,
        id_factory: Optional[IdFactory] = None,
        today: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.id_factory = id_factory or new_id
        self.today = today or local_today
        self.settings = settings or get_settings()

    def create(self, data: BudgetIn) -> Budget:
        if not is_valid_month(data.month):
            raise BudgetError(
                "Invalid month format. Use YYYY-MM", ErrorCode.invalid_month_format
            )
        if is_month_in_future(data.month, self.today()):
            raise BudgetError(
                "Cannot create budget for future months",
                ErrorCode.future_month_not_allowed,
            )
        for name in BUDGET_MONEY_FIELDS:
            self._validate_amount(getattr(data, name))
        status = self._parse_status(data.status)

        if status == BudgetStatus.active:
            self._ensure_no_other_active(data.user_id, data.month)

        budget = Budget(
            id=self.id_factory(),
            user_id=data.user_id,
            month=data.month,
            planned_income_minor=data.planned_income_minor,
            actual_income_minor=data.actual_income_minor,
            total_allocated_minor=data.total_allocated_minor,
            status=status,
        )
        self.session.add(budget)
        self._commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_created: id={budget.id} month={budget.month} status={status.value}"
        )
        return budget

    def find_by_id(self, budget_id: str) -> Optional[Budget]:
        return self.session.get(Budget, budget_id)

    def get(self, budget_id: str) -> Budget:
        budget = self.find_by_id(budget_id)
        if not budget:
            raise NotFoundError(
                f"Budget with id {budget_id} not found", ErrorCode.budget_not_found
            )
        return budget

    def find_by_user_id_and_month(self, user_id: str, month: str) -> Optional[Budget]:
        # The active budget wins; otherwise the most recently created one.
        stmt = (
            select(Budget)
            .where(Budget.user_id == user_id, Budget.month == month)
            .order_by(
                (Budget.status == BudgetStatus.active).desc(),
                Budget.created_at.desc(),
            )
            .limit(1)
        )
        return self.session.scalar(stmt)

    def find_by_user_id(self, user_id: str) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == user_id)
            .order_by(Budget.month.asc(), Budget.created_at.asc())
        )
        return list(self.session.scalars(stmt).all())

    def update(
        self, budget_id: str, changes: Union[BudgetUpdate, Mapping[str, object]]
    ) -> Budget:
        budget = self.get(budget_id)
        fields = _coerce_update(changes, BudgetUpdate, BUDGET_IMMUTABLE_FIELDS)

        for name in BUDGET_MONEY_FIELDS:
            if name in fields:
                self._validate_amount(fields[name])
        if "status" in fields:
            fields["status"] = self._parse_status(fields["status"])
            if (
                fields["status"] == BudgetStatus.active
                and budget.status != BudgetStatus.active
            ):
                self._ensure_no_other_active(budget.user_id, budget.month, budget.id)

        for name, value in fields.items():
            setattr(budget, name, value)
        budget.updated_at = utcnow()
        self._commit()
        logger.info(f"budget_updated: id={budget.id} fields={sorted(fields)}")
        return budget

    def delete(self, budget_id: str) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()
        logger.info(f"budget_deleted: id={budget_id}")

    def _validate_amount(self, amount: object) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise BudgetError(
                "Income amount must be a whole number of minor units",
                ErrorCode.invalid_income_amount,
            )
        if amount < 0:
            raise BudgetError(
                "Income amounts must be non-negative",
                ErrorCode.negative_income_not_allowed,
            )
        if amount > self.settings.max_minor_amount:
            raise BudgetError(
                "Income amount exceeds maximum allowed value",
                ErrorCode.income_too_large,
            )

    @staticmethod
    def _parse_status(value: object) -> BudgetStatus:
        try:
            return BudgetStatus(value)
        except ValueError:
            raise BudgetError(
                "Invalid budget status", ErrorCode.invalid_budget_status
            ) from None

    def _ensure_no_other_active(
        self, user_id: str, month: str, exclude_id: Optional[str] = None
    ) -> None:
        stmt = select(Budget.id).where(
            Budget.user_id == user_id,
            Budget.month == month,
            Budget.status == BudgetStatus.active,
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        if self.session.scalar(stmt.limit(1)) is not None:
            raise ConflictError(
                "Only one active budget allowed per month",
                ErrorCode.duplicate_active_budget,
            )

    def _commit(self) -> None:
        # The partial unique index settles a race with another writer.
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(
                "Only one active budget allowed per month",
                ErrorCode.duplicate_active_budget,
            ) from exc


class AllocationService:
    """Category allocation store."""

    def __init__(self, session: Session, *, id_factory: Optional[IdFactory] = None):
        self.session = session
        self.id_factory = id_factory or new_id

    def create(self, data: AllocationIn) -> CategoryAllocation:
        rule = allocation_rule(data.allocation_type, data.allocation_value)
        budget = self.session.get(Budget, data.budget_id)
        if not budget:
            raise NotFoundError(
                f"Budget with id {data.budget_id} not found",
                ErrorCode.budget_not_found,
            )
        if not self.session.get(Category, data.category_id):
            raise NotFoundError(
                f"Category with id {data.category_id} not found",
                ErrorCode.category_not_found,
            )

        allocated = data.allocated_minor
        if allocated is None:
            allocated = rule.amount_for(budget.planned_income_minor)
        if allocated < 0:
            raise BudgetError(
                "Allocated amount must be non-negative",
                ErrorCode.allocated_amount_negative,
            )
        spent = data.spent_minor
        if spent < 0:
            raise BudgetError(
                "Spent amount must be non-negative", ErrorCode.spent_amount_negative
            )
        if spent > allocated:
            raise BudgetError(
                "Spent amount cannot exceed allocated amount",
                ErrorCode.spent_exceeds_allocated,
            )
        if self.find_by_budget_id_and_category_id(data.budget_id, data.category_id):
            raise self._duplicate()

        allocation = CategoryAllocation(
            id=self.id_factory(),
            budget_id=data.budget_id,
            category_id=data.category_id,
            allocation_type=AllocationType(data.allocation_type),
            allocation_value=rule.value,
            allocated_minor=allocated,
            spent_minor=spent,
            remaining_minor=allocated - spent,
            rollover=data.rollover,
        )
        self.session.add(allocation)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise self._duplicate() from exc
        self.session.refresh(allocation)
        logger.info(
            f"allocation_created: id={allocation.id} budget={allocation.budget_id} "
            f"category={allocation.category_id} allocated_minor={allocated}"
        )
        return allocation

    def find_by_id(self, allocation_id: str) -> Optional[CategoryAllocation]:
        return self.session.get(CategoryAllocation, allocation_id)

    def get(self, allocation_id: str) -> CategoryAllocation:
        allocation = self.find_by_id(allocation_id)
        if not allocation:
            raise NotFoundError(
                f"Allocation with id {allocation_id} not found",
                ErrorCode.allocation_not_found,
            )
        return allocation

    def find_by_budget_id(self, budget_id: str) -> list[CategoryAllocation]:
        display_name = func.coalesce(Category.name, "")
        stmt = (
            select(CategoryAllocation)
            .outerjoin(Category, CategoryAllocation.category_id == Category.id)
            .where(CategoryAllocation.budget_id == budget_id)
            .order_by(func.lower(display_name), display_name, CategoryAllocation.category_id)
        )
        return list(self.session.scalars(stmt).all())

    def find_by_budget_id_and_category_id(
        self, budget_id: str, category_id: str
    ) -> Optional[CategoryAllocation]:
        return self.session.scalar(
            select(CategoryAllocation).where(
                CategoryAllocation.budget_id == budget_id,
                CategoryAllocation.category_id == category_id,
            )
        )

    def update(
        self,
        allocation_id: str,
        changes: Union[AllocationUpdate, Mapping[str, object]],
    ) -> CategoryAllocation:
        allocation = self.get(allocation_id)
        fields = _coerce_update(changes, AllocationUpdate, ALLOCATION_IMMUTABLE_FIELDS)

        if "allocation_type" in fields or "allocation_value" in fields:
            new_type = fields.get("allocation_type", allocation.allocation_type)
            new_value = fields.get("allocation_value", allocation.allocation_value)
            rule = allocation_rule(new_type, new_value)
            fields["allocation_type"] = AllocationType(new_type)
            fields["allocation_value"] = rule.value
            fields["allocated_minor"] = rule.amount_for(
                allocation.budget.planned_income_minor
            )

        if fields.get("allocated_minor", 0) < 0:
            raise BudgetError(
                "Allocated amount must be non-negative",
                ErrorCode.allocated_amount_negative,
            )
        # Overspending is allowed here: spend is reported after the fact.
        if fields.get("spent_minor", 0) < 0:
            raise BudgetError(
                "Spent amount must be non-negative", ErrorCode.spent_amount_negative
            )

        for name, value in fields.items():
            setattr(allocation, name, value)
        allocation.remaining_minor = allocation.allocated_minor - allocation.spent_minor
        allocation.updated_at = utcnow()
        self.session.commit()
        logger.info(f"allocation_updated: id={allocation.id} fields={sorted(fields)}")
        return allocation

    def delete(self, allocation_id: str) -> None:
        allocation = self.get(allocation_id)
        self.session.delete(allocation)
        self.session.commit()
        logger.info(f"allocation_deleted: id={allocation_id}")

    @staticmethod
    def _duplicate() -> ConflictError:
        return ConflictError(
            "Allocation already exists for this category in this budget",
            ErrorCode.duplicate_allocation,
        )


def recompute_total_allocated(session: Session, budget_id: str) -> int:
    """Re-aggregate ``Budget.total_allocated_minor`` after an allocation write.

    Percentage allocations are re-derived from the current planned income
    first, so a changed income flows through to every share.
    """
    budget = session.get(Budget, budget_id)
    if not budget:
        raise NotFoundError(
            f"Budget with id {budget_id} not found", ErrorCode.budget_not_found
        )
    allocations = session.scalars(
        select(CategoryAllocation).where(CategoryAllocation.budget_id == budget_id)
    ).all()

    income = budget.planned_income_minor
    for allocation in allocations:
        if allocation.allocation_type == AllocationType.percentage:
            allocation.allocated_minor = percentage_to_minor(
                allocation.allocation_value, income
            )
        allocation.remaining_minor = allocation.allocated_minor - allocation.spent_minor

    total = calculate_total_allocated(allocations, income)
    if budget.total_allocated_minor != total:
        budget.total_allocated_minor = total
        budget.updated_at = utcnow()
    session.commit()
    logger.info(f"budget_total_recomputed: id={budget_id} total_allocated_minor={total}")
    return total


class BudgetPlanningService:
    """Orchestrates the stores and the calculator for one user's budgets."""

    def __init__(
        self,
        session: Session,
        *,
        id_factory: Optional[IdFactory] = None,
        today: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.today = today or local_today
        self.budgets = BudgetService(
            session, id_factory=id_factory, today=self.today, settings=settings
        )
        self.allocations = AllocationService(session, id_factory=id_factory)
        self.categories = CategoryService(session, id_factory=id_factory)

    def create_monthly_budget(
        self, user_id: str, month: str, planned_income_minor: int
    ) -> Budget:
        if isinstance(planned_income_minor, int) and planned_income_minor <= 0:
            raise BudgetError(
                "Planned income must be greater than zero",
                ErrorCode.invalid_income_amount,
            )
        return self.budgets.create(
            BudgetIn(
                user_id=user_id,
                month=month,
                planned_income_minor=planned_income_minor,
                status=BudgetStatus.draft.value,
            )
        )

    def update_budget(
        self, budget_id: str, changes: Union[BudgetUpdate, Mapping[str, object]]
    ) -> Budget:
        budget = self.budgets.update(budget_id, changes)
        recompute_total_allocated(self.session, budget_id)
        return budget

    def allocate_to_category(
        self, budget_id: str, request: AllocationRequest
    ) -> CategoryAllocation:
        budget = self.budgets.get(budget_id)
        if budget.status == BudgetStatus.closed:
            raise BudgetError("Cannot modify closed budget", ErrorCode.budget_closed)
        category = self.categories.get(request.category_id)
        if not category.is_active:
            raise BudgetError(
                "Cannot allocate to inactive category", ErrorCode.category_inactive
            )

        rule = allocation_rule(request.allocation_type, request.allocation_value)
        existing = self.allocations.find_by_budget_id_and_category_id(
            budget_id, request.category_id
        )
        proposed = CategoryAllocation(
            budget_id=budget_id,
            category_id=request.category_id,
            allocation_type=AllocationType(request.allocation_type),
            allocation_value=rule.value,
            allocated_minor=rule.amount_for(budget.planned_income_minor),
            spent_minor=existing.spent_minor if existing else 0,
        )
        others = [
            a
            for a in self.allocations.find_by_budget_id(budget_id)
            if a.category_id != request.category_id
        ]
        validation = validate_allocation_totals(
            [*others, proposed], budget.planned_income_minor
        )
        if not validation.is_valid:
            raise BudgetError(
                validation.errors[0], ErrorCode.allocation_validation_failed
            )

        if existing:
            changes = AllocationUpdate(
                allocation_type=request.allocation_type,
                allocation_value=request.allocation_value,
                rollover=request.rollover,
            )
            allocation = self.allocations.update(existing.id, changes)
        else:
            allocation = self.allocations.create(
                AllocationIn(
                    budget_id=budget_id,
                    category_id=request.category_id,
                    allocation_type=request.allocation_type,
                    allocation_value=request.allocation_value,
                    rollover=bool(request.rollover),
                )
            )
        recompute_total_allocated(self.session, budget_id)
        return allocation

    def update_allocation(
        self,
        allocation_id: str,
        changes: Union[AllocationUpdate, Mapping[str, object]],
    ) -> CategoryAllocation:
        allocation = self.allocations.update(allocation_id, changes)
        total = recompute_total_allocated(self.session, allocation.budget_id)
        validation = self.validation(allocation.budget_id)
        if not validation.is_valid:
            logger.warning(
                f"allocation_totals_invalid: budget={allocation.budget_id} "
                f"total_allocated_minor={total} errors={validation.errors}"
            )
        return allocation

    def record_spending(self, allocation_id: str, spent_minor: int) -> CategoryAllocation:
        allocation = self.allocations.update(
            allocation_id, AllocationUpdate(spent_minor=spent_minor)
        )
        recompute_total_allocated(self.session, allocation.budget_id)
        return allocation

    def remove_allocation(self, allocation_id: str) -> None:
        allocation = self.allocations.get(allocation_id)
        if allocation.spent_minor != 0:
            raise BudgetError(
                "Cannot delete an allocation that already has spending",
                ErrorCode.allocation_has_spending,
            )
        budget_id = allocation.budget_id
        self.allocations.delete(allocation_id)
        recompute_total_allocated(self.session, budget_id)

    def delete_budget(self, budget_id: str) -> None:
        budget = self.budgets.get(budget_id)
        if budget.status == BudgetStatus.active:
            raise BudgetError(
                "Cannot delete an active budget",
                ErrorCode.active_budget_delete_not_allowed,
            )
        # allocations go with the budget (ORM delete-orphan cascade)
        self.budgets.delete(budget_id)

    def close_budget(self, budget_id: str) -> Budget:
        budget = self.budgets.get(budget_id)
        if budget.status == BudgetStatus.closed:
            raise BudgetError(
                "Budget is already closed", ErrorCode.budget_already_closed
            )
        return self.budgets.update(
            budget_id, BudgetUpdate(status=BudgetStatus.closed.value)
        )

    def calculate_remaining_budget(self, budget_id: str) -> int:
        budget = self.budgets.get(budget_id)
        return calculate_remaining_budget(
            budget, self.allocations.find_by_budget_id(budget_id)
        )

    def summary(self, budget_id: str) -> BudgetSummary:
        budget = self.budgets.get(budget_id)
        return calculate_budget_summary(
            budget, self.allocations.find_by_budget_id(budget_id)
        )

    def category_summaries(self, budget_id: str) -> list[CategorySummary]:
        budget = self.budgets.get(budget_id)
        return [
            calculate_category_summary(a, budget.planned_income_minor)
            for a in self.allocations.find_by_budget_id(budget_id)
        ]

    def validation(self, budget_id: str) -> AllocationValidation:
        budget = self.budgets.get(budget_id)
        return validate_allocation_totals(
            self.allocations.find_by_budget_id(budget_id), budget.planned_income_minor
        )

    def projection(
        self, budget_id: str, as_of: Optional[date] = None
    ) -> SpendingProjection:
        budget = self.budgets.get(budget_id)
        return project_spending(
            budget,
            self.allocations.find_by_budget_id(budget_id),
            as_of or self.today(),
        )

    def compare_with_previous_month(self, budget_id: str) -> Optional[BudgetComparison]:
        budget = self.budgets.get(budget_id)
        previous = self.budgets.find_by_user_id_and_month(
            budget.user_id, add_months(budget.month, -1)
        )
        if previous is None:
            return None
        return compare_budgets(
            budget,
            previous,
            current_allocations=self.allocations.find_by_budget_id(budget.id),
            previous_allocations=self.allocations.find_by_budget_id(previous.id),
        )

    def rollover(self, budget_id: str) -> int:
        self.budgets.get(budget_id)
        return calculate_total_rollover(self.allocations.find_by_budget_id(budget_id))
