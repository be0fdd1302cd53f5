from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from database import Base, make_engine
from errors import BudgetError, ConflictError, ErrorCode, NotFoundError
from models import AllocationType
from schemas import AllocationIn, AllocationUpdate, BudgetIn, CategoryIn
from services import (
    AllocationService,
    BudgetService,
    CategoryService,
    recompute_total_allocated,
)


def make_session() -> Session:
    engine = make_engine("sqlite://")
    Base.metadata.create_all(engine)
    return Session(engine)


def seed(session: Session, planned_income_minor: int = 500_000):
    categories = CategoryService(session)
    created = {
        name: categories.create(CategoryIn(user_id="user-1", name=name))
        for name in ["Rent", "Groceries", "Fun"]
    }
    budget = BudgetService(session, today=lambda: date(2025, 6, 15)).create(
        BudgetIn(
            user_id="user-1",
            month="2025-06",
            planned_income_minor=planned_income_minor,
            status="active",
        )
    )
    return budget, created


def allocation_in(budget, category, allocation_type="percentage", value="10", **kwargs):
    return AllocationIn(
        budget_id=budget.id,
        category_id=category.id,
        allocation_type=allocation_type,
        allocation_value=Decimal(value),
        **kwargs,
    )


def test_create_derives_percentage_amount_from_income() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)

        share = service.create(allocation_in(budget, cats["Groceries"], value="33.33"))
        assert share.allocated_minor == 166_650
        assert share.remaining_minor == 166_650
        assert share.spent_minor == 0
        assert share.allocation_type == AllocationType.percentage

        finer = service.create(allocation_in(budget, cats["Fun"], value="33.333"))
        assert finer.allocated_minor == 166_665


def test_create_fixed_and_explicit_amounts() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)

        rent = service.create(allocation_in(budget, cats["Rent"], "fixed", "120000"))
        assert rent.allocated_minor == 120_000

        food = service.create(
            allocation_in(
                budget, cats["Groceries"], value="10", allocated_minor=40_000, spent_minor=5_000
            )
        )
        assert food.allocated_minor == 40_000
        assert food.remaining_minor == 35_000


@pytest.mark.parametrize(
    "allocation_type, value, extra, code",
    [
        ("monthly", "10", {}, ErrorCode.invalid_allocation_type),
        ("fixed", "-1", {}, ErrorCode.allocation_value_negative),
        ("percentage", "101", {}, ErrorCode.percentage_exceeds_100),
        ("fixed", "10", {"allocated_minor": -1}, ErrorCode.allocated_amount_negative),
        ("fixed", "10", {"spent_minor": -1}, ErrorCode.spent_amount_negative),
        ("fixed", "10", {"spent_minor": 11}, ErrorCode.spent_exceeds_allocated),
    ],
)
def test_create_rejections_write_nothing(allocation_type, value, extra, code) -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)

        with pytest.raises(BudgetError) as exc_info:
            service.create(
                allocation_in(budget, cats["Rent"], allocation_type, value, **extra)
            )
        assert exc_info.value.code == code
        assert service.find_by_budget_id(budget.id) == []


def test_create_rejects_duplicate_pair() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)
        service.create(allocation_in(budget, cats["Rent"]))

        with pytest.raises(ConflictError) as exc_info:
            service.create(allocation_in(budget, cats["Rent"], "fixed", "100"))
        assert exc_info.value.code == ErrorCode.duplicate_allocation


def test_unique_constraint_catches_concurrent_duplicate(monkeypatch) -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)
        service.create(allocation_in(budget, cats["Rent"]))
        monkeypatch.setattr(
            service, "find_by_budget_id_and_category_id", lambda *args: None
        )

        with pytest.raises(ConflictError) as exc_info:
            service.create(allocation_in(budget, cats["Rent"]))
        assert exc_info.value.code == ErrorCode.duplicate_allocation
        assert len(service.find_by_budget_id(budget.id)) == 1


def test_create_against_missing_budget() -> None:
    with make_session() as session:
        _, cats = seed(session)
        with pytest.raises(NotFoundError) as exc_info:
            AllocationService(session).create(
                AllocationIn(
                    budget_id="missing",
                    category_id=cats["Rent"].id,
                    allocation_type="fixed",
                    allocation_value=Decimal("10"),
                )
            )
        assert exc_info.value.code == ErrorCode.budget_not_found


def test_find_by_budget_id_orders_by_category_name() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)
        for name in ["Rent", "Groceries", "Fun"]:
            service.create(allocation_in(budget, cats[name], "fixed", "100"))

        names = [a.category.name for a in service.find_by_budget_id(budget.id)]
        assert names == ["Fun", "Groceries", "Rent"]
        assert service.find_by_budget_id("other") == []


def test_find_by_pair() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)
        created = service.create(allocation_in(budget, cats["Rent"]))

        found = service.find_by_budget_id_and_category_id(budget.id, cats["Rent"].id)
        assert found.id == created.id
        assert service.find_by_budget_id_and_category_id(budget.id, cats["Fun"].id) is None


def test_update_rejects_immutable_fields() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)
        allocation = service.create(allocation_in(budget, cats["Rent"]))

        for changes in (
            {"budget_id": "other"},
            {"category_id": cats["Fun"].id},
            {"allocation_id": "x"},
        ):
            with pytest.raises(BudgetError) as exc_info:
                service.update(allocation.id, changes)
            assert exc_info.value.code == ErrorCode.immutable_field_update


def test_update_rederives_amount_when_rule_changes() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)
        allocation = service.create(
            allocation_in(budget, cats["Groceries"], value="33.33", spent_minor=1_000)
        )

        updated = service.update(allocation.id, {"allocation_value": Decimal("10")})
        assert updated.allocated_minor == 50_000
        assert updated.remaining_minor == 49_000

        updated = service.update(
            allocation.id,
            AllocationUpdate(allocation_type="fixed", allocation_value=Decimal("70000")),
        )
        assert updated.allocation_type == AllocationType.fixed
        assert updated.allocated_minor == 70_000
        assert updated.remaining_minor == 69_000


def test_update_allows_overspending_but_not_negative_spend() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)
        allocation = service.create(allocation_in(budget, cats["Fun"], "fixed", "1000"))

        updated = service.update(allocation.id, {"spent_minor": 1_500})
        assert updated.remaining_minor == -500

        with pytest.raises(BudgetError) as exc_info:
            service.update(allocation.id, {"spent_minor": -1})
        assert exc_info.value.code == ErrorCode.spent_amount_negative

        with pytest.raises(BudgetError) as exc_info:
            service.update(allocation.id, {"allocation_type": "percentage", "allocation_value": "120"})
        assert exc_info.value.code == ErrorCode.percentage_exceeds_100


def test_update_keeps_created_at() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)
        allocation = service.create(allocation_in(budget, cats["Fun"], "fixed", "1000"))
        created_at = allocation.created_at
        allocation.updated_at = datetime(2000, 1, 1)
        session.commit()

        updated = service.update(allocation.id, {"rollover": True})
        assert updated.rollover is True
        assert updated.created_at == created_at
        assert updated.updated_at > datetime(2000, 1, 1)


def test_delete_allocation() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)
        allocation = service.create(allocation_in(budget, cats["Fun"]))

        service.delete(allocation.id)
        assert service.find_by_id(allocation.id) is None

        with pytest.raises(NotFoundError) as exc_info:
            service.delete(allocation.id)
        assert exc_info.value.code == ErrorCode.allocation_not_found


def test_recompute_total_follows_income_changes() -> None:
    with make_session() as session:
        budget, cats = seed(session)
        service = AllocationService(session)
        service.create(allocation_in(budget, cats["Rent"], "fixed", "100000"))
        share = service.create(allocation_in(budget, cats["Fun"], value="10"))

        assert recompute_total_allocated(session, budget.id) == 150_000
        assert budget.total_allocated_minor == 150_000

        BudgetService(session, today=lambda: date(2025, 6, 15)).update(
            budget.id, {"planned_income_minor": 600_000}
        )
        assert recompute_total_allocated(session, budget.id) == 160_000
        assert service.get(share.id).allocated_minor == 60_000
        assert budget.total_allocated_minor == 160_000


def test_create_against_missing_category() -> None:
    with make_session() as session:
        budget, _ = seed(session)
        service = AllocationService(session)

        with pytest.raises(NotFoundError) as exc_info:
            service.create(
                AllocationIn(
                    budget_id=budget.id,
                    category_id="missing",
                    allocation_type="fixed",
                    allocation_value=Decimal("10"),
                )
            )
        assert exc_info.value.code == ErrorCode.category_not_found
        assert service.find_by_budget_id(budget.id) == []


def test_stored_percentage_matches_derived_amount() -> None:
    with make_session() as session:
        budget, cats = seed(session, planned_income_minor=1_000_000_000)
        service = AllocationService(session)
        allocation = service.create(
            allocation_in(budget, cats["Fun"], value="33.3333335")
        )
        assert allocation.allocated_minor == 333_333_340

        session.expire_all()
        recompute_total_allocated(session, budget.id)

        stored = service.get(allocation.id)
        assert stored.allocation_value == Decimal("33.333334")
        assert stored.allocated_minor == 333_333_340
