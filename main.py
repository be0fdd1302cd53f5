import logging
from dataclasses import asdict
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from errors import BudgetError, ConflictError, NotFoundError
from models import Budget, Category, CategoryAllocation
from money import to_major_units
from periods import month_range
from schemas import (
    AllocationRequest,
    BudgetIn,
    CategoryIn,
    MonthlyBudgetIn,
    SpendingIn,
)
from services import BudgetPlanningService

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Budget Planner")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    return x_user_id


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ConflictError):
        status_code = 409
    else:
        status_code = 400
    code = exc.code.value if isinstance(exc, BudgetError) else None
    logger.info(f"request_rejected: status={status_code} code={code}")
    return HTTPException(
        status_code=status_code, detail={"code": code, "message": str(exc)}
    )


def budget_out(budget: Budget) -> dict:
    period = month_range(budget.month)
    return {
        "id": budget.id,
        "user_id": budget.user_id,
        "month": budget.month,
        "planned_income_minor": budget.planned_income_minor,
        "actual_income_minor": budget.actual_income_minor,
        "total_allocated_minor": budget.total_allocated_minor,
        "currency": settings.currency,
        "planned_income": str(
            to_major_units(budget.planned_income_minor, settings.currency)
        ),
        "actual_income": str(
            to_major_units(budget.actual_income_minor, settings.currency)
        ),
        "period_start": period.start.isoformat(),
        "period_end": period.end.isoformat(),
        "status": budget.status.value,
        "created_at": budget.created_at.isoformat(),
        "updated_at": budget.updated_at.isoformat(),
    }


def allocation_out(allocation: CategoryAllocation) -> dict:
    category = allocation.category
    return {
        "id": allocation.id,
        "budget_id": allocation.budget_id,
        "category_id": allocation.category_id,
        "allocation_type": allocation.allocation_type.value,
        "allocation_value": allocation.allocation_value,
        "allocated_minor": allocation.allocated_minor,
        "spent_minor": allocation.spent_minor,
        "remaining_minor": allocation.remaining_minor,
        "rollover": allocation.rollover,
        "category": category_out(category) if category else None,
        "created_at": allocation.created_at.isoformat(),
        "updated_at": allocation.updated_at.isoformat(),
    }


def category_out(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "icon": category.icon,
        "color": category.color,
        "is_active": category.is_active,
    }


def owned_budget(planner: BudgetPlanningService, budget_id: str, user_id: str) -> Budget:
    try:
        budget = planner.budgets.get(budget_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    if budget.user_id != user_id:
        raise HTTPException(status_code=404, detail="Budget not found")
    return budget


def owned_allocation(
    planner: BudgetPlanningService, budget_id: str, allocation_id: str, user_id: str
) -> CategoryAllocation:
    owned_budget(planner, budget_id, user_id)
    try:
        allocation = planner.allocations.get(allocation_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    if allocation.budget_id != budget_id:
        raise HTTPException(status_code=404, detail="Allocation not found")
    return allocation


@app.get("/api/categories")
def api_list_categories(
    user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
):
    planner = BudgetPlanningService(db)
    return [category_out(c) for c in planner.categories.list_for_user(user_id)]


@app.post("/api/categories", status_code=201)
def api_create_category(
    payload: dict, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
):
    planner = BudgetPlanningService(db)
    try:
        category = planner.categories.create(CategoryIn(**{**payload, "user_id": user_id}))
    except ValueError as exc:
        raise http_error(exc) from exc
    return category_out(category)


@app.get("/api/budgets")
def api_list_budgets(
    status: Optional[str] = None,
    year: Optional[str] = None,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    budgets = BudgetPlanningService(db).budgets.find_by_user_id(user_id)
    if status:
        budgets = [b for b in budgets if b.status.value == status]
    if year:
        budgets = [b for b in budgets if b.month.startswith(year)]
    # newest month first
    return [budget_out(b) for b in reversed(budgets)]


@app.post("/api/budgets", status_code=201)
def api_create_budget(
    payload: dict, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
):
    planner = BudgetPlanningService(db)
    try:
        budget = planner.budgets.create(BudgetIn(**{**payload, "user_id": user_id}))
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_out(budget)


@app.post("/api/budgets/monthly", status_code=201)
def api_create_monthly_budget(
    payload: MonthlyBudgetIn,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    planner = BudgetPlanningService(db)
    try:
        budget = planner.create_monthly_budget(
            user_id, payload.month, payload.planned_income_minor
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_out(budget)


@app.get("/api/budgets/{budget_id}")
def api_get_budget(
    budget_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
):
    planner = BudgetPlanningService(db)
    return budget_out(owned_budget(planner, budget_id, user_id))


@app.patch("/api/budgets/{budget_id}")
def api_update_budget(
    budget_id: str,
    payload: dict,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    planner = BudgetPlanningService(db)
    owned_budget(planner, budget_id, user_id)
    try:
        budget = planner.update_budget(budget_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_out(budget)


@app.post("/api/budgets/{budget_id}/close")
def api_close_budget(
    budget_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
):
    planner = BudgetPlanningService(db)
    owned_budget(planner, budget_id, user_id)
    try:
        budget = planner.close_budget(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_out(budget)


@app.delete("/api/budgets/{budget_id}", status_code=204)
def api_delete_budget(
    budget_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
):
    planner = BudgetPlanningService(db)
    owned_budget(planner, budget_id, user_id)
    try:
        planner.delete_budget(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/budgets/{budget_id}/allocations")
def api_list_allocations(
    budget_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
):
    planner = BudgetPlanningService(db)
    owned_budget(planner, budget_id, user_id)
    return [allocation_out(a) for a in planner.allocations.find_by_budget_id(budget_id)]


@app.post("/api/budgets/{budget_id}/allocations", status_code=201)
def api_allocate(
    budget_id: str,
    payload: AllocationRequest,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    planner = BudgetPlanningService(db)
    owned_budget(planner, budget_id, user_id)
    try:
        allocation = planner.allocate_to_category(budget_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return allocation_out(allocation)


@app.patch("/api/budgets/{budget_id}/allocations/{allocation_id}")
def api_update_allocation(
    budget_id: str,
    allocation_id: str,
    payload: dict,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    planner = BudgetPlanningService(db)
    owned_allocation(planner, budget_id, allocation_id, user_id)
    try:
        allocation = planner.update_allocation(allocation_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc
    return allocation_out(allocation)


@app.put("/api/budgets/{budget_id}/allocations/{allocation_id}/spent")
def api_record_spending(
    budget_id: str,
    allocation_id: str,
    payload: SpendingIn,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    planner = BudgetPlanningService(db)
    owned_allocation(planner, budget_id, allocation_id, user_id)
    try:
        allocation = planner.record_spending(allocation_id, payload.spent_minor)
    except ValueError as exc:
        raise http_error(exc) from exc
    return allocation_out(allocation)


@app.delete("/api/budgets/{budget_id}/allocations/{allocation_id}", status_code=204)
def api_delete_allocation(
    budget_id: str,
    allocation_id: str,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    planner = BudgetPlanningService(db)
    owned_allocation(planner, budget_id, allocation_id, user_id)
    try:
        planner.remove_allocation(allocation_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/budgets/{budget_id}/summary")
def api_budget_summary(
    budget_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
):
    planner = BudgetPlanningService(db)
    owned_budget(planner, budget_id, user_id)
    return {
        "budget": asdict(planner.summary(budget_id)),
        "categories": [asdict(s) for s in planner.category_summaries(budget_id)],
        "remaining_to_allocate_minor": planner.calculate_remaining_budget(budget_id),
        "validation": asdict(planner.validation(budget_id)),
    }


@app.get("/api/budgets/{budget_id}/projection")
def api_budget_projection(
    budget_id: str,
    as_of: Optional[date] = None,
    user_id: str = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    planner = BudgetPlanningService(db)
    owned_budget(planner, budget_id, user_id)
    return asdict(planner.projection(budget_id, as_of))


@app.get("/api/budgets/{budget_id}/comparison")
def api_budget_comparison(
    budget_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
):
    planner = BudgetPlanningService(db)
    owned_budget(planner, budget_id, user_id)
    comparison = planner.compare_with_previous_month(budget_id)
    if comparison is None:
        raise HTTPException(status_code=404, detail="No budget for the previous month")
    return asdict(comparison)


@app.get("/api/budgets/{budget_id}/rollover")
def api_budget_rollover(
    budget_id: str, user_id: str = Depends(get_user_id), db: Session = Depends(get_db)
):
    planner = BudgetPlanningService(db)
    owned_budget(planner, budget_id, user_id)
    return {"rollover_minor": planner.rollover(budget_id)}
