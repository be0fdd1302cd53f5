from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Range rules live in the services so every rejection carries its own error
# code; these models only fix the shape of the input.


class CategoryIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=40)
    color: Optional[str] = Field(default=None, max_length=9)
    order: int = 0


class BudgetIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    month: str
    planned_income_minor: int
    actual_income_minor: int = 0
    total_allocated_minor: int = 0
    status: str = "draft"


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    planned_income_minor: Optional[int] = None
    actual_income_minor: Optional[int] = None
    total_allocated_minor: Optional[int] = None
    status: Optional[str] = None


class AllocationIn(BaseModel):
    budget_id: str
    category_id: str
    allocation_type: str
    allocation_value: Decimal
    allocated_minor: Optional[int] = None
    spent_minor: int = 0
    rollover: bool = False


class AllocationUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    allocation_type: Optional[str] = None
    allocation_value: Optional[Decimal] = None
    allocated_minor: Optional[int] = None
    spent_minor: Optional[int] = None
    rollover: Optional[bool] = None


class AllocationRequest(BaseModel):
    """Body of an allocate-to-category call; the pair comes from the URL."""

    category_id: str
    allocation_type: str
    allocation_value: Decimal
    rollover: Optional[bool] = None


class MonthlyBudgetIn(BaseModel):
    month: str
    planned_income_minor: int


class SpendingIn(BaseModel):
    spent_minor: int
