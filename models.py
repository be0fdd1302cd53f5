from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    return datetime.utcnow()


def new_id() -> str:
    return str(uuid4())


class BudgetStatus(str, Enum):
    draft = "draft"
    active = "active"
    closed = "closed"


class AllocationType(str, Enum):
    fixed = "fixed"
    percentage = "percentage"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(40))
    color: Mapped[Optional[str]] = mapped_column(String(9))
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    @property
    def is_active(self) -> bool:
        return self.archived_at is None


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    planned_income_minor: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    actual_income_minor: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    total_allocated_minor: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    status: Mapped[BudgetStatus] = mapped_column(
        SAEnum(BudgetStatus), nullable=False, default=BudgetStatus.draft
    )

    allocations: Mapped[list["CategoryAllocation"]] = relationship(
        "CategoryAllocation",
        back_populates="budget",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "planned_income_minor >= 0", name="ck_budget_planned_income_positive"
        ),
        CheckConstraint(
            "actual_income_minor >= 0", name="ck_budget_actual_income_positive"
        ),
        CheckConstraint(
            "total_allocated_minor >= 0", name="ck_budget_total_allocated_positive"
        ),
        Index("ix_budget_user_month", "user_id", "month"),
        Index(
            "uq_budget_user_month_active",
            "user_id",
            "month",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )


class CategoryAllocation(Base, TimestampMixin):
    __tablename__ = "category_allocations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    budget_id: Mapped[str] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[str] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    allocation_type: Mapped[AllocationType] = mapped_column(
        SAEnum(AllocationType), nullable=False
    )
    allocation_value: Mapped[Decimal] = mapped_column(
        Numeric(24, 6, asdecimal=True), nullable=False
    )
    allocated_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    spent_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    remaining_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rollover: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="allocations")
    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint(
            "budget_id", "category_id", name="uq_allocation_budget_category"
        ),
        CheckConstraint("allocation_value >= 0", name="ck_allocation_value_positive"),
        CheckConstraint("allocated_minor >= 0", name="ck_allocation_amount_positive"),
        CheckConstraint("spent_minor >= 0", name="ck_allocation_spent_positive"),
        Index("ix_allocation_budget", "budget_id"),
    )
