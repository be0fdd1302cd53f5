"""initial budgets, categories and allocations

Revision ID: 202610180900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610180900"
down_revision = None
branch_labels = None
depends_on = None


BUDGET_STATUS = sa.Enum("draft", "active", "closed", name="budgetstatus")
ALLOCATION_TYPE = sa.Enum("fixed", "percentage", name="allocationtype")


def upgrade() -> None:
    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("icon", sa.String(40), nullable=True),
        sa.Column("color", sa.String(9), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("archived_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("month", sa.String(7), nullable=False),
        sa.Column("planned_income_minor", sa.BigInteger(), nullable=False),
        sa.Column("actual_income_minor", sa.BigInteger(), nullable=False),
        sa.Column("total_allocated_minor", sa.BigInteger(), nullable=False),
        sa.Column("status", BUDGET_STATUS, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "planned_income_minor >= 0", name="ck_budget_planned_income_positive"
        ),
        sa.CheckConstraint(
            "actual_income_minor >= 0", name="ck_budget_actual_income_positive"
        ),
        sa.CheckConstraint(
            "total_allocated_minor >= 0", name="ck_budget_total_allocated_positive"
        ),
    )
    op.create_index("ix_budget_user_month", "budgets", ["user_id", "month"])

    # At most one active budget per (user, month).
    op.create_index(
        "uq_budget_user_month_active",
        "budgets",
        ["user_id", "month"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "category_allocations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "budget_id",
            sa.String(36),
            sa.ForeignKey("budgets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "category_id", sa.String(36), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("allocation_type", ALLOCATION_TYPE, nullable=False),
        sa.Column("allocation_value", sa.Numeric(24, 6), nullable=False),
        sa.Column("allocated_minor", sa.BigInteger(), nullable=False),
        sa.Column("spent_minor", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("remaining_minor", sa.BigInteger(), nullable=False),
        sa.Column("rollover", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "budget_id", "category_id", name="uq_allocation_budget_category"
        ),
        sa.CheckConstraint("allocation_value >= 0", name="ck_allocation_value_positive"),
        sa.CheckConstraint("allocated_minor >= 0", name="ck_allocation_amount_positive"),
        sa.CheckConstraint("spent_minor >= 0", name="ck_allocation_spent_positive"),
    )
    op.create_index("ix_allocation_budget", "category_allocations", ["budget_id"])


def downgrade() -> None:
    op.drop_index("ix_allocation_budget", table_name="category_allocations")
    op.drop_table("category_allocations")
    op.drop_index("uq_budget_user_month_active", table_name="budgets")
    op.drop_index("ix_budget_user_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("categories")
