"""Create user, category, recurring rule and transaction tables

Revision ID: 3e7a1c90b2d4
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3e7a1c90b2d4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


FLOW_DIRECTION = sa.Enum("EXPENSE", "INCOME", name="flow_direction")
RECURRING_FREQUENCY = sa.Enum("DAILY", "WEEKLY", "MONTHLY", "YEARLY", "CUSTOM", name="recurringfrequency")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "user" not in existing_tables:
        op.create_table(
            "user",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(length=320), nullable=False, unique=True),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            *_timestamps(),
        )

    if "category" not in existing_tables:
        op.create_table(
            "category",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
            sa.Column("type", FLOW_DIRECTION, nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            *_timestamps(),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_category_user_type", "category", ["user_id", "type"], unique=False)

    if "recurringrule" not in existing_tables:
        op.create_table(
            "recurringrule",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
            sa.Column("amount", sa.Numeric(18, 2), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=False),
            sa.Column("type", FLOW_DIRECTION, nullable=False),
            sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id"), nullable=True),
            sa.Column("notes", sa.String(length=100), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=False),
            sa.Column("payment_method", sa.String(length=50), nullable=True),
            sa.Column("reference", sa.String(length=200), nullable=True),
            sa.Column("frequency", RECURRING_FREQUENCY, nullable=False),
            sa.Column("repeat_interval", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("next_run_date", sa.Date(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("last_run_date", sa.Date(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=False, server_default="0"),
            *_timestamps(),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            sa.CheckConstraint("repeat_interval >= 1", name="ck_recurring_interval_positive"),
            sa.CheckConstraint("amount > 0", name="ck_recurring_amount_positive"),
            sa.CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_recurring_date_range"),
        )
        op.create_index("ix_recurring_due", "recurringrule", ["is_active", "next_run_date"], unique=False)
        op.create_index("ix_recurring_user_created", "recurringrule", ["user_id", "created_at"], unique=False)

    if "transaction" not in existing_tables:
        op.create_table(
            "transaction",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
            sa.Column("occurred_at", sa.Date(), nullable=False),
            sa.Column("type", FLOW_DIRECTION, nullable=False),
            sa.Column("amount", sa.Numeric(18, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=False),
            sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id"), nullable=True),
            sa.Column("notes", sa.String(length=100), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=False),
            sa.Column("payment_method", sa.String(length=50), nullable=True),
            sa.Column("reference", sa.String(length=200), nullable=True),
            sa.Column("recurring_rule_id", sa.Integer(), sa.ForeignKey("recurringrule.id"), nullable=True),
            *_timestamps(),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("recurring_rule_id", "occurred_at", name="uq_txn_rule_occurrence"),
            sa.CheckConstraint("amount > 0", name="ck_txn_amount_positive"),
        )
        op.create_index("ix_txn_user_date", "transaction", ["user_id", "occurred_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_txn_user_date", table_name="transaction")
    op.drop_table("transaction")
    op.drop_index("ix_recurring_user_created", table_name="recurringrule")
    op.drop_index("ix_recurring_due", table_name="recurringrule")
    op.drop_table("recurringrule")
    op.drop_index("ix_category_user_type", table_name="category")
    op.drop_table("category")
    op.drop_table("user")
