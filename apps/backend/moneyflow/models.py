from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from zoneinfo import ZoneInfo

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Index,
    Boolean,
    JSON,
)
from sqlalchemy.orm import Mapped, mapped_column

from .core.config import settings
from .core.database import Base


try:
    LOCAL_ZONE = ZoneInfo(getattr(settings, "TIMEZONE", "Asia/Kuala_Lumpur"))
except Exception:
    LOCAL_ZONE = ZoneInfo("UTC")


def now_local_naive() -> datetime:
    """Return naive datetime normalized to configured local timezone."""
    return datetime.now(LOCAL_ZONE).replace(tzinfo=None)


def today_local() -> date:
    return now_local_naive().date()


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_local_naive, onupdate=now_local_naive, nullable=False)


class SoftDeleteMixin:
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class User(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)


class FlowDirection(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


class Category(Base, TimestampMixin, SoftDeleteMixin):
    # Owned by the category/budget collaborator; the engine only reads it.
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    type: Mapped[FlowDirection] = mapped_column(SAEnum(FlowDirection, name="flow_direction"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (
        Index("ix_category_user_type", "user_id", "type"),
    )


class Transaction(Base, TimestampMixin, SoftDeleteMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    occurred_at: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[FlowDirection] = mapped_column(SAEnum(FlowDirection, name="flow_direction"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id"))
    notes: Mapped[str | None] = mapped_column(String(100))
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    payment_method: Mapped[str | None] = mapped_column(String(50))
    reference: Mapped[str | None] = mapped_column(String(200))
    # No cascade: soft-deleting a rule keeps the history it produced.
    recurring_rule_id: Mapped[int | None] = mapped_column(ForeignKey("recurringrule.id"), nullable=True)

    __table_args__ = (
        UniqueConstraint("recurring_rule_id", "occurred_at", name="uq_txn_rule_occurrence"),
        Index("ix_txn_user_date", "user_id", "occurred_at"),
        CheckConstraint("amount > 0", name="ck_txn_amount_positive"),
    )


class RecurringFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


TEMPLATE_FIELDS = (
    "amount",
    "description",
    "type",
    "category_id",
    "notes",
    "tags",
    "payment_method",
    "reference",
)


class RecurringRule(Base, TimestampMixin, SoftDeleteMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)

    # --- transaction template ------------------------------------------------
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    type: Mapped[FlowDirection] = mapped_column(SAEnum(FlowDirection, name="flow_direction"), nullable=False)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("category.id"))
    notes: Mapped[str | None] = mapped_column(String(100))
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    payment_method: Mapped[str | None] = mapped_column(String(50))
    reference: Mapped[str | None] = mapped_column(String(200))

    # --- schedule --------------------------------------------------------------
    frequency: Mapped[RecurringFrequency] = mapped_column(SAEnum(RecurringFrequency), nullable=False)
    interval: Mapped[int] = mapped_column("repeat_interval", Integer, nullable=False, default=1)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)

    # --- run bookkeeping (the cursor) ----------------------------------------
    next_run_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_run_date: Mapped[date | None] = mapped_column(Date)
    run_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def template(self) -> dict:
        return {name: getattr(self, name) for name in TEMPLATE_FIELDS}

    __table_args__ = (
        Index("ix_recurring_due", "is_active", "next_run_date"),
        Index("ix_recurring_user_created", "user_id", "created_at"),
        CheckConstraint("repeat_interval >= 1", name="ck_recurring_interval_positive"),
        CheckConstraint("amount > 0", name="ck_recurring_amount_positive"),
        CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_recurring_date_range"),
    )
