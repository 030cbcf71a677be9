from __future__ import annotations

import math
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import FlowDirection, RecurringFrequency

# yearly steps of this size from any present-day date stay inside the calendar
MAX_INTERVAL = 1000


def _validate_amount(v: float | None) -> float | None:
    if v is None:
        return v
    if not math.isfinite(v):
        raise ValueError("amount must be finite")
    if v < 0.01:
        raise ValueError("Amount must be greater than 0")
    return v


def _validate_interval(v: int | None) -> int | None:
    if v is None:
        return v
    if v < 1:
        raise ValueError("Interval must be at least 1")
    if v > MAX_INTERVAL:
        raise ValueError(f"Interval must be at most {MAX_INTERVAL}")
    return v


def _normalize_tags(v: list[str] | None) -> list[str] | None:
    if v is None:
        return v
    if len(v) > 10:
        raise ValueError("Maximum 10 tags allowed")
    return [t.strip() for t in v if t and t.strip()]


class TransactionTemplateIn(BaseModel):
    amount: float
    description: str = Field(..., max_length=500)
    type: FlowDirection
    category_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=100)
    tags: list[str] = Field(default_factory=list)
    payment_method: Optional[str] = Field(None, max_length=50)
    reference: Optional[str] = Field(None, max_length=200)

    @field_validator("amount")
    def positive_amount(cls, v: float):
        return _validate_amount(v)

    @field_validator("description")
    def description_not_blank(cls, v: str):
        v = v.strip()
        if not v:
            raise ValueError("Description is required")
        return v

    @field_validator("tags")
    def tags_limit(cls, v: list[str]):
        return _normalize_tags(v)


class TransactionTemplatePatch(BaseModel):
    amount: Optional[float] = None
    description: Optional[str] = Field(None, max_length=500)
    type: Optional[FlowDirection] = None
    category_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=100)
    tags: Optional[list[str]] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    reference: Optional[str] = Field(None, max_length=200)

    @field_validator("amount")
    def positive_amount(cls, v: float | None):
        return _validate_amount(v)

    @field_validator("description")
    def description_not_blank(cls, v: str | None):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Description must not be empty")
        return v

    @field_validator("tags")
    def tags_limit(cls, v: list[str] | None):
        return _normalize_tags(v)


class RecurringRuleCreate(BaseModel):
    template: TransactionTemplateIn
    frequency: RecurringFrequency
    interval: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    is_active: Optional[bool] = None

    @field_validator("interval")
    def interval_in_range(cls, v: int | None):
        return _validate_interval(v)


class RecurringRuleUpdate(BaseModel):
    """Partial update. Also used as the patch body of edit-future."""

    template: Optional[TransactionTemplatePatch] = None
    frequency: Optional[RecurringFrequency] = None
    interval: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None

    @field_validator("interval")
    def interval_in_range(cls, v: int | None):
        return _validate_interval(v)


class TransactionTemplateOut(BaseModel):
    amount: float
    description: str
    type: FlowDirection
    category_id: Optional[int]
    notes: Optional[str]
    tags: list[str]
    payment_method: Optional[str]
    reference: Optional[str]


class RecurringRuleOut(BaseModel):
    id: int
    user_id: int
    template: TransactionTemplateOut
    frequency: RecurringFrequency
    interval: int
    start_date: date
    end_date: Optional[date]
    next_run_date: date
    is_active: bool
    last_run_date: Optional[date]
    run_count: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionOut(BaseModel):
    id: int
    user_id: int
    occurred_at: date
    type: FlowDirection
    amount: float
    currency: str
    description: str
    category_id: Optional[int]
    notes: Optional[str]
    tags: list[str]
    payment_method: Optional[str]
    reference: Optional[str]
    recurring_rule_id: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class GenerateResultOut(BaseModel):
    generated_count: int
    transactions: list[TransactionOut]


class EditFutureResultOut(BaseModel):
    current: RecurringRuleOut
    successor: Optional[RecurringRuleOut] = None


class RecurringBulkDelete(BaseModel):
    ids: list[int] = Field(..., min_length=1)


class RecurringBulkDeleteResult(BaseModel):
    deleted_count: int
    failed_ids: list[int]


class RecurringPreviewOut(BaseModel):
    rule_id: int
    start: date
    end: date
    occurrences: list[date]


class GenerateDueFailure(BaseModel):
    rule_id: int
    error: str
    detail: str


class GenerateDueReport(BaseModel):
    as_of: date
    processed: int
    generated_count: int
    succeeded: list[int]
    failed: list[GenerateDueFailure]
