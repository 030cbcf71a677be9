from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from moneyflow import models, schemas
from moneyflow.services.category_service import CategoryService
from moneyflow.services.errors import RuleNotFound, RuleOwnershipError, RuleValidationError
from moneyflow.services.locks import rule_lock
from moneyflow.services.recurrence import END_OF_CALENDAR, first_occurrence_after, iter_occurrences


logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


def round_amount(value: float | Decimal) -> Decimal:
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def validate_frequency_and_interval(frequency: models.RecurringFrequency, interval: Optional[int]) -> None:
    if frequency == models.RecurringFrequency.CUSTOM and (interval is None or interval < 1):
        raise RuleValidationError("Interval is required and must be at least 1 when frequency is custom")
    if interval is not None and interval < 1:
        raise RuleValidationError("Interval must be at least 1")


def validate_date_range(start_date: date, end_date: Optional[date]) -> None:
    if end_date is not None and end_date < start_date:
        raise RuleValidationError("End date must be after start date")


def apply_template_patch(template: dict, patch: dict) -> dict:
    """Merge a template patch field by field; amounts are re-rounded."""
    merged = dict(template)
    for key, value in patch.items():
        if key == "amount" and value is not None:
            value = round_amount(value)
        if key in ("amount", "description", "type", "tags") and value is None:
            # required template fields cannot be cleared
            continue
        merged[key] = value
    return merged


class RecurringRuleService:
    """Persistence and field validation for recurring rules.

    Every lookup is scoped to an owner and ignores soft-deleted rows.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.categories = CategoryService(db)

    def get(self, owner_id: int, rule_id: int) -> models.RecurringRule:
        rule = (
            self.db.query(models.RecurringRule)
            .filter(models.RecurringRule.id == rule_id, models.RecurringRule.deleted_at.is_(None))
            .first()
        )
        if rule is None:
            raise RuleNotFound()
        if rule.user_id != owner_id:
            raise RuleOwnershipError()
        return rule

    def get_all(
        self,
        owner_id: int,
        *,
        frequency: Optional[models.RecurringFrequency] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> list[models.RecurringRule]:
        q = self.db.query(models.RecurringRule).filter(
            models.RecurringRule.user_id == owner_id,
            models.RecurringRule.deleted_at.is_(None),
        )
        if frequency is not None:
            q = q.filter(models.RecurringRule.frequency == frequency)
        if is_active is not None:
            q = q.filter(models.RecurringRule.is_active == bool(is_active))
        if search:
            pattern = f"%{search.strip()}%"
            q = q.filter(
                or_(
                    models.RecurringRule.description.ilike(pattern),
                    models.RecurringRule.notes.ilike(pattern),
                    models.RecurringRule.reference.ilike(pattern),
                )
            )
        return q.order_by(models.RecurringRule.created_at.desc(), models.RecurringRule.id.desc()).all()

    def ensure_category(self, owner_id: int, template: dict) -> None:
        if template.get("category_id") is not None:
            self.categories.validate_category(owner_id, template["category_id"], template["type"])

    def create(self, owner_id: int, payload: schemas.RecurringRuleCreate) -> models.RecurringRule:
        validate_frequency_and_interval(payload.frequency, payload.interval)
        validate_date_range(payload.start_date, payload.end_date)

        template = payload.template.model_dump()
        template["amount"] = round_amount(template["amount"])
        self.ensure_category(owner_id, template)

        rule = models.RecurringRule(
            user_id=owner_id,
            **template,
            frequency=payload.frequency,
            interval=payload.interval or 1,
            start_date=payload.start_date,
            end_date=payload.end_date,
            next_run_date=payload.start_date,
            is_active=True if payload.is_active is None else payload.is_active,
            run_count=0,
        )
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info("Created recurring rule %s for user %s (%s)", rule.id, owner_id, rule.frequency.value)
        return rule

    def update(self, owner_id: int, rule_id: int, payload: schemas.RecurringRuleUpdate) -> models.RecurringRule:
        rule = self.get(owner_id, rule_id)
        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            return rule

        with rule_lock(rule.id):
            # the cursor may have moved since get(); re-anchoring must see the latest last_run_date
            self.db.refresh(rule)
            if rule.deleted_at is not None:
                raise RuleNotFound()
            self._apply_update(owner_id, rule, changes)
            self.db.commit()
            self.db.refresh(rule)
        return rule

    def _apply_update(self, owner_id: int, rule: models.RecurringRule, changes: dict) -> None:
        frequency = changes.get("frequency") or rule.frequency
        interval = changes["interval"] if changes.get("interval") is not None else rule.interval
        if "frequency" in changes or "interval" in changes:
            validate_frequency_and_interval(frequency, interval)

        start_date = changes.get("start_date") or rule.start_date
        end_date = changes["end_date"] if "end_date" in changes else rule.end_date
        validate_date_range(start_date, end_date)

        template = rule.template
        template_patch = changes.get("template") or {}
        if template_patch:
            template = apply_template_patch(template, template_patch)
            if "category_id" in template_patch or "type" in template_patch:
                self.ensure_category(owner_id, template)

        for key, value in template.items():
            setattr(rule, key, value)
        rule.frequency = frequency
        rule.interval = interval
        rule.start_date = start_date
        rule.end_date = end_date
        if changes.get("is_active") is not None:
            rule.is_active = changes["is_active"]

        if {"frequency", "interval", "start_date"} & changes.keys():
            # Re-anchor the cursor on the new schedule without revisiting materialized dates.
            rule.next_run_date = first_occurrence_after(frequency, interval, start_date, rule.last_run_date)

        if rule.next_run_date == END_OF_CALENDAR or (rule.end_date is not None and rule.next_run_date > rule.end_date):
            rule.is_active = False

    def remove(self, owner_id: int, rule_id: int) -> None:
        rule = self.get(owner_id, rule_id)
        rule.deleted_at = models.now_local_naive()
        self.db.commit()
        logger.info("Soft-deleted recurring rule %s", rule_id)

    def bulk_delete(self, owner_id: int, ids: list[int]) -> tuple[int, list[int]]:
        rows = (
            self.db.query(models.RecurringRule)
            .filter(
                models.RecurringRule.id.in_(ids),
                models.RecurringRule.user_id == owner_id,
                models.RecurringRule.deleted_at.is_(None),
            )
            .all()
        )
        if not rows:
            raise RuleOwnershipError("No items found or they do not belong to you")
        deleted_at = models.now_local_naive()
        for row in rows:
            row.deleted_at = deleted_at
        self.db.commit()
        found = {row.id for row in rows}
        return len(rows), [i for i in ids if i not in found]

    def preview(self, owner_id: int, rule_id: int, start: date, end: date) -> list[date]:
        if end < start:
            raise RuleValidationError("end must not be before start")
        rule = self.get(owner_id, rule_id)
        return [
            d
            for d in iter_occurrences(rule.frequency, rule.interval, rule.next_run_date, until=end, end_date=rule.end_date)
            if d >= start
        ]

    def transactions(self, owner_id: int, rule_id: int) -> list[models.Transaction]:
        rule = self.get(owner_id, rule_id)
        return (
            self.db.query(models.Transaction)
            .filter(
                models.Transaction.recurring_rule_id == rule.id,
                models.Transaction.deleted_at.is_(None),
            )
            .order_by(models.Transaction.occurred_at.desc())
            .all()
        )
