from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from moneyflow import models, schemas
from moneyflow.services.errors import RuleValidationError
from moneyflow.services.locks import rule_lock
from moneyflow.services.recurrence import END_OF_CALENDAR, next_occurrence
from moneyflow.services.recurring_rule_service import (
    RecurringRuleService,
    apply_template_patch,
    validate_frequency_and_interval,
)


logger = logging.getLogger(__name__)


@dataclass
class SplitResult:
    current: models.RecurringRule
    successor: Optional[models.RecurringRule]


class SeriesEditor:
    """Pause, resume, skip and split recurring series.

    Mutations that move the cursor take the same per-rule lock as generation.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.rules = RecurringRuleService(db)

    def pause(self, owner_id: int, rule_id: int) -> models.RecurringRule:
        rule = self.rules.get(owner_id, rule_id)
        with rule_lock(rule.id):
            self.db.refresh(rule)
            if rule.is_active:
                rule.is_active = False
                self.db.commit()
                self.db.refresh(rule)
        return rule

    def resume(self, owner_id: int, rule_id: int) -> models.RecurringRule:
        # The cursor is left alone: missed occurrences backfill on the next generate.
        rule = self.rules.get(owner_id, rule_id)
        with rule_lock(rule.id):
            self.db.refresh(rule)
            if not rule.is_active:
                rule.is_active = True
                self.db.commit()
                self.db.refresh(rule)
        return rule

    def skip_next(self, owner_id: int, rule_id: int) -> models.RecurringRule:
        rule = self.rules.get(owner_id, rule_id)
        with rule_lock(rule.id):
            self.db.refresh(rule)
            skipped = rule.next_run_date
            rule.next_run_date = next_occurrence(rule.frequency, rule.interval, skipped)
            self.db.commit()
            self.db.refresh(rule)
        logger.info("Skipped %s for recurring rule %s", skipped.isoformat(), rule.id)
        return rule

    def edit_future(
        self,
        owner_id: int,
        rule_id: int,
        patch: schemas.RecurringRuleUpdate,
        *,
        end_current: bool = True,
    ) -> SplitResult:
        """Split the series at its cursor.

        The current rule keeps its history; a successor starting at the split
        point carries the patched terms and is independent from then on.
        """
        current = self.rules.get(owner_id, rule_id)
        changes = patch.model_dump(exclude_unset=True)

        with rule_lock(current.id):
            self.db.refresh(current)
            split_point = current.next_run_date

            frequency = changes.get("frequency") or current.frequency
            interval = changes["interval"] if changes.get("interval") is not None else current.interval
            validate_frequency_and_interval(frequency, interval)

            end_date = changes["end_date"] if "end_date" in changes else current.end_date
            if end_date is not None and end_date < split_point:
                raise RuleValidationError("End date must not be before the split point")

            template = current.template
            template_patch = changes.get("template") or {}
            if template_patch:
                template = apply_template_patch(template, template_patch)
                if "category_id" in template_patch or "type" in template_patch:
                    self.rules.ensure_category(owner_id, template)
            template["tags"] = list(template.get("tags") or [])

            is_active = changes["is_active"] if changes.get("is_active") is not None else current.is_active
            next_run_date = next_occurrence(frequency, interval, split_point)
            if next_run_date == END_OF_CALENDAR or (end_date is not None and next_run_date > end_date):
                is_active = False

            successor = models.RecurringRule(
                user_id=current.user_id,
                **template,
                frequency=frequency,
                interval=interval,
                start_date=split_point,
                end_date=end_date,
                next_run_date=next_run_date,
                is_active=is_active,
                run_count=0,
            )

            if end_current:
                current.end_date = split_point
                current.is_active = False
            self.db.add(successor)
            self.db.commit()
            self.db.refresh(current)
            self.db.refresh(successor)

        logger.info(
            "Split recurring rule %s at %s into successor %s (end_current=%s)",
            current.id,
            split_point.isoformat(),
            successor.id,
            end_current,
        )
        return SplitResult(current=current, successor=successor)
