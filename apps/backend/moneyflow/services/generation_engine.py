"""Catch-up generation of recurring transactions.

The rule row is the schedule's state machine: ``next_run_date`` is the cursor
and the only source of truth for "what is due next". Materialized transactions
are never scanned to infer position.

A generate call plans the whole backfill in memory, materializes the rows,
then writes the new cursor with a conditional UPDATE guarded on the cursor it
started from. Rows and cursor commit together; any failure rolls back both,
so a retry resumes from the original cursor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from moneyflow import models
from moneyflow.services.errors import GenerationConflict, RecurringError, RuleInactive, RuleNotFound
from moneyflow.services.locks import rule_lock
from moneyflow.services.materializer import TransactionMaterializer
from moneyflow.services.recurrence import END_OF_CALENDAR, next_occurrence
from moneyflow.services.recurring_rule_service import RecurringRuleService


logger = logging.getLogger(__name__)


@dataclass
class CatchUpPlan:
    occurrences: list[date]
    next_run_date: date
    last_run_date: Optional[date]
    run_count: int
    is_active: bool


def plan_catch_up(
    *,
    frequency: models.RecurringFrequency,
    interval: int,
    start_date: date,
    end_date: Optional[date],
    next_run_date: date,
    last_run_date: Optional[date],
    run_count: int,
    as_of: date,
) -> CatchUpPlan:
    """Walk the cursor up to ``as_of`` and return the resulting rule state.

    Pure: no I/O, no mutation of the inputs.
    """
    cursor = next_run_date
    occurrences: list[date] = []
    while cursor <= as_of and cursor != END_OF_CALENDAR:
        if end_date is not None and cursor > end_date:
            break
        if cursor < start_date:
            cursor = next_occurrence(frequency, interval, cursor)
            continue
        occurrences.append(cursor)
        last_run_date = cursor
        run_count += 1
        cursor = next_occurrence(frequency, interval, cursor)
        if end_date is not None and cursor > end_date:
            break

    # a cursor past end_date or off the calendar can never produce again
    is_active = cursor != END_OF_CALENDAR and not (end_date is not None and cursor > end_date)
    return CatchUpPlan(
        occurrences=occurrences,
        next_run_date=cursor,
        last_run_date=last_run_date,
        run_count=run_count,
        is_active=is_active,
    )


@dataclass
class GenerationResult:
    generated_count: int
    transactions: list[models.Transaction]


@dataclass
class DueRunFailure:
    rule_id: int
    error: str
    detail: str


@dataclass
class DueRunReport:
    as_of: date
    processed: int = 0
    generated_count: int = 0
    succeeded: list[int] = field(default_factory=list)
    failed: list[DueRunFailure] = field(default_factory=list)


class GenerationEngine:
    def __init__(self, db: Session, materializer: TransactionMaterializer | None = None) -> None:
        self.db = db
        self.rules = RecurringRuleService(db)
        self.materializer = materializer or TransactionMaterializer(db)

    def generate_for_owner(self, owner_id: int, rule_id: int, as_of: date | None = None) -> GenerationResult:
        rule = self.rules.get(owner_id, rule_id)
        return self.generate(rule, as_of)

    def generate(self, rule: models.RecurringRule, as_of: date | None = None) -> GenerationResult:
        as_of = as_of or models.today_local()
        rule_id = rule.id
        with rule_lock(rule_id):
            # re-read under the lock; another caller may have just advanced it
            self.db.refresh(rule)
            if rule.deleted_at is not None:
                raise RuleNotFound()
            if not rule.is_active:
                raise RuleInactive()

            expected_cursor = rule.next_run_date
            expected_count = rule.run_count
            plan = plan_catch_up(
                frequency=rule.frequency,
                interval=rule.interval,
                start_date=rule.start_date,
                end_date=rule.end_date,
                next_run_date=expected_cursor,
                last_run_date=rule.last_run_date,
                run_count=expected_count,
                as_of=as_of,
            )
            if not plan.occurrences and plan.next_run_date == expected_cursor and plan.is_active:
                return GenerationResult(generated_count=0, transactions=[])

            try:
                transactions = [self.materializer.create(rule, d) for d in plan.occurrences]
                self._commit_cursor(rule_id, expected_cursor, expected_count, plan)
            except IntegrityError as exc:
                self.db.rollback()
                raise GenerationConflict(
                    f"Recurring transaction {rule_id} already has an occurrence in this range"
                ) from exc
            except Exception:
                self.db.rollback()
                raise

            for tx in transactions:
                self.db.refresh(tx)
            self.db.refresh(rule)

        logger.info(
            "Generated %d transaction(s) for recurring rule %s; next run %s%s",
            len(transactions),
            rule_id,
            plan.next_run_date.isoformat(),
            "" if plan.is_active else " (deactivated)",
        )
        return GenerationResult(generated_count=len(transactions), transactions=transactions)

    def _commit_cursor(self, rule_id: int, expected_cursor: date, expected_count: int, plan: CatchUpPlan) -> None:
        result = self.db.execute(
            update(models.RecurringRule)
            .where(
                models.RecurringRule.id == rule_id,
                models.RecurringRule.next_run_date == expected_cursor,
                models.RecurringRule.run_count == expected_count,
                models.RecurringRule.is_active.is_(True),
                models.RecurringRule.deleted_at.is_(None),
            )
            .values(
                next_run_date=plan.next_run_date,
                last_run_date=plan.last_run_date,
                run_count=plan.run_count,
                is_active=plan.is_active,
                updated_at=models.now_local_naive(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise GenerationConflict(f"Recurring transaction {rule_id} was advanced or paused by another writer")
        self.db.commit()

    def find_due(self, as_of: date, *, owner_id: int | None = None) -> list[int]:
        q = self.db.query(models.RecurringRule.id).filter(
            models.RecurringRule.is_active.is_(True),
            models.RecurringRule.deleted_at.is_(None),
            models.RecurringRule.next_run_date <= as_of,
            or_(models.RecurringRule.end_date.is_(None), models.RecurringRule.end_date >= as_of),
        )
        if owner_id is not None:
            q = q.filter(models.RecurringRule.user_id == owner_id)
        return [row[0] for row in q.order_by(models.RecurringRule.id).all()]

    def generate_due(self, as_of: date | None = None, *, owner_id: int | None = None) -> DueRunReport:
        """Run ``generate`` for every due rule; one rule failing never stops the rest."""
        as_of = as_of or models.today_local()
        report = DueRunReport(as_of=as_of)
        for rule_id in self.find_due(as_of, owner_id=owner_id):
            report.processed += 1
            try:
                rule = self.db.get(models.RecurringRule, rule_id)
                if rule is None:
                    raise RuleNotFound()
                result = self.generate(rule, as_of)
            except RecurringError as exc:
                self.db.rollback()
                logger.warning("Skipped recurring rule %s: %s", rule_id, exc.detail)
                report.failed.append(DueRunFailure(rule_id=rule_id, error=type(exc).__name__, detail=exc.detail))
                continue
            except Exception as exc:
                self.db.rollback()
                logger.exception("Recurring generation failed for rule %s", rule_id)
                report.failed.append(DueRunFailure(rule_id=rule_id, error=type(exc).__name__, detail=str(exc)))
                continue
            report.succeeded.append(rule_id)
            report.generated_count += result.generated_count

        logger.info(
            "Due run as of %s: %d processed, %d generated, %d failed",
            as_of.isoformat(),
            report.processed,
            report.generated_count,
            len(report.failed),
        )
        return report
