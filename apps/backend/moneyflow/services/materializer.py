from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from moneyflow import models
from moneyflow.core.config import settings


class TransactionMaterializer:
    """Turn one occurrence of a rule into a concrete transaction row.

    Rows are added and flushed but never committed here; the generation
    engine owns the commit so a backfill lands atomically with its cursor.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def create(self, rule: models.RecurringRule, occurred_at: date) -> models.Transaction:
        tx = models.Transaction(
            user_id=rule.user_id,
            occurred_at=occurred_at,
            type=rule.type,
            amount=rule.amount,
            currency=settings.DEFAULT_CURRENCY,
            description=rule.description,
            category_id=rule.category_id,
            notes=rule.notes,
            tags=list(rule.tags or []),
            payment_method=rule.payment_method,
            reference=rule.reference,
            recurring_rule_id=rule.id,
        )
        self.db.add(tx)
        self.db.flush()
        return tx
