from __future__ import annotations

from sqlalchemy.orm import Session

from moneyflow import models
from moneyflow.services.errors import CategoryNotFound


class CategoryService:
    """Read-only view of the category collaborator used by rule validation."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def validate_category(self, owner_id: int, category_id: int, flow: models.FlowDirection) -> None:
        category = (
            self.db.query(models.Category)
            .filter(
                models.Category.id == category_id,
                models.Category.user_id == owner_id,
                models.Category.type == flow,
                models.Category.deleted_at.is_(None),
            )
            .first()
        )
        if category is None:
            label = "Expense" if flow == models.FlowDirection.EXPENSE else "Income"
            raise CategoryNotFound(f"{label} category not found or does not belong to you")
