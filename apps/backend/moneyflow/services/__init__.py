"""
Services package

Business logic for recurring rules: schedule math, the rule store, the
generation engine and the series editor.
"""

from .category_service import CategoryService
from .generation_engine import GenerationEngine, GenerationResult, DueRunReport, plan_catch_up
from .materializer import TransactionMaterializer
from .recurring_rule_service import RecurringRuleService
from .series_editor import SeriesEditor, SplitResult

__all__ = [
    "CategoryService",
    "GenerationEngine",
    "GenerationResult",
    "DueRunReport",
    "plan_catch_up",
    "TransactionMaterializer",
    "RecurringRuleService",
    "SeriesEditor",
    "SplitResult",
]
