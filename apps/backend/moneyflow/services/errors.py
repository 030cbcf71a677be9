"""Domain errors raised by the recurring services.

The HTTP layer maps these onto status codes in one place
(see ``moneyflow.main``); services never raise ``HTTPException``.
"""

from __future__ import annotations


class RecurringError(Exception):
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class RuleValidationError(RecurringError):
    status_code = 400


class RuleNotFound(RecurringError):
    status_code = 404

    def __init__(self, detail: str = "Recurring transaction not found") -> None:
        super().__init__(detail)


class RuleOwnershipError(RecurringError):
    status_code = 403

    def __init__(self, detail: str = "You can only access your own recurring transactions") -> None:
        super().__init__(detail)


class CategoryNotFound(RecurringError):
    status_code = 404


class RuleInactive(RecurringError):
    status_code = 400

    def __init__(self, detail: str = "Cannot generate transactions for inactive recurring transaction") -> None:
        super().__init__(detail)


class GenerationConflict(RecurringError):
    """Another writer advanced the rule between our read and our commit."""

    status_code = 409
