"""moneyflow backend: recurring transaction engine over a personal-finance ledger."""

__version__ = "0.1.0"
