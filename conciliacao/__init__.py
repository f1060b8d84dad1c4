"""Bank-statement reconciliation engine for the church back office."""

__version__ = "1.0.0"
