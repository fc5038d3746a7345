"""Transaction construction and settlement accounting for a ledger-recorded model marketplace."""

__version__ = "0.1.0"
