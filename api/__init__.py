"""Admin HTTP API for the renewal ledger."""

__version__ = "1.0.0"
