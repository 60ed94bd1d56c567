"""Ledger (durable store) for StockArena."""

from arena.services.ledger.base import NewHolding, Ledger
from arena.services.ledger.sql import SqlLedger

__all__ = ["NewHolding", "Ledger", "SqlLedger"]
