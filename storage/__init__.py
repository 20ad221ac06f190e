"""Storage package providing persistence for opportunities, trades and positions."""

from .opportunity_log import OpportunityLog
from .sqlite_repository import SQLiteRepository

__all__ = ["OpportunityLog", "SQLiteRepository"]
