"""AFAS Profit stock connector.

Exposes the connection, the record fetcher and the high-level
``run_stock_sync`` API for programmatic use.
"""

from .connection import Connection  # Remote calls
from .fetcher import RecordFetcher  # Typed retrieval
from .runner import run_stock_sync  # Public API for synchronisation

__all__ = ["Connection", "RecordFetcher", "run_stock_sync"]  # Re-exported symbols
