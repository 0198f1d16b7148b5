"""Storage layer for TenderDesk.

This package provides:
- A DocumentStore interface with in-memory and MongoDB backends
- A YAML-backed local preference store with atomic writes
"""

from .base import SERVER_TIMESTAMP, DocumentStore, coerce_datetime, matches_filter
from .memory import MemoryDocumentStore
from .preferences import PreferenceStore, TimerSettings

__all__ = [
    "SERVER_TIMESTAMP",
    "DocumentStore",
    "MemoryDocumentStore",
    "PreferenceStore",
    "TimerSettings",
    "coerce_datetime",
    "matches_filter",
]
