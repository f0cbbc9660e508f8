"""
ALIGNWATCH Cache Package

SQLite persistence for landmarks and computed alignment events, with
scope-based atomic regeneration.
"""

from services.cache.database import Database
from services.cache.event_store import EventCacheStore
from services.cache.landmark_store import LandmarkStore
from services.cache.scopes import (
    RegenerationScope,
    SingleLandmarkYearScope,
    WholeYearScope,
    YearMonthDayScope,
    YearMonthScope,
)

__all__ = [
    "Database",
    "EventCacheStore",
    "LandmarkStore",
    "RegenerationScope",
    "SingleLandmarkYearScope",
    "WholeYearScope",
    "YearMonthDayScope",
    "YearMonthScope",
]
