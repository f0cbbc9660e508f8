"""
ALIGNWATCH Regeneration Scopes

A scope names the exact slice of the event cache a regeneration replaces:
a whole year, a month, a single day, or one landmark's year. Month and day
scopes may be narrowed to a set of landmarks.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from typing import Any, List, Optional, Tuple

from services.alignment.models import AlignmentEvent


def _normalize_ids(ids) -> Optional[Tuple[int, ...]]:
    if ids is None:
        return None
    return tuple(sorted(set(int(i) for i in ids)))


class RegenerationScope:
    """Common behaviour of all scopes; subclasses define the slice."""

    def date_range(self) -> Tuple[date, date]:
        """First and last local date covered, inclusive."""
        raise NotImplementedError

    def landmark_filter(self) -> Optional[Tuple[int, ...]]:
        """Landmark ids covered, or None for every landmark."""
        return None

    def contains(self, event: AlignmentEvent) -> bool:
        """Whether an event falls inside this scope."""
        start, end = self.date_range()
        if not start <= event.event_date <= end:
            return False
        ids = self.landmark_filter()
        return ids is None or event.landmark_id in ids

    def where_clause(self) -> Tuple[str, List[Any]]:
        """SQL predicate and parameters selecting the rows in scope."""
        start, end = self.date_range()
        sql = "event_date >= ? AND event_date <= ?"
        params: List[Any] = [start.isoformat(), end.isoformat()]
        ids = self.landmark_filter()
        if ids is not None:
            if not ids:
                return "0", []
            sql += f" AND landmark_id IN ({', '.join('?' for _ in ids)})"
            params.extend(ids)
        return sql, params

    def describe(self) -> str:
        start, end = self.date_range()
        ids = self.landmark_filter()
        who = "all landmarks" if ids is None else f"landmarks {list(ids)}"
        return f"{type(self).__name__} {start}..{end} ({who})"


@dataclass(frozen=True)
class WholeYearScope(RegenerationScope):
    """Every landmark, January 1 through December 31."""
    year: int

    def date_range(self) -> Tuple[date, date]:
        return date(self.year, 1, 1), date(self.year, 12, 31)


@dataclass(frozen=True)
class YearMonthScope(RegenerationScope):
    """One calendar month, optionally limited to some landmarks."""
    year: int
    month: int
    landmark_ids: Optional[Tuple[int, ...]] = None

    def __post_init__(self):
        object.__setattr__(self, "landmark_ids", _normalize_ids(self.landmark_ids))

    def date_range(self) -> Tuple[date, date]:
        last = calendar.monthrange(self.year, self.month)[1]
        return date(self.year, self.month, 1), date(self.year, self.month, last)

    def landmark_filter(self) -> Optional[Tuple[int, ...]]:
        return self.landmark_ids


@dataclass(frozen=True)
class YearMonthDayScope(RegenerationScope):
    """One local date, optionally limited to some landmarks."""
    year: int
    month: int
    day: int
    landmark_ids: Optional[Tuple[int, ...]] = None

    def __post_init__(self):
        object.__setattr__(self, "landmark_ids", _normalize_ids(self.landmark_ids))

    def date_range(self) -> Tuple[date, date]:
        d = date(self.year, self.month, self.day)
        return d, d

    def landmark_filter(self) -> Optional[Tuple[int, ...]]:
        return self.landmark_ids


@dataclass(frozen=True)
class SingleLandmarkYearScope(RegenerationScope):
    """One landmark's whole year."""
    landmark_id: int
    year: int

    def date_range(self) -> Tuple[date, date]:
        return date(self.year, 1, 1), date(self.year, 12, 31)

    def landmark_filter(self) -> Optional[Tuple[int, ...]]:
        return (self.landmark_id,)
