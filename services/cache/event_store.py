"""
ALIGNWATCH Event Cache Store

Persistent cache of computed alignment events.

Writes happen only through ``regenerate(scope, events)``, which replaces
every row inside the scope with the new events in a single transaction.
Running the same regeneration twice leaves the same rows behind, and a
failure leaves the previous rows untouched. Rows outside the scope are
never touched.
"""

import logging
from collections import Counter
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from alignwatch.exceptions import ScopeError
from services.alignment.models import AccuracyTier, AlignmentEvent, Landmark, PhenomenonKind
from services.cache.database import Database
from services.cache.scopes import RegenerationScope

logger = logging.getLogger("alignwatch.EventStore")

__all__ = ["EventCacheStore"]

_COLUMNS = (
    "landmark_id, event_date, event_time, event_epoch, kind, azimuth, elevation, "
    "azimuth_diff, elevation_diff, quality_score, accuracy, moon_phase, "
    "moon_illumination, calculation_year"
)


def _to_row(event: AlignmentEvent) -> tuple:
    when = event.event_time.astimezone(timezone.utc).replace(microsecond=0)
    return (
        event.landmark_id,
        event.event_date.isoformat(),
        when.isoformat(),
        int(when.timestamp()),
        event.kind.value,
        event.azimuth,
        event.elevation,
        event.azimuth_diff,
        event.elevation_diff,
        event.quality_score,
        event.accuracy.value,
        event.moon_phase,
        event.moon_illumination,
        event.calculation_year,
    )


def _from_row(row) -> AlignmentEvent:
    return AlignmentEvent(
        landmark_id=row["landmark_id"],
        event_date=date.fromisoformat(row["event_date"]),
        event_time=datetime.fromisoformat(row["event_time"]),
        kind=PhenomenonKind(row["kind"]),
        azimuth=row["azimuth"],
        elevation=row["elevation"],
        azimuth_diff=row["azimuth_diff"],
        elevation_diff=row["elevation_diff"],
        accuracy=AccuracyTier(row["accuracy"]),
        quality_score=row["quality_score"],
        calculation_year=row["calculation_year"],
        moon_phase=row["moon_phase"],
        moon_illumination=row["moon_illumination"],
    )


class EventCacheStore:
    """Scoped, atomic cache of alignment events."""

    def __init__(self, db: Database):
        self.db = db

    # =========================================================================
    # Writes
    # =========================================================================

    def regenerate(
        self,
        scope: RegenerationScope,
        events: Iterable[AlignmentEvent],
        landmarks: Optional[Iterable[Landmark]] = None,
    ) -> int:
        """
        Replace every cached event inside a scope.

        When ``landmarks`` lists the landmarks the events were computed
        for, each is checked against the landmarks table inside the write
        transaction. A landmark that was removed or moved since is left
        out: its new events are dropped and its cached rows in the scope
        are kept for the job that owns the change.

        Args:
            scope: Slice of the cache being rebuilt
            events: Complete new contents of that slice
            landmarks: Landmarks as they were when the events were searched

        Returns:
            Number of events written

        Raises:
            ScopeError: An event lies outside the scope or two events share
                (landmark, date, kind); nothing is written
            StoreError: The database write failed; prior rows are intact
        """
        events = list(events)
        seen = set()
        for event in events:
            if not scope.contains(event):
                raise ScopeError(
                    f"Event {event.kind.value} {event.event_date} for landmark "
                    f"{event.landmark_id} is outside {scope.describe()}"
                )
            if event.key in seen:
                raise ScopeError(
                    f"Duplicate {event.kind.value} on {event.event_date} for landmark {event.landmark_id}"
                )
            seen.add(event.key)

        where, params = scope.where_clause()
        with self.db.transaction() as conn:
            stale = self._stale_landmarks(conn, landmarks) if landmarks is not None else set()
            if stale:
                marks = ", ".join("?" for _ in stale)
                where = f"({where}) AND landmark_id NOT IN ({marks})"
                params = [*params, *sorted(stale)]
                events = [e for e in events if e.landmark_id not in stale]
            deleted = conn.execute(f"DELETE FROM alignment_events WHERE {where}", params).rowcount
            conn.executemany(
                f"INSERT INTO alignment_events ({_COLUMNS}) "
                f"VALUES ({', '.join('?' for _ in range(14))})",
                [_to_row(e) for e in events],
            )

        if stale:
            logger.warning(
                f"Skipped landmark(s) {sorted(stale)} in {scope.describe()}: removed or moved during search"
            )
        logger.info(f"Regenerated {scope.describe()}: {deleted} removed, {len(events)} written")
        return len(events)

    @staticmethod
    def _stale_landmarks(conn, landmarks: Iterable[Landmark]) -> Set[int]:
        """Ids of searched landmarks that no longer exist with the searched coordinates."""
        current = {
            row["id"]: (row["latitude"], row["longitude"], row["elevation"])
            for row in conn.execute("SELECT id, latitude, longitude, elevation FROM landmarks")
        }
        return {
            lm.id for lm in landmarks
            if current.get(lm.id) != (lm.latitude, lm.longitude, lm.elevation)
        }

    def delete_before_year(self, cutoff_year: int) -> int:
        """Remove events whose calculation year is older than ``cutoff_year``."""
        with self.db.transaction() as conn:
            deleted = conn.execute(
                "DELETE FROM alignment_events WHERE calculation_year < ?", (cutoff_year,)
            ).rowcount
        logger.info(f"Archived {deleted} events older than {cutoff_year}")
        return deleted

    def delete_for_landmark(self, landmark_id: int) -> int:
        """Remove every event of one landmark."""
        with self.db.transaction() as conn:
            return conn.execute(
                "DELETE FROM alignment_events WHERE landmark_id = ?", (landmark_id,)
            ).rowcount

    # =========================================================================
    # Reads
    # =========================================================================

    def _select(self, where: str, params: Sequence[Any], limit: Optional[int] = None) -> List[AlignmentEvent]:
        sql = f"SELECT {_COLUMNS} FROM alignment_events WHERE {where} ORDER BY event_epoch, landmark_id, kind"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return [_from_row(r) for r in self.db.query(sql, params)]

    def events_in_range(
        self,
        start: date,
        end: date,
        landmark_id: Optional[int] = None,
        kinds: Optional[Iterable[PhenomenonKind]] = None,
    ) -> List[AlignmentEvent]:
        """Events with local dates in [start, end], ordered by time."""
        where = "event_date >= ? AND event_date <= ?"
        params: List[Any] = [start.isoformat(), end.isoformat()]
        if landmark_id is not None:
            where += " AND landmark_id = ?"
            params.append(landmark_id)
        if kinds is not None:
            kinds = list(kinds)
            if not kinds:
                return []
            where += f" AND kind IN ({', '.join('?' for _ in kinds)})"
            params.extend(k.value for k in kinds)
        return self._select(where, params)

    def events_for_date(self, day: date) -> List[AlignmentEvent]:
        """Events on one local date."""
        return self.events_in_range(day, day)

    def events_for_landmark_year(self, landmark_id: int, year: int) -> List[AlignmentEvent]:
        """One landmark's events in a calendar year."""
        return self.events_in_range(date(year, 1, 1), date(year, 12, 31), landmark_id=landmark_id)

    def events_in_scope(self, scope: RegenerationScope) -> List[AlignmentEvent]:
        """Current contents of a scope."""
        where, params = scope.where_clause()
        return self._select(where, params)

    def upcoming(self, limit: int = 10, now: Optional[datetime] = None) -> List[AlignmentEvent]:
        """The next ``limit`` events at or after ``now``."""
        now = now or datetime.now(timezone.utc)
        return self._select("event_epoch >= ?", [int(now.timestamp())], limit=limit)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def count_for_year(self, year: int) -> int:
        return self.db.scalar(
            "SELECT COUNT(*) FROM alignment_events WHERE calculation_year = ?", (year,)
        ) or 0

    def count(self) -> int:
        return self.db.scalar("SELECT COUNT(*) FROM alignment_events") or 0

    def stats(self) -> Dict[str, Any]:
        """Totals per year and per kind."""
        by_year = {
            row["calculation_year"]: row["n"]
            for row in self.db.query(
                "SELECT calculation_year, COUNT(*) AS n FROM alignment_events "
                "GROUP BY calculation_year ORDER BY calculation_year"
            )
        }
        by_kind = Counter({
            row["kind"]: row["n"]
            for row in self.db.query(
                "SELECT kind, COUNT(*) AS n FROM alignment_events GROUP BY kind"
            )
        })
        return {
            "total": sum(by_year.values()),
            "by_year": by_year,
            "by_kind": dict(by_kind),
        }
