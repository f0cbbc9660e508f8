"""
ALIGNWATCH Recalculation

Two halves of turning "this slice is stale" into fresh cached events:

- RecalculationService executes queued jobs: it runs the alignment search
  for the landmarks and dates a payload names and hands the result to the
  event cache as one scoped regeneration. It never sees the queue.
- RecalculationTriggers is the surface operators and the landmark layer
  call. It only turns requests into queued jobs.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from alignwatch.constants import PEAK_TIMEZONE
from alignwatch.exceptions import JobError
from alignwatch.jobs import (
    ArchiveEvents,
    Job,
    Priority,
    RegenerateDay,
    RegenerateLandmarkYears,
    RegenerateMonth,
    RegenerateYear,
    VerifyYear,
)
from alignwatch.logging_config import log_timing
from alignwatch.work_queue import JobContext, WorkQueue
from services.alignment.models import AlignmentEvent, Landmark
from services.alignment.search_engine import AlignmentSearchEngine
from services.cache.event_store import EventCacheStore
from services.cache.landmark_store import LandmarkStore
from services.cache.scopes import (
    RegenerationScope,
    SingleLandmarkYearScope,
    WholeYearScope,
    YearMonthDayScope,
    YearMonthScope,
)

logger = logging.getLogger("alignwatch.Recalculation")

__all__ = ["RecalculationService", "RecalculationTriggers"]


class RecalculationService:
    """
    Job executor that regenerates cached events.

    Searches run in worker threads, at most ``search_concurrency`` landmarks
    at a time; store writes run in a thread as well so the event loop stays
    responsive. Jobs touching the same calendar year hold that year's lock
    from the landmark read to the write, so overlapping scopes never
    interleave.
    """

    def __init__(
        self,
        engine: AlignmentSearchEngine,
        events: EventCacheStore,
        landmarks: LandmarkStore,
        search_concurrency: int = 2,
    ):
        self.engine = engine
        self.events = events
        self.landmarks = landmarks
        self.search_concurrency = search_concurrency
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._year_locks: Dict[int, asyncio.Lock] = {}

    def _year_lock(self, year: int) -> asyncio.Lock:
        lock = self._year_locks.get(year)
        if lock is None:
            lock = self._year_locks[year] = asyncio.Lock()
        return lock

    async def execute(self, job: Job, context: JobContext) -> Dict[str, Any]:
        """Dispatch a job payload to its handler."""
        payload = job.payload
        if isinstance(payload, RegenerateYear):
            return await self.regenerate_year(payload.year, context)
        if isinstance(payload, RegenerateLandmarkYears):
            return await self.regenerate_landmark_years(
                payload.landmark_id, payload.start_year, payload.end_year, context,
            )
        if isinstance(payload, RegenerateMonth):
            return await self.regenerate_month(payload.year, payload.month, payload.landmark_ids, context)
        if isinstance(payload, RegenerateDay):
            return await self.regenerate_day(
                payload.landmark_id, date(payload.year, payload.month, payload.day), context,
            )
        if isinstance(payload, VerifyYear):
            return await self.verify_year(payload.year, payload.regenerate_if_missing, context)
        if isinstance(payload, ArchiveEvents):
            deleted = await asyncio.to_thread(self.events.delete_before_year, payload.cutoff_year)
            return {"cutoff_year": payload.cutoff_year, "deleted": deleted}
        raise JobError(f"Unsupported job payload: {type(payload).__name__}")

    # =========================================================================
    # Handlers
    # =========================================================================

    async def regenerate_year(self, year: int, context: JobContext) -> Dict[str, Any]:
        """Recompute every landmark for a year in one scoped write."""
        async with self._year_lock(year):
            return await self._regenerate_year(year, context)

    async def _regenerate_year(self, year: int, context: JobContext) -> Dict[str, Any]:
        landmarks = await asyncio.to_thread(self.landmarks.list)
        with log_timing(logger, f"regenerate year {year}", level=logging.INFO):
            events = await self._search_all(
                landmarks, lambda lm: self._search_year(lm, year, context), context,
            )
            written = await self._write(WholeYearScope(year), events, landmarks, context)
        return {"year": year, "landmarks": len(landmarks), "events": written}

    async def regenerate_landmark_years(
        self,
        landmark_id: int,
        start_year: int,
        end_year: int,
        context: JobContext,
    ) -> Dict[str, Any]:
        """Recompute one landmark year by year, pausing between years."""
        per_year: Dict[int, int] = {}
        for year in range(start_year, end_year + 1):
            async with self._year_lock(year):
                landmark = await asyncio.to_thread(self.landmarks.get, landmark_id)
                events = await asyncio.to_thread(self._search_year, landmark, year, context)
                per_year[year] = await self._write(
                    SingleLandmarkYearScope(landmark_id, year), events, [landmark], context,
                )
            logger.info(f"Landmark {landmark_id} year {year}: {per_year[year]} events")
            if year < end_year:
                await context.pause()
        return {"landmark_id": landmark_id, "events": per_year}

    async def regenerate_month(
        self,
        year: int,
        month: int,
        landmark_ids: Optional[Iterable[int]],
        context: JobContext,
    ) -> Dict[str, Any]:
        """Recompute a month for all or the listed landmarks."""
        async with self._year_lock(year):
            if landmark_ids is None:
                landmarks = await asyncio.to_thread(self.landmarks.list)
            else:
                landmarks = [await asyncio.to_thread(self.landmarks.get, i) for i in landmark_ids]

            events = await self._search_all(
                landmarks, lambda lm: self.engine.search_month(lm, year, month), context,
            )
            scope = YearMonthScope(year, month, landmark_ids)
            written = await self._write(scope, events, landmarks, context)
        return {"year": year, "month": month, "landmarks": len(landmarks), "events": written}

    async def regenerate_day(self, landmark_id: int, day: date, context: JobContext) -> Dict[str, Any]:
        """Recompute one landmark for one local date."""
        async with self._year_lock(day.year):
            landmark = await asyncio.to_thread(self.landmarks.get, landmark_id)
            events = await asyncio.to_thread(self.engine.search_range, landmark, day, day)
            scope = YearMonthDayScope(day.year, day.month, day.day, (landmark_id,))
            written = await self._write(scope, events, [landmark], context)
        return {"landmark_id": landmark_id, "date": day.isoformat(), "events": written}

    async def verify_year(self, year: int, regenerate_if_missing: bool, context: JobContext) -> Dict[str, Any]:
        """
        Health check for a year.

        A year is unhealthy when landmarks exist but it has no events.
        """
        async with self._year_lock(year):
            health = await asyncio.to_thread(self.check_health, year)
            result = {**health, "regenerated": False}
            if health["healthy"]:
                logger.info(f"Year {year} healthy: {health['events']} events for {health['landmarks']} landmarks")
                return result

            logger.warning(f"Year {year} has no events for {health['landmarks']} landmark(s)")
            if regenerate_if_missing:
                regenerated = await self._regenerate_year(year, context)
                result.update(regenerated=True, events=regenerated["events"])
        return result

    def check_health(self, year: int) -> Dict[str, Any]:
        """Event and landmark counts for a year and whether they agree."""
        event_count = self.events.count_for_year(year)
        landmark_count = self.landmarks.count()
        return {
            "year": year,
            "events": event_count,
            "landmarks": landmark_count,
            "healthy": not (event_count == 0 and landmark_count > 0),
        }

    # =========================================================================
    # Search helpers
    # =========================================================================

    async def _write(
        self,
        scope: RegenerationScope,
        events: List[AlignmentEvent],
        landmarks: List[Landmark],
        context: JobContext,
    ) -> int:
        # Raises JobCancelledError when the run was reclaimed; nothing is written
        context.heartbeat()
        return await asyncio.to_thread(self.events.regenerate, scope, events, landmarks)

    def _search_year(self, landmark: Landmark, year: int, context: JobContext) -> List[AlignmentEvent]:
        """Search month by month so long runs keep heartbeating and stop once cancelled."""
        events: List[AlignmentEvent] = []
        for month in range(1, 13):
            events.extend(self.engine.search_month(landmark, year, month))
            context.heartbeat()
        return events

    async def _search_all(
        self,
        landmarks: List[Landmark],
        search: Callable[[Landmark], List[AlignmentEvent]],
        context: JobContext,
    ) -> List[AlignmentEvent]:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.search_concurrency)

        async def _one(landmark: Landmark) -> List[AlignmentEvent]:
            async with self._semaphore:
                context.heartbeat()
                found = await asyncio.to_thread(search, landmark)
            context.heartbeat()
            await context.pause(0.25)
            return found

        results = await asyncio.gather(*(_one(lm) for lm in landmarks))
        return [event for found in results for event in found]


class RecalculationTriggers:
    """Entry points that queue recalculation work."""

    def __init__(
        self,
        queue: WorkQueue,
        tz: str = PEAK_TIMEZONE,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.queue = queue
        self.tz = ZoneInfo(tz)
        self._now = now or (lambda: datetime.now(self.tz))

    def current_year(self) -> int:
        return self._now().astimezone(self.tz).year

    def regenerate_year(self, year: int, priority: Priority = Priority.LOW) -> str:
        return self.queue.enqueue(RegenerateYear(year), priority)

    def regenerate_landmark(
        self,
        landmark_id: int,
        start_year: int,
        end_year: Optional[int] = None,
        priority: Priority = Priority.NORMAL,
    ) -> str:
        return self.queue.enqueue(
            RegenerateLandmarkYears(landmark_id, start_year, end_year or start_year), priority,
        )

    def regenerate_month(
        self,
        year: int,
        month: int,
        landmark_ids: Optional[Iterable[int]] = None,
        priority: Priority = Priority.NORMAL,
    ) -> str:
        ids = tuple(landmark_ids) if landmark_ids is not None else None
        return self.queue.enqueue(RegenerateMonth(year, month, ids), priority)

    def regenerate_day(self, landmark_id: int, day: date, priority: Priority = Priority.HIGH) -> str:
        return self.queue.enqueue(RegenerateDay(landmark_id, day.year, day.month, day.day), priority)

    def landmark_added(self, landmark_id: int) -> str:
        """New landmark: compute the current and next year right away."""
        year = self.current_year()
        return self.regenerate_landmark(landmark_id, year, year + 1, Priority.HIGH)

    def landmark_moved(self, landmark_id: int) -> str:
        """
        Moved landmark: same years as a new one.

        A job for the landmark that is already running searched the old
        coordinates, so only a waiting job absorbs this request.
        """
        year = self.current_year()
        return self.queue.enqueue(
            RegenerateLandmarkYears(landmark_id, year, year + 1), Priority.HIGH, dedupe_active=False,
        )
