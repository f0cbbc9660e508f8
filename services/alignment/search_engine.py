"""
ALIGNWATCH Alignment Search Engine

Finds the instants within a local calendar day when the sun or moon sits
on the line of sight from a landmark to the peak.

The search is coarse-to-fine:

1. Sun only: a sparse horizon scan locates the rise and set crossings and
   limits the search to windows around them. The moon gets the whole day.
2. A coarse scan flags samples within the coarse azimuth and elevation
   thresholds. Dim moon samples are dropped here.
3. Each run of adjacent candidates is refined by a fine scan around its
   best sample; the instant with the smallest combined residual wins.
4. The refined instant must pass the final tolerances, is classified into
   an accuracy tier and scored, and rising/setting is read from the
   elevation trend around it.

All sample grids are anchored at local midnight, so the same inputs always
produce the same instants.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from alignwatch.config import SearchConfig
from alignwatch.constants import PEAK_TIMEZONE
from alignwatch.logging_config import log_timing
from services.alignment.models import AlignmentEvent, Landmark, PhenomenonKind
from services.alignment.scoring import QualityWeights, classify_accuracy, quality_score
from services.alignment.season_filter import SeasonFilter
from services.ephemeris.port import Body, BodyPosition, EphemerisPort
from services.geodesy.geodesy import azimuth_difference

logger = logging.getLogger("alignwatch.SearchEngine")

__all__ = ["AlignmentSearchEngine", "Sample"]


@dataclass(frozen=True)
class Sample:
    """A body position at one instant with its residuals to the peak."""
    when: datetime
    position: BodyPosition
    azimuth_diff: float
    elevation_diff: float

    @property
    def total_diff(self) -> float:
        return self.azimuth_diff + self.elevation_diff


class AlignmentSearchEngine:
    """
    Coarse-to-fine alignment search over local calendar days.

    Never raises for "no position": a day without alignments simply yields
    an empty list.
    """

    def __init__(
        self,
        ephemeris: EphemerisPort,
        config: Optional[SearchConfig] = None,
        season_filter: Optional[SeasonFilter] = None,
        tz: str = PEAK_TIMEZONE,
    ):
        """
        Initialize the search engine.

        Args:
            ephemeris: Position provider
            config: Search thresholds and sampling intervals
            season_filter: Sun month and moon brightness pre-filter
            tz: IANA timezone that defines the local calendar day
        """
        self.ephemeris = ephemeris
        self.config = config or SearchConfig()
        self.season_filter = season_filter or SeasonFilter(
            min_moon_illumination=self.config.min_moon_illumination,
        )
        self.tz = ZoneInfo(tz)
        self._weights = {
            Body.SUN: QualityWeights.diamond(),
            Body.MOON: QualityWeights.pearl(),
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def search_day(
        self,
        landmark: Landmark,
        day: date,
        bodies: Iterable[Body] = (Body.SUN, Body.MOON),
    ) -> List[AlignmentEvent]:
        """
        All alignments for one landmark on one local date.

        Returns:
            At most one event per kind, ordered by time
        """
        day_start, day_end = self.day_bounds(day)
        best: Dict[PhenomenonKind, AlignmentEvent] = {}

        for body in bodies:
            if body is Body.SUN:
                windows = self._sun_windows(landmark, day_start, day_end)
            else:
                windows = [(day_start, day_end)]

            for window_start, window_end in windows:
                for cluster in self._coarse_clusters(landmark, body, day_start, window_start, window_end):
                    event = self._refine(landmark, body, day, day_start, day_end, cluster)
                    if event is None:
                        continue
                    current = best.get(event.kind)
                    if current is None or event.total_diff < current.total_diff:
                        best[event.kind] = event

        return sorted(best.values(), key=lambda e: e.event_time)

    def search_range(self, landmark: Landmark, start: date, end: date) -> List[AlignmentEvent]:
        """All alignments for a landmark between two dates, inclusive."""
        events: List[AlignmentEvent] = []
        sun_months: Dict[Tuple[int, int], bool] = {}

        with log_timing(logger, f"search landmark {landmark.id} {start}..{end}"):
            day = start
            while day <= end:
                month_key = (day.year, day.month)
                if month_key not in sun_months:
                    sun_months[month_key] = self.season_filter.is_sun_month(landmark, day.year, day.month)
                bodies = (Body.SUN, Body.MOON) if sun_months[month_key] else (Body.MOON,)
                events.extend(self.search_day(landmark, day, bodies))
                day += timedelta(days=1)

        logger.debug(f"Landmark {landmark.id}: {len(events)} events {start}..{end}")
        return events

    def search_month(self, landmark: Landmark, year: int, month: int) -> List[AlignmentEvent]:
        """All alignments for a landmark in one calendar month."""
        start = date(year, month, 1)
        end = (date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)) - timedelta(days=1)
        return self.search_range(landmark, start, end)

    def day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        """UTC instants of local midnight starting and ending a date."""
        start = datetime.combine(day, time(0, 0), tzinfo=self.tz)
        end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=self.tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    # =========================================================================
    # Sampling
    # =========================================================================

    def _sample(self, landmark: Landmark, body: Body, times: Sequence[datetime]) -> List[Optional[Sample]]:
        positions = self.ephemeris.positions(
            times, landmark.latitude, landmark.longitude, landmark.elevation, body,
        )
        samples: List[Optional[Sample]] = []
        for when, position in zip(times, positions):
            if position is None:
                samples.append(None)
                continue
            samples.append(Sample(
                when=when,
                position=position,
                azimuth_diff=azimuth_difference(position.azimuth, landmark.azimuth_to_peak),
                elevation_diff=abs(position.elevation - landmark.elevation_to_peak),
            ))
        return samples

    @staticmethod
    def _grid(anchor: datetime, start: datetime, end: datetime, step_seconds: int) -> List[datetime]:
        """Instants ``anchor + k*step`` within [start, end)."""
        offset = (start - anchor).total_seconds()
        k = max(0, -(-int(offset) // step_seconds))
        times = []
        when = anchor + timedelta(seconds=k * step_seconds)
        while when < end:
            if when >= start:
                times.append(when)
            when += timedelta(seconds=step_seconds)
        return times

    def _sun_windows(self, landmark: Landmark, day_start: datetime, day_end: datetime) -> List[Tuple[datetime, datetime]]:
        """Search windows around the sun's horizon crossings."""
        step = self.config.sun_horizon_scan_minutes * 60
        times = self._grid(day_start, day_start, day_end, step)
        positions = self.ephemeris.positions(
            times, landmark.latitude, landmark.longitude, landmark.elevation, Body.SUN,
        )

        if all(p is None for p in positions):
            return []
        if all(p is not None for p in positions):
            return [(day_start, day_end)]

        daylight = timedelta(minutes=self.config.sun_window_daylight_minutes)
        night = timedelta(minutes=self.config.sun_window_night_minutes)
        windows = []
        for i in range(1, len(times)):
            before, after = positions[i - 1], positions[i]
            if before is None and after is not None:
                windows.append((times[i] - night - timedelta(seconds=step), times[i] + daylight))
            elif before is not None and after is None:
                windows.append((times[i - 1] - daylight, times[i] + night))

        return [(max(s, day_start), min(e, day_end)) for s, e in windows]

    def _coarse_clusters(
        self,
        landmark: Landmark,
        body: Body,
        anchor: datetime,
        start: datetime,
        end: datetime,
    ) -> List[List[Sample]]:
        """Runs of adjacent coarse samples within the coarse thresholds."""
        cfg = self.config
        times = self._grid(anchor, start, end, cfg.coarse_interval_seconds)
        samples = self._sample(landmark, body, times)

        clusters: List[List[Sample]] = []
        current: List[Sample] = []
        for sample in samples:
            hit = (
                sample is not None
                and sample.azimuth_diff <= cfg.coarse_azimuth_threshold
                and sample.elevation_diff <= cfg.coarse_elevation_threshold
                and (body is Body.SUN or self.season_filter.is_moon_visible(sample.position))
            )
            if hit:
                current.append(sample)
            elif current:
                clusters.append(current)
                current = []
        if current:
            clusters.append(current)
        return clusters

    # =========================================================================
    # Refinement
    # =========================================================================

    def _refine(
        self,
        landmark: Landmark,
        body: Body,
        day: date,
        day_start: datetime,
        day_end: datetime,
        cluster: List[Sample],
    ) -> Optional[AlignmentEvent]:
        """Fine scan around a coarse cluster and apply the final tolerances."""
        cfg = self.config
        seed = min(cluster, key=lambda s: s.total_diff)
        span = timedelta(minutes=cfg.fine_window_minutes)
        times = self._grid(
            day_start,
            max(day_start, seed.when - span),
            min(day_end, seed.when + span + timedelta(seconds=1)),
            cfg.fine_interval_seconds,
        )

        best: Optional[Sample] = None
        for sample in self._sample(landmark, body, times):
            if sample is None:
                continue
            if body is Body.MOON and not self.season_filter.is_moon_visible(sample.position):
                continue
            # Strict comparison keeps the earliest instant on ties
            if best is None or sample.total_diff < best.total_diff:
                best = sample

        if best is None:
            return None
        if best.azimuth_diff > cfg.azimuth_tolerance or best.elevation_diff > cfg.elevation_tolerance:
            logger.debug(
                f"Near miss {body.value} landmark {landmark.id} at {best.when.isoformat()}: "
                f"az {best.azimuth_diff:.3f} el {best.elevation_diff:.3f}"
            )
            return None

        accuracy = classify_accuracy(best.azimuth_diff)
        if accuracy is None:
            return None

        position = best.position
        rising = self._is_rising(landmark, body, best)
        return AlignmentEvent(
            landmark_id=landmark.id,
            event_date=day,
            event_time=best.when.astimezone(timezone.utc).replace(microsecond=0),
            kind=PhenomenonKind.of(body, rising),
            azimuth=position.azimuth,
            elevation=position.elevation,
            azimuth_diff=best.azimuth_diff,
            elevation_diff=best.elevation_diff,
            accuracy=accuracy,
            quality_score=quality_score(
                best.azimuth_diff,
                best.elevation_diff,
                position.elevation,
                illumination=position.illumination if body is Body.MOON else None,
                weights=self._weights[body],
                azimuth_tolerance=cfg.azimuth_tolerance,
                elevation_tolerance=cfg.elevation_tolerance,
            ),
            calculation_year=day.year,
            moon_phase=position.phase_fraction if body is Body.MOON else None,
            moon_illumination=position.illumination if body is Body.MOON else None,
        )

    def _is_rising(self, landmark: Landmark, body: Body, sample: Sample) -> bool:
        """Elevation trend around an instant; a horizon on one side decides it."""
        probe = timedelta(seconds=self.config.trend_probe_seconds)
        before, after = self.ephemeris.positions(
            [sample.when - probe, sample.when + probe],
            landmark.latitude, landmark.longitude, landmark.elevation, body,
        )
        if before is not None and after is not None:
            return after.elevation > before.elevation
        if before is None and after is not None:
            return True
        if after is None and before is not None:
            return False
        # No neighbours at all: fall back to which side of the meridian it is on
        return sample.position.azimuth < 180.0
