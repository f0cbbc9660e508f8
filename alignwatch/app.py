"""
ALIGNWATCH Application

Wires configuration, stores, ephemeris, search engine, work queue and
scheduler into one object with a start/shutdown lifecycle, and exposes
the operator entry points (landmark changes and manual regeneration).

Usage:
    app = create_app("alignwatch.yaml")
    await app.start()
    landmark, job_id = app.add_landmark("Tanuki Lake", 35.3645, 138.5789, 1000)
    ...
    await app.shutdown()
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from alignwatch.config import AlignwatchConfig
from alignwatch.maintenance import install_default_rules
from alignwatch.recalculation import RecalculationService, RecalculationTriggers
from alignwatch.scheduler import Scheduler
from alignwatch.work_queue import RetryPolicy, Throttle, WorkQueue
from services.alignment.models import Landmark
from services.alignment.search_engine import AlignmentSearchEngine
from services.alignment.season_filter import SeasonFilter
from services.cache.database import Database
from services.cache.event_store import EventCacheStore
from services.cache.landmark_store import LandmarkStore
from services.ephemeris.port import EphemerisPort
from services.geodesy.geodesy import GeoPoint

logger = logging.getLogger("alignwatch.App")

__all__ = ["AlignwatchApp", "create_app"]


class AlignwatchApp:
    """
    The assembled alignment service.

    Components are built eagerly from configuration; background work only
    begins with ``start()``.
    """

    def __init__(
        self,
        config: AlignwatchConfig,
        ephemeris: Optional[EphemerisPort] = None,
        db: Optional[Database] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Build every component.

        Args:
            config: Validated configuration
            ephemeris: Position provider; Skyfield when omitted
            db: Database; opened from ``config.store.path`` when omitted
            now: Clock returning an aware datetime, for tests
        """
        self.config = config
        tz = config.peak.timezone

        self.db = db or Database(config.store.path, config.store.busy_timeout_seconds)
        self.peak = GeoPoint(config.peak.latitude, config.peak.longitude, config.peak.elevation)
        self.landmarks = LandmarkStore(self.db, self.peak, config.search.refraction_coefficient)
        self.events = EventCacheStore(self.db)

        if ephemeris is None:
            from services.ephemeris.skyfield_service import SkyfieldEphemeris

            ephemeris = SkyfieldEphemeris(
                config.ephemeris.ephemeris_file,
                config.ephemeris.data_dir,
                config.ephemeris.horizon_cutoff,
            )
        self.ephemeris = ephemeris

        self.season_filter = SeasonFilter(
            azimuth_margin=config.season.azimuth_margin,
            min_moon_illumination=config.search.min_moon_illumination,
            sun_months=config.season.sun_months,
        )
        self.engine = AlignmentSearchEngine(self.ephemeris, config.search, self.season_filter, tz)
        self.recalculation = RecalculationService(
            self.engine, self.events, self.landmarks, config.search.search_concurrency,
        )

        self.queue = WorkQueue(
            self.recalculation,
            policy=RetryPolicy.from_config(config.queue),
            throttle=Throttle.from_config(config.queue),
            concurrency=config.queue.concurrency,
            journal_path=config.queue.journal_path,
            keep_completed=config.queue.keep_completed,
            keep_failed=config.queue.keep_failed,
        )
        self.triggers = RecalculationTriggers(self.queue, tz, now)

        self.scheduler = Scheduler(self.queue.submit, tz, config.scheduler.max_timer_seconds, now)
        if config.scheduler.enabled:
            install_default_rules(
                self.scheduler,
                config.scheduler.archive_retention_years,
                config.scheduler.disabled_rules,
            )

        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self):
        """Start queue workers, then arm the scheduler."""
        if self._running:
            logger.warning("Application already running")
            return
        logger.info("Starting ALIGNWATCH...")
        await self.queue.start()
        if self.config.scheduler.enabled:
            await self.scheduler.start()
        self._running = True
        logger.info("ALIGNWATCH started")

    async def shutdown(self):
        """Stop the scheduler before the queue so nothing new is submitted."""
        if not self._running:
            return
        logger.info("Shutting down ALIGNWATCH...")
        await self.scheduler.stop()
        await self.queue.stop()
        self._running = False
        logger.info("ALIGNWATCH shutdown complete")

    def close(self):
        """Release the database connection."""
        self.db.close()

    # =========================================================================
    # Landmark entry points
    # =========================================================================

    def add_landmark(self, name: str, latitude: float, longitude: float, elevation: float) -> Tuple[Landmark, str]:
        """Store a landmark and queue its current and next year."""
        landmark = self.landmarks.add(name, latitude, longitude, elevation)
        return landmark, self.triggers.landmark_added(landmark.id)

    def move_landmark(self, landmark_id: int, latitude: float, longitude: float, elevation: float) -> Tuple[Landmark, str]:
        """Update coordinates and queue recomputation of the affected years."""
        landmark = self.landmarks.update_coordinates(landmark_id, latitude, longitude, elevation)
        return landmark, self.triggers.landmark_moved(landmark.id)

    def rename_landmark(self, landmark_id: int, name: str) -> Landmark:
        """Change the display name; cached events are unaffected."""
        return self.landmarks.rename(landmark_id, name)

    def get_landmark(self, landmark_id: int) -> Optional[Landmark]:
        return self.landmarks.find(landmark_id)

    def remove_landmark(self, landmark_id: int):
        self.landmarks.remove(landmark_id)

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """Queue, scheduler and cache overview."""
        return {
            "running": self._running,
            "landmarks": self.landmarks.count(),
            "events": self.events.stats(),
            "queue": self.queue.stats(),
            "scheduler": self.scheduler.status(),
        }


# =============================================================================
# Factory Function
# =============================================================================


def create_app(config_path: Optional[str] = None, **kwargs) -> AlignwatchApp:
    """
    Create an application instance with configuration.

    Args:
        config_path: Optional path to config file
        **kwargs: Passed through to AlignwatchApp (ephemeris, db, now)

    Returns:
        Configured AlignwatchApp instance
    """
    from alignwatch.config import load_config

    config = load_config(config_path)
    return AlignwatchApp(config, **kwargs)
