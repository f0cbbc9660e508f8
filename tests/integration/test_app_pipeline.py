"""
ALIGNWATCH Integration Test - Application Pipeline

Landmark entry -> work queue -> recalculation -> search -> event cache,
wired by AlignwatchApp against the synthetic sky and an in-memory cache.
"""

import asyncio
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from alignwatch.app import AlignwatchApp
from alignwatch.config import AlignwatchConfig
from alignwatch.jobs import JobState
from services.alignment.models import PhenomenonKind
from services.cache.database import Database
from services.ephemeris.port import Body
from services.geodesy.geodesy import destination_point
from tests.fixtures import FailingEphemeris, LinearTrack, MockEphemeris

TOKYO = ZoneInfo("Asia/Tokyo")
EQUINOX = date(2026, 3, 20)


def make_config(**queue) -> AlignwatchConfig:
    return AlignwatchConfig(
        queue={"low_priority_mode": False, "backoff_base_seconds": 0.0, **queue},
    )


def make_app(sky=None, config=None) -> AlignwatchApp:
    return AlignwatchApp(
        config or make_config(),
        ephemeris=sky or MockEphemeris(),
        db=Database(":memory:"),
        now=lambda: datetime(2026, 3, 1, 9, 0, tzinfo=TOKYO),
    )


def west_of_peak(app: AlignwatchApp):
    """Coordinates 20 km due west of the peak at 1000 m."""
    spot = destination_point(app.peak, 270.0, 20000.0, 1000.0)
    return spot.latitude, spot.longitude, 1000.0


@pytest.fixture
def sky():
    return MockEphemeris()


class TestLandmarkPipeline:
    """A new landmark ends up with cached events."""

    @pytest.mark.asyncio
    async def test_added_landmark_gets_equinox_sunrise(self, sky):
        app = make_app(sky)
        landmark, job_id = app.add_landmark("West Lake", *west_of_peak(app))
        track = LinearTrack(time(6, 0), landmark.azimuth_to_peak, landmark.elevation_to_peak)
        sky.add_track(Body.SUN, EQUINOX, track)

        await app.queue.start()
        try:
            await app.queue.wait_idle(timeout=120)
        finally:
            await app.queue.stop()

        job = app.queue.get(job_id)
        assert job.state is JobState.COMPLETED
        assert job.result["events"] == {2026: 1, 2027: 0}

        (event,) = app.events.events_for_date(EQUINOX)
        assert event.kind is PhenomenonKind.SUN_RISING
        assert event.landmark_id == landmark.id
        assert event.event_time == sky.crossing_instant(EQUINOX, track)
        app.close()

    @pytest.mark.asyncio
    async def test_removed_landmark_drops_events(self, sky):
        app = make_app(sky)
        landmark, _ = app.add_landmark("West Lake", *west_of_peak(app))
        sky.add_track(Body.SUN, EQUINOX, LinearTrack(
            time(6, 0), landmark.azimuth_to_peak, landmark.elevation_to_peak,
        ))

        await app.queue.start()
        await app.queue.wait_idle(timeout=120)
        await app.queue.stop()
        assert app.events.count() == 1

        app.remove_landmark(landmark.id)

        assert app.events.count() == 0
        assert app.landmarks.count() == 0
        app.close()

    @pytest.mark.asyncio
    async def test_transient_ephemeris_failure_is_retried(self):
        app = make_app(FailingEphemeris(failures=1))
        app.add_landmark("West Lake", *west_of_peak(app))
        job_id = app.triggers.regenerate_month(2026, 3)

        await app.queue.start()
        await app.queue.wait_idle(timeout=120)
        await app.queue.stop()

        # The landmark job hits the failure first or second; either way both settle
        job = app.queue.get(job_id)
        assert job.state is JobState.COMPLETED
        assert app.queue.failed_jobs() == []
        app.close()


class TestLandmarkEntryPoints:
    """Operator edits of existing landmarks."""

    def test_rename_keeps_geometry(self):
        app = make_app()
        landmark, _ = app.add_landmark("West Lake", *west_of_peak(app))

        renamed = app.rename_landmark(landmark.id, "West Lake Pier")

        assert renamed.name == "West Lake Pier"
        assert renamed.azimuth_to_peak == landmark.azimuth_to_peak
        assert app.get_landmark(landmark.id) == renamed
        app.close()

    def test_get_unknown_landmark(self):
        app = make_app()
        assert app.get_landmark(42) is None
        app.close()

    def test_move_while_first_job_runs_queues_another(self):
        app = make_app()
        landmark, first_job = app.add_landmark("West Lake", *west_of_peak(app))
        app.queue.get(first_job).state = JobState.ACTIVE

        spot = destination_point(app.peak, 90.0, 20000.0, 1000.0)
        moved, second_job = app.move_landmark(landmark.id, spot.latitude, spot.longitude, 1000.0)

        assert second_job != first_job
        assert moved.azimuth_to_peak == pytest.approx(270.0, abs=0.5)
        assert app.queue.get(second_job).state is JobState.WAITING
        app.close()


class TestLifecycle:
    """start/shutdown and status."""

    def test_rules_installed(self):
        app = make_app()
        assert len(app.scheduler.rules()) == 9
        app.close()

    def test_scheduler_disabled(self):
        app = make_app(config=AlignwatchConfig(scheduler={"enabled": False}))
        assert app.scheduler.rules() == []
        app.close()

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self):
        app = make_app()
        await app.start()
        await asyncio.sleep(0)

        status = app.get_status()
        assert status["running"] is True
        assert status["queue"]["running"] is True
        assert set(status["scheduler"]["rules"]) >= {"yearly-calculation", "system-health-check"}
        assert status["scheduler"]["rules"]["yearly-calculation"]["next_fire"] == (
            datetime(2026, 12, 1, 2, 0, tzinfo=TOKYO).isoformat()
        )

        await app.shutdown()
        assert app.is_running is False
        assert app.get_status()["queue"]["running"] is False
        app.close()

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self):
        app = make_app()
        await app.start()
        await app.start()
        assert app.is_running
        await app.shutdown()
        await app.shutdown()
        app.close()
