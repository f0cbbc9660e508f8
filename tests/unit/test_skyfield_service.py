"""
ALIGNWATCH Unit Tests - Skyfield Ephemeris

The Skyfield objects are replaced by mocks so no kernel is downloaded; the
tests cover the adapter logic around them (cutoff, moon fields, loading).
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from alignwatch.exceptions import EphemerisError
from services.ephemeris.port import Body, BodyPosition
from services.ephemeris.skyfield_service import SkyfieldEphemeris

MODULE = "services.ephemeris.skyfield_service"
FUJI = (35.3628, 138.730781, 3776.0)


def sky_returning(altitudes, azimuths):
    """Observer mock whose altaz() yields the given degree arrays."""
    alt = MagicMock()
    alt.degrees = np.array(altitudes)
    az = MagicMock()
    az.degrees = np.array(azimuths)
    observer = MagicMock()
    observer.at.return_value.observe.return_value.apparent.return_value.altaz.return_value = (
        alt, az, MagicMock(),
    )
    return observer


@pytest.fixture
def service():
    svc = SkyfieldEphemeris(horizon_cutoff=-2.0)
    svc._ts = MagicMock()
    svc._eph = MagicMock()
    svc._earth = MagicMock()
    svc._initialized = True
    return svc


class TestPositions:
    """Vectorized position lookups."""

    def test_empty_times(self, service):
        assert service.positions([], *FUJI, Body.SUN) == []
        service._ts.from_datetimes.assert_not_called()

    def test_sun_positions_and_cutoff(self, service):
        observer = sky_returning([-5.0, -1.0, 12.5], [80.0, 85.0, 361.5])
        times = [datetime(2026, 3, 20, h, tzinfo=timezone.utc) for h in (20, 21, 22)]

        with patch.object(service, "_observer", return_value=observer):
            results = service.positions(times, *FUJI, Body.SUN)

        assert results[0] is None
        assert results[1] == BodyPosition(azimuth=85.0, elevation=-1.0)
        assert results[2].azimuth == pytest.approx(1.5)
        assert results[2].illumination is None
        observer.at.return_value.observe.return_value.apparent.return_value.altaz.assert_called_with("standard")

    def test_moon_carries_illumination_and_phase(self, service):
        observer = sky_returning([10.0], [120.0])
        when = datetime(2026, 3, 20, 13, 0, tzinfo=timezone.utc)

        with patch.object(service, "_observer", return_value=observer), \
                patch(f"{MODULE}.almanac") as almanac:
            almanac.fraction_illuminated.return_value = np.array([0.5])
            almanac.moon_phase.return_value.degrees = np.array([90.0])
            (position,) = service.positions([when], *FUJI, Body.MOON)

        assert position.illumination == 0.5
        assert position.phase_angle == 90.0
        assert position.phase_fraction == 0.25
        almanac.fraction_illuminated.assert_called_once()

    def test_single_position(self, service):
        observer = sky_returning([3.0], [240.0])
        with patch.object(service, "_observer", return_value=observer):
            position = service.position(datetime(2026, 3, 20, 8, 0), *FUJI, Body.SUN)
        assert position == BodyPosition(azimuth=240.0, elevation=3.0)

    def test_naive_times_treated_as_utc(self, service):
        observer = sky_returning([3.0], [240.0])
        with patch.object(service, "_observer", return_value=observer):
            service.positions([datetime(2026, 3, 20, 8, 0)], *FUJI, Body.SUN)

        (passed,) = service._ts.from_datetimes.call_args[0][0]
        assert passed.tzinfo is timezone.utc


class TestObserverCache:
    """Observer vectors are reused per location."""

    def test_same_location_cached(self, service):
        with patch(f"{MODULE}.wgs84") as wgs84:
            first = service._observer(*FUJI)
            second = service._observer(*FUJI)
            service._observer(35.0, 138.0, 0.0)

        assert first is second
        assert wgs84.latlon.call_count == 2


class TestLoading:
    """Kernel loading failures surface as EphemerisError."""

    def test_loader_failure(self, tmp_path):
        svc = SkyfieldEphemeris(data_dir=tmp_path / "kernels")
        with patch(f"{MODULE}.Loader") as loader_cls:
            loader_cls.return_value.side_effect = OSError("download refused")
            with pytest.raises(EphemerisError):
                svc.initialize()
        assert (tmp_path / "kernels").is_dir()
        assert svc._initialized is False

    def test_default_loader_failure(self):
        svc = SkyfieldEphemeris()
        with patch(f"{MODULE}.load") as load:
            load.timescale.side_effect = OSError("offline")
            with pytest.raises(EphemerisError):
                svc.position(datetime(2026, 3, 20, tzinfo=timezone.utc), *FUJI, Body.SUN)

    def test_successful_initialize(self, tmp_path):
        svc = SkyfieldEphemeris(data_dir=tmp_path)
        with patch(f"{MODULE}.Loader") as loader_cls:
            svc.initialize()
        loader_cls.assert_called_once_with(str(tmp_path))
        loader_cls.return_value.assert_called_once_with("de440s.bsp")
        assert svc._initialized is True
