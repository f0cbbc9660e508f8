"""
ALIGNWATCH Ephemeris Service
Skyfield-based sun and moon positions

Provides the apparent altitude/azimuth of the sun and moon for arbitrary
observers, plus moon illumination and phase angle, using the Skyfield
library with a JPL DE44x kernel. Altitudes include standard atmospheric
refraction.

Positions are computed in vectorized batches when the caller supplies many
instants at once, which is how the alignment search scans a day.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from skyfield import almanac
from skyfield.api import Loader, load, wgs84

from alignwatch.constants import HORIZON_CUTOFF_DEG
from alignwatch.exceptions import EphemerisError
from services.ephemeris.port import Body, BodyPosition

logger = logging.getLogger("alignwatch.Ephemeris")

__all__ = ["SkyfieldEphemeris"]


class SkyfieldEphemeris:
    """
    Skyfield implementation of the ephemeris port.

    The kernel is loaded lazily on first use. Observer vectors are cached
    per (latitude, longitude, elevation) since a search asks for the same
    landmark thousands of times.
    """

    # Body name mappings for Skyfield
    BODY_NAMES = {
        Body.SUN: "sun",
        Body.MOON: "moon",
    }

    def __init__(
        self,
        ephemeris_file: str = "de440s.bsp",
        data_dir: Optional[str | Path] = None,
        horizon_cutoff: float = HORIZON_CUTOFF_DEG,
    ):
        """
        Initialize ephemeris service.

        Args:
            ephemeris_file: JPL kernel name (downloaded if not cached)
            data_dir: Directory for kernels; Skyfield's default when None
            horizon_cutoff: Altitude below which positions are discarded
        """
        self.ephemeris_file = ephemeris_file
        self.data_dir = Path(data_dir) if data_dir else None
        self.horizon_cutoff = horizon_cutoff
        self._ts = None
        self._eph = None
        self._earth = None
        self._observers: Dict[Tuple[float, float, float], object] = {}
        self._initialized = False

    def initialize(self):
        """Load timescale and ephemeris (can be slow on first run)."""
        try:
            if self.data_dir is not None:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                loader = Loader(str(self.data_dir))
            else:
                loader = load
            self._ts = loader.timescale()
            self._eph = loader(self.ephemeris_file)
        except Exception as e:
            raise EphemerisError(f"Cannot load ephemeris {self.ephemeris_file}: {e}") from e

        self._earth = self._eph["earth"]
        self._initialized = True
        logger.info(f"Loaded ephemeris {self.ephemeris_file}")

    def _ensure_initialized(self):
        """Ensure service is initialized."""
        if not self._initialized:
            self.initialize()

    def _observer(self, latitude: float, longitude: float, elevation_m: float):
        key = (round(latitude, 7), round(longitude, 7), round(elevation_m, 2))
        observer = self._observers.get(key)
        if observer is None:
            observer = self._earth + wgs84.latlon(latitude, longitude, elevation_m=elevation_m)
            self._observers[key] = observer
        return observer

    @staticmethod
    def _as_utc(dt: datetime) -> datetime:
        # Naive datetimes are taken as UTC
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt

    def position(
        self,
        when: datetime,
        latitude: float,
        longitude: float,
        elevation_m: float,
        body: Body,
    ) -> Optional[BodyPosition]:
        """
        Apparent position of a body at one instant.

        Returns:
            BodyPosition, or None when the body is below the horizon cutoff
        """
        return self.positions([when], latitude, longitude, elevation_m, body)[0]

    def positions(
        self,
        times: Sequence[datetime],
        latitude: float,
        longitude: float,
        elevation_m: float,
        body: Body,
    ) -> List[Optional[BodyPosition]]:
        """
        Apparent positions for many instants in one vectorized call.

        Args:
            times: Instants (naive values are treated as UTC)
            latitude, longitude, elevation_m: Observer location
            body: Sun or moon

        Returns:
            One entry per instant; None where the body is below the cutoff
        """
        if not times:
            return []
        self._ensure_initialized()

        t = self._ts.from_datetimes([self._as_utc(dt) for dt in times])
        observer = self._observer(latitude, longitude, elevation_m)
        target = self._eph[self.BODY_NAMES[body]]

        alt, az, _ = observer.at(t).observe(target).apparent().altaz("standard")
        altitudes = np.atleast_1d(alt.degrees)
        azimuths = np.atleast_1d(az.degrees)

        if body is Body.MOON:
            illumination = np.atleast_1d(almanac.fraction_illuminated(self._eph, "moon", t))
            phase = np.atleast_1d(almanac.moon_phase(self._eph, t).degrees)
        else:
            illumination = phase = None

        results: List[Optional[BodyPosition]] = []
        for i in range(len(times)):
            elevation = float(altitudes[i])
            if elevation < self.horizon_cutoff:
                results.append(None)
                continue
            results.append(BodyPosition(
                azimuth=float(azimuths[i]) % 360.0,
                elevation=elevation,
                illumination=float(illumination[i]) if illumination is not None else None,
                phase_angle=float(phase[i]) if phase is not None else None,
            ))
        return results

