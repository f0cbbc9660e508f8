"""
ALIGNWATCH Season and Visibility Filter

Cheap pre-filters that keep the alignment search away from instants that
cannot produce an event.

Sun: the sunrise and sunset azimuths swing north and south over the year,
so for a given line of sight only some months can ever line up. For every
month the solar declination range is computed and converted to the range
of azimuths at which the sun crosses the landmark's elevation angle. Months
whose band (plus a margin) misses the landmark azimuth are skipped.

Moon: instants when the moon is too thinly lit are rejected.
"""

import calendar
import logging
import math
from datetime import date
from functools import lru_cache
from typing import Iterable, Optional, Set, Tuple

from alignwatch.constants import MIN_MOON_ILLUMINATION, SEASON_AZIMUTH_MARGIN_DEG
from services.alignment.models import Landmark
from services.ephemeris.port import BodyPosition

logger = logging.getLogger("alignwatch.SeasonFilter")

OBLIQUITY_DEG = 23.44


def solar_declination(day: date) -> float:
    """Approximate solar declination in degrees (Cooper's formula)."""
    n = day.timetuple().tm_yday
    return OBLIQUITY_DEG * math.sin(math.radians(360.0 * (284 + n) / 365.0))


@lru_cache(maxsize=256)
def declination_range(year: int, month: int) -> Tuple[float, float]:
    """Minimum and maximum solar declination over a month."""
    days = calendar.monthrange(year, month)[1]
    values = [solar_declination(date(year, month, d)) for d in range(1, days + 1)]
    return min(values), max(values)


def crossing_azimuth(latitude: float, declination: float, altitude: float) -> Optional[float]:
    """
    Morning azimuth at which a body of given declination crosses an altitude.

    The evening crossing is the mirror image, ``360 - A``.

    Returns:
        Azimuth in (0, 180), or None if the body never crosses that altitude
        (polar day or night)
    """
    phi = math.radians(latitude)
    delta = math.radians(declination)
    h = math.radians(altitude)
    denom = math.cos(phi) * math.cos(h)
    if abs(denom) < 1e-12:
        return None
    cos_a = (math.sin(delta) - math.sin(phi) * math.sin(h)) / denom
    if cos_a < -1.0 or cos_a > 1.0:
        return None
    return math.degrees(math.acos(cos_a))


class SeasonFilter:
    """Decides which months and which moon instants are worth searching."""

    def __init__(
        self,
        azimuth_margin: float = SEASON_AZIMUTH_MARGIN_DEG,
        min_moon_illumination: float = MIN_MOON_ILLUMINATION,
        sun_months: Optional[Iterable[int]] = None,
    ):
        self.azimuth_margin = azimuth_margin
        self.min_moon_illumination = min_moon_illumination
        self.sun_months = set(sun_months) if sun_months is not None else None

    def sun_azimuth_band(self, landmark: Landmark, year: int, month: int) -> Optional[Tuple[float, float]]:
        """
        Azimuth band the sun can occupy at the landmark's elevation angle.

        Returns the morning band for landmarks facing east of north-south
        and the evening band otherwise; None when the month is polar.
        """
        low, high = declination_range(year, month)
        a_low = crossing_azimuth(landmark.latitude, low, landmark.elevation_to_peak)
        a_high = crossing_azimuth(landmark.latitude, high, landmark.elevation_to_peak)
        if a_low is None or a_high is None:
            return None

        lo, hi = sorted((a_low, a_high))
        if landmark.azimuth_to_peak >= 180.0:
            lo, hi = 360.0 - hi, 360.0 - lo
        return lo - self.azimuth_margin, hi + self.azimuth_margin

    def is_sun_month(self, landmark: Landmark, year: int, month: int) -> bool:
        """Whether a sun alignment is geometrically possible this month."""
        if self.sun_months is not None:
            return month in self.sun_months

        band = self.sun_azimuth_band(landmark, year, month)
        if band is None:
            # Polar geometry: let the search decide
            return True
        lo, hi = band
        return lo <= landmark.azimuth_to_peak <= hi

    def sun_months_for(self, landmark: Landmark, year: int) -> Set[int]:
        """All months of a year in which the sun may align."""
        months = {m for m in range(1, 13) if self.is_sun_month(landmark, year, m)}
        logger.debug(f"Landmark {landmark.id} sun months {year}: {sorted(months)}")
        return months

    def is_moon_visible(self, position: Optional[BodyPosition]) -> bool:
        """Whether a moon position is bright enough to count."""
        if position is None:
            return False
        if position.illumination is None:
            return True
        return position.illumination >= self.min_moon_illumination
