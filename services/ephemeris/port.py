"""
ALIGNWATCH Ephemeris Port

The narrow interface the alignment search needs from an ephemeris
provider: apparent horizontal position of the sun or moon for an observer
at an instant, or None when the body is too far below the horizon for the
position to mean anything.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Protocol, Sequence


class Body(Enum):
    """Bodies that can align with a peak."""
    SUN = "sun"
    MOON = "moon"


@dataclass(frozen=True)
class BodyPosition:
    """Apparent (refracted) horizontal position of a body."""
    azimuth: float                         # Degrees clockwise from North
    elevation: float                       # Apparent altitude, degrees
    illumination: Optional[float] = None   # Moon only, 0..1
    phase_angle: Optional[float] = None    # Moon only, 0 new -> 180 full -> 360

    @property
    def phase_fraction(self) -> Optional[float]:
        """Position in the synodic cycle, 0 new, 0.5 full."""
        if self.phase_angle is None:
            return None
        return (self.phase_angle % 360.0) / 360.0


class EphemerisPort(Protocol):
    """Celestial position provider consumed by the search engine."""

    def position(
        self,
        when: datetime,
        latitude: float,
        longitude: float,
        elevation_m: float,
        body: Body,
    ) -> Optional[BodyPosition]:
        """Position at one instant, None below the horizon cutoff."""
        ...

    def positions(
        self,
        times: Sequence[datetime],
        latitude: float,
        longitude: float,
        elevation_m: float,
        body: Body,
    ) -> List[Optional[BodyPosition]]:
        """Positions for many instants, aligned with ``times``."""
        ...
