"""
ALIGNWATCH Alignment Models

Value types shared by the search engine, the event cache and the job
executor: observation landmarks, alignment events, their kinds and
accuracy tiers.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from services.ephemeris.port import Body
from services.geodesy.geodesy import GeoPoint


class PhenomenonKind(Enum):
    """Which body aligns with the peak, and whether it is rising or setting."""
    SUN_RISING = "sun_rising"        # Diamond at sunrise
    SUN_SETTING = "sun_setting"      # Diamond at sunset
    MOON_RISING = "moon_rising"      # Pearl at moonrise
    MOON_SETTING = "moon_setting"    # Pearl at moonset

    @classmethod
    def of(cls, body: Body, rising: bool) -> "PhenomenonKind":
        """Kind for a body and direction of motion."""
        if body is Body.SUN:
            return cls.SUN_RISING if rising else cls.SUN_SETTING
        return cls.MOON_RISING if rising else cls.MOON_SETTING

    @property
    def body(self) -> Body:
        return Body.SUN if self.value.startswith("sun") else Body.MOON

    @property
    def is_rising(self) -> bool:
        return self.value.endswith("rising")

    @property
    def label(self) -> str:
        """Display name, e.g. 'Diamond (rising)'."""
        name = "Diamond" if self.body is Body.SUN else "Pearl"
        return f"{name} ({'rising' if self.is_rising else 'setting'})"


class AccuracyTier(Enum):
    """Discrete accuracy classes, best first."""
    PERFECT = "perfect"
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"


@dataclass
class Landmark:
    """
    Observation point with its derived line of sight toward the peak.

    The three derived fields are owned by the geodesy layer and only
    recomputed when the coordinates change.
    """
    id: Optional[int]
    name: str
    latitude: float
    longitude: float
    elevation: float
    azimuth_to_peak: float = 0.0      # Degrees clockwise from North
    elevation_to_peak: float = 0.0    # Apparent elevation angle, degrees
    distance_to_peak: float = 0.0     # Meters

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.latitude, self.longitude, self.elevation)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "elevation": self.elevation,
            "azimuth_to_peak": self.azimuth_to_peak,
            "elevation_to_peak": self.elevation_to_peak,
            "distance_to_peak": self.distance_to_peak,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Landmark":
        """Create from dictionary."""
        return cls(
            id=data.get("id"),
            name=data["name"],
            latitude=data["latitude"],
            longitude=data["longitude"],
            elevation=data["elevation"],
            azimuth_to_peak=data.get("azimuth_to_peak", 0.0),
            elevation_to_peak=data.get("elevation_to_peak", 0.0),
            distance_to_peak=data.get("distance_to_peak", 0.0),
        )


@dataclass(frozen=True)
class AlignmentEvent:
    """
    One accepted alignment of the sun or moon with the peak.

    ``event_date`` is the local calendar date in the configured timezone;
    ``event_time`` is the UTC instant truncated to whole seconds. Events
    are never edited; a regeneration replaces them.
    """
    landmark_id: int
    event_date: date
    event_time: datetime
    kind: PhenomenonKind
    azimuth: float                # Body azimuth at the instant
    elevation: float              # Body apparent elevation at the instant
    azimuth_diff: float
    elevation_diff: float
    accuracy: AccuracyTier
    quality_score: float          # 0..100
    calculation_year: int
    moon_phase: Optional[float] = None         # 0 new, 0.5 full
    moon_illumination: Optional[float] = None  # 0..1

    @property
    def total_diff(self) -> float:
        return self.azimuth_diff + self.elevation_diff

    @property
    def key(self) -> tuple:
        """Uniqueness key: one event per landmark, date and kind."""
        return (self.landmark_id, self.event_date, self.kind)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "landmark_id": self.landmark_id,
            "event_date": self.event_date.isoformat(),
            "event_time": self.event_time.isoformat(),
            "kind": self.kind.value,
            "azimuth": round(self.azimuth, 4),
            "elevation": round(self.elevation, 4),
            "azimuth_diff": round(self.azimuth_diff, 4),
            "elevation_diff": round(self.elevation_diff, 4),
            "accuracy": self.accuracy.value,
            "quality_score": self.quality_score,
            "calculation_year": self.calculation_year,
            "moon_phase": self.moon_phase,
            "moon_illumination": self.moon_illumination,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlignmentEvent":
        """Create from dictionary."""
        return cls(
            landmark_id=data["landmark_id"],
            event_date=date.fromisoformat(data["event_date"]),
            event_time=datetime.fromisoformat(data["event_time"]),
            kind=PhenomenonKind(data["kind"]),
            azimuth=data["azimuth"],
            elevation=data["elevation"],
            azimuth_diff=data["azimuth_diff"],
            elevation_diff=data["elevation_diff"],
            accuracy=AccuracyTier(data["accuracy"]),
            quality_score=data["quality_score"],
            calculation_year=data["calculation_year"],
            moon_phase=data.get("moon_phase"),
            moon_illumination=data.get("moon_illumination"),
        )
