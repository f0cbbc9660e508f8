"""
ALIGNWATCH Geodesy Engine

Spherical-Earth geometry used to decide where a peak appears from an
observation point:

- Initial great-circle bearing (azimuth toward the peak)
- Haversine surface distance
- Apparent elevation angle corrected for Earth curvature and the standard
  terrestrial refraction lift
- Shortest angular difference between two azimuths

All functions are pure and total. Angles are degrees, lengths meters.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict

from alignwatch.constants import (
    EARTH_RADIUS_M,
    OBSERVER_EYE_HEIGHT_M,
    REFRACTION_COEFFICIENT,
)


@dataclass(frozen=True)
class GeoPoint:
    """A point on the Earth's surface."""
    latitude: float       # Degrees, positive = North
    longitude: float      # Degrees, positive = East
    elevation: float = 0.0  # Meters above sea level


@dataclass(frozen=True)
class LandmarkGeometry:
    """Derived line-of-sight figures from an observer toward the peak."""
    azimuth: float        # Degrees clockwise from North, [0, 360)
    elevation: float      # Apparent elevation angle, degrees
    distance: float       # Surface distance, meters

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "azimuth": self.azimuth,
            "elevation": self.elevation,
            "distance": self.distance,
        }


def normalize_azimuth(azimuth: float) -> float:
    """Wrap an azimuth into [0, 360)."""
    value = azimuth % 360.0
    # -1e-15 % 360 rounds to 360.0
    return 0.0 if value >= 360.0 else value


def bearing(observer: GeoPoint, target: GeoPoint) -> float:
    """Initial great-circle bearing from observer to target, [0, 360)."""
    lat1 = math.radians(observer.latitude)
    lat2 = math.radians(target.latitude)
    d_lon = math.radians(target.longitude - observer.longitude)

    y = math.sin(d_lon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lon)
    return normalize_azimuth(math.degrees(math.atan2(y, x)))


def distance(observer: GeoPoint, target: GeoPoint) -> float:
    """Haversine surface distance in meters."""
    lat1 = math.radians(observer.latitude)
    lat2 = math.radians(target.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(target.longitude - observer.longitude)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def elevation_angle(
    observer: GeoPoint,
    target: GeoPoint,
    refraction_coefficient: float = REFRACTION_COEFFICIENT,
    eye_height: float = OBSERVER_EYE_HEIGHT_M,
) -> float:
    """Apparent elevation angle of the target as seen by the observer.

    The observer's eye is ``eye_height`` above the ground. Over distance d
    the target sinks by d^2 / 2R; refraction gives back
    ``refraction_coefficient`` of that drop.

    Args:
        observer: Observation point
        target: Peak being sighted
        refraction_coefficient: Fraction of the curvature drop recovered
        eye_height: Observer eye level above ground (meters)

    Returns:
        Elevation angle in degrees (negative when the peak sits below the
        observer's horizontal)
    """
    d = distance(observer, target)
    height_diff = target.elevation - (observer.elevation + eye_height)
    curvature_drop = d * d / (2 * EARTH_RADIUS_M)
    refraction_lift = refraction_coefficient * curvature_drop
    net_drop = curvature_drop - refraction_lift
    return math.degrees(math.atan2(height_diff - net_drop, d))


def azimuth_difference(a: float, b: float) -> float:
    """Shortest angular distance between two azimuths, in [0, 180]."""
    diff = abs(normalize_azimuth(a) - normalize_azimuth(b))
    return min(diff, 360.0 - diff)


def destination_point(origin: GeoPoint, azimuth: float, meters: float, elevation: float = 0.0) -> GeoPoint:
    """Point reached by travelling ``meters`` along a great circle.

    Inverse of ``bearing``/``distance``; handy for placing an observer at a
    chosen bearing and range from a peak.
    """
    lat1 = math.radians(origin.latitude)
    lon1 = math.radians(origin.longitude)
    theta = math.radians(azimuth)
    delta = meters / EARTH_RADIUS_M

    lat2 = math.asin(
        math.sin(lat1) * math.cos(delta)
        + math.cos(lat1) * math.sin(delta) * math.cos(theta)
    )
    lon2 = lon1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(lat1),
        math.cos(delta) - math.sin(lat1) * math.sin(lat2),
    )
    longitude = (math.degrees(lon2) + 540.0) % 360.0 - 180.0
    return GeoPoint(math.degrees(lat2), longitude, elevation)


def derive_landmark_geometry(
    observer: GeoPoint,
    peak: GeoPoint,
    refraction_coefficient: float = REFRACTION_COEFFICIENT,
) -> LandmarkGeometry:
    """Bundle azimuth, elevation and distance toward the peak."""
    return LandmarkGeometry(
        azimuth=bearing(observer, peak),
        elevation=elevation_angle(observer, peak, refraction_coefficient),
        distance=distance(observer, peak),
    )
