"""
ALIGNWATCH Geodesy Package

Line-of-sight geometry between an observation point and a distant peak.
"""

from services.geodesy.geodesy import (
    GeoPoint,
    LandmarkGeometry,
    azimuth_difference,
    bearing,
    derive_landmark_geometry,
    destination_point,
    distance,
    elevation_angle,
)

__all__ = [
    "GeoPoint",
    "LandmarkGeometry",
    "azimuth_difference",
    "bearing",
    "derive_landmark_geometry",
    "destination_point",
    "distance",
    "elevation_angle",
]
