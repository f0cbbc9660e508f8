"""
ALIGNWATCH Landmark Store

Observation points and their derived line of sight toward the peak. The
derived azimuth, elevation and distance are computed here on insert and on
coordinate changes, never by callers.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from alignwatch.constants import REFRACTION_COEFFICIENT
from alignwatch.exceptions import LandmarkNotFoundError
from services.alignment.models import Landmark
from services.cache.database import Database
from services.geodesy.geodesy import GeoPoint, derive_landmark_geometry

logger = logging.getLogger("alignwatch.LandmarkStore")

_COLUMNS = (
    "id, name, latitude, longitude, elevation, "
    "azimuth_to_peak, elevation_to_peak, distance_to_peak"
)


def _from_row(row) -> Landmark:
    return Landmark(
        id=row["id"],
        name=row["name"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        elevation=row["elevation"],
        azimuth_to_peak=row["azimuth_to_peak"],
        elevation_to_peak=row["elevation_to_peak"],
        distance_to_peak=row["distance_to_peak"],
    )


class LandmarkStore:
    """CRUD for landmarks sharing the event cache database."""

    def __init__(
        self,
        db: Database,
        peak: GeoPoint,
        refraction_coefficient: float = REFRACTION_COEFFICIENT,
    ):
        self.db = db
        self.peak = peak
        self.refraction_coefficient = refraction_coefficient

    def _geometry(self, latitude: float, longitude: float, elevation: float):
        return derive_landmark_geometry(
            GeoPoint(latitude, longitude, elevation), self.peak, self.refraction_coefficient,
        )

    def add(self, name: str, latitude: float, longitude: float, elevation: float) -> Landmark:
        """Insert a landmark and compute its line of sight."""
        geo = self._geometry(latitude, longitude, elevation)
        now = datetime.now(timezone.utc).isoformat()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO landmarks (name, latitude, longitude, elevation, azimuth_to_peak, "
                "elevation_to_peak, distance_to_peak, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (name, latitude, longitude, elevation, geo.azimuth, geo.elevation, geo.distance, now, now),
            )
            landmark_id = cursor.lastrowid
        logger.info(
            f"Added landmark {landmark_id} '{name}': azimuth {geo.azimuth:.3f}, "
            f"elevation {geo.elevation:.3f}, distance {geo.distance / 1000:.1f} km"
        )
        return self.get(landmark_id)

    def get(self, landmark_id: int) -> Landmark:
        rows = self.db.query(f"SELECT {_COLUMNS} FROM landmarks WHERE id = ?", (landmark_id,))
        if not rows:
            raise LandmarkNotFoundError(landmark_id)
        return _from_row(rows[0])

    def find(self, landmark_id: int) -> Optional[Landmark]:
        try:
            return self.get(landmark_id)
        except LandmarkNotFoundError:
            return None

    def list(self) -> List[Landmark]:
        return [_from_row(r) for r in self.db.query(f"SELECT {_COLUMNS} FROM landmarks ORDER BY id")]

    def count(self) -> int:
        return self.db.scalar("SELECT COUNT(*) FROM landmarks") or 0

    def update_coordinates(
        self,
        landmark_id: int,
        latitude: float,
        longitude: float,
        elevation: float,
    ) -> Landmark:
        """Move a landmark and recompute its derived geometry."""
        geo = self._geometry(latitude, longitude, elevation)
        with self.db.transaction() as conn:
            updated = conn.execute(
                "UPDATE landmarks SET latitude = ?, longitude = ?, elevation = ?, "
                "azimuth_to_peak = ?, elevation_to_peak = ?, distance_to_peak = ?, updated_at = ? "
                "WHERE id = ?",
                (latitude, longitude, elevation, geo.azimuth, geo.elevation, geo.distance,
                 datetime.now(timezone.utc).isoformat(), landmark_id),
            ).rowcount
        if not updated:
            raise LandmarkNotFoundError(landmark_id)
        return self.get(landmark_id)

    def rename(self, landmark_id: int, name: str) -> Landmark:
        with self.db.transaction() as conn:
            updated = conn.execute(
                "UPDATE landmarks SET name = ?, updated_at = ? WHERE id = ?",
                (name, datetime.now(timezone.utc).isoformat(), landmark_id),
            ).rowcount
        if not updated:
            raise LandmarkNotFoundError(landmark_id)
        return self.get(landmark_id)

    def remove(self, landmark_id: int) -> None:
        """Delete a landmark together with its cached events."""
        with self.db.transaction() as conn:
            deleted = conn.execute("DELETE FROM landmarks WHERE id = ?", (landmark_id,)).rowcount
            conn.execute("DELETE FROM alignment_events WHERE landmark_id = ?", (landmark_id,))
        if not deleted:
            raise LandmarkNotFoundError(landmark_id)
        logger.info(f"Removed landmark {landmark_id}")
