"""
ALIGNWATCH Alignment Scoring

Turns the angular residuals of an alignment into an accuracy tier and a
0-100 quality score.

Scoring factors:
- Azimuth closeness (how centered the disk is on the summit)
- Elevation closeness (how exactly the disk sits on the summit)
- Elevation comfort (a low but clear sky is best to photograph)
- Illumination (moon only; a thin crescent is hard to see)
"""

from dataclasses import dataclass
from typing import Optional

from alignwatch.constants import (
    ACCURACY_EXCELLENT_DEG,
    ACCURACY_FAIR_DEG,
    ACCURACY_GOOD_DEG,
    ACCURACY_PERFECT_DEG,
    AZIMUTH_TOLERANCE_DEG,
    ELEVATION_TOLERANCE_DEG,
)
from services.alignment.models import AccuracyTier

# Tier upper bounds on azimuth difference, best first
ACCURACY_BOUNDS = (
    (AccuracyTier.PERFECT, ACCURACY_PERFECT_DEG),
    (AccuracyTier.EXCELLENT, ACCURACY_EXCELLENT_DEG),
    (AccuracyTier.GOOD, ACCURACY_GOOD_DEG),
    (AccuracyTier.FAIR, ACCURACY_FAIR_DEG),
)


@dataclass
class QualityWeights:
    """
    Relative weights of the quality factors.

    Weights are normalized at scoring time, so they need not sum to 1.0.
    """
    azimuth: float = 0.40
    elevation: float = 0.20
    comfort: float = 0.40
    illumination: float = 0.0

    @classmethod
    def diamond(cls) -> "QualityWeights":
        """Weights for sun alignments."""
        return cls()

    @classmethod
    def pearl(cls) -> "QualityWeights":
        """Weights for moon alignments; a brighter moon scores higher."""
        return cls(
            azimuth=0.35,
            elevation=0.15,
            comfort=0.25,
            illumination=0.25,
        )


def classify_accuracy(azimuth_diff: float) -> Optional[AccuracyTier]:
    """Tier for an azimuth difference, or None beyond the fair bound."""
    for tier, bound in ACCURACY_BOUNDS:
        if azimuth_diff <= bound:
            return tier
    return None


def elevation_comfort(elevation: float) -> float:
    """
    How pleasant a body elevation is to photograph, 0.0 to 1.0.

    Best between 1 and 6 degrees, falling to zero at -1 degree where the
    disk is lost in haze, and decaying to 0.2 by 30 degrees.
    """
    if elevation < -1.0:
        return 0.0
    if elevation < 1.0:
        return (elevation + 1.0) / 2.0
    if elevation <= 6.0:
        return 1.0
    if elevation <= 30.0:
        return 1.0 - 0.8 * (elevation - 6.0) / 24.0
    return 0.2


def _closeness(diff: float, tolerance: float) -> float:
    if tolerance <= 0:
        return 0.0
    return max(0.0, 1.0 - diff / tolerance)


def quality_score(
    azimuth_diff: float,
    elevation_diff: float,
    body_elevation: float,
    illumination: Optional[float] = None,
    weights: Optional[QualityWeights] = None,
    azimuth_tolerance: float = AZIMUTH_TOLERANCE_DEG,
    elevation_tolerance: float = ELEVATION_TOLERANCE_DEG,
) -> float:
    """
    Weighted quality of an alignment on a 0-100 scale.

    Args:
        azimuth_diff: Azimuth residual (degrees)
        elevation_diff: Elevation residual (degrees)
        body_elevation: Apparent elevation of the body (degrees)
        illumination: Moon illuminated fraction; ignored when None
        weights: Factor weights (diamond profile by default)
        azimuth_tolerance: Residual at which azimuth closeness reaches 0
        elevation_tolerance: Residual at which elevation closeness reaches 0

    Returns:
        Score rounded to one decimal place
    """
    weights = weights or QualityWeights.diamond()

    parts = [
        (weights.azimuth, _closeness(azimuth_diff, azimuth_tolerance)),
        (weights.elevation, _closeness(elevation_diff, elevation_tolerance)),
        (weights.comfort, elevation_comfort(body_elevation)),
    ]
    if illumination is not None:
        parts.append((weights.illumination, max(0.0, min(1.0, illumination))))

    total_weight = sum(w for w, _ in parts)
    if total_weight <= 0:
        return 0.0
    score = sum(w * v for w, v in parts) / total_weight
    return round(100.0 * score, 1)
