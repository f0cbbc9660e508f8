"""
ALIGNWATCH Unit Tests - Alignment Scoring

Accuracy tiers, elevation comfort and the weighted quality score.
"""

import pytest

from services.alignment.models import AccuracyTier
from services.alignment.scoring import (
    QualityWeights,
    classify_accuracy,
    elevation_comfort,
    quality_score,
)


class TestClassifyAccuracy:
    """Tier boundaries on the azimuth difference."""

    @pytest.mark.parametrize("diff, tier", [
        (0.0, AccuracyTier.PERFECT),
        (0.1, AccuracyTier.PERFECT),
        (0.2, AccuracyTier.EXCELLENT),
        (0.25, AccuracyTier.EXCELLENT),
        (0.3, AccuracyTier.GOOD),
        (0.4, AccuracyTier.GOOD),
        (0.5, AccuracyTier.FAIR),
        (0.6, AccuracyTier.FAIR),
    ])
    def test_tiers(self, diff, tier):
        assert classify_accuracy(diff) is tier

    def test_beyond_fair_is_unclassified(self):
        assert classify_accuracy(0.61) is None


class TestElevationComfort:
    """Photographic comfort by body elevation."""

    @pytest.mark.parametrize("elevation, expected", [
        (-2.0, 0.0),
        (-1.0, 0.0),
        (0.0, 0.5),
        (1.0, 1.0),
        (3.0, 1.0),
        (6.0, 1.0),
        (18.0, 0.6),
        (30.0, 0.2),
        (60.0, 0.2),
    ])
    def test_curve(self, elevation, expected):
        assert elevation_comfort(elevation) == pytest.approx(expected)


class TestQualityScore:
    """Weighted 0-100 quality."""

    def test_exact_alignment_scores_100(self):
        assert quality_score(0.0, 0.0, 3.0) == 100.0

    def test_azimuth_at_tolerance_loses_azimuth_weight(self):
        # azimuth closeness 0, elevation 1, comfort 1 -> (0.2 + 0.4) / 1.0
        assert quality_score(0.6, 0.0, 3.0) == 60.0

    def test_pearl_includes_illumination(self):
        pearl = QualityWeights.pearl()
        assert quality_score(0.0, 0.0, 3.0, illumination=1.0, weights=pearl) == 100.0
        assert quality_score(0.0, 0.0, 3.0, illumination=0.0, weights=pearl) == 75.0
        assert quality_score(0.0, 0.0, 3.0, illumination=0.5, weights=pearl) == 87.5

    def test_illumination_ignored_when_none(self):
        pearl = QualityWeights.pearl()
        # Weights renormalized over azimuth, elevation and comfort
        assert quality_score(0.0, 0.0, 3.0, illumination=None, weights=pearl) == 100.0

    def test_rounded_to_one_decimal(self):
        score = quality_score(0.123, 0.456, 12.3)
        assert score == round(score, 1)

    @pytest.mark.parametrize("az, el, body", [
        (0.0, 0.0, -5.0),
        (5.0, 5.0, 3.0),
        (0.3, 0.7, 45.0),
    ])
    def test_always_within_range(self, az, el, body):
        assert 0.0 <= quality_score(az, el, body) <= 100.0

    def test_zero_weights_score_zero(self):
        weights = QualityWeights(azimuth=0.0, elevation=0.0, comfort=0.0)
        assert quality_score(0.0, 0.0, 3.0, weights=weights) == 0.0

    def test_closer_alignment_scores_higher(self):
        assert quality_score(0.1, 0.1, 3.0) > quality_score(0.4, 0.1, 3.0)
