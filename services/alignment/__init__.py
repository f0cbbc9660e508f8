"""
ALIGNWATCH Alignment Package

Diamond (sun) and Pearl (moon) alignment search:
- models: Landmark, AlignmentEvent, PhenomenonKind, AccuracyTier
- scoring: accuracy tiers and 0-100 quality scores
- season_filter: sun month and moon brightness pre-filters
- search_engine: coarse-to-fine search over local days
"""

from services.alignment.models import AccuracyTier, AlignmentEvent, Landmark, PhenomenonKind
from services.alignment.scoring import QualityWeights, classify_accuracy, quality_score
from services.alignment.season_filter import SeasonFilter
from services.alignment.search_engine import AlignmentSearchEngine

__all__ = [
    "AccuracyTier",
    "AlignmentEvent",
    "AlignmentSearchEngine",
    "Landmark",
    "PhenomenonKind",
    "QualityWeights",
    "SeasonFilter",
    "classify_accuracy",
    "quality_score",
]
