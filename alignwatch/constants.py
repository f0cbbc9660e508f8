"""
ALIGNWATCH Shared Constants

Centralizes physical constants, search tolerances and queue/scheduler
defaults used across the alignment system. Config sections use these as
their defaults so there is one source of truth for every number.

Constants are organized by category:
    - Version and identity
    - Peak and geodesy
    - Visibility and illumination
    - Alignment search
    - Accuracy tiers
    - Work queue and scheduler
"""

from typing import Final

# =============================================================================
# Version and Identity
# =============================================================================

ALIGNWATCH_VERSION: Final[str] = "0.1.0"
ALIGNWATCH_NAME: Final[str] = "ALIGNWATCH"

# =============================================================================
# Peak and Geodesy
# =============================================================================

# Mount Fuji summit (the default alignment target)
PEAK_NAME: Final[str] = "Mount Fuji"
PEAK_LATITUDE: Final[float] = 35.3628
PEAK_LONGITUDE: Final[float] = 138.730781
PEAK_ELEVATION_M: Final[float] = 3776.0
PEAK_TIMEZONE: Final[str] = "Asia/Tokyo"

EARTH_RADIUS_M: Final[float] = 6_371_000.0
OBSERVER_EYE_HEIGHT_M: Final[float] = 1.7

# Fraction of the curvature drop recovered by standard terrestrial refraction
REFRACTION_COEFFICIENT: Final[float] = 0.13

# =============================================================================
# Visibility and Illumination
# =============================================================================

# Bodies below this apparent altitude have no usable position
HORIZON_CUTOFF_DEG: Final[float] = -2.0

MIN_MOON_ILLUMINATION: Final[float] = 0.1

# =============================================================================
# Alignment Search
# =============================================================================

COARSE_INTERVAL_SEC: Final[int] = 120
FINE_INTERVAL_SEC: Final[int] = 10
FINE_WINDOW_MIN: Final[int] = 10

COARSE_AZIMUTH_THRESHOLD_DEG: Final[float] = 1.5
COARSE_ELEVATION_THRESHOLD_DEG: Final[float] = 1.5
AZIMUTH_TOLERANCE_DEG: Final[float] = 0.6
ELEVATION_TOLERANCE_DEG: Final[float] = 1.0

SUN_HORIZON_SCAN_MIN: Final[int] = 10
SUN_WINDOW_DAYLIGHT_MIN: Final[int] = 180
SUN_WINDOW_NIGHT_MIN: Final[int] = 30
TREND_PROBE_SEC: Final[int] = 60

SEASON_AZIMUTH_MARGIN_DEG: Final[float] = 2.0

# =============================================================================
# Accuracy Tiers (maximum azimuth difference, degrees)
# =============================================================================

ACCURACY_PERFECT_DEG: Final[float] = 0.1
ACCURACY_EXCELLENT_DEG: Final[float] = 0.25
ACCURACY_GOOD_DEG: Final[float] = 0.4
ACCURACY_FAIR_DEG: Final[float] = 0.6

# =============================================================================
# Work Queue
# =============================================================================

QUEUE_MAX_ATTEMPTS: Final[int] = 3
QUEUE_BACKOFF_BASE_SEC: Final[float] = 5.0
QUEUE_BACKOFF_MULTIPLIER: Final[float] = 2.0
QUEUE_BACKOFF_MAX_SEC: Final[float] = 300.0
QUEUE_STALL_TIMEOUT_SEC: Final[float] = 1800.0
QUEUE_MAX_STALL_RECLAIMS: Final[int] = 1
QUEUE_JOB_DELAY_SEC: Final[float] = 5.0
QUEUE_PROCESSING_DELAY_SEC: Final[float] = 2.0
QUEUE_CONCURRENCY: Final[int] = 1
QUEUE_MAX_CONCURRENCY: Final[int] = 10
QUEUE_KEEP_COMPLETED: Final[int] = 100
QUEUE_KEEP_FAILED: Final[int] = 50

# =============================================================================
# Scheduler
# =============================================================================

# setTimeout-style timers cap at 2^31-1 milliseconds
MAX_TIMER_SEC: Final[float] = 2_147_483.647

ARCHIVE_RETENTION_YEARS: Final[int] = 3
