"""
ALIGNWATCH Configuration System

Type-safe configuration for the alignment service using pydantic for
validation and YAML for human-readable config files.

Configuration loading priority:
1. Environment variables (ALIGNWATCH_SECTION_KEY)
2. Config file passed explicitly (``--config`` on the CLI)
3. ./alignwatch.yaml (current directory)
4. ~/.alignwatch/config.yaml (user home)
5. /etc/alignwatch/config.yaml
6. Built-in defaults

Usage:
    from alignwatch.config import load_config

    config = load_config()
    print(config.peak.timezone)
    print(config.search.azimuth_tolerance)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from alignwatch import constants as C
from alignwatch.exceptions import ConfigurationError

__all__ = [
    "AlignwatchConfig",
    "PeakConfig",
    "EphemerisConfig",
    "SearchConfig",
    "SeasonConfig",
    "StoreConfig",
    "QueueConfig",
    "SchedulerConfig",
    "load_config",
    "get_config_paths",
]

ENV_PREFIX = "ALIGNWATCH_"


# =============================================================================
# Configuration Sections
# =============================================================================


class PeakConfig(BaseModel):
    """The distant landmark peak every alignment is measured against."""

    name: str = Field(default=C.PEAK_NAME, description="Human-readable peak name")
    latitude: float = Field(
        default=C.PEAK_LATITUDE,
        ge=-90.0,
        le=90.0,
        description="Summit latitude in decimal degrees (positive = North)",
    )
    longitude: float = Field(
        default=C.PEAK_LONGITUDE,
        ge=-180.0,
        le=180.0,
        description="Summit longitude in decimal degrees (positive = East)",
    )
    elevation: float = Field(
        default=C.PEAK_ELEVATION_M,
        ge=-500.0,
        le=9000.0,
        description="Summit elevation in meters above sea level",
    )
    timezone: str = Field(
        default=C.PEAK_TIMEZONE,
        description="IANA timezone defining local calendar days and schedules",
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject names the tz database does not know."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v


class EphemerisConfig(BaseModel):
    """Skyfield ephemeris data location."""

    ephemeris_file: str = Field(
        default="de440s.bsp",
        description="JPL ephemeris kernel loaded by Skyfield",
    )
    data_dir: Optional[str] = Field(
        default=None,
        description="Directory for downloaded kernels (Skyfield default when unset)",
    )
    horizon_cutoff: float = Field(
        default=C.HORIZON_CUTOFF_DEG,
        ge=-10.0,
        le=10.0,
        description="Apparent altitude below which a body has no usable position",
    )


class SearchConfig(BaseModel):
    """Coarse-to-fine alignment search parameters.

    Coarse thresholds must be at least as loose as the final tolerances so
    that every accepted event was first a coarse candidate.
    """

    coarse_interval_seconds: int = Field(default=C.COARSE_INTERVAL_SEC, ge=10, le=3600)
    fine_interval_seconds: int = Field(default=C.FINE_INTERVAL_SEC, ge=1, le=600)
    fine_window_minutes: int = Field(default=C.FINE_WINDOW_MIN, ge=1, le=120)

    coarse_azimuth_threshold: float = Field(default=C.COARSE_AZIMUTH_THRESHOLD_DEG, gt=0.0, le=10.0)
    coarse_elevation_threshold: float = Field(default=C.COARSE_ELEVATION_THRESHOLD_DEG, gt=0.0, le=10.0)
    azimuth_tolerance: float = Field(
        default=C.AZIMUTH_TOLERANCE_DEG,
        gt=0.0,
        le=C.ACCURACY_FAIR_DEG,
        description="Maximum azimuth difference of an accepted event (degrees)",
    )
    elevation_tolerance: float = Field(
        default=C.ELEVATION_TOLERANCE_DEG,
        gt=0.0,
        le=5.0,
        description="Maximum elevation difference of an accepted event (degrees)",
    )
    min_moon_illumination: float = Field(default=C.MIN_MOON_ILLUMINATION, ge=0.0, le=1.0)

    sun_horizon_scan_minutes: int = Field(default=C.SUN_HORIZON_SCAN_MIN, ge=1, le=60)
    sun_window_daylight_minutes: int = Field(
        default=C.SUN_WINDOW_DAYLIGHT_MIN,
        ge=10,
        le=720,
        description="Minutes searched on the daylight side of each horizon crossing",
    )
    sun_window_night_minutes: int = Field(
        default=C.SUN_WINDOW_NIGHT_MIN,
        ge=0,
        le=720,
        description="Minutes searched on the night side of each horizon crossing",
    )
    trend_probe_seconds: int = Field(default=C.TREND_PROBE_SEC, ge=1, le=1800)

    refraction_coefficient: float = Field(
        default=C.REFRACTION_COEFFICIENT,
        ge=0.0,
        le=1.0,
        description="Fraction of the curvature drop recovered by terrestrial refraction",
    )
    search_concurrency: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Landmarks searched in parallel worker threads",
    )

    @model_validator(mode="after")
    def validate_tightening(self) -> "SearchConfig":
        """Coarse pass must be looser and sparser than the fine pass."""
        if self.coarse_azimuth_threshold < self.azimuth_tolerance:
            raise ValueError("coarse_azimuth_threshold must be >= azimuth_tolerance")
        if self.coarse_elevation_threshold < self.elevation_tolerance:
            raise ValueError("coarse_elevation_threshold must be >= elevation_tolerance")
        if self.fine_interval_seconds > self.coarse_interval_seconds:
            raise ValueError("fine_interval_seconds must be <= coarse_interval_seconds")
        return self


class SeasonConfig(BaseModel):
    """Sun season pre-filter."""

    azimuth_margin: float = Field(
        default=C.SEASON_AZIMUTH_MARGIN_DEG,
        ge=0.0,
        le=30.0,
        description="Widening applied to the monthly rise/set azimuth band (degrees)",
    )
    sun_months: Optional[List[int]] = Field(
        default=None,
        description="Operator override: months to search for sun events",
    )

    @field_validator("sun_months")
    @classmethod
    def validate_months(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is None:
            return v
        bad = [m for m in v if not 1 <= m <= 12]
        if bad:
            raise ValueError(f"Invalid months: {bad}")
        return sorted(set(v))


class StoreConfig(BaseModel):
    """SQLite event cache location."""

    path: str = Field(
        default=str(Path.home() / ".alignwatch" / "events.db"),
        description="SQLite database holding landmarks and cached events",
    )
    busy_timeout_seconds: float = Field(default=30.0, ge=0.0, le=600.0)


class QueueConfig(BaseModel):
    """Work queue retry, throttling and stall policy."""

    concurrency: int = Field(default=C.QUEUE_CONCURRENCY, ge=1, le=C.QUEUE_MAX_CONCURRENCY)
    max_attempts: int = Field(default=C.QUEUE_MAX_ATTEMPTS, ge=1, le=20)
    backoff_base_seconds: float = Field(default=C.QUEUE_BACKOFF_BASE_SEC, ge=0.0, le=3600.0)
    backoff_multiplier: float = Field(default=C.QUEUE_BACKOFF_MULTIPLIER, ge=1.0, le=10.0)
    backoff_max_seconds: float = Field(default=C.QUEUE_BACKOFF_MAX_SEC, ge=0.0, le=86400.0)
    stall_timeout_seconds: float = Field(default=C.QUEUE_STALL_TIMEOUT_SEC, gt=0.0)
    stall_check_interval_seconds: float = Field(default=30.0, gt=0.0)
    max_stall_reclaims: int = Field(default=C.QUEUE_MAX_STALL_RECLAIMS, ge=0, le=10)

    low_priority_mode: bool = Field(
        default=True,
        description="Delay normal/low priority jobs and pause between processing steps",
    )
    job_delay_seconds: float = Field(default=C.QUEUE_JOB_DELAY_SEC, ge=0.0, le=3600.0)
    processing_delay_seconds: float = Field(default=C.QUEUE_PROCESSING_DELAY_SEC, ge=0.0, le=600.0)

    keep_completed: int = Field(default=C.QUEUE_KEEP_COMPLETED, ge=0)
    keep_failed: int = Field(default=C.QUEUE_KEEP_FAILED, ge=0)
    journal_path: Optional[str] = Field(
        default=None,
        description="JSON journal for surviving restarts (disabled when unset)",
    )


class SchedulerConfig(BaseModel):
    """Recurring maintenance rules."""

    enabled: bool = Field(default=True)
    max_timer_seconds: float = Field(default=C.MAX_TIMER_SEC, gt=0.0)
    archive_retention_years: int = Field(default=C.ARCHIVE_RETENTION_YEARS, ge=1, le=50)
    disabled_rules: List[str] = Field(default_factory=list)


# =============================================================================
# Master Configuration
# =============================================================================


class AlignwatchConfig(BaseModel):
    """Top-level configuration aggregating every section."""

    model_config = ConfigDict(extra="ignore")

    peak: PeakConfig = Field(default_factory=PeakConfig)
    ephemeris: EphemerisConfig = Field(default_factory=EphemerisConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    season: SeasonConfig = Field(default_factory=SeasonConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Global logging level",
    )
    log_file: Optional[str] = Field(default=None, description="Optional rotating log file")


# =============================================================================
# Configuration Loading
# =============================================================================


def get_config_paths() -> list[Path]:
    """Config file locations in priority order (first found wins)."""
    home = Path.home()
    return [
        Path("./alignwatch.yaml"),
        Path("./alignwatch.yml"),
        home / ".alignwatch" / "config.yaml",
        home / ".alignwatch" / "config.yml",
        Path("/etc/alignwatch/config.yaml"),
    ]


def _coerce_env_value(value: str):
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


def _apply_env_overrides(config_dict: dict) -> dict:
    """Apply ALIGNWATCH_SECTION_KEY environment variables.

    ``ALIGNWATCH_SEARCH_AZIMUTH_TOLERANCE=0.4`` sets
    ``search.azimuth_tolerance``. ``ALIGNWATCH_LOG_LEVEL`` and
    ``ALIGNWATCH_LOG_FILE`` set the top-level logging fields.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        name = key[len(ENV_PREFIX):].lower()
        if name in ("log_level", "log_file"):
            config_dict[name] = value.upper() if name == "log_level" else value
            continue

        parts = name.split("_")
        if len(parts) < 2:
            continue
        section = parts[0]
        setting = "_".join(parts[1:])

        if not isinstance(config_dict.get(section), dict):
            config_dict[section] = {}
        config_dict[section][setting] = _coerce_env_value(value)

    return config_dict


def load_config(config_path: Optional[str | Path] = None) -> AlignwatchConfig:
    """Load configuration from file with validation.

    Args:
        config_path: Explicit config file path, or None for auto-discovery

    Returns:
        Validated AlignwatchConfig

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    config_dict: dict = {}

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        config_files = [path]
    else:
        config_files = get_config_paths()

    for path in config_files:
        if path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    config_dict = yaml.safe_load(f) or {}
                break
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
            except OSError as e:
                raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if not isinstance(config_dict, dict):
        raise ConfigurationError("Top level of the config file must be a mapping")

    config_dict = _apply_env_overrides(config_dict)

    try:
        return AlignwatchConfig(**config_dict)
    except Exception as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e
