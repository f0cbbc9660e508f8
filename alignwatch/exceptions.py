"""
ALIGNWATCH exception hierarchy.

All errors raised deliberately by the system derive from AlignwatchError so
callers can catch the whole family at an API boundary.
"""


class AlignwatchError(Exception):
    """Base class for all ALIGNWATCH errors."""


class ConfigurationError(AlignwatchError):
    """Configuration file is missing, unreadable or fails validation."""


class EphemerisError(AlignwatchError):
    """Ephemeris data could not be loaded."""


class StoreError(AlignwatchError):
    """A store operation failed and was rolled back."""


class ScopeError(StoreError):
    """Events handed to a regeneration do not belong to its scope."""


class LandmarkNotFoundError(AlignwatchError):
    """No landmark exists with the requested id."""

    def __init__(self, landmark_id: int):
        super().__init__(f"Landmark {landmark_id} not found")
        self.landmark_id = landmark_id


class JobError(AlignwatchError):
    """A queued job cannot be executed or looked up."""


class JobCancelledError(JobError):
    """The run of a job was reclaimed or stopped; its work must be discarded."""
