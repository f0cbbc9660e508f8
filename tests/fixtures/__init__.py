"""
ALIGNWATCH Test Fixtures Package.

Provides a synthetic ephemeris so the alignment search, the recalculation
jobs and the full pipeline can be tested without downloading JPL kernels.

Available fixtures:
- MockEphemeris: Sun and moon moving along straight tracks on chosen dates
- LinearTrack: One such track through a known crossing point
- FailingEphemeris: Raises a number of times before answering

Usage:
    from tests.fixtures import LinearTrack, MockEphemeris

    sky = MockEphemeris()
    sky.add_track(Body.SUN, date(2026, 3, 20), LinearTrack(time(6, 30), 90.0, 2.0))
"""

from tests.fixtures.mock_ephemeris import FailingEphemeris, LinearTrack, MockEphemeris

__all__ = [
    "FailingEphemeris",
    "LinearTrack",
    "MockEphemeris",
]
