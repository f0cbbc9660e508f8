"""
ALIGNWATCH Ephemeris Package

Sun and moon positions behind a small port so the search can run against
Skyfield in production and a synthetic sky in tests.
"""

from services.ephemeris.port import Body, BodyPosition, EphemerisPort

__all__ = ["Body", "BodyPosition", "EphemerisPort"]
