"""
ALIGNWATCH - Diamond and Pearl alignment event computation.

Finds the instants when the sun or moon lines up with a distant peak as
seen from an observation point, caches the results per landmark and year,
and keeps the cache fresh with a recurring scheduler and a throttled,
retrying work queue.
"""

from alignwatch.constants import ALIGNWATCH_VERSION

__version__ = ALIGNWATCH_VERSION
