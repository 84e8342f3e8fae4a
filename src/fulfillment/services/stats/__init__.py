"""Daily delivery counters."""

from .service import StatsAggregator, day_bounds

__all__ = ["StatsAggregator", "day_bounds"]
