"""Daily delivery statistics."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional

from ...models.domain import AssignmentStatus, DailyStats
from ...persistence.repositories import AssignmentRepository
from ...utils.serialization import utc_now


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open [start, end) UTC interval covering ``day``."""

    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class StatsAggregator:
    def __init__(self, assignments: AssignmentRepository, clock: Callable[[], datetime] = utc_now) -> None:
        self.assignments = assignments
        self.clock = clock

    def daily_stats(self, day: Optional[date] = None) -> DailyStats:
        """Count assignments created, cancelled and completed on ``day`` (default: today, UTC).

        Each counter uses its own timestamp: ``created_at`` for created,
        ``updated_at`` for cancelled and ``delivered_at`` for completed, so one
        assignment may be counted on different days.
        """

        day = day or self.clock().astimezone(timezone.utc).date()
        start, end = day_bounds(day)
        return DailyStats(
            day=day.isoformat(),
            created=self.assignments.count_created_between(start, end),
            cancelled=self.assignments.count_status_between(AssignmentStatus.CANCELLED, "updated_at", start, end),
            completed=self.assignments.count_status_between(AssignmentStatus.DELIVERED, "delivered_at", start, end),
        )
