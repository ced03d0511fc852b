"""
Recache policy.

Gates re-uploads of changed groups behind a per-category minimum interval.
Registry indices change on nearly every run; without the gate every job
would re-upload a multi-hundred-megabyte index.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Mapping, Optional

from cargokit.cargo.home import Category

logger = logging.getLogger(__name__)


class RecacheDecision(Enum):
    SKIP = "skip"
    ELIGIBLE = "eligible"


def format_duration(duration: timedelta) -> str:
    """
    Render a duration as compact units.

    Example:
        >>> format_duration(timedelta(days=1, hours=2, seconds=5))
        '1d 2h 5s'
    """
    total = int(duration.total_seconds())
    if total <= 0:
        return "0s"
    parts = []
    for unit, seconds in (("d", 86400), ("h", 3600), ("m", 60), ("s", 1)):
        value, total = divmod(total, seconds)
        if value:
            parts.append(f"{value}{unit}")
    return " ".join(parts)


@dataclass
class RecachePolicy:
    """
    Per-category minimum recache intervals.

    Attributes:
        intervals: Configured interval per category; unconfigured
            categories use their defaults (indices 1 day, others none)
    """

    intervals: Dict[Category, timedelta] = field(default_factory=dict)

    @classmethod
    def from_intervals(
        cls, intervals: Optional[Mapping[Category, timedelta]] = None
    ) -> "RecachePolicy":
        resolved = {c: c.default_min_recache_interval() for c in Category}
        resolved.update(intervals or {})
        return cls(intervals=resolved)

    def interval_for(self, category: Category) -> timedelta:
        return self.intervals.get(category, category.default_min_recache_interval())

    def decide(
        self,
        category: Category,
        last_upload: Optional[datetime],
        now: datetime,
    ) -> RecacheDecision:
        """
        Decide whether a changed group may be uploaded.

        Args:
            category: Group category
            last_upload: Ledger timestamp of the last accepted upload, or
                None if the group was never uploaded
            now: Current time

        Returns:
            ELIGIBLE if there is no ledger entry or the interval has elapsed
        """
        if last_upload is None:
            return RecacheDecision.ELIGIBLE

        interval = self.interval_for(category)
        elapsed = now - last_upload
        if elapsed >= interval:
            return RecacheDecision.ELIGIBLE

        logger.info(
            f"Cached {category.friendly_name} outdated by {format_duration(elapsed)}, "
            f"but not updating cache since minimum recache interval is "
            f"{format_duration(interval)}"
        )
        return RecacheDecision.SKIP


__all__ = [
    "RecacheDecision",
    "RecachePolicy",
    "format_duration",
]
