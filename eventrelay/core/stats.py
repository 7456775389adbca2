"""Aggregate statistics over stored events."""

from collections import defaultdict
from collections.abc import Iterable

from pydantic import BaseModel, Field

from eventrelay.core.event import StoredEvent

ACTIVE_PERIOD_TYPE = "active_period"
UNKNOWN_TYPE = "unknown"


class ActivityStats(BaseModel):
    """Summary of the events currently held by the store.

    Attributes:
        total_events: Number of events.
        by_type: Event count per ``type`` tag (untagged events count as
            "unknown").
        active_time_by_url: Summed ``duration`` (ms) of active-period
            events per ``url``.
    """

    total_events: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    active_time_by_url: dict[str, float] = Field(default_factory=dict)

    @property
    def total_active_time(self) -> float:
        return sum(self.active_time_by_url.values())


def compute_stats(
    events: Iterable[StoredEvent],
    active_type: str = ACTIVE_PERIOD_TYPE,
) -> ActivityStats:
    """Fold events into counts per type and active time per URL."""
    total = 0
    by_type: dict[str, int] = defaultdict(int)
    active: dict[str, float] = defaultdict(float)

    for event in events:
        total += 1
        event_type = event.type or UNKNOWN_TYPE
        by_type[event_type] += 1
        if event_type != active_type:
            continue
        url = event.record.get("url")
        duration = event.record.get("duration")
        if not isinstance(url, str) or isinstance(duration, bool):
            continue
        if isinstance(duration, (int, float)) and duration > 0:
            active[url] += duration

    return ActivityStats(
        total_events=total,
        by_type=dict(by_type),
        active_time_by_url=dict(active),
    )
