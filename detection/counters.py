"""Time-bucketed threshold counters with alert-once flags.

Used by the rule engine to count events per tracking key.  A tracking key
scopes a counter to one user, one time bucket (session, hour or day), one
event type and, for rules with a count field, one field value.  Counters
are created lazily on first increment and never decrease; a run is a single
batch, so nothing here is evicted or persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import NamedTuple

from detection.events import Event

TIME_WINDOWS = ("session", "hour", "day", "none")


class TrackingKey(NamedTuple):
    user_id: str
    time_bucket: str
    event_type: str
    field_value: str | None = None


@dataclass
class CounterState:
    count: int = 0
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    alerted_events: set[str] = field(default_factory=set)

    def record(self, seen: datetime | None) -> int:
        """Count one event.  first/last seen track the min/max event time,
        so the state is the same whatever order the events arrive in."""
        self.count += 1
        if seen is not None:
            if self.first_seen is None or seen < self.first_seen:
                self.first_seen = seen
            if self.last_seen is None or seen > self.last_seen:
                self.last_seen = seen
        return self.count

    def mark_alerted(self, alert_key: str) -> bool:
        """Flag *alert_key*.  Returns False if it had already fired."""
        if alert_key in self.alerted_events:
            return False
        self.alerted_events.add(alert_key)
        return True


def time_bucket(event: Event, time_window: str) -> str | None:
    """Derive the bucket an event counts towards, or None if the event lacks
    the fields the window needs."""
    if time_window == "session":
        return event.session_key
    date = event.date
    if date is None:
        return None
    if time_window == "hour":
        if event.hour is None:
            return None
        return f"{date}-{event.hour:02d}"
    # "day" and "none" both count per user-day
    return date


class CounterStore:
    __slots__ = ("_state",)

    def __init__(self):
        self._state: dict[TrackingKey, CounterState] = {}

    def get(self, key: TrackingKey) -> CounterState | None:
        return self._state.get(key)

    def get_or_create(self, key: TrackingKey) -> CounterState:
        state = self._state.get(key)
        if state is None:
            state = self._state[key] = CounterState()
        return state

    def increment(self, key: TrackingKey, seen: datetime | None = None) -> CounterState:
        state = self.get_or_create(key)
        state.record(seen)
        return state

    def snapshot(self) -> dict[TrackingKey, tuple[int, frozenset[str]]]:
        """Counts and alert flags per key, for comparing runs."""
        return {
            key: (state.count, frozenset(state.alerted_events))
            for key, state in self._state.items()
        }

    def __contains__(self, key) -> bool:
        return key in self._state

    def __len__(self) -> int:
        return len(self._state)
