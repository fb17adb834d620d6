"""Rate detectors: bursts of activity from one user inside one clock hour.

A plain threshold says "100 searches happened".  These detectors also look
at how fast: 100 searches spread across an hour is a busy analyst, 100
searches in 40 seconds is a script.  Each (user, date, hour) bucket alerts
at most once, with a message fixed by the bucket; the counts measured at
the moment it fired go into the warning context.

Whether a bucket fires depends only on the set of rows it holds, never on
the order they arrived in: every gate (count, span, densest window) can
only go from false to true as rows are added.

Document downloads are tracked the same way but alert on every download,
since each one is a potential exfiltration.
"""

import bisect
import math
from dataclasses import dataclass, field
from datetime import datetime

from detection.events import Event
from detection.rules.detectors import Detection, Detector, register


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


def _fmt_rate(value: float) -> str:
    return f"{round(value, 2):g}"


@dataclass
class _Bucket:
    times: list[datetime] = field(default_factory=list)
    alerted: bool = False
    dense: bool = False
    distinct: set | None = None

    @property
    def count(self) -> int:
        return len(self.times)

    @property
    def span_seconds(self) -> float:
        return (self.times[-1] - self.times[0]).total_seconds()

    def add(self, seen: datetime) -> int:
        """Insert *seen* in time order; returns its position."""
        position = bisect.bisect_right(self.times, seen)
        self.times.insert(position, seen)
        return position

    def densest(self, n: int, around: int) -> float | None:
        """Shortest span, in seconds, of *n* consecutive rows that include
        the row at index *around*.  None while fewer than *n* rows exist."""
        if self.count < n:
            return None
        first = max(0, around - n + 1)
        last = min(around, self.count - n)
        return min(
            (self.times[i + n - 1] - self.times[i]).total_seconds()
            for i in range(first, last + 1)
        )


class HourlyTracker(Detector):
    """Shared bookkeeping: per-(user, date, hour[, extra]) buckets."""

    def __init__(self, rule):
        super().__init__(rule)
        self._buckets: dict[tuple, _Bucket] = {}

    def bucket_key(self, event: Event) -> tuple:
        return (event.user_id, event.date, event.hour)

    def track(self, event: Event) -> tuple[_Bucket, int] | None:
        if not event.user_id or event.timestamp is None:
            return None
        bucket = self._buckets.setdefault(self.bucket_key(event), _Bucket())
        return bucket, bucket.add(event.timestamp)


@register
class DownloadTracker(HourlyTracker):
    id = "download_tracker"
    default_multiplier = 2.0

    def detect(self, event):
        if self.track(event) is None:
            return None
        document = event.field("DOCUMENT_ID") or "Unknown document"
        return Detection(
            f"Document download detected for user {event.user_id} "
            f"during hour {event.hour}: {document}",
            self.severity_multiplier,
        )


@register
class RateDetector(HourlyTracker):
    """Alert once a bucket holds ``min_count`` events spread over at least
    ``min_span_seconds``.  With ``min_per_minute`` set, some run of
    ``min_count`` consecutive events must also fit inside the time that
    rate allows (100 events at 20/min: 5 minutes).

    The minimum span guards against rows that share one timestamp, where a
    rate is meaningless.
    """

    id = "rate"
    default_multiplier = 1.5

    def __init__(self, rule):
        super().__init__(rule)
        self.min_count = max(1, int(self.options.get("min_count", rule.threshold)))
        self.min_span_seconds = float(self.options.get("min_span_seconds", 1))
        self.min_per_minute = self.options.get("min_per_minute")
        self.label = self.options.get("label", rule.event_type)
        self.unit = self.options.get("unit", "events")
        self.distinct_field = self.options.get("distinct_field")
        self.distinct_label = self.options.get("distinct_label", "values")

    @property
    def max_window_seconds(self) -> float | None:
        if not self.min_per_minute:
            return None
        return self.min_count / float(self.min_per_minute) * 60

    def detect(self, event):
        tracked = self.track(event)
        if tracked is None:
            return None
        bucket, position = tracked

        if self.distinct_field:
            if bucket.distinct is None:
                bucket.distinct = set()
            value = event.field(self.distinct_field)
            if value:
                bucket.distinct.add(value)

        window = self.max_window_seconds
        if window is not None and not bucket.dense:
            # only a run through the new row can have become dense
            densest = bucket.densest(self.min_count, position)
            bucket.dense = densest is not None and densest <= window

        if bucket.count < self.min_count or bucket.alerted:
            return None
        if bucket.span_seconds < self.min_span_seconds:
            return None
        if window is not None and not bucket.dense:
            return None

        bucket.alerted = True
        return Detection(
            self.message(event),
            self.severity_multiplier,
            self.context(event, bucket),
        )

    def message(self, event) -> str:
        return f"High {self.label} rate detected for user {event.user_id} during hour {event.hour}"

    def context(self, event, bucket) -> dict:
        span = bucket.span_seconds
        if span < 60:
            seconds = max(1, _round_half_up(span))
            duration = _plural(seconds, "second")
            rate = f"{_fmt_rate(bucket.count / seconds)} {self.unit}/sec"
        else:
            minutes = max(1, _round_half_up(span / 60))
            duration = _plural(minutes, "minute")
            rate = f"{_fmt_rate(bucket.count / minutes)} {self.unit}/min"

        context = {
            "count": bucket.count,
            "duration": duration,
            "rate": rate,
            "summary": f"{bucket.count} {self.unit} in {duration} ({rate})",
        }
        if bucket.distinct is not None:
            context["unique"] = len(bucket.distinct)
            context["summary"] += f" across {len(bucket.distinct)} unique {self.distinct_label}"
        return context


# Apex entry-point codes as they appear in the QUIDDITY column.
QUIDDITY_LABELS = {
    "A": "Anonymous Apex",
    "B": "Batch Apex",
    "F": "Future Method",
    "H": "Scheduled Apex",
    "I": "Inbound Email",
    "L": "Lightning",
    "M": "Remote Action",
    "Q": "Queueable Apex",
    "R": "Regular Apex",
    "S": "Scheduled Apex",
    "T": "Trigger",
    "V": "Visualforce",
    "W": "Web Service",
    "X": "Execute Anonymous",
}


@register
class ApexExecutionDetector(RateDetector):
    """Repeated anonymous / web-service Apex from one user within an hour.

    Everything else (triggers, Lightning, Visualforce) is ordinary page
    plumbing and is ignored outright.
    """

    id = "apex_execution"
    default_multiplier = 3

    def __init__(self, rule):
        super().__init__(rule)
        self.high_risk_types = tuple(self.options.get("high_risk_types", ("A", "X", "W")))
        self.unit = "executions"

    def bucket_key(self, event):
        return (*super().bucket_key(event), event.get("QUIDDITY", ""))

    def detect(self, event):
        if event.get("QUIDDITY", "") not in self.high_risk_types:
            return None
        return super().detect(event)

    def message(self, event):
        execution_type = QUIDDITY_LABELS.get(event.get("QUIDDITY"), "Unknown Type")
        return (
            f"High rate of {execution_type} executions detected for user "
            f"{event.user_id} during hour {event.hour}"
        )

    def context(self, event, bucket):
        context = super().context(event, bucket)
        entry_point = event.get("ENTRY_POINT")
        if entry_point:
            context["entryPoint"] = entry_point
        return context
