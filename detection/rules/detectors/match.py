"""Single-row detectors: no state, just a look at one field.

These catch events that are risky on their own regardless of volume: a
guest user deleting records, a flow named "mass_delete", a callout to a
domain nobody approved.
"""

from detection.rules.detectors import Detection, Detector, register


@register
class KeywordDetector(Detector):
    """Fires when ``field`` contains any of ``keywords`` (case-insensitive)."""

    id = "keyword"
    default_multiplier = 2

    def __init__(self, rule):
        super().__init__(rule)
        self.field = self.options["field"]
        self.keywords = [k.lower() for k in self.options.get("keywords", [])]
        self.template = self.options.get("message", "{field} matched: {value}")

    def detect(self, event):
        value = event.get(self.field)
        if not value:
            return None
        lowered = str(value).lower()
        if not any(keyword in lowered for keyword in self.keywords):
            return None
        return Detection(
            self.template.format(field=self.field, value=value),
            self.severity_multiplier,
        )


@register
class EndpointAllowlistDetector(Detector):
    """Outbound callouts to any endpoint outside the approved domains."""

    id = "endpoint_allowlist"
    default_multiplier = 2

    def __init__(self, rule):
        super().__init__(rule)
        self.allowed_domains = list(self.options.get("allowed_domains", []))

    def detect(self, event):
        url = event.field("ENDPOINT_URL")
        if not url:
            return None
        if any(domain in url for domain in self.allowed_domains):
            return None
        return Detection(f"Callout to non-approved endpoint: {url}", self.severity_multiplier)


@register
class PlatformAnomalyDetector(Detector):
    """The platform already flagged this row; pass its verdict through."""

    id = "platform_anomaly"
    default_multiplier = 3

    def detect(self, event):
        score = event.get("SCORE", "Unknown")
        kind = event.get("EVENT_TYPE", "Unknown type")
        return Detection(f"API anomaly: {score} score | {kind}", self.severity_multiplier)


@register
class BulkVolumeDetector(Detector):
    """A single bulk job touching more than ``max_records`` records."""

    id = "bulk_volume"
    default_multiplier = 2

    def __init__(self, rule):
        super().__init__(rule)
        self.max_records = int(self.options.get("max_records", 10000))

    def detect(self, event):
        raw = event.get("RECORDS_PROCESSED")
        if raw is None:
            return None
        try:
            records = int(str(raw).strip())
        except ValueError:
            return None
        if records <= self.max_records:
            return None
        return Detection(f"Large bulk operation with {raw} records", self.severity_multiplier)
