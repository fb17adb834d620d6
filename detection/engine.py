"""Rule engine: evaluates tagged log rows against the rule catalog.

Pure business logic, no I/O.  The batch driver feeds rows in and routes
the resulting warnings to the owning user's activity record.

State, all owned by the engine instance:
  CounterStore   TrackingKey -> CounterState (threshold counts, alert flags)
  detectors      event_type  -> Detector (custom detection, private state)
  WarningLog     deduplicated warnings for the whole run
"""

import logging

from detection.counters import CounterStore, TrackingKey, time_bucket
from detection.errors import MalformedEventError, RuleEvaluationError
from detection.events import Event
from detection.rules import RiskRule, RuleCatalog
from detection.rules.detectors import Detector, create_detector
from detection.severity import enhance_severity
from detection.warning_log import RiskWarning, WarningLog

logger = logging.getLogger(__name__)


class RuleEngine:

    def __init__(self, catalog: RuleCatalog | None = None,
                 counters: CounterStore | None = None,
                 warnings: WarningLog | None = None):
        self.catalog = catalog if catalog is not None else RuleCatalog.default()
        self.counters = counters if counters is not None else CounterStore()
        self.warnings = warnings if warnings is not None else WarningLog()
        self.detector_errors = 0

        # One detector instance per rule, built up front so a bad detector
        # id in the catalog fails at startup rather than mid-batch.
        self._detectors: dict[str, Detector] = {}
        for rule in self.catalog:
            detector = create_detector(rule)
            if detector is not None:
                self._detectors[rule.event_type] = detector

    def evaluate(self, row: dict, event_type: str) -> list[RiskWarning]:
        """Feed one row, get back the warnings it newly produced.

        For the row's rule:
          1. Look up   - no rule for this event type means nothing to do
          2. Count     - bump the counter for this tracking key
          3. Threshold - alert once per alert key when count >= threshold
          4. Detector  - run the rule's custom detector, if any
          5. Dedup     - keep only warnings not already in the log
        """
        rule = self.catalog.get(event_type)
        if rule is None:
            return []

        event = Event(row, event_type)
        if not event.user_id:
            logger.debug("Skipping row: %s", MalformedEventError(event_type, "user id"))
            return []

        value = event.field(rule.count_field, "unknown") if rule.count_field else None
        if not rule.counts(value):
            return []

        candidates = []
        warning = self._check_threshold(rule, event, value)
        if warning is not None:
            candidates.append(warning)
        warning = self._run_detector(rule, event)
        if warning is not None:
            candidates.append(warning)

        stored = []
        for warning in candidates:
            if self.warnings.add(warning):
                stored.append(warning)
                logger.info("%s %s [%s]", warning.severity.upper(), warning.message, warning.user_id)
        return stored

    def _check_threshold(self, rule: RiskRule, event: Event, value) -> RiskWarning | None:
        bucket = time_bucket(event, rule.time_window)
        if bucket is None:
            logger.debug(
                "Skipping threshold count: %s",
                MalformedEventError(rule.event_type, f"fields for the {rule.time_window} window"),
            )
            return None

        key = TrackingKey(event.user_id, bucket, rule.event_type, value)
        state = self.counters.increment(key, event.timestamp)

        if rule.count_field:
            alert_key = f"{rule.event_type}-{value}"
            message = f"{rule.description} ({value})"
        else:
            alert_key = rule.event_type
            message = rule.description

        if state.count >= rule.threshold and state.mark_alerted(alert_key):
            return RiskWarning.from_event(event, message, rule.severity)
        return None

    def _run_detector(self, rule: RiskRule, event: Event) -> RiskWarning | None:
        detector = self._detectors.get(rule.event_type)
        if detector is None:
            return None
        try:
            detection = detector.detect(event)
        except Exception as e:
            self.detector_errors += 1
            error = RuleEvaluationError(rule.event_type, detector.id, e)
            logger.error("Error in custom risk detection: %s", error, exc_info=True)
            return None
        if detection is None:
            return None

        severity = enhance_severity(rule.severity, detection.severity_multiplier)
        return RiskWarning.from_event(
            event, detection.message or rule.description, severity, detection.context
        )
