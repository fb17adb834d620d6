"""Risk detection run: wires rule evaluation, login analysis and correlation.

One RiskDetectionEngine is one run.  It owns every piece of mutable state
(counters, warning log, user activity, detector state), so independent
engines never interfere with each other.

  1. load_login_history(rows)   per-user login history
  2. run(sources)               rows -> RuleEngine -> warnings -> users
  3. analyze_logins()           AnomalyDetector over each user
  4. correlate()                CorrelationEngine over all users
"""

import logging
from collections import defaultdict

from behavior.anomaly import AnomalyDetector
from behavior.geo import GeoResolver
from behavior.store import UserActivityStore
from correlation.engine import CorrelationConfig, CorrelationEngine, CorrelationResult
from detection.engine import RuleEngine
from detection.events import Event
from detection.rules import RuleCatalog
from monitor.sources import process_sources

logger = logging.getLogger(__name__)


class MonitorError(Exception):
    """A precondition for running at all is not met."""


class NoRulesLoadedError(MonitorError):
    pass


class NoUsersError(MonitorError):
    pass


class RiskDetectionEngine:

    def __init__(self, users, catalog: RuleCatalog | None = None, geo: GeoResolver | None = None,
                 correlation_config: CorrelationConfig | None = None, metrics=None):
        catalog = catalog if catalog is not None else RuleCatalog.default()
        if len(catalog) == 0:
            raise NoRulesLoadedError("no risk rules loaded")

        store = users if isinstance(users, UserActivityStore) else UserActivityStore.from_user_map(users or {})
        if len(store) == 0:
            raise NoUsersError("no users to monitor")

        self.store = store
        self.rules = RuleEngine(catalog)
        self.detector = AnomalyDetector(geo)
        self.correlation = CorrelationEngine(correlation_config)
        self.metrics = metrics
        self.correlations: dict[str, CorrelationResult] = {}

    @property
    def warnings(self):
        return self.rules.warnings

    # -- ingestion ---------------------------------------------------------

    def load_login_history(self, rows) -> int:
        """Group LoginHistory rows by ``UserId`` and load them.  Returns users loaded."""
        by_user = defaultdict(list)
        for row in rows:
            user_id = row.get("UserId")
            if user_id:
                by_user[user_id].append(row)

        loaded = 0
        for user_id, records in by_user.items():
            if self.store.add_login_history(user_id, records):
                loaded += 1
        logger.info("Loaded login history for %d of %d users", loaded, len(self.store))
        return loaded

    def process_row(self, row: dict, event_type: str) -> list:
        """Evaluate one row.  Rows for users outside the run are ignored."""
        _, warnings = self._process(row, event_type)
        return warnings

    def _process(self, row, event_type) -> tuple[str | None, list]:
        """(user_id, new warnings) for a monitored user's row, else (None, [])."""
        user_id = Event(row, event_type).user_id
        if user_id not in self.store:
            return None, []
        return user_id, self._evaluate(row, event_type)

    def _evaluate(self, row, event_type):
        if self.metrics is not None:
            self.metrics.observe_row(event_type)
        warnings = self.rules.evaluate(row, event_type)
        for warning in warnings:
            self.store.add_warning(warning)
            if self.metrics is not None:
                self.metrics.observe_warning(warning)
        return warnings

    def _consume(self, row, event_type):
        user_id, _ = self._process(row, event_type)
        return user_id

    # -- analysis ----------------------------------------------------------

    def analyze_logins(self, now=None) -> dict:
        failures_before = self.detector.geo_failures
        results = {}
        for activity in self.store:
            anomalies = self.detector.analyze(activity, now)
            results[activity.user_id] = anomalies
            if self.metrics is not None:
                self.metrics.observe_anomalies(anomalies)
        if self.metrics is not None:
            self.metrics.geo_lookup_failures_total.inc(self.detector.geo_failures - failures_before)
        return results

    def correlate(self) -> dict[str, CorrelationResult]:
        self.correlations = self.correlation.analyze_all(self.store)
        if self.metrics is not None:
            self.metrics.observe_correlations(self.correlations)
        return self.correlations

    def high_risk_users(self, threshold: float = 10) -> list[CorrelationResult]:
        return self.correlation.get_high_risk_users(threshold)

    def summaries(self) -> list[dict]:
        return [activity.get_summary() for activity in self.store]

    def report(self, threshold: float = 10) -> dict:
        return {
            "users": self.summaries(),
            "warnings": [w.to_dict() for w in self.warnings],
            "highRiskUsers": [r.to_dict() for r in self.high_risk_users(threshold)],
            "rules": self.rules.catalog.as_dict(),
        }

    # -- batch run ---------------------------------------------------------

    def relevant_sources(self, sources) -> list:
        """Sources dated on a day some monitored user logged in.

        Undated sources always qualify, and so does everything when no
        login history has been loaded.
        """
        sources = list(sources)
        days = {day for activity in self.store for day in activity.login_days}
        if not days:
            return sources
        relevant = [s for s in sources if s.log_date is None or s.log_date in days]
        logger.info("Processing %d of %d logs relevant to monitored users", len(relevant), len(sources))
        return relevant

    async def run(self, sources, batch_size: int = 5, scan_limit: int | None = None, now=None):
        """Process *sources*, then analyze logins and correlate.  Returns per-source results."""
        detector_errors_before = self.rules.detector_errors
        results = await process_sources(
            self.relevant_sources(sources), self._consume, batch_size, scan_limit
        )

        for result in results:
            self.store.record_scanned_log(result.source.event_type, result.user_ids)
        failed = [r for r in results if not r.ok]
        if failed:
            logger.warning("%d of %d logs failed to process", len(failed), len(results))

        self.analyze_logins(now)
        self.correlate()

        if self.metrics is not None:
            self.metrics.source_errors_total.inc(len(failed))
            self.metrics.detector_errors_total.inc(self.rules.detector_errors - detector_errors_before)
            self.metrics.observe_users(self.store)
        return results
