"""Tests for RuleEngine: thresholds, alert-once, dedup, detectors, malformed rows."""

import itertools
import random

import pytest

from detection.engine import RuleEngine
from detection.rules import RiskRule, RuleCatalog
from detection.rules.detectors import REGISTRY, Detector, register


def _row(user_id="005A", ts="2025-03-10T09:15:00Z", **extra):
    """Helper to build an event log row with sane defaults."""
    row = {
        "USER_ID_DERIVED": user_id,
        "TIMESTAMP_DERIVED": ts,
        "SESSION_KEY": "sess-1",
        "CLIENT_IP": "10.0.0.5",
    }
    row.update(extra)
    return row


def _engine(*rules):
    return RuleEngine(RuleCatalog(rules))


# ---------------------------------------------------------------------------
# Threshold path
# ---------------------------------------------------------------------------

class TestThreshold:
    def test_unknown_event_type_is_noop(self):
        engine = RuleEngine()
        assert engine.evaluate(_row(), "NotARealEventType") == []
        assert len(engine.counters) == 0

    def test_alert_once_per_window(self):
        """10 identical events against a threshold-3 rule -> exactly 1 warning."""
        engine = _engine(RiskRule("LoginAs", "Admin Impersonation", "high", 3))
        warnings = []
        for _ in range(10):
            warnings.extend(engine.evaluate(_row(), "LoginAs"))
        assert len(warnings) == 1
        assert warnings[0].message == "Admin Impersonation"
        assert warnings[0].severity == "high"
        assert len(engine.warnings) == 1

    def test_below_threshold_does_not_fire(self):
        engine = _engine(RiskRule("LoginAs", "Admin Impersonation", "high", 3))
        engine.evaluate(_row(), "LoginAs")
        assert engine.evaluate(_row(), "LoginAs") == []
        assert len(engine.evaluate(_row(), "LoginAs")) == 1

    def test_report_export_references_report_id(self):
        """Scenario B: threshold 1, countField REPORT_ID."""
        engine = RuleEngine()
        warnings = engine.evaluate(_row(REPORT_ID="R1"), "ReportExport")
        assert len(warnings) == 1
        assert warnings[0].severity == "critical"
        assert "R1" in warnings[0].message
        assert warnings[0].message == "Report Export (R1)"

    def test_count_field_thresholds_per_distinct_value(self):
        engine = _engine(RiskRule("Login", "Multiple IP Logins", "high", 2,
                                  time_window="day", count_field="SOURCE_IP"))
        warnings = []
        for ip in ("1.1.1.1", "2.2.2.2", "1.1.1.1"):
            warnings.extend(engine.evaluate(_row(SOURCE_IP=ip), "Login"))
        assert [w.message for w in warnings] == ["Multiple IP Logins (1.1.1.1)"]

    def test_missing_count_field_counts_as_unknown(self):
        engine = _engine(RiskRule("ReportExport", "Report Export", "critical", 1,
                                  count_field="REPORT_ID"))
        warnings = engine.evaluate(_row(), "ReportExport")
        assert warnings[0].message == "Report Export (unknown)"

    def test_hour_window_resets_each_hour(self):
        engine = _engine(RiskRule("LightningError", "Unusual Error Rate", "medium", 2,
                                  time_window="hour"))
        engine.evaluate(_row(ts="2025-03-10T09:10:00Z"), "LightningError")
        assert engine.evaluate(_row(ts="2025-03-10T10:10:00Z"), "LightningError") == []
        warnings = engine.evaluate(_row(ts="2025-03-10T10:50:00Z"), "LightningError")
        assert len(warnings) == 1

    def test_session_window_counts_per_session(self):
        engine = _engine(RiskRule("LoginAs", "Admin Impersonation", "high", 2,
                                  time_window="session"))
        engine.evaluate(_row(SESSION_KEY="a"), "LoginAs")
        assert engine.evaluate(_row(SESSION_KEY="b"), "LoginAs") == []
        assert len(engine.evaluate(_row(SESSION_KEY="a", ts="2025-03-10T11:00:00Z"), "LoginAs")) == 1

    def test_count_values_gate_skips_unlisted_values(self):
        engine = RuleEngine()
        for _ in range(5):
            assert engine.evaluate(_row(QUIDDITY="T"), "ApexExecution") == []
        assert len(engine.counters) == 0


# ---------------------------------------------------------------------------
# Users and dedup
# ---------------------------------------------------------------------------

class TestIsolationAndDedup:
    def test_different_users_independent(self):
        engine = _engine(RiskRule("LoginAs", "Admin Impersonation", "high", 2))
        engine.evaluate(_row(user_id="u1"), "LoginAs")
        engine.evaluate(_row(user_id="u2"), "LoginAs")
        warnings = engine.evaluate(_row(user_id="u1"), "LoginAs")
        assert len(warnings) == 1
        assert warnings[0].user_id == "u1"

    def test_same_message_same_day_stored_once(self):
        """A session-window rule fires per session, but the log keeps one
        warning per (user, date, message)."""
        engine = _engine(RiskRule("LoginAs", "Admin Impersonation", "high", 1,
                                  time_window="session"))
        assert len(engine.evaluate(_row(SESSION_KEY="a"), "LoginAs")) == 1
        assert engine.evaluate(_row(SESSION_KEY="b"), "LoginAs") == []
        assert len(engine.warnings) == 1

    def test_same_message_different_day_kept(self):
        engine = _engine(RiskRule("LoginAs", "Admin Impersonation", "high", 1,
                                  time_window="day"))
        engine.evaluate(_row(ts="2025-03-10T09:00:00Z"), "LoginAs")
        engine.evaluate(_row(ts="2025-03-11T09:00:00Z"), "LoginAs")
        assert len(engine.warnings) == 2

    def test_engines_do_not_share_state(self):
        rule = RiskRule("LoginAs", "Admin Impersonation", "high", 2)
        first, second = _engine(rule), _engine(rule)
        first.evaluate(_row(), "LoginAs")
        assert second.evaluate(_row(), "LoginAs") == []
        assert len(first.evaluate(_row(), "LoginAs")) == 1


# ---------------------------------------------------------------------------
# Order independence
# ---------------------------------------------------------------------------

class TestOrderIndependence:
    def _rows(self):
        rows = []
        for user in ("u1", "u2"):
            for i, ip in enumerate(["1.1.1.1", "2.2.2.2", "1.1.1.1", "3.3.3.3", "1.1.1.1"]):
                rows.append((_row(user_id=user, ts=f"2025-03-10T0{i + 1}:00:00Z",
                                  SOURCE_IP=ip), "Login"))
            rows.append((_row(user_id=user, REPORT_ID="R9"), "ReportExport"))
            rows.append((_row(user_id=user, REPORT_ID="R9"), "ReportExport"))
            rows.append((_row(user_id=user), "LogoutEvent"))
        return rows

    def _run(self, rows):
        catalog = RuleCatalog([
            RiskRule("Login", "Multiple IP Logins", "high", 3, time_window="day",
                     count_field="SOURCE_IP"),
            RiskRule("ReportExport", "Report Export", "critical", 1, time_window="day",
                     count_field="REPORT_ID"),
            RiskRule("LogoutEvent", "Unusual Logout Pattern", "low", 1, time_window="day"),
        ])
        engine = RuleEngine(catalog)
        for row, event_type in rows:
            engine.evaluate(row, event_type)
        return engine.counters.snapshot(), engine.warnings.keys()

    def test_permutations_yield_same_counters_and_warnings(self):
        rows = self._rows()
        baseline = self._run(rows)
        rng = random.Random(7)
        for _ in range(20):
            shuffled = rows[:]
            rng.shuffle(shuffled)
            assert self._run(shuffled) == baseline

    def test_rate_detectors_independent_of_order(self):
        rows = [(_row(ts="2025-03-10T09:00:00Z"), "Search") for _ in range(99)]
        rows += [(_row(ts="2025-03-10T09:00:10Z"), "Search"),
                 (_row(ts="2025-03-10T09:00:30Z"), "Search")]
        # a 100-request burst inside 4 minutes, then a slow trickle
        rows += [(_row(ts=f"2025-03-10T10:{i // 60:02d}:{i % 60:02d}Z",
                       DASHBOARD_ID=f"01Z{i % 3}"), "Dashboard")
                 for i in range(0, 200, 2)]
        rows += [(_row(ts=f"2025-03-10T10:{10 + i}:00Z", DASHBOARD_ID="01Z9"), "Dashboard")
                 for i in range(40)]
        rows += [(_row(ts=f"2025-03-10T11:00:{i * 5:02d}Z", QUIDDITY="A"), "ApexExecution")
                 for i in range(4)]

        orders = [rows, rows[::-1]]
        rng = random.Random(11)
        for _ in range(10):
            shuffled = rows[:]
            rng.shuffle(shuffled)
            orders.append(shuffled)

        outcomes = set()
        for order in orders:
            engine = RuleEngine(RuleCatalog.default())
            for row, event_type in order:
                engine.evaluate(row, event_type)
            outcomes.add(frozenset(engine.warnings.keys()))

        (keys,) = outcomes
        messages = {message for _, _, message in keys}
        assert "High search rate detected for user 005A during hour 9" in messages
        assert "High Dashboard access rate detected for user 005A during hour 10" in messages
        assert "High rate of Anonymous Apex executions detected for user 005A during hour 11" in messages

    def test_first_and_last_seen_independent_of_order(self):
        rule = RiskRule("LogoutEvent", "Unusual Logout Pattern", "low", 99, time_window="day")
        times = ["2025-03-10T08:00:00Z", "2025-03-10T17:00:00Z", "2025-03-10T12:00:00Z"]
        seen = set()
        for order in itertools.permutations(times):
            engine = _engine(rule)
            for ts in order:
                engine.evaluate(_row(ts=ts), "LogoutEvent")
            (state,) = [engine.counters.get(k) for k in engine.counters.snapshot()]
            seen.add((state.first_seen, state.last_seen))
        assert len(seen) == 1


# ---------------------------------------------------------------------------
# Custom detector path
# ---------------------------------------------------------------------------

class _Exploding(Detector):
    id = "test_exploding"

    def detect(self, event):
        raise RuntimeError("boom")


if _Exploding.id not in REGISTRY:
    register(_Exploding)


class TestCustomDetectors:
    def test_detector_runs_alongside_threshold(self):
        engine = RuleEngine()
        warnings = engine.evaluate(_row(PERMISSION_SET_NAME="System_Admin_Full"),
                                   "PermissionSetAssignment")
        assert len(warnings) == 1
        assert warnings[0].message == "High privilege permission set assigned: System_Admin_Full"
        # high base, multiplier 2.5 -> one level up
        assert warnings[0].severity == "critical"

    def test_detector_and_threshold_both_fire(self):
        engine = RuleEngine()
        warnings = engine.evaluate(_row(DOCUMENT_ID="069XYZ"), "DocumentAttachmentDownloads")
        messages = sorted(w.message for w in warnings)
        assert messages == [
            "Document Download (069XYZ)",
            "Document download detected for user 005A during hour 9: 069XYZ",
        ]

    def test_throwing_detector_is_contained(self):
        engine = _engine(
            RiskRule("Sites", "Internal Access via Guest User", "high", 1,
                     detector="test_exploding"),
            RiskRule("LoginAs", "Admin Impersonation", "high", 1),
        )
        warnings = engine.evaluate(_row(), "Sites")
        # threshold path still fired; detector contribution skipped
        assert [w.message for w in warnings] == ["Internal Access via Guest User"]
        assert engine.detector_errors == 1
        assert len(engine.evaluate(_row(), "LoginAs")) == 1

    def test_unknown_detector_id_fails_at_startup(self):
        with pytest.raises(ValueError, match="unknown detector"):
            _engine(RiskRule("Sites", "x", "high", 1, detector="no_such_detector"))

    def test_multiplier_below_two_keeps_severity(self):
        engine = RuleEngine()
        warnings = []
        for second in range(20):
            warnings.extend(engine.evaluate(
                _row(ts=f"2025-03-10T09:00:{second * 2:02d}Z", RELATED_RECORD_ID=f"rec{second}"),
                "ContentDocumentLink",
            ))
        (rate_warning,) = [w for w in warnings if w.message.startswith("High content sharing")]
        assert rate_warning.severity == "medium"


# ---------------------------------------------------------------------------
# Malformed rows
# ---------------------------------------------------------------------------

class TestMalformedRows:
    def test_missing_user_id_is_skipped(self):
        engine = RuleEngine()
        assert engine.evaluate({"TIMESTAMP_DERIVED": "2025-03-10T09:00:00Z",
                                "REPORT_ID": "R1"}, "ReportExport") == []
        assert len(engine.counters) == 0

    def test_missing_timestamp_falls_back_to_log_date(self):
        engine = RuleEngine()
        warnings = engine.evaluate({"USER_ID_DERIVED": "u", "LOG_DATE": "2025-03-10",
                                    "REPORT_ID": "R1"}, "ReportExport")
        assert len(warnings) == 1
        assert warnings[0].date == "2025-03-10"
        assert warnings[0].timestamp is None

    def test_hour_window_without_timestamp_skips_threshold_only(self):
        engine = RuleEngine()
        warnings = engine.evaluate({"USER_ID_DERIVED": "u", "LOG_DATE": "2025-03-10",
                                    "ENDPOINT_URL": "https://evil.example.net/x"},
                                   "ApexCallout")
        assert [w.message for w in warnings] == [
            "Callout to non-approved endpoint: https://evil.example.net/x"
        ]
        assert len(engine.counters) == 0


# ---------------------------------------------------------------------------
# Warning schema
# ---------------------------------------------------------------------------

class TestWarningSchema:
    def test_warning_carries_row_context(self):
        engine = RuleEngine()
        (warning,) = engine.evaluate(
            _row(REPORT_ID="R1", URI="/00O/export", ACTION="", ENTITY_NAME="Account"),
            "ReportExport",
        )
        assert warning.user_id == "005A"
        assert warning.date == "2025-03-10"
        assert warning.event_type == "ReportExport"
        assert warning.session_key == "sess-1"
        assert warning.client_ip == "10.0.0.5"
        assert warning.context == {"URI": "/00O/export", "ENTITY_NAME": "Account"}
        assert warning.to_dict()["warning"] == "Report Export (R1)"
