"""Tests for RiskDetectionEngine and the batch CLI: end-to-end runs."""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from behavior.geo import StaticGeoResolver
from detection.rules import RuleCatalog
from exporter.metrics import RunMetrics
from monitor.engine import NoRulesLoadedError, NoUsersError, RiskDetectionEngine
from monitor.main import load_users, main
from monitor.sources import MemorySource

NOW = datetime(2025, 3, 10, 18, 0, tzinfo=timezone.utc)

USERS = {"005A": "alice@example.com", "005B": "bob@example.com"}

LOGINS = [
    {"UserId": "005A", "LoginTime": "2025-03-10T09:00:00Z", "SourceIp": "203.0.113.10"},
    {"UserId": "005A", "LoginTime": "2025-03-10T09:45:00Z", "SourceIp": "198.51.100.20"},
    {"UserId": "005B", "LoginTime": "2025-03-10T08:00:00Z", "SourceIp": "192.0.2.1"},
    {"UserId": "005Z", "LoginTime": "2025-03-10T08:00:00Z", "SourceIp": "192.0.2.9"},
]

GEO = StaticGeoResolver({
    "203.0.113.10": ("US", "New York"),
    "198.51.100.20": ("US", "Los Angeles"),
})


def _row(user="005A", ts="2025-03-10T10:00:00Z", **fields):
    row = {"USER_ID_DERIVED": user, "TIMESTAMP_DERIVED": ts, "CLIENT_IP": "198.51.100.20"}
    row.update(fields)
    return row


class TestPreconditions:
    def test_no_rules(self):
        with pytest.raises(NoRulesLoadedError):
            RiskDetectionEngine(USERS, catalog=RuleCatalog([]))

    def test_no_users(self):
        with pytest.raises(NoUsersError):
            RiskDetectionEngine({})


class TestProcessRow:
    def setup_method(self):
        self.engine = RiskDetectionEngine(USERS)

    def test_warning_routed_to_user(self):
        warnings = self.engine.process_row(_row(REPORT_ID="R1"), "ReportExport")
        assert [w.message for w in warnings] == ["Report Export (R1)"]
        assert self.engine.store.get("005A").warnings == warnings
        assert self.engine.store.get("005A").risk_level == "critical"

    def test_unmonitored_user_ignored(self):
        assert self.engine.process_row(_row(user="005Z", REPORT_ID="R1"), "ReportExport") == []
        assert len(self.engine.warnings) == 0

    def test_unmonitored_rows_never_reach_the_rules(self):
        self.engine.process_row(_row(user="005Z", REPORT_ID="R1"), "ReportExport")
        assert len(self.engine.rules.counters) == 0
        assert self.engine._consume(_row(user="005Z"), "ReportExport") is None
        assert self.engine._consume(_row(REPORT_ID="R2"), "ReportExport") == "005A"

    def test_engines_are_independent(self):
        other = RiskDetectionEngine(USERS)
        self.engine.process_row(_row(REPORT_ID="R1"), "ReportExport")
        assert len(other.warnings) == 0
        assert len(other.rules.counters) == 0


class TestRun:
    def setup_method(self):
        self.metrics = RunMetrics()
        self.engine = RiskDetectionEngine(USERS, geo=GEO, metrics=self.metrics)
        self.engine.load_login_history(LOGINS)

    def _run(self, sources, **kwargs):
        return asyncio.run(self.engine.run(sources, now=NOW, **kwargs))

    def test_full_run(self):
        sources = [
            MemorySource("ReportExport", [_row(REPORT_ID="R1"), _row(user="005Z", REPORT_ID="R9")],
                         log_date="2025-03-10"),
            MemorySource("LoginAs", [_row(user="005B", ts="2025-03-10T08:30:00Z")],
                         log_date="2025-03-10"),
        ]
        results = self._run(sources)
        assert [r.user_ids for r in results] == [{"005A"}, {"005B"}]

        alice = self.engine.store.get("005A")
        assert [a.type for a in alice.anomalies] == ["rapid_location_change"]
        assert alice.scanned_logs == {"ReportExport": 1}
        # rapid location change (100) + critical report export (40)
        assert alice.risk_score == 140

        # report export 15 minutes after the relocation (2.5 * 2.0 * 1.5),
        # and at 10:00 when alice only ever logs in at 09:00 (1.3)
        correlation = self.engine.correlations["005A"]
        assert sorted(r.subtype for r in correlation.correlations) == [
            "outside_business_hours", "rapid_location_change",
        ]
        assert correlation.correlation_score == pytest.approx(8.8)
        assert [r.user_id for r in self.engine.high_risk_users(5)] == ["005A"]

        bob = self.engine.store.get("005B")
        assert bob.risk_level == "high"
        assert bob.anomalies == []

    def test_sources_outside_login_days_are_skipped(self):
        sources = [
            MemorySource("ReportExport", [_row(REPORT_ID="R1")], log_date="2025-03-01"),
            MemorySource("ReportExport", [_row(REPORT_ID="R2")]),
        ]
        results = self._run(sources)
        assert len(results) == 1
        assert [w.message for w in self.engine.warnings] == ["Report Export (R2)"]

    def test_metrics(self):
        self._run([MemorySource("ReportExport", [_row(REPORT_ID="R1")], log_date="2025-03-10")])
        registry = self.metrics.registry
        assert registry.get_sample_value(
            "risk_rows_total", {"event_type": "ReportExport"}) == 1
        assert registry.get_sample_value(
            "risk_warnings_total", {"event_type": "ReportExport", "severity": "critical"}) == 1
        assert registry.get_sample_value(
            "risk_anomalies_total", {"type": "rapid_location_change", "severity": "critical"}) == 1
        assert registry.get_sample_value("risk_user_score", {"user_id": "005A"}) == 140
        assert registry.get_sample_value("risk_users_by_level", {"level": "critical"}) == 1
        assert registry.get_sample_value("risk_users_by_level", {"level": "none"}) == 1

    def test_summaries_are_json_ready(self):
        self._run([MemorySource("ReportExport", [_row(REPORT_ID="R1")])])
        report = self.engine.report(threshold=5)
        json.dumps(report)
        assert report["highRiskUsers"][0]["userId"] == "005A"
        assert {s["userId"] for s in report["users"]} == {"005A", "005B"}


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

class TestCli:
    def _fixture(self, tmp_path):
        users = tmp_path / "users.json"
        users.write_text(json.dumps([{"Id": "005A", "Username": "alice@example.com"}]))
        logins = tmp_path / "logins.jsonl"
        logins.write_text("\n".join(json.dumps(r) for r in LOGINS[:2]) + "\n")
        events = tmp_path / "eventLogs"
        events.mkdir()
        (events / "ReportExport_2025-03-10.jsonl").write_text(json.dumps(_row(REPORT_ID="R1")) + "\n")
        return users, logins, events

    def test_end_to_end(self, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv("RISK_CONFIG_PATH", raising=False)
        monkeypatch.delenv("GEOIP_DB_PATH", raising=False)
        users, logins, events = self._fixture(tmp_path)
        output = tmp_path / "report.json"
        prom = tmp_path / "risk.prom"

        code = main([
            "--users", str(users), "--logins", str(logins), "--events", str(events),
            "--output", str(output), "--metrics-textfile", str(prom), "--log-level", "warning",
        ])

        assert code == 0
        report = json.loads(output.read_text())
        (alice,) = report["users"]
        assert alice["username"] == "alice@example.com"
        assert alice["warningsCount"]["critical"] == 1
        assert alice["riskLevel"] == "critical"
        assert "risk_warnings_total" in prom.read_text()
        assert "Done. Report written to" in capsys.readouterr().out

    def test_rule_overrides(self, tmp_path, monkeypatch):
        users, logins, events = self._fixture(tmp_path)
        config = tmp_path / "risk.yml"
        config.write_text("ReportExport:\n  severity: medium\n")
        monkeypatch.setenv("RISK_CONFIG_PATH", str(config))
        output = tmp_path / "report.json"

        assert main(["--users", str(users), "--events", str(events), "--output", str(output)]) == 0
        (alice,) = json.loads(output.read_text())["users"]
        assert alice["warningsCount"] == {"total": 1, "critical": 0, "high": 0, "medium": 1, "low": 0}

    def test_no_users_fails_fast(self, tmp_path, capsys):
        users = tmp_path / "users.json"
        users.write_text("{}")
        events = tmp_path / "eventLogs"
        events.mkdir()
        assert main(["--users", str(users), "--events", str(events),
                     "--output", str(tmp_path / "r.json")]) == 1
        assert "no users to monitor" in capsys.readouterr().err

    @pytest.mark.parametrize("content", [None, "{not json", '[{"Username": "alice"}]'])
    def test_unreadable_users_file(self, tmp_path, capsys, content):
        users = tmp_path / "users.json"
        if content is not None:
            users.write_text(content)
        assert main(["--users", str(users), "--events", str(tmp_path),
                     "--output", str(tmp_path / "r.json")]) == 2
        assert "Invalid users file" in capsys.readouterr().err

    def test_bad_environment(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("BATCH_SIZE", "lots")
        assert main(["--users", "u.json", "--events", str(tmp_path)]) == 2
        assert "BATCH_SIZE" in capsys.readouterr().err

    def test_load_users_formats(self, tmp_path):
        path = tmp_path / "users.json"
        path.write_text(json.dumps({"005A": "alice"}))
        assert load_users(path) == {"005A": "alice"}
        path.write_text('"alice"')
        with pytest.raises(ValueError):
            load_users(path)
