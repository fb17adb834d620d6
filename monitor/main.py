"""Batch risk monitor: scans event logs for a set of users and reports risk.

Reads already-downloaded event logs (one JSON object per line, named
``<EventType>_<YYYY-MM-DD>.jsonl``), the users' login history, and the
list of users to monitor.  Writes a JSON report and, optionally, a
Prometheus textfile.

Usage:
    python -m monitor.main --users users.json --logins logins.jsonl --events eventLogs/
    python -m monitor.main --users users.json --events eventLogs/ --risk-config risk.yml \\
        --geoip-db GeoLite2-City.mmdb --output summary-report.json
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from behavior.geo import open_resolver
from correlation.engine import CorrelationConfig
from detection.rules.loader import load_catalog
from exporter.metrics import RunMetrics
from monitor.config import Settings
from monitor.engine import MonitorError, RiskDetectionEngine
from monitor.sources import discover_sources, read_jsonl


def load_users(path) -> dict:
    """``{user_id: username}`` from a JSON object, or a list of ``{"Id", "Username"}``."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        return data
    if isinstance(data, list):
        if not all(isinstance(u, dict) and u.get("Id") for u in data):
            raise ValueError(f"{Path(path).name}: every user needs an \"Id\"")
        return {u["Id"]: u.get("Username") for u in data}
    raise ValueError(f"{Path(path).name}: expected a JSON object or list of users")


def _settings(args) -> Settings:
    settings = Settings.from_env()
    overrides = {
        "log_level": args.log_level,
        "scan_limit": args.scan_limit,
        "batch_size": args.batch_size,
        "correlation_window_hours": args.window,
        "high_risk_threshold": args.threshold,
        "geoip_db_path": args.geoip_db,
        "risk_config_path": args.risk_config,
        "metrics_textfile": args.metrics_textfile,
    }
    return replace(settings, **{k: v for k, v in overrides.items() if v is not None})


def _print_banner(engine, results, high_risk):
    users = engine.summaries()
    print("=" * 80)
    print(f"Scanned {len(results)} logs for {len(users)} users  "
          f"warnings={len(engine.warnings)}  high-risk={len(high_risk)}")
    for summary in sorted(users, key=lambda s: s["riskScore"], reverse=True):
        print(f"  {summary['riskLevel'].upper():<8s} score={summary['riskScore']:<5d} "
              f"warnings={summary['warningsCount']['total']:<4d} {summary['username']}")
    for result in high_risk:
        print(f"  HIGH RISK  {result.username} (correlation score {result.correlation_score:.1f})")
    print("=" * 80)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Behavior-based risk monitor")
    parser.add_argument("--users", required=True, help="JSON file of users to monitor")
    parser.add_argument("--events", required=True, help="directory of <EventType>_<date>.jsonl logs")
    parser.add_argument("--logins", help="LoginHistory rows, one JSON object per line")
    parser.add_argument("--risk-config", help="YAML/JSON rule overrides")
    parser.add_argument("--geoip-db", help="MaxMind GeoLite2/GeoIP2 City database")
    parser.add_argument("--output", default="summary-report.json")
    parser.add_argument("--metrics-textfile")
    parser.add_argument("--batch-size", type=int)
    parser.add_argument("--scan-limit", type=int)
    parser.add_argument("--window", type=float, help="correlation window in hours")
    parser.add_argument("--threshold", type=float, help="high-risk correlation score")
    parser.add_argument("--log-level")
    args = parser.parse_args(argv)

    try:
        settings = _settings(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )

    try:
        users = load_users(args.users)
    except (OSError, ValueError) as e:
        print(f"Invalid users file: {e}", file=sys.stderr)
        return 2

    catalog = load_catalog(settings.risk_config_path)
    metrics = RunMetrics()
    try:
        engine = RiskDetectionEngine(
            users,
            catalog=catalog,
            geo=open_resolver(settings.geoip_db_path),
            correlation_config=CorrelationConfig(settings.correlation_window_hours),
            metrics=metrics,
        )
    except MonitorError as e:
        print(f"Cannot start: {e}", file=sys.stderr)
        return 1

    if args.logins:
        engine.load_login_history(read_jsonl(args.logins))

    sources = discover_sources(args.events)
    print(f"Risk monitor started  users={len(engine.store)}  rules={len(catalog)}  "
          f"logs={len(sources)}  batch_size={settings.batch_size}")

    results = asyncio.run(engine.run(sources, settings.batch_size, settings.scan_limit))
    high_risk = engine.high_risk_users(settings.high_risk_threshold)

    with open(args.output, "w", encoding="utf-8") as f:
        json.dump(engine.report(settings.high_risk_threshold), f, indent=2)
    if settings.metrics_textfile:
        metrics.write_textfile(settings.metrics_textfile)

    _print_banner(engine, results, high_risk)
    print(f"Done. Report written to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
