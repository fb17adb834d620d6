"""Login-pattern anomaly detection.

Three independent checks over a user's login history:

  unusual_hours          a recent login at an hour the user rarely uses
  rapid_location_change  consecutive logins from different IPs < 4h apart
                         that geolocate to different places
  weekend_activity       a recent weekend login from a weekday-only user

All times are UTC.  "Recent" means the 7 days before ``now``, which is
injectable so tests do not depend on the wall clock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from behavior.activity import Anomaly, UserActivity
from behavior.geo import GeoLookupError, GeoResolver, NullGeoResolver

logger = logging.getLogger(__name__)

RECENT_WINDOW = timedelta(days=7)
RAPID_CHANGE_HOURS = 4
# An hour is "normal" if it sees at least half the average per-hour count.
NORMAL_HOUR_FACTOR = 0.5
WEEKEND_MIN_LOGINS = 10
WEEKEND_RARE_RATIO = 0.1
LOCATION_CHANGE_MULTIPLIER = 2.0


@dataclass(frozen=True)
class WeekendProfile:
    weekend_logins: int
    weekday_logins: int
    weekend_ratio: float | None
    rare_weekend_user: bool


def hour_profile(activity: UserActivity) -> list[int]:
    """The user's normal login hours, ascending."""
    counts = [0] * 24
    for login in activity.login_times:
        counts[login.hour_of_day] += 1
    floor = len(activity.login_times) / 24 * NORMAL_HOUR_FACTOR
    return [hour for hour, count in enumerate(counts) if count >= floor]


def weekend_profile(activity: UserActivity) -> WeekendProfile:
    total = len(activity.login_times)
    weekend = sum(1 for login in activity.login_times if login.is_weekend)
    if total < WEEKEND_MIN_LOGINS:
        # Not enough history to call anyone a weekday-only user.
        return WeekendProfile(weekend, total - weekend, None, False)
    ratio = weekend / total
    return WeekendProfile(weekend, total - weekend, ratio, ratio < WEEKEND_RARE_RATIO)


class AnomalyDetector:

    def __init__(self, geo: GeoResolver | None = None):
        self.geo = geo if geo is not None else NullGeoResolver()
        self.geo_failures = 0

    def analyze(self, activity: UserActivity, now: datetime | None = None) -> list[Anomaly]:
        """Recompute and replace ``activity.anomalies``."""
        now = now or datetime.now(timezone.utc)
        anomalies = []
        if len(activity.login_times) >= 2:
            logins = sorted(activity.login_times, key=lambda login: login.login_time)
            recent = [login for login in logins if login.login_time >= now - RECENT_WINDOW]
            anomalies.extend(self._unusual_hours(activity, recent))
            anomalies.extend(self._location_changes(logins))
            anomalies.extend(self._weekend_activity(activity, recent))

        activity.anomalies = anomalies
        activity.last_analysis = now
        if anomalies:
            logger.info("%d login anomalies for %s", len(anomalies), activity.user_id)
        return anomalies

    def _unusual_hours(self, activity, recent):
        normal = hour_profile(activity)
        reported = set()
        for login in recent:
            hour = login.hour_of_day
            if hour in normal or hour in reported:
                continue
            reported.add(hour)
            yield Anomaly(
                type="unusual_hours",
                severity="medium",
                description=f"Unusual login hour detected: {hour:02d}:00",
                details={"hour": hour, "normalHours": normal,
                         "loginTime": login.login_time.isoformat()},
                timestamp=login.login_time,
            )

    def _location_changes(self, logins):
        for prev, curr in zip(logins, logins[1:]):
            if not prev.source_ip or not curr.source_ip or prev.source_ip == curr.source_ip:
                continue
            hours = (curr.login_time - prev.login_time).total_seconds() / 3600
            if hours >= RAPID_CHANGE_HOURS:
                continue

            details = {
                "from": prev.source_ip,
                "to": curr.source_ip,
                "hours": round(hours, 2),
                "prevTime": prev.login_time.isoformat(),
                "currTime": curr.login_time.isoformat(),
            }
            prev_loc = self._locate(prev.source_ip)
            curr_loc = self._locate(curr.source_ip)

            if prev_loc is None or curr_loc is None:
                # Can't place one side: judge on the IP change alone.
                details["geoInfo"] = False
                yield Anomaly(
                    type="rapid_location_change",
                    severity="high",
                    description=f"Rapid IP change: {prev.source_ip} -> {curr.source_ip} ({hours:.2f} hours)",
                    details=details,
                    timestamp=curr.login_time,
                )
                continue

            if prev_loc.country == curr_loc.country and prev_loc.city == curr_loc.city:
                continue

            details.update({
                "geoInfo": True,
                "fromLocation": prev_loc._asdict(),
                "toLocation": curr_loc._asdict(),
                "severityMultiplier": LOCATION_CHANGE_MULTIPLIER,
            })
            yield Anomaly(
                type="rapid_location_change",
                severity="critical",
                description=f"Rapid location change: {prev_loc} -> {curr_loc} ({hours:.2f} hours)",
                details=details,
                timestamp=curr.login_time,
            )

    def _locate(self, ip):
        try:
            return self.geo.lookup(ip)
        except GeoLookupError as e:
            self.geo_failures += 1
            logger.warning("Geo lookup failed, falling back to IP comparison: %s", e)
            return None

    def _weekend_activity(self, activity, recent):
        profile = weekend_profile(activity)
        if not profile.rare_weekend_user:
            return
        weekend_logins = [login for login in recent if login.is_weekend]
        if not weekend_logins:
            return
        yield Anomaly(
            type="weekend_activity",
            severity="low",
            description="Unusual weekend activity detected",
            details={
                "weekendLogins": profile.weekend_logins,
                "weekdayLogins": profile.weekday_logins,
                "weekendRatio": profile.weekend_ratio,
                "recentWeekendLogins": len(weekend_logins),
            },
            timestamp=weekend_logins[-1].login_time,
        )
