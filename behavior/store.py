"""All monitored users' activity records, keyed by user id."""

import logging
from typing import Mapping

from behavior.activity import UserActivity

logger = logging.getLogger(__name__)


class UserActivityStore:

    def __init__(self):
        self._users: dict[str, UserActivity] = {}

    @classmethod
    def from_user_map(cls, users: Mapping) -> "UserActivityStore":
        """Build from ``{user_id: username}`` or ``{user_id: {"Username": ...}}``."""
        store = cls()
        for user_id, info in users.items():
            username = info.get("Username") if isinstance(info, Mapping) else info
            store.add_user(user_id, username)
        return store

    def add_user(self, user_id: str, username: str | None = None) -> UserActivity:
        activity = self._users.get(user_id)
        if activity is None:
            activity = self._users[user_id] = UserActivity(user_id, username)
        return activity

    def get(self, user_id: str) -> UserActivity | None:
        return self._users.get(user_id)

    def add_login_history(self, user_id: str, records) -> bool:
        activity = self._users.get(user_id)
        if activity is None:
            logger.debug("Ignoring login history for unmonitored user %s", user_id)
            return False
        activity.add_login_history(records)
        return True

    def add_warning(self, warning) -> bool:
        """Route a warning to its user.  Warnings for unknown users are dropped."""
        activity = self._users.get(warning.user_id)
        if activity is None:
            return False
        activity.add_warning(warning)
        return True

    def record_scanned_log(self, event_type: str, user_ids) -> None:
        for user_id in set(user_ids):
            activity = self._users.get(user_id)
            if activity is not None:
                activity.record_scanned_log(event_type)

    def login_days(self) -> dict[str, list[str]]:
        return {user_id: list(a.login_days) for user_id, a in self._users.items()}

    def user_ids(self) -> list[str]:
        return list(self._users)

    def __contains__(self, user_id) -> bool:
        return user_id in self._users

    def __iter__(self):
        return iter(self._users.values())

    def __len__(self) -> int:
        return len(self._users)
