"""RefreshStateStore - persisted refresh-job status so a restarted caller can resume polling."""

import logging
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

REFRESH_STATUS_KEY = "bitbucket_refresh_status"
REFRESH_STATUS_TIMESTAMP_KEY = "bitbucket_refresh_status_timestamp"


class RefreshStateStore:
    """load/save/clear of the tracked job record, backed by SettingsDB.

    The record is `{job, showStatus, timestamp, lastPoll}`; the separate
    timestamp key only exists to compute the record's age. Records older than
    `max_age_minutes`, or that cannot be read back, are discarded.
    """

    def __init__(self, settings_db, max_age_minutes=30, clock=time.time):
        self.settings_db = settings_db
        self.max_age_seconds = max_age_minutes * 60
        self._clock = clock

    def save(self, job: Dict[str, Any], show_status: bool = True, last_poll: Optional[str] = None) -> None:
        now = self._clock()
        state = {
            "job": job,
            "showStatus": show_status,
            "timestamp": now,
            "lastPoll": last_poll,
        }
        self.settings_db.set_setting(REFRESH_STATUS_KEY, state)
        self.settings_db.set_setting(REFRESH_STATUS_TIMESTAMP_KEY, now)
        logger.info(f"Persisted refresh status for job {job.get('job_id')}")

    def load(self) -> Optional[Dict[str, Any]]:
        state = self.settings_db.get_setting(REFRESH_STATUS_KEY)
        timestamp = self.settings_db.get_setting(REFRESH_STATUS_TIMESTAMP_KEY)
        if state is None and timestamp is None:
            return None

        if not isinstance(timestamp, (int, float)) or not self._is_valid(state):
            logger.warning("Persisted refresh status is unreadable, discarding it")
            self.clear()
            return None

        if self._clock() - timestamp >= self.max_age_seconds:
            logger.info("Persisted refresh status too old, clearing")
            self.clear()
            return None

        logger.info(f"Restored refresh status for job {state['job']['job_id']}")
        return state

    def clear(self) -> None:
        self.settings_db.delete_setting(REFRESH_STATUS_KEY)
        self.settings_db.delete_setting(REFRESH_STATUS_TIMESTAMP_KEY)

    @staticmethod
    def _is_valid(state) -> bool:
        return (
            isinstance(state, dict)
            and isinstance(state.get("job"), dict)
            and bool(state["job"].get("job_id"))
            and "status" in state["job"]
        )
