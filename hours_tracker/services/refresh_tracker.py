"""Caller-side tracking of a refresh job: polling policy, local cancel, persistence."""

import logging
import re
import time
from datetime import timedelta

from hours_tracker.utils.timeutils import utc_now, parse_timestamp, to_iso

logger = logging.getLogger(__name__)

PROGRESS_PATTERN = re.compile(r"Processing\s+.*\((\d+)/(\d+)\)")


def parse_progress(message):
    """Extract (index, total) from a "Processing {repo} (i/n)" message, or None."""
    if not message:
        return None
    match = PROGRESS_PATTERN.search(message)
    if not match:
        return None
    index, total = int(match.group(1)), int(match.group(2))
    return (index, total) if total else None


class RefreshStatusTracker:
    """Tracks one job dict (as returned by the status endpoint) for a polling caller."""

    def __init__(self, store=None, stale_minutes=15, clock=utc_now):
        self.store = store
        self.stale_after = timedelta(minutes=stale_minutes)
        self._clock = clock
        self.job = None
        self.show_status = False
        self.last_poll = None

    def restore(self):
        """Load a persisted job, if one is recent enough. Returns the job dict or None."""
        if self.store is None:
            return None
        state = self.store.load()
        if not state:
            return None
        self.job = state["job"]
        self.show_status = bool(state.get("showStatus"))
        last_poll = state.get("lastPoll")
        self.last_poll = parse_timestamp(last_poll) if isinstance(last_poll, str) else None
        if self.job.get("is_running"):
            logger.info(f"Job {self.job['job_id']} still running, resuming polling")
        return self.job

    @property
    def is_cancellable(self):
        job = self.job
        if not job:
            return False
        return bool(job.get("is_running")) and not job.get("is_completed") \
            and not job.get("is_failed") and not job.get("is_cancelled")

    def set_job(self, job):
        self.job = job
        if job:
            self.show_status = True
            self.last_poll = self._clock()
        self._persist()

    def update_job(self, updates):
        if not self.job:
            return
        self.job = {**self.job, **updates}
        self.last_poll = self._clock()
        self._persist()

    def clear(self):
        self.job = None
        self.show_status = False
        self.last_poll = None
        self._persist()

    def hide(self):
        """Hide the status; a completed or failed job is dropped with it."""
        self.show_status = False
        if self.job and (self.job.get("is_completed") or self.job.get("is_failed")):
            self.job = None
        self._persist()

    def show(self):
        if self.job:
            self.show_status = True
            self._persist()

    def cancel(self):
        """Mark the job cancelled locally; the server confirms on the next status read."""
        if not self.job:
            return
        self.job = {
            **self.job,
            "status": "cancelled",
            "is_running": False,
            "is_cancelled": True,
            "message": "Cancelling job...",
            "cancelled_at": to_iso(self._clock()),
        }
        self._persist()

    def should_poll(self, now=None):
        job = self.job
        if not job:
            return False
        if job.get("is_completed") or job.get("is_failed") or job.get("is_cancelled"):
            return False
        updated_at = parse_timestamp(job.get("updated_at"))
        now = now or self._clock()
        if updated_at and now - updated_at > self.stale_after:
            logger.warning(f"Refresh job {job.get('job_id')} has not progressed since "
                           f"{job.get('updated_at')}, it may have stalled")
            return False
        return bool(job.get("is_running"))

    def poll(self, fetch_status, interval=3, sleep=time.sleep, on_update=None):
        """Poll `fetch_status(job_id)` until the job ends or stalls.

        Returns:
            The last job dict seen, or None if the server no longer knows the job.
        """
        while self.should_poll():
            status = fetch_status(self.job["job_id"])
            if status is None:
                logger.warning(f"Refresh job {self.job['job_id']} is no longer known to the server")
                self.clear()
                return None
            self.update_job(status)
            if on_update:
                on_update(self.job)
            if not self.should_poll():
                break
            sleep(interval)
        return self.job

    def format_elapsed_time(self):
        if not self.job:
            return ""
        return self.job.get("elapsed_time_human") or f"{self.job.get('elapsed_time', 0)}s"

    def format_time_since_update(self):
        if not self.job:
            return ""
        return (self.job.get("time_since_update") or {}).get("human_readable") or "Just now"

    def format_job_parameters(self):
        params = (self.job or {}).get("parameters")
        if not params:
            return ""
        return f"{params.get('max_days')}d • {params.get('selected_repos_count')} repos • {params.get('author_filter')}"

    def _persist(self):
        if self.store is None:
            return
        if self.job:
            self.store.save(self.job, self.show_status, to_iso(self.last_poll))
        else:
            self.store.clear()
