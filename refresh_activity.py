#!/usr/bin/env python3
"""Start a background activity refresh on a running server and poll it to the end.

Usage:
    python refresh_activity.py --days 7 teamx/api teamx/web
    python refresh_activity.py --resume        # keep polling the last tracked job
    python refresh_activity.py --cancel        # cancel the last tracked job
"""

import argparse
import sys
import time

import requests

from hours_tracker.config import get_config
from hours_tracker.database import RefreshStateStore, get_settings_db
from hours_tracker.services.refresh_tracker import RefreshStatusTracker, parse_progress

config = get_config()


class ActivityApi:
    """Minimal client for the refresh endpoints of the local server."""

    def __init__(self, base_url, timeout=30):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def start_refresh(self, days, repos):
        response = self.session.post(
            f"{self.base_url}/api/activity/refresh",
            json={"days": days, "repos": repos or None},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def job_status(self, job_id):
        response = self.session.get(f"{self.base_url}/api/refresh-jobs/{job_id}", timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()["job"]

    def cancel(self, job_id):
        response = self.session.delete(f"{self.base_url}/api/refresh-jobs/{job_id}", timeout=self.timeout)
        if response.status_code == 404:
            return False
        response.raise_for_status()
        return response.json()["cancelled"]

    def acknowledge(self, job_id):
        response = self.session.post(f"{self.base_url}/api/refresh-jobs/{job_id}/acknowledge",
                                     timeout=self.timeout)
        return response.ok


def print_progress(job):
    progress = parse_progress(job.get("message"))
    bar = ""
    if progress:
        index, total = progress
        filled = int(20 * index / total)
        bar = f"[{'#' * filled}{'.' * (20 - filled)}] "
    print(f"{bar}{job.get('status')}: {job.get('message')} ({job.get('elapsed_time_human')})", flush=True)


def main():
    parser = argparse.ArgumentParser(description="Refresh Bitbucket activity in the background")
    parser.add_argument("repos", nargs="*", help="Repositories to refresh (name or workspace/name)")
    parser.add_argument("--days", type=int, default=config.get("default_days", 12),
                        help="Day window to refresh")
    parser.add_argument("--server", default=f"http://{config.get('host', '127.0.0.1')}:{config.get('port', 5050)}",
                        help="Base URL of the running server")
    parser.add_argument("--resume", action="store_true", help="Resume polling the last tracked job")
    parser.add_argument("--cancel", action="store_true", help="Cancel the last tracked job")
    args = parser.parse_args()

    store = RefreshStateStore(
        get_settings_db(),
        max_age_minutes=config.get("job_max_age_minutes", 30),
    )
    tracker = RefreshStatusTracker(store, stale_minutes=config.get("job_stale_minutes", 15))
    api = ActivityApi(args.server, timeout=config.get("request_timeout_seconds", 30))

    try:
        if args.resume or args.cancel:
            job = tracker.restore()
            if not job:
                print("No recent refresh job to resume.")
                sys.exit(1)
            if args.cancel:
                if not tracker.is_cancellable:
                    print(f"Job {job['job_id']} is not running.")
                    sys.exit(1)
                tracker.cancel()
                cancelled = api.cancel(job["job_id"])
                print(f"Job {job['job_id']} {'cancelled' if cancelled else 'could not be cancelled'}.")
                sys.exit(0 if cancelled else 1)
            print(f"Resuming job {job['job_id']} ({tracker.format_job_parameters()})")
        else:
            result = api.start_refresh(args.days, args.repos)
            tracker.set_job(result["job"])
            print(f"Started job {result['job']['job_id']} ({tracker.format_job_parameters()}), "
                  f"{len(result['items'])} cached items available")

        start = time.time()
        job = tracker.poll(api.job_status, interval=config.get("poll_interval_seconds", 3),
                           on_update=print_progress)
    except requests.RequestException as e:
        print(f"Server request failed: {e}")
        sys.exit(1)

    elapsed = time.time() - start
    if job is None:
        print("Job is no longer known to the server.")
        sys.exit(1)
    if job.get("is_completed"):
        print(f"Completed: {job.get('item_count')} items ({elapsed:.1f}s)")
        api.acknowledge(job["job_id"])
        tracker.hide()
    elif job.get("is_failed"):
        print(f"FAILED: {job.get('error')}")
        api.acknowledge(job["job_id"])
        tracker.hide()
        sys.exit(1)
    elif job.get("is_cancelled"):
        print("Cancelled.")
        tracker.clear()
    else:
        print(f"Stopped polling: no progress since {job.get('updated_at')}, the job may have stalled.")
        sys.exit(1)


if __name__ == "__main__":
    main()
