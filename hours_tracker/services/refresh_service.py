"""Background refresh jobs: run the sync pipeline off-request and report progress."""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta

from hours_tracker.cache.memory_cache import make_cache_key
from hours_tracker.errors import BitbucketAuthError, BitbucketRateLimitError
from hours_tracker.models import (
    RefreshJob,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_CANCELLED,
)
from hours_tracker.services.reconcile_service import deduplicate_items, filter_by_author
from hours_tracker.utils.timeutils import utc_now

logger = logging.getLogger(__name__)

# Errors that abort the whole job instead of just skipping one repository
FATAL_ERRORS = (BitbucketAuthError, BitbucketRateLimitError)


class RefreshJobCoordinator:
    """Owns every refresh job of the process.

    All job mutation happens under one lock. Cancellation only sets the job's
    status; workers check it before starting each repository.
    """

    def __init__(self, cache, reconciler, config, background=True, clock=utc_now):
        self.cache = cache
        self.reconciler = reconciler
        self.max_workers = max(int(config.get("refresh_max_workers", 1)), 1)
        self.stale_seconds = config.get("job_stale_minutes", 15) * 60
        self.max_age = timedelta(minutes=config.get("job_max_age_minutes", 30))
        self.background = background
        self._clock = clock
        self._jobs = {}
        self._active_by_key = {}
        self._lock = threading.Lock()

    def start(self, days, repos, author):
        """Start (or join) a refresh for (repos, days, author).

        Returns:
            (job snapshot, cached items or None). A refresh already running for
            the same cache key is returned instead of starting a second one.
        """
        cache_key = make_cache_key(repos, days, author.label)
        cached = self.cache.get(repos, days, author.label)

        with self._lock:
            self._prune()
            active_id = self._active_by_key.get(cache_key)
            active = self._jobs.get(active_id) if active_id else None
            now = self._clock()
            if active and active.is_running:
                if not active.is_stalled(self.stale_seconds, now):
                    logger.info(f"Refresh already running for {cache_key}: job {active.job_id}")
                    return self._snapshot(active), cached
                self._fail_stalled(active, now)

            job = RefreshJob(
                job_id=uuid.uuid4().hex,
                cache_key=cache_key,
                parameters={
                    "max_days": days,
                    "selected_repos_count": len(repos),
                    "author_filter": author.label,
                },
                message=f"Refresh started for {len(repos)} repositories",
                started_at=now,
                updated_at=now,
                progress=0,
            )
            self._jobs[job.job_id] = job
            self._active_by_key[cache_key] = job.job_id
            snapshot = self._snapshot(job)

        logger.info(f"Started refresh job {job.job_id} for {cache_key}")
        if self.background:
            thread = threading.Thread(
                target=self._run,
                args=(job.job_id, list(repos), days, author),
                daemon=True
            )
            thread.start()
        else:
            self._run(job.job_id, list(repos), days, author)
        return snapshot, cached

    def _fail_stalled(self, job, now):
        """Fail a job that stopped reporting progress so a new one can take its key. Caller holds the lock."""
        minutes = int(self.stale_seconds // 60)
        logger.warning(f"Refresh job {job.job_id} stalled (no progress for {minutes} minutes), starting a new one")
        job.error = "Job stalled"
        job.transition(STATUS_FAILED, f"Refresh stalled: no progress for {minutes} minutes", now=now)

    def check_status(self, job_id):
        """Snapshot of the job, or None if the id is unknown or already dropped."""
        with self._lock:
            self._prune()
            job = self._jobs.get(job_id)
            return self._snapshot(job) if job else None

    def job_status_dict(self, job_id):
        with self._lock:
            self._prune()
            job = self._jobs.get(job_id)
            if not job:
                return None
            return job.to_dict(now=self._clock(), max_stale_seconds=self.stale_seconds)

    def cancel(self, job_id):
        """Ask a running job to stop. True if the job was running and is now cancelled."""
        with self._lock:
            job = self._jobs.get(job_id)
            if not job or not job.is_running:
                return False
            job.transition(STATUS_CANCELLED, "Refresh cancelled", now=self._clock())
        logger.info(f"Refresh job {job_id} cancelled")
        return True

    def acknowledge(self, job_id):
        """Forget a finished job once the caller has seen its outcome."""
        with self._lock:
            job = self._jobs.get(job_id)
            if not job or job.is_running:
                return False
            self._forget(job)
            return True

    def list_jobs(self):
        with self._lock:
            self._prune()
            return [self._snapshot(job) for job in self._jobs.values()]

    def _snapshot(self, job):
        return replace(job, parameters=dict(job.parameters))

    def _forget(self, job):
        self._jobs.pop(job.job_id, None)
        if self._active_by_key.get(job.cache_key) == job.job_id:
            del self._active_by_key[job.cache_key]

    def _prune(self):
        """Drop finished jobs older than the retention window. Caller holds the lock."""
        cutoff = self._clock() - self.max_age
        for job in list(self._jobs.values()):
            finished = job.completed_at or job.cancelled_at
            if job.is_terminal and finished and finished < cutoff:
                logger.info(f"Dropping expired refresh job {job.job_id}")
                self._forget(job)

    def sync(self, repos, days, author, job_id=None):
        """Run the pipeline for `repos` and return the deduplicated, author-filtered items.

        With a job_id, progress is reported on that job and a cancellation stops
        further repositories from starting. Authentication and rate-limit errors
        propagate; any other per-repository failure just skips that repository.
        """
        results = self._collect(job_id, repos, days)
        combined = [item for repo_items in results for item in repo_items]
        unique = deduplicate_items(combined)
        items = filter_by_author(unique, author)
        logger.info(f"Sync of {len(repos)} repositories: {len(combined)} items, "
                    f"{len(unique)} after dedup, {len(items)} by {author.label}")
        return items

    def _is_stopped(self, job_id):
        """True once the job left the running states or was dropped."""
        if job_id is None:
            return False
        with self._lock:
            job = self._jobs.get(job_id)
            return job is None or not job.is_running

    def _begin_repository(self, job_id, repo, total, counter):
        """Claim the next progress slot for `repo`. False if the job has stopped."""
        if job_id is None:
            logger.info(f"Processing {repo}")
            return True
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or not job.is_running:
                return False
            counter[0] += 1
            index = counter[0]
            now = self._clock()
            if job.status != STATUS_PROCESSING:
                job.transition(STATUS_PROCESSING, now=now)
            job.message = f"Processing {repo} ({index}/{total})"
            job.progress = int((index - 1) * 100 / total)
            job.updated_at = now
        logger.info(f"Job {job_id}: processing {repo} ({index}/{total})")
        return True

    def _process_repository(self, job_id, repo, days, budget, total, counter):
        if not self._begin_repository(job_id, repo, total, counter):
            return []
        try:
            return self.reconciler.reconcile_repository(repo, days, budget)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.error(f"Job {job_id}: failed to process {repo}, skipping: {e}")
            return []

    def _collect(self, job_id, repos, days):
        budget = self.reconciler.new_budget()
        counter = [0]
        total = len(repos)
        if self.max_workers == 1:
            results = []
            for repo in repos:
                if self._is_stopped(job_id):
                    break
                results.append(self._process_repository(job_id, repo, days, budget, total, counter))
            return results

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(self._process_repository, job_id, repo, days, budget, total, counter)
                for repo in repos
            ]
            # submission order, so the merged stream does not depend on completion order
            return [future.result() for future in futures]

    def _run(self, job_id, repos, days, author):
        try:
            items = self.sync(repos, days, author, job_id=job_id)
            if self._is_stopped(job_id):
                logger.info(f"Job {job_id}: stopped, discarding partial results")
                return

            with self._lock:
                job = self._jobs.get(job_id)
                if job is None or not job.is_running:
                    return
                self.cache.put(repos, days, author.label, items)
                job.item_count = len(items)
                job.transition(STATUS_COMPLETED,
                               f"Refresh completed: {len(items)} items from {len(repos)} repositories",
                               now=self._clock())
            logger.info(f"Refresh job {job_id} completed")
        except Exception as e:
            logger.error(f"Refresh job {job_id} failed: {e}")
            with self._lock:
                job = self._jobs.get(job_id)
                if job is not None and job.is_running:
                    job.error = str(e)
                    job.transition(STATUS_FAILED, f"Refresh failed: {e}", now=self._clock())
