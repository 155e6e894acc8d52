import threading
import time

import pytest

from hours_tracker.cache.memory_cache import ActivityCache
from hours_tracker.errors import BitbucketAuthError, InvalidJobTransition
from hours_tracker.models import (
    ActivityItem,
    AuthorIdentity,
    RefreshJob,
    STATUS_STARTED,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_CANCELLED,
)
from hours_tracker.services.reconcile_service import ExpansionBudget
from hours_tracker.services.refresh_service import RefreshJobCoordinator
from tests.fakes import FakeClock, JANE_RAW

REPOS = ["teamx/r1", "teamx/r2", "teamx/r3", "teamx/r4", "teamx/r5"]


class ScriptedReconciler:
    """Returns one commit per repository; hooks let a test act mid-job."""

    def __init__(self):
        self.calls = []
        self.hooks = {}
        self.errors = {}

    def new_budget(self):
        return ExpansionBudget(20)

    def reconcile_repository(self, repo, days, budget=None):
        self.calls.append(repo)
        hook = self.hooks.get(len(self.calls))
        if hook:
            hook()
        if repo in self.errors:
            raise self.errors[repo]
        return [ActivityItem(repo=repo, commit_hash=f"{repo}-c", commit_author_raw=JANE_RAW)]


@pytest.fixture
def author():
    return AuthorIdentity(display_name="Jane Doe", commit_author_raw=JANE_RAW)


@pytest.fixture
def reconciler():
    return ScriptedReconciler()


@pytest.fixture
def cache():
    return ActivityCache()


@pytest.fixture
def coordinator(cache, reconciler, config):
    return RefreshJobCoordinator(cache, reconciler, config, background=False)


def only_job(coordinator):
    jobs = coordinator.list_jobs()
    assert len(jobs) == 1
    return jobs[0]


@pytest.mark.parametrize("target", [STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED])
def test_started_can_reach_every_later_state(target):
    job = RefreshJob(job_id="j", cache_key="k", parameters={})
    job.transition(target)
    assert job.status == target


@pytest.mark.parametrize("terminal", [STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED])
@pytest.mark.parametrize("target", [STATUS_STARTED, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED,
                                    STATUS_CANCELLED])
def test_no_transition_out_of_terminal_state(terminal, target):
    job = RefreshJob(job_id="j", cache_key="k", parameters={})
    job.transition(terminal)
    with pytest.raises(InvalidJobTransition):
        job.transition(target)


def test_processing_cannot_go_back_to_started():
    job = RefreshJob(job_id="j", cache_key="k", parameters={})
    job.transition(STATUS_PROCESSING)
    with pytest.raises(InvalidJobTransition):
        job.transition(STATUS_STARTED)


def test_job_dict_reports_stall_and_timings():
    clock = FakeClock(as_datetime=True)
    job = RefreshJob(job_id="j", cache_key="k", parameters={"max_days": 7},
                     started_at=clock(), updated_at=clock())
    clock.advance(minutes=16)

    data = job.to_dict(now=clock(), max_stale_seconds=15 * 60)

    assert data["is_running"] is True
    assert data["is_stalled"] is True
    assert data["elapsed_time"] == 960
    assert data["elapsed_time_human"] == "16m 0s"
    assert data["time_since_update"]["seconds"] == 960


def test_unknown_job_status_is_none(coordinator):
    assert coordinator.check_status("nope") is None
    assert coordinator.job_status_dict("nope") is None
    assert coordinator.cancel("nope") is False


def test_completed_job_writes_cache(coordinator, cache, reconciler, author):
    job, cached = coordinator.start(7, REPOS[:2], author)

    assert cached is None
    status = coordinator.check_status(job.job_id)
    assert status.status == STATUS_COMPLETED
    assert status.item_count == 2
    assert status.progress == 100
    assert [i.commit_hash for i in cache.get(REPOS[:2], 7, "Jane Doe")] == ["teamx/r1-c", "teamx/r2-c"]


def test_progress_messages_count_up(coordinator, reconciler, author):
    seen = []
    for index in range(1, 4):
        reconciler.hooks[index] = lambda: seen.append(only_job(coordinator).message)

    coordinator.start(7, REPOS[:3], author)

    assert seen == [
        "Processing teamx/r1 (1/3)",
        "Processing teamx/r2 (2/3)",
        "Processing teamx/r3 (3/3)",
    ]


def test_cancellation_stops_further_repositories(coordinator, cache, reconciler, author):
    messages = []

    def cancel_mid_job():
        job = only_job(coordinator)
        assert job.status == STATUS_PROCESSING
        assert job.message == "Processing teamx/r3 (3/5)"
        assert coordinator.cancel(job.job_id) is True

    for index in range(1, 6):
        reconciler.hooks[index] = lambda: messages.append(only_job(coordinator).message)
    reconciler.hooks[3] = cancel_mid_job

    job, _ = coordinator.start(7, REPOS, author)

    status = coordinator.job_status_dict(job.job_id)
    assert status["status"] == "cancelled"
    assert status["is_running"] is False
    assert status["is_cancelled"] is True
    assert status["cancelled_at"] is not None
    assert reconciler.calls == REPOS[:3]
    assert status["message"] == "Refresh cancelled"
    assert messages == ["Processing teamx/r1 (1/5)", "Processing teamx/r2 (2/5)"]
    assert cache.get(REPOS, 7, "Jane Doe") is None


def test_cancel_after_completion_is_rejected(coordinator, author):
    job, _ = coordinator.start(7, REPOS[:1], author)
    assert coordinator.cancel(job.job_id) is False
    assert coordinator.check_status(job.job_id).status == STATUS_COMPLETED


def test_auth_error_fails_job_and_caches_nothing(coordinator, cache, reconciler, author):
    reconciler.errors["teamx/r2"] = BitbucketAuthError("Invalid or expired credentials (401)", status_code=401)

    job, _ = coordinator.start(7, REPOS[:3], author)

    status = coordinator.check_status(job.job_id)
    assert status.status == STATUS_FAILED
    assert "credentials" in status.error
    assert reconciler.calls == REPOS[:2]
    assert cache.get(REPOS[:3], 7, "Jane Doe") is None


def test_repository_error_is_skipped(coordinator, cache, reconciler, author):
    reconciler.errors["teamx/r1"] = RuntimeError("timeout")

    job, _ = coordinator.start(7, REPOS[:2], author)

    assert coordinator.check_status(job.job_id).status == STATUS_COMPLETED
    assert [i.repo for i in cache.get(REPOS[:2], 7, "Jane Doe")] == ["teamx/r2"]


def test_start_returns_cached_items(coordinator, cache, author):
    cached_items = [ActivityItem(repo="teamx/r1", commit_hash="old", commit_author_raw=JANE_RAW)]
    cache.put(REPOS[:1], 7, "Jane Doe", cached_items)

    _, cached = coordinator.start(7, REPOS[:1], author)

    assert cached == cached_items


def test_acknowledge_forgets_finished_job(coordinator, author):
    job, _ = coordinator.start(7, REPOS[:1], author)

    assert coordinator.acknowledge(job.job_id) is True
    assert coordinator.check_status(job.job_id) is None
    assert coordinator.acknowledge(job.job_id) is False


def test_finished_jobs_expire_after_max_age(cache, reconciler, config, author):
    clock = FakeClock(as_datetime=True)
    coordinator = RefreshJobCoordinator(cache, reconciler, config, background=False, clock=clock)
    job, _ = coordinator.start(7, REPOS[:1], author)

    clock.advance(minutes=29)
    assert coordinator.check_status(job.job_id) is not None
    clock.advance(minutes=2)
    assert coordinator.check_status(job.job_id) is None


def test_parallel_workers_keep_submission_order(cache, reconciler, config, author):
    config["refresh_max_workers"] = 3
    coordinator = RefreshJobCoordinator(cache, reconciler, config, background=False)

    coordinator.start(7, REPOS, author)

    assert [i.repo for i in cache.get(REPOS, 7, "Jane Doe")] == REPOS


def wait_for(predicate, timeout=5):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_background_job_single_flight(cache, reconciler, config, author):
    release = threading.Event()
    reconciler.hooks[1] = lambda: release.wait(5)
    coordinator = RefreshJobCoordinator(cache, reconciler, config, background=True)

    first, _ = coordinator.start(7, REPOS[:2], author)
    second, _ = coordinator.start(7, list(reversed(REPOS[:2])), author)
    assert second.job_id == first.job_id
    assert coordinator.check_status(first.job_id).is_running

    release.set()
    assert wait_for(lambda: coordinator.check_status(first.job_id).status == STATUS_COMPLETED)
    assert reconciler.calls == REPOS[:2]

    third, _ = coordinator.start(7, REPOS[:2], author)
    assert third.job_id != first.job_id
    assert wait_for(lambda: coordinator.check_status(third.job_id).status == STATUS_COMPLETED)


def test_stalled_job_is_failed_and_replaced(cache, reconciler, config, author):
    release = threading.Event()
    reconciler.hooks[1] = lambda: release.wait(5)
    clock = FakeClock(as_datetime=True)
    coordinator = RefreshJobCoordinator(cache, reconciler, config, background=True, clock=clock)

    stalled, _ = coordinator.start(7, REPOS[:2], author)
    assert wait_for(lambda: reconciler.calls)
    clock.advance(minutes=60)

    fresh, _ = coordinator.start(7, REPOS[:2], author)
    assert fresh.job_id != stalled.job_id
    old = coordinator.check_status(stalled.job_id)
    assert old.status == STATUS_FAILED
    assert old.error == "Job stalled"
    assert wait_for(lambda: coordinator.check_status(fresh.job_id).status == STATUS_COMPLETED)

    # the superseded worker stops before its next repository
    release.set()
    time.sleep(0.2)
    assert reconciler.calls == ["teamx/r1", "teamx/r1", "teamx/r2"]
    assert coordinator.check_status(stalled.job_id).status == STATUS_FAILED


def test_running_job_inside_stale_window_is_reused(cache, reconciler, config, author):
    release = threading.Event()
    reconciler.hooks[1] = lambda: release.wait(5)
    clock = FakeClock(as_datetime=True)
    coordinator = RefreshJobCoordinator(cache, reconciler, config, background=True, clock=clock)

    first, _ = coordinator.start(7, REPOS[:2], author)
    assert wait_for(lambda: reconciler.calls)
    clock.advance(minutes=14)

    second, _ = coordinator.start(7, REPOS[:2], author)
    assert second.job_id == first.job_id
    release.set()
    assert wait_for(lambda: coordinator.check_status(first.job_id).status == STATUS_COMPLETED)
