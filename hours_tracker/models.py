"""Record types shared by the fetcher, reconciler, cache and refresh jobs."""

from dataclasses import dataclass, field, asdict, fields
from datetime import datetime
from typing import Optional, Dict, Any

from hours_tracker.errors import InvalidJobTransition
from hours_tracker.utils.timeutils import utc_now, to_iso, format_duration

TICKET_SOURCE_PR_TITLE = "PR title"
TICKET_SOURCE_COMMIT_MESSAGE = "commit message"


@dataclass
class Repository:
    """A Bitbucket repository as known to the registry."""
    workspace: str
    name: str
    language: Optional[str] = None
    updated_on: Optional[str] = None
    is_enabled: bool = True
    is_primary: bool = False
    id: Optional[int] = None

    @property
    def full_name(self) -> str:
        return f"{self.workspace}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["full_name"] = self.full_name
        return data


@dataclass
class PullRequestRecord:
    """Compact pull request with its title-derived ticket."""
    repo: str
    title: str
    pr_id: int
    author_display_name: Optional[str] = None
    created_on: Optional[str] = None
    updated_on: Optional[str] = None
    commits_href: Optional[str] = None
    ticket: Optional[str] = None
    ticket_source: Optional[str] = None


@dataclass
class CommitRecord:
    """Compact commit as returned by one page of a commit listing."""
    hash: str
    date: Optional[str] = None
    author_raw: Optional[str] = None
    message: str = ""


@dataclass(frozen=True)
class ActivityItem:
    """A single commit or pull request, the unit the engine emits.

    Commit-shaped items have commit_hash; PR-shaped items have pr_id and no
    commit_hash. An item with neither is rejected.
    """
    repo: str
    commit_hash: Optional[str] = None
    commit_date: Optional[str] = None
    commit_author_raw: Optional[str] = None
    commit_message: Optional[str] = None
    pr: Optional[str] = None
    pr_id: Optional[int] = None
    pr_author_display_name: Optional[str] = None
    pr_created_on: Optional[str] = None
    pr_updated_on: Optional[str] = None
    pr_links_commits_href: Optional[str] = None
    ticket: Optional[str] = None
    ticket_source: Optional[str] = None
    branch: Optional[str] = None

    def __post_init__(self):
        if not self.commit_hash and not self.pr_id:
            raise ValueError(f"ActivityItem for {self.repo} needs a commit_hash or a pr_id")

    @property
    def identity_key(self) -> str:
        if self.commit_hash:
            return f"commit:{self.repo}:{self.commit_hash}"
        return f"pr:{self.repo}:{self.pr_id}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityItem":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class AuthorIdentity:
    """The tracked developer, as seen by PRs (display name) and commits (raw author)."""
    display_name: str = ""
    commit_author_raw: str = ""
    username: str = ""

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "AuthorIdentity":
        return cls(
            display_name=config.get("pr_author_display_name") or "",
            commit_author_raw=config.get("commit_author_raw") or "",
            username=config.get("api_username") or "",
        )

    @property
    def label(self) -> str:
        return self.display_name or self.username or self.commit_author_raw

    def matches_pr(self, display_name: Optional[str]) -> bool:
        return bool(display_name) and display_name == self.display_name

    def matches_commit(self, author_raw: Optional[str]) -> bool:
        if not author_raw:
            return False
        if self.commit_author_raw:
            return author_raw == self.commit_author_raw
        name = author_raw.split("<", 1)[0].strip()
        return bool(self.display_name) and name == self.display_name

    def matches(self, item: ActivityItem) -> bool:
        if item.commit_author_raw:
            return self.matches_commit(item.commit_author_raw)
        if item.pr_author_display_name:
            return self.matches_pr(item.pr_author_display_name)
        return False


# Refresh job statuses
STATUS_STARTED = "started"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED})

ALLOWED_TRANSITIONS = {
    STATUS_STARTED: {STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED},
    STATUS_PROCESSING: {STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED},
    STATUS_COMPLETED: set(),
    STATUS_FAILED: set(),
    STATUS_CANCELLED: set(),
}


@dataclass
class RefreshJob:
    """State of one background refresh. Status only ever moves forward."""
    job_id: str
    cache_key: str
    parameters: Dict[str, Any]
    status: str = STATUS_STARTED
    message: str = "Refresh started"
    started_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    progress: Optional[int] = None
    error: Optional[str] = None
    item_count: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_running(self) -> bool:
        return not self.is_terminal

    def transition(self, new_status: str, message: Optional[str] = None, now: Optional[datetime] = None):
        if new_status not in ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidJobTransition(f"Job {self.job_id}: cannot move from {self.status} to {new_status}")
        now = now or utc_now()
        self.status = new_status
        self.updated_at = now
        if message is not None:
            self.message = message
        if new_status == STATUS_CANCELLED:
            self.cancelled_at = now
        elif new_status in (STATUS_COMPLETED, STATUS_FAILED):
            self.completed_at = now
        if new_status == STATUS_COMPLETED:
            self.progress = 100

    def is_stalled(self, max_stale_seconds: float, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.is_running and (now - self.updated_at).total_seconds() > max_stale_seconds

    def to_dict(self, now: Optional[datetime] = None, max_stale_seconds: float = 15 * 60) -> Dict[str, Any]:
        now = now or utc_now()
        end = self.completed_at or self.cancelled_at or now
        elapsed = max(int((end - self.started_at).total_seconds()), 0)
        since_update = max(int((now - self.updated_at).total_seconds()), 0)
        return {
            "job_id": self.job_id,
            "status": self.status,
            "message": self.message,
            "started_at": to_iso(self.started_at),
            "updated_at": to_iso(self.updated_at),
            "completed_at": to_iso(self.completed_at),
            "cancelled_at": to_iso(self.cancelled_at),
            "elapsed_time": elapsed,
            "elapsed_time_human": format_duration(elapsed),
            "time_since_update": {
                "seconds": since_update,
                "human_readable": f"{format_duration(since_update)} ago" if since_update else "Just now",
            },
            "progress": self.progress,
            "parameters": dict(self.parameters),
            "error": self.error,
            "item_count": self.item_count,
            "is_running": self.is_running,
            "is_completed": self.status == STATUS_COMPLETED,
            "is_failed": self.status == STATUS_FAILED,
            "is_cancelled": self.status == STATUS_CANCELLED,
            "is_stalled": self.is_stalled(max_stale_seconds, now),
        }
