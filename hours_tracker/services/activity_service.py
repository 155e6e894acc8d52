"""Activity sync entry points: one ActivityService per app, holding client, cache and jobs."""

import logging

from hours_tracker.cache.memory_cache import ActivityCache
from hours_tracker.errors import BitbucketAuthError
from hours_tracker.models import AuthorIdentity
from hours_tracker.services.bitbucket_service import BitbucketClient
from hours_tracker.services.reconcile_service import ActivityReconciler
from hours_tracker.services.refresh_service import RefreshJobCoordinator

logger = logging.getLogger(__name__)


class ActivityService:
    """Everything the HTTP layer calls into.

    Built once by create_app() and shared by reference; collaborators can be
    injected for tests.
    """

    def __init__(self, config, client=None, cache=None, repository_db=None, background=True):
        self.config = config
        self.client = client or BitbucketClient(config)
        self.author = AuthorIdentity.from_config(config)
        self.cache = cache or ActivityCache(
            maxsize=config.get("cache_maxsize", 256),
            repositories_ttl_minutes=config.get("repositories_cache_ttl_minutes", 60),
        )
        self.repository_db = repository_db
        self.reconciler = ActivityReconciler(self.client, self.author, config)
        self.jobs = RefreshJobCoordinator(self.cache, self.reconciler, config, background=background)

    @property
    def default_days(self):
        return self.config.get("default_days", 12)

    # Repository registry

    def list_all_repositories(self, force_refresh=False):
        """Every repository of the configured workspaces, sorted by name."""
        if not force_refresh:
            cached = self.cache.get_repositories()
            if cached is not None:
                logger.info("Using cached repositories")
                return cached

        discovered = []
        for workspace in self.config.get("workspaces") or []:
            logger.info(f"Fetching repositories for workspace: {workspace}")
            discovered.extend(self.client.list_workspace_repositories(workspace))
        discovered.sort(key=lambda r: (r.name.lower(), r.workspace))

        if self.repository_db is not None:
            known = {r.full_name for r in discovered}
            discovered = [r for r in self.repository_db.sync_discovered(discovered) if r.full_name in known]

        self.cache.put_repositories(discovered)
        logger.info(f"Cached {len(discovered)} repositories from "
                    f"{len(self.config.get('workspaces') or [])} workspace(s)")
        return discovered

    def list_user_enabled_repositories(self):
        repositories = self.list_all_repositories()
        return [r for r in repositories if r.is_enabled]

    def set_repository_enabled(self, repo_id, is_enabled):
        if self.repository_db is None:
            return {"success": False, "message": "Repository registry is not configured"}
        result = self.repository_db.set_enabled(repo_id, is_enabled)
        if result["success"]:
            self.cache.clear_repositories()
        return result

    def save_selection(self, repo_names):
        if self.repository_db is None:
            return {"success": False, "message": "Repository registry is not configured"}
        return self.repository_db.save_selection(repo_names)

    def get_selection(self):
        return self.repository_db.get_selection() if self.repository_db is not None else []

    def resolve_repositories(self, repo_list=None):
        """Turn names or workspace/name paths into full names.

        Without an explicit list: saved selection, then enabled repositories,
        then everything discovered.
        """
        repositories = self.list_all_repositories()
        if repo_list:
            return self._match_names(repo_list, repositories)

        selection = self._match_names(self.get_selection(), repositories)
        if selection:
            return selection

        enabled = [r.full_name for r in repositories if r.is_enabled]
        return enabled or [r.full_name for r in repositories]

    @staticmethod
    def _match_names(names, repositories):
        by_full_name = {r.full_name: r for r in repositories}
        by_name = {}
        for repo in repositories:
            by_name.setdefault(repo.name, repo)

        resolved = []
        for name in names:
            repo = by_full_name.get(name) or by_name.get(name)
            if repo is None:
                logger.warning(f"Unknown repository {name}, skipping")
                continue
            if repo.full_name not in resolved:
                resolved.append(repo.full_name)
        return resolved

    # Activity

    def fetch_activity(self, days=None, repo_list=None, force_refresh=False):
        """Activity items for the tracked author, from cache unless forced or missing."""
        days = days or self.default_days
        repos = self.resolve_repositories(repo_list)
        if not force_refresh:
            cached = self.cache.get(repos, days, self.author.label)
            if cached is not None:
                return cached

        logger.info(f"Fetching fresh activity for {len(repos)} repositories over {days} days")
        items = self.jobs.sync(repos, days, self.author)
        self.cache.put(repos, days, self.author.label, items)
        return items

    def start_background_refresh(self, days=None, repo_list=None):
        """Start a refresh job; returns whatever is cached right now plus the job."""
        days = days or self.default_days
        repos = self.resolve_repositories(repo_list)
        job, cached = self.jobs.start(days, repos, self.author)
        return {
            "items": cached or [],
            "cached": cached is not None,
            "job": job.to_dict(max_stale_seconds=self.jobs.stale_seconds),
        }

    def check_job_status(self, job_id):
        return self.jobs.job_status_dict(job_id)

    def cancel_job(self, job_id):
        return self.jobs.cancel(job_id)

    def acknowledge_job(self, job_id):
        return self.jobs.acknowledge(job_id)

    def invalidate_cache(self, pattern=None):
        return self.cache.invalidate(pattern)

    def test_authentication(self):
        """Check the configured credentials against the /user endpoint."""
        if not self.client.has_credentials():
            return {"success": False, "message": "Missing credentials: set BITBUCKET_USERNAME and BITBUCKET_API_TOKEN"}
        try:
            user = self.client.get_current_user()
        except BitbucketAuthError as e:
            return {"success": False, "message": f"Authentication failed: {e.message}"}
        if not user:
            return {"success": False, "message": "Authentication failed. Please check your Bitbucket API token."}
        return {
            "success": True,
            "message": f"Authentication successful for user: {user.get('display_name') or user.get('username')}",
            "user": {
                "username": user.get("username"),
                "display_name": user.get("display_name"),
                "account_id": user.get("account_id"),
            },
        }
