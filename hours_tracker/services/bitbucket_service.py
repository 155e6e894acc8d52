"""Bitbucket REST client: authenticated session, cursor pagination, compact records."""

import logging
import time

import requests

from hours_tracker.errors import BitbucketAuthError, BitbucketRateLimitError
from hours_tracker.models import Repository, PullRequestRecord, CommitRecord

logger = logging.getLogger(__name__)

USER_AGENT = "Hours-Tracker/1.0"
PR_STATES = ("OPEN", "MERGED", "DECLINED", "SUPERSEDED")
RETRY_STATUSES = (429, 503)

PR_FIELDS = ("next,values.id,values.title,values.created_on,values.updated_on,"
             "values.links.commits.href,values.author.display_name")
COMMIT_FIELDS = "next,values.hash,values.date,values.message,values.author.raw"
REPO_COMMIT_FIELDS = COMMIT_FIELDS + ",values.author.user.username"
REPO_FIELDS = "next,values.name,values.updated_on,values.language"


def compact_pull_request(repo, value):
    """Reduce a raw PR payload to the fields the reconciler needs."""
    return PullRequestRecord(
        repo=repo,
        title=value.get("title") or "",
        pr_id=value.get("id"),
        author_display_name=(value.get("author") or {}).get("display_name"),
        created_on=value.get("created_on"),
        updated_on=value.get("updated_on"),
        commits_href=((value.get("links") or {}).get("commits") or {}).get("href"),
    )


def compact_commit(value):
    return CommitRecord(
        hash=value.get("hash"),
        date=value.get("date"),
        author_raw=(value.get("author") or {}).get("raw"),
        message=value.get("message") or "",
    )


def flatten_pages(pages):
    """Concatenate the values of every page that was actually fetched."""
    records = []
    for page in pages:
        if page:
            records.extend(page)
    return records


class BitbucketClient:
    """Thin wrapper over the Bitbucket 2.0 API.

    Transport failures and unexpected statuses are logged and surface as an
    absent page (None). Only authentication failures and exhausted rate-limit
    retries raise, since both should abort a whole sync.
    """

    def __init__(self, config, session=None, sleep=time.sleep):
        self.config = config
        self.base_url = config.get("base_url", "https://api.bitbucket.org/2.0").rstrip("/")
        self.timeout = config.get("request_timeout_seconds", 30)
        self.max_retries = config.get("max_retries", 3)
        self.retry_delay = config.get("retry_delay_seconds", 2)
        self.max_retry_delay = config.get("max_retry_delay_seconds", 120)
        self._sleep = sleep

        self.session = session or requests.Session()
        username = config.get("api_username")
        token = config.get("api_token")
        if username and token:
            self.session.auth = (username, token)
        else:
            logger.warning("Bitbucket credentials missing: set BITBUCKET_USERNAME and BITBUCKET_API_TOKEN")
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        })

    @property
    def username(self):
        return self.config.get("api_username") or ""

    def has_credentials(self):
        return bool(self.config.get("api_username") and self.config.get("api_token"))

    def get_json(self, url, params=None):
        """GET one resource. Returns the decoded body, or None on a recoverable failure."""
        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                logger.warning(f"Request to {url} failed: {e}")
                return None

            if response.status_code in (401, 403):
                reason = "Invalid or expired credentials" if response.status_code == 401 \
                    else "Token lacks repository or pull request read permission"
                logger.error(f"Bitbucket authentication failed ({response.status_code}) for {url}: {reason}")
                raise BitbucketAuthError(f"{reason} ({response.status_code})",
                                         status_code=response.status_code, url=url)

            if response.status_code in RETRY_STATUSES:
                if attempt < self.max_retries:
                    delay = self._retry_delay(response, attempt)
                    logger.warning(f"Bitbucket returned {response.status_code} for {url}, "
                                   f"retrying in {delay}s ({attempt + 1}/{self.max_retries})")
                    self._sleep(delay)
                    continue
                raise BitbucketRateLimitError(
                    f"Bitbucket still rate limiting after {self.max_retries} retries",
                    status_code=response.status_code, url=url)

            if not response.ok:
                logger.warning(f"Bitbucket returned {response.status_code} for {url}")
                return None

            try:
                return response.json()
            except ValueError as e:
                logger.warning(f"Invalid JSON from {url}: {e}")
                return None
        return None

    def _retry_delay(self, response, attempt):
        """Seconds to wait before the next attempt, never more than max_retry_delay."""
        delay = self.retry_delay * (attempt + 1)
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                delay = max(float(retry_after), 0)
            except ValueError:
                pass
        return min(delay, self.max_retry_delay)

    def fetch_pages(self, url, params=None, max_pages=1, compact=None, first_page=None):
        """Walk the `next` cursor starting at `url`.

        Args:
            url: First page URL.
            params: Query parameters for the first request; `next` links carry their own.
            max_pages: Upper bound on the number of pages returned.
            compact: Optional callable applied to each raw value.
            first_page: Already fetched body for the first page, if any.

        Returns:
            Ordered list of pages (lists of records). A page that failed to load is
            present as None and ends the walk. Empty list if the first page failed.
        """
        body = first_page if first_page is not None else self.get_json(url, params)
        if body is None:
            return []

        pages = []
        while True:
            values = body.get("values") or []
            pages.append([compact(v) for v in values] if compact else list(values))
            next_url = body.get("next")
            if not next_url or len(pages) >= max_pages:
                break
            body = self.get_json(next_url)
            if body is None:
                pages.append(None)
                break
        return pages

    def list_workspace_repositories(self, workspace):
        """Repositories of one workspace, newest first as returned by the API."""
        pages = self.fetch_pages(
            f"{self.base_url}/repositories/{workspace}",
            params={"fields": REPO_FIELDS, "sort": "-updated_on"},
            max_pages=self.config.get("repo_list_max_pages", 3),
        )
        if not pages:
            logger.warning(f"Failed to fetch repositories for workspace: {workspace}")
        return [
            Repository(workspace=workspace, name=v.get("name"), language=v.get("language") or None,
                       updated_on=v.get("updated_on"))
            for v in flatten_pages(pages) if v.get("name")
        ]

    def list_pull_requests(self, repo, updated_since, states=PR_STATES, sort="-updated_on"):
        """PRs of `repo` ("workspace/name") updated on or after `updated_since` (YYYY-MM-DD)."""
        state_filter = "state IN (" + ",".join(f'"{s}"' for s in states) + ")"
        params = {
            "q": f"{state_filter} AND updated_on>={updated_since}",
            "sort": sort,
            "fields": PR_FIELDS,
        }
        pages = self.fetch_pages(
            f"{self.base_url}/repositories/{repo}/pullrequests",
            params=params,
            max_pages=self.config.get("pr_max_pages", 3),
            compact=lambda v: compact_pull_request(repo, v),
        )
        return [pr for pr in flatten_pages(pages) if pr.pr_id]

    def list_pull_request_commits(self, pull_request, since):
        if not pull_request.commits_href:
            return []
        pages = self.fetch_pages(
            pull_request.commits_href,
            params={"q": f"date>={since}", "sort": "-date", "fields": COMMIT_FIELDS},
            max_pages=self.config.get("pr_commit_max_pages", 2),
            compact=compact_commit,
        )
        return [c for c in flatten_pages(pages) if c.hash]

    def list_repository_commits(self, repo, since):
        """Commits pushed to `repo` since `since`, filtered server-side by the API user.

        If the `username` parameter yields nothing, the same listing is retried with
        an advanced query on author.user.username.
        """
        url = f"{self.base_url}/repositories/{repo}/commits"
        max_pages = self.config.get("repo_commit_max_pages", 3)
        params = {"q": f"date>={since}", "sort": "-date", "fields": REPO_COMMIT_FIELDS}
        if self.username:
            params["username"] = self.username

        first = self.get_json(url, params)
        if (first is None or not first.get("values")) and self.username:
            logger.info(f"No commits for {repo} with username filter, trying author query")
            params = {
                "q": f'date>={since} AND author.user.username="{self.username}"',
                "sort": "-date",
                "fields": REPO_COMMIT_FIELDS,
            }
            first = self.get_json(url, params)
        if first is None:
            return []

        pages = self.fetch_pages(url, max_pages=max_pages, compact=compact_commit, first_page=first)
        return [c for c in flatten_pages(pages) if c.hash]

    def get_current_user(self):
        """The authenticated Bitbucket user, or None if the request failed."""
        return self.get_json(f"{self.base_url}/user")
