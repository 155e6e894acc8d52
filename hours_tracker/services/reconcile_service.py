"""Turn fetched PRs and commits into ticket-annotated activity items."""

import logging
import threading
from datetime import timedelta

from hours_tracker.models import (
    ActivityItem,
    TICKET_SOURCE_PR_TITLE,
    TICKET_SOURCE_COMMIT_MESSAGE,
)
from hours_tracker.services.ticket_service import get_primary_ticket
from hours_tracker.utils.timeutils import utc_now, parse_timestamp, days_ago_filter

logger = logging.getLogger(__name__)


class ExpansionBudget:
    """How many PRs one sync pass may still expand into per-commit detail.

    Shared by every repository of the pass, so it is lock protected for the
    parallel worker case.
    """

    def __init__(self, limit):
        self.limit = limit
        self.used = 0
        self._lock = threading.Lock()

    def take(self):
        with self._lock:
            if self.used >= self.limit:
                return False
            self.used += 1
            return True


def annotate_pull_request(pr):
    """Set the PR's ticket from its title."""
    ticket = get_primary_ticket(pr.title)
    pr.ticket = ticket
    pr.ticket_source = TICKET_SOURCE_PR_TITLE if ticket else None
    return pr


def pull_request_item(pr):
    return ActivityItem(
        repo=pr.repo,
        pr=pr.title,
        pr_id=pr.pr_id,
        pr_author_display_name=pr.author_display_name,
        pr_created_on=pr.created_on,
        pr_updated_on=pr.updated_on,
        pr_links_commits_href=pr.commits_href,
        ticket=pr.ticket,
        ticket_source=pr.ticket_source,
    )


def pull_request_commit_item(pr, commit):
    """Commit found under a PR: its own ticket wins, else it inherits the PR's."""
    ticket = get_primary_ticket(commit.message)
    if ticket:
        source = TICKET_SOURCE_COMMIT_MESSAGE
    else:
        ticket = pr.ticket
        source = pr.ticket_source if pr.ticket else None
    return ActivityItem(
        repo=pr.repo,
        commit_hash=commit.hash,
        commit_date=commit.date,
        commit_author_raw=commit.author_raw,
        commit_message=commit.message,
        pr=pr.title,
        pr_id=pr.pr_id,
        pr_author_display_name=pr.author_display_name,
        pr_created_on=pr.created_on,
        pr_updated_on=pr.updated_on,
        pr_links_commits_href=pr.commits_href,
        ticket=ticket,
        ticket_source=source,
    )


def repository_commit_item(repo, commit):
    ticket = get_primary_ticket(commit.message)
    return ActivityItem(
        repo=repo,
        commit_hash=commit.hash,
        commit_date=commit.date,
        commit_author_raw=commit.author_raw,
        commit_message=commit.message,
        ticket=ticket,
        ticket_source=TICKET_SOURCE_COMMIT_MESSAGE if ticket else None,
    )


class ActivityReconciler:
    """Builds the per-repository activity stream from a BitbucketClient."""

    def __init__(self, client, author, config, clock=utc_now):
        self.client = client
        self.author = author
        self.recent_pr_days = config.get("recent_pr_days", 3)
        self.max_expanded_prs = config.get("max_expanded_prs", 20)
        self._clock = clock

    def new_budget(self):
        return ExpansionBudget(self.max_expanded_prs)

    def should_expand(self, pr, now=None):
        """PRs by the tracked author, or touched within the recent window."""
        if self.author.matches_pr(pr.author_display_name):
            return True
        updated = parse_timestamp(pr.updated_on)
        now = now or self._clock()
        return bool(updated) and updated > now - timedelta(days=self.recent_pr_days)

    def reconcile_repository(self, repo, days, budget=None):
        """All activity for one repository, unfiltered by author and not deduplicated.

        PR-sourced items come first so that, after dedup, a commit keeps the
        PR-attributed version over the direct-scan one.
        """
        budget = budget or self.new_budget()
        now = self._clock()
        since = days_ago_filter(days, now)

        pull_requests = [annotate_pull_request(pr) for pr in self.client.list_pull_requests(repo, since)]
        logger.info(f"{repo}: {len(pull_requests)} pull requests since {since}")

        items = []
        expanded = 0
        for pr in pull_requests:
            commit_items = []
            if self.should_expand(pr, now) and budget.take():
                expanded += 1
                commits = self.client.list_pull_request_commits(pr, since)
                commit_items = [pull_request_commit_item(pr, c) for c in commits]
            if commit_items:
                items.extend(commit_items)
            else:
                items.append(pull_request_item(pr))

        direct = [repository_commit_item(repo, c) for c in self.client.list_repository_commits(repo, since)]
        logger.info(f"{repo}: expanded {expanded} PRs, {len(direct)} commits from direct scan")
        return items + direct


def deduplicate_items(items):
    """Keep the first item per identity key, preserving order."""
    seen = set()
    result = []
    for item in items:
        key = item.identity_key
        if key in seen:
            logger.debug(f"Dropped duplicate activity item {key}")
            continue
        seen.add(key)
        result.append(item)
    return result


def filter_by_author(items, author):
    """Commit items match on raw author, PR-shaped items on display name."""
    return [item for item in items if author.matches(item)]
