#!/usr/bin/env python3
"""Bitbucket Hours Tracker - Flask Backend

Aggregates a developer's Bitbucket pull request and commit activity into one
deduplicated, ticket-annotated timeline, served as a JSON API.
"""

from hours_tracker import create_app
from hours_tracker.config import get_config

app = create_app()


if __name__ == "__main__":
    config = get_config()
    app.run(
        host=config.get("host", "127.0.0.1"),
        port=config.get("port", 5050),
        debug=config.get("debug", False),
    )
