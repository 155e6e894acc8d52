"""Shared logging setup and the app-extension key for the activity service.

The service itself is built once by create_app() and stored on the Flask app,
so there is no module-level mutable state here beyond the logger.
"""

import logging

from flask import current_app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("hours_tracker")

EXTENSION_KEY = "hours_tracker"


def get_activity_service():
    """Return the ActivityService attached to the current Flask app."""
    return current_app.extensions[EXTENSION_KEY]
