"""Issue-tracker reference extraction from PR titles and commit messages."""

import re

# Scan order matters: candidates are collected pattern by pattern.
TICKET_PATTERNS = [
    re.compile(r"\b([A-Z]{2,10}-\d+)\b"),
    re.compile(r"(?<!\w)(#\d+)\b"),
    re.compile(r"\b([A-Z]+\d+)\b"),
    re.compile(r"\bticket[\s#]*([A-Z0-9-]+)\b", re.IGNORECASE),
    re.compile(r"\bissue[\s#]*([A-Z0-9-]+)\b", re.IGNORECASE),
    re.compile(r"\btask[\s#]*([A-Z0-9-]+)\b", re.IGNORECASE),
]

TRACKER_STYLE = re.compile(r"^[A-Z]{2,10}-\d+$")


def extract_ticket_references(text):
    """Return every ticket candidate in `text`, de-duplicated, in scan order."""
    if not text:
        return []
    candidates = []
    for pattern in TICKET_PATTERNS:
        for match in pattern.finditer(text):
            candidate = match.group(1)
            if candidate not in candidates:
                candidates.append(candidate)
    return candidates


def get_primary_ticket(text):
    """Pick the single ticket for `text`.

    A tracker-style key (ABC-123) always wins; otherwise the first candidate
    found is used. Returns None when nothing matches.
    """
    candidates = extract_ticket_references(text)
    if not candidates:
        return None
    for candidate in candidates:
        if TRACKER_STYLE.match(candidate):
            return candidate
    return candidates[0]
