"""
Consumer name normalization.

The gateway validates consumer names against ^[a-z0-9\\-_:]+$ and uses the
name (not the id) as the path key for update and delete. Any user-supplied
name is passed through normalize_consumer_name() before it leaves the
proxy.
"""

import re

CONSUMER_NAME_PATTERN = re.compile(r"[a-z0-9\-_:]+")
_DISALLOWED = re.compile(r"[^a-z0-9\-_:]")


def normalize_consumer_name(raw: str) -> str:
    """
    Return `raw` unchanged if it already satisfies the gateway pattern,
    otherwise lowercase it and replace every other character with '-'.

    Total over all strings. An empty string comes back empty; the gateway
    is left to reject it.
    """
    if CONSUMER_NAME_PATTERN.fullmatch(raw):
        return raw
    return _DISALLOWED.sub("-", raw.lower())
