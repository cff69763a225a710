"""
Bot filter for the ingestion endpoint.

Any user agent matching one of the patterns below is treated as
automated traffic: the ping is acknowledged but never stored.
Matching is a case-insensitive substring search.
"""

from dataclasses import dataclass
import re

BOT_UA_PATTERNS: list[re.Pattern] = [
    re.compile(p, re.IGNORECASE) for p in [
        r"bot",
        r"crawler",
        r"spider",
        r"scraper",
        r"headless",
        r"phantom",
        r"selenium",
    ]
]


@dataclass
class BotVerdict:
    is_bot: bool
    reason: str = ""


def check_user_agent(user_agent: str | None) -> BotVerdict:
    """Classify a user agent against the fixed bot pattern list."""
    ua_str = user_agent or ""

    for pattern in BOT_UA_PATTERNS:
        if pattern.search(ua_str):
            return BotVerdict(is_bot=True, reason=f"Blocked UA: {pattern.pattern}")

    return BotVerdict(is_bot=False)
