"""Coarse user-agent classification for events that carry a raw UA string.

Producers that predate the explicit context block publish only the browser's
``User-Agent`` header. These helpers recover the device category, operating
system and browser family from it using substring checks; anything more
precise belongs to the analytical layer.
"""

from __future__ import annotations

import dataclasses as dc

UNKNOWN = "Unknown"

# (needles, label) pairs, checked in order; first match wins.
_OPERATING_SYSTEMS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("android",), "Android"),
    (("iphone", "ipad", "ipod"), "iOS"),
    (("windows",), "Windows"),
    (("macintosh", "mac os"), "macOS"),
    (("linux",), "Linux"),
)

_BROWSERS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("edg",), "Edge"),
    (("opr/", "opera"), "Opera"),
    (("firefox", "fxios"), "Firefox"),
    (("chrome", "crios"), "Chrome"),
    (("safari",), "Safari"),
)


@dc.dataclass(frozen=True, slots=True)
class UserAgentTraits:
    """Fields recovered from a user-agent string."""

    device_category: str | None = None
    operating_system: str | None = None
    browser: str | None = None


def device_category(user_agent: str | None) -> str | None:
    """Return ``mobile``, ``tablet`` or ``desktop`` for a user agent."""
    if not user_agent:
        return None
    ua = user_agent.lower()
    if "mobile" in ua or "android" in ua or "iphone" in ua:
        return "mobile"
    if "tablet" in ua or "ipad" in ua:
        return "tablet"
    return "desktop"


def _first_match(
    user_agent: str | None, table: tuple[tuple[tuple[str, ...], str], ...]
) -> str | None:
    if not user_agent:
        return None
    ua = user_agent.lower()
    for needles, label in table:
        if any(needle in ua for needle in needles):
            return label
    return UNKNOWN


def operating_system(user_agent: str | None) -> str | None:
    """Return the operating system family for a user agent."""
    return _first_match(user_agent, _OPERATING_SYSTEMS)


def browser(user_agent: str | None) -> str | None:
    """Return the browser family for a user agent."""
    return _first_match(user_agent, _BROWSERS)


def classify(user_agent: str | None) -> UserAgentTraits:
    """Classify a user agent into device, OS and browser in one pass."""
    return UserAgentTraits(
        device_category=device_category(user_agent),
        operating_system=operating_system(user_agent),
        browser=browser(user_agent),
    )
