"""
Device enrichment from the User-Agent header.

Families reported by ua-parser are folded into the labels the dashboard
groups by ("Mobile Safari" and "Safari" are one browser, "Mac OS X" is
shown as "macOS", and so on).
"""

from dataclasses import dataclass

from user_agents import parse as parse_ua

from sitepulse.models.tables import UNKNOWN

OS_LABELS = {
    "Mac OS X": "macOS",
    "Windows": "Windows",
    "iOS": "iOS",
    "iPadOS": "iOS",
    "Android": "Android",
    "Linux": "Linux",
    "Ubuntu": "Linux",
    "Fedora": "Linux",
    "Debian": "Linux",
    "Chrome OS": "Chrome OS",
}

BROWSER_LABELS = {
    "Chrome": "Chrome",
    "Chrome Mobile": "Chrome",
    "Chrome Mobile iOS": "Chrome",
    "Chromium": "Chrome",
    "Edge": "Edge",
    "Edge Mobile": "Edge",
    "Firefox": "Firefox",
    "Firefox Mobile": "Firefox",
    "Firefox iOS": "Firefox",
    "Safari": "Safari",
    "Mobile Safari": "Safari",
    "Mobile Safari UI/WKWebView": "Safari",
    "Opera": "Opera",
    "Opera Mobile": "Opera",
    "Samsung Internet": "Samsung Internet",
}


@dataclass
class DeviceInfo:
    device_type: str = "desktop"
    operating_system: str = UNKNOWN
    browser: str = UNKNOWN


def _os_label(family: str) -> str:
    if not family or family == "Other":
        return UNKNOWN
    if family.startswith("Windows"):
        return "Windows"
    return OS_LABELS.get(family, family)


def _browser_label(family: str) -> str:
    if not family or family == "Other":
        return UNKNOWN
    return BROWSER_LABELS.get(family, family)


def parse_device(user_agent: str | None) -> DeviceInfo:
    """Derive device type, OS and browser labels from a user agent string."""
    if not user_agent:
        return DeviceInfo()

    parsed = parse_ua(user_agent)

    if parsed.is_tablet:
        device = "tablet"
    elif parsed.is_mobile:
        device = "mobile"
    else:
        device = "desktop"

    return DeviceInfo(
        device_type=device,
        operating_system=_os_label(parsed.os.family),
        browser=_browser_label(parsed.browser.family),
    )
