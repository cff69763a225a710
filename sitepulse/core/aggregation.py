"""
Analytics aggregation: one pass over a fetched slice of events.

Input is whatever the caller already loaded (typically every event of a
site in the last N days); output is the dashboard payload:

  total_visitors     distinct session ids
  active_users       distinct session ids seen in the trailing window
  top_pages          views per page, top 10
  top_referrers      views per non-empty referrer, top 10
  top_countries      distinct sessions per country, top 10
  top_cities         distinct sessions per city, top 10
  device_types       distinct sessions per device type (no cap)
  operating_systems  distinct sessions per OS (no cap)
  browsers           distinct sessions per browser (no cap)
  visitors_by_hour   distinct sessions per hour of day, always 24 slots

Missing or "Unknown" dimension values are left out of that dimension's
breakdown only; they still count toward the totals. Ties keep the order
in which values were first seen.

Nothing here touches the database. Results are never persisted.
"""

import datetime
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Iterable, Protocol

from sitepulse.models.tables import UNKNOWN

TOP_N = 10
ACTIVE_WINDOW = datetime.timedelta(minutes=5)


class EventLike(Protocol):
    session_id: str
    page: str
    referrer: str | None
    timestamp: datetime.datetime
    city: str | None
    country: str | None
    device_type: str | None
    operating_system: str | None
    browser: str | None


@dataclass
class AnalyticsData:
    total_visitors: int = 0
    active_users: int = 0
    top_pages: list[dict] = field(default_factory=list)
    top_referrers: list[dict] = field(default_factory=list)
    top_countries: list[dict] = field(default_factory=list)
    top_cities: list[dict] = field(default_factory=list)
    device_types: list[dict] = field(default_factory=list)
    operating_systems: list[dict] = field(default_factory=list)
    browsers: list[dict] = field(default_factory=list)
    visitors_by_hour: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _as_aware(ts: datetime.datetime) -> datetime.datetime:
    # Naive timestamps come back from some drivers; they are stored as UTC.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    return ts


def _has_value(value: str | None) -> bool:
    return bool(value) and value != UNKNOWN


def _ranked(counts: dict[str, int], label: str, metric: str, limit: int | None = None) -> list[dict]:
    # sorted() is stable, so equal counts stay in first-seen order
    ordered = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    if limit is not None:
        ordered = ordered[:limit]
    return [{label: key, metric: value} for key, value in ordered]


def _ranked_sessions(groups: dict[str, set[str]], label: str, limit: int | None = None) -> list[dict]:
    return _ranked({k: len(v) for k, v in groups.items()}, label, "visitors", limit)


def hourly_histogram(hours: dict[int, set[str]]) -> list[dict]:
    return [
        {"hour": f"{h:02d}:00", "visitors": len(hours.get(h, ()))}
        for h in range(24)
    ]


def aggregate_events(
    events: Iterable[EventLike],
    now: datetime.datetime | None = None,
    active_window: datetime.timedelta = ACTIVE_WINDOW,
    tz: datetime.tzinfo | None = None,
) -> AnalyticsData:
    """Compute the dashboard payload from a slice of events.

    ``tz`` selects the clock used for the hourly histogram; UTC when omitted.
    """
    now = _as_aware(now or datetime.datetime.now(datetime.timezone.utc))
    active_cutoff = now - active_window
    bucket_tz = tz or datetime.timezone.utc

    sessions: set[str] = set()
    active_sessions: set[str] = set()
    page_views: dict[str, int] = defaultdict(int)
    referrer_views: dict[str, int] = defaultdict(int)
    countries: dict[str, set[str]] = defaultdict(set)
    cities: dict[str, set[str]] = defaultdict(set)
    devices: dict[str, set[str]] = defaultdict(set)
    systems: dict[str, set[str]] = defaultdict(set)
    browsers: dict[str, set[str]] = defaultdict(set)
    hours: dict[int, set[str]] = defaultdict(set)

    for event in events:
        sid = event.session_id
        ts = _as_aware(event.timestamp)

        sessions.add(sid)
        if active_cutoff <= ts <= now:
            active_sessions.add(sid)

        if event.page:
            page_views[event.page] += 1
        if event.referrer:
            referrer_views[event.referrer] += 1

        if _has_value(event.country):
            countries[event.country].add(sid)
        if _has_value(event.city):
            cities[event.city].add(sid)
        if _has_value(event.device_type):
            devices[event.device_type].add(sid)
        if _has_value(event.operating_system):
            systems[event.operating_system].add(sid)
        if _has_value(event.browser):
            browsers[event.browser].add(sid)

        hours[ts.astimezone(bucket_tz).hour].add(sid)

    return AnalyticsData(
        total_visitors=len(sessions),
        active_users=len(active_sessions),
        top_pages=_ranked(page_views, "page", "views", TOP_N),
        top_referrers=_ranked(referrer_views, "referrer", "views", TOP_N),
        top_countries=_ranked_sessions(countries, "country", TOP_N),
        top_cities=_ranked_sessions(cities, "city", TOP_N),
        device_types=_ranked_sessions(devices, "device"),
        operating_systems=_ranked_sessions(systems, "os"),
        browsers=_ranked_sessions(browsers, "browser"),
        visitors_by_hour=hourly_histogram(hours),
    )


def count_active_sessions(
    events: Iterable[EventLike],
    now: datetime.datetime | None = None,
    active_window: datetime.timedelta = ACTIVE_WINDOW,
) -> int:
    """Distinct sessions with an event inside the trailing window."""
    now = _as_aware(now or datetime.datetime.now(datetime.timezone.utc))
    cutoff = now - active_window
    return len({
        e.session_id for e in events
        if cutoff <= _as_aware(e.timestamp) <= now
    })
