"""Tests for the analytics aggregation."""

import datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from sitepulse.core.aggregation import aggregate_events, count_active_sessions

NOW = datetime.datetime(2026, 10, 19, 15, 30, tzinfo=datetime.timezone.utc)


def ev(session, page="/", minutes_ago=60, referrer=None, country=None, city=None,
       device=None, os=None, browser=None, ts=None):
    return SimpleNamespace(
        session_id=session,
        page=page,
        referrer=referrer,
        timestamp=ts or NOW - datetime.timedelta(minutes=minutes_ago),
        country=country,
        city=city,
        device_type=device,
        operating_system=os,
        browser=browser,
    )


class TestTotals:
    def test_sessions_deduplicated_and_pages_counted_by_view(self):
        events = [ev("A", "/x"), ev("B", "/y"), ev("A", "/x")]
        data = aggregate_events(events, now=NOW)

        assert data.total_visitors == 2
        assert data.top_pages == [
            {"page": "/x", "views": 2},
            {"page": "/y", "views": 1},
        ]

    def test_empty_input(self):
        data = aggregate_events([], now=NOW)
        assert data.total_visitors == 0
        assert data.active_users == 0
        assert data.top_pages == []
        assert data.browsers == []

    def test_active_users_only_trailing_five_minutes(self):
        events = [
            ev("A", minutes_ago=1),
            ev("A", minutes_ago=2),
            ev("B", minutes_ago=4),
            ev("C", minutes_ago=6),
            ev("D", minutes_ago=600),
        ]
        data = aggregate_events(events, now=NOW)
        assert data.active_users == 2
        assert data.total_visitors == 4

    def test_count_active_sessions_matches(self):
        events = [ev("A", minutes_ago=1), ev("B", minutes_ago=10)]
        assert count_active_sessions(events, now=NOW) == 1

    def test_naive_timestamps_treated_as_utc(self):
        naive = (NOW - datetime.timedelta(minutes=1)).replace(tzinfo=None)
        data = aggregate_events([ev("A", ts=naive)], now=NOW)
        assert data.active_users == 1


class TestTopLists:
    def test_top_pages_capped_at_ten(self):
        events = [ev(f"s{i}", f"/p{i}") for i in range(15)]
        data = aggregate_events(events, now=NOW)
        assert len(data.top_pages) == 10

    def test_ties_keep_first_seen_order(self):
        events = [ev("A", "/b"), ev("B", "/a"), ev("C", "/c"), ev("D", "/c")]
        data = aggregate_events(events, now=NOW)
        assert [p["page"] for p in data.top_pages] == ["/c", "/b", "/a"]

    def test_referrers_skip_empty(self):
        events = [
            ev("A", referrer="https://news.ycombinator.com/"),
            ev("B", referrer=None),
            ev("C", referrer=""),
            ev("D", referrer="https://news.ycombinator.com/"),
        ]
        data = aggregate_events(events, now=NOW)
        assert data.top_referrers == [{"referrer": "https://news.ycombinator.com/", "views": 2}]

    def test_countries_count_unique_sessions_and_skip_unknown(self):
        events = [
            ev("A", country="Germany"),
            ev("A", country="Germany"),
            ev("B", country="Germany"),
            ev("C", country="France"),
            ev("D", country="Unknown"),
            ev("E", country=None),
        ]
        data = aggregate_events(events, now=NOW)
        assert data.top_countries == [
            {"country": "Germany", "visitors": 2},
            {"country": "France", "visitors": 1},
        ]
        # Excluded dimension values still count toward totals
        assert data.total_visitors == 5

    def test_cities_skip_unknown(self):
        events = [ev("A", city="Berlin"), ev("B", city="Unknown")]
        data = aggregate_events(events, now=NOW)
        assert data.top_cities == [{"city": "Berlin", "visitors": 1}]


class TestDeviceBreakdown:
    def test_device_os_browser_unique_sessions_uncapped(self):
        events = [
            ev("A", device="desktop", os="macOS", browser="Chrome"),
            ev("A", device="desktop", os="macOS", browser="Chrome"),
            ev("B", device="mobile", os="iOS", browser="Safari"),
            ev("C", device="mobile", os="Android", browser="Chrome"),
        ]
        data = aggregate_events(events, now=NOW)

        assert data.device_types == [
            {"device": "mobile", "visitors": 2},
            {"device": "desktop", "visitors": 1},
        ]
        assert data.operating_systems == [
            {"os": "macOS", "visitors": 1},
            {"os": "iOS", "visitors": 1},
            {"os": "Android", "visitors": 1},
        ]
        assert data.browsers == [
            {"browser": "Chrome", "visitors": 2},
            {"browser": "Safari", "visitors": 1},
        ]

    def test_breakdown_not_capped(self):
        events = [ev(f"s{i}", browser=f"Browser{i}") for i in range(12)]
        data = aggregate_events(events, now=NOW)
        assert len(data.browsers) == 12

    def test_unknown_browser_excluded(self):
        data = aggregate_events([ev("A", browser="Unknown")], now=NOW)
        assert data.browsers == []


class TestHourlyHistogram:
    @pytest.mark.parametrize("count", [0, 1, 50])
    def test_always_24_slots(self, count):
        events = [ev(f"s{i}", minutes_ago=i * 37) for i in range(count)]
        data = aggregate_events(events, now=NOW)
        assert len(data.visitors_by_hour) == 24
        assert [slot["hour"] for slot in data.visitors_by_hour][:3] == ["00:00", "01:00", "02:00"]

    def test_empty_hours_zero_filled(self):
        data = aggregate_events([], now=NOW)
        assert all(slot["visitors"] == 0 for slot in data.visitors_by_hour)

    def test_sessions_deduplicated_per_hour(self):
        at_9 = datetime.datetime(2026, 10, 19, 9, 5, tzinfo=datetime.timezone.utc)
        at_9_later = datetime.datetime(2026, 10, 19, 9, 50, tzinfo=datetime.timezone.utc)
        events = [ev("A", ts=at_9), ev("A", ts=at_9_later), ev("B", ts=at_9)]
        data = aggregate_events(events, now=NOW)
        assert data.visitors_by_hour[9] == {"hour": "09:00", "visitors": 2}
        assert sum(slot["visitors"] for slot in data.visitors_by_hour) == 2

    def test_time_zone_shifts_buckets(self):
        at_9_utc = datetime.datetime(2026, 10, 19, 9, 0, tzinfo=datetime.timezone.utc)
        data = aggregate_events([ev("A", ts=at_9_utc)], now=NOW, tz=ZoneInfo("Europe/Berlin"))
        # CEST is UTC+2 on this date
        assert data.visitors_by_hour[11]["visitors"] == 1
        assert data.visitors_by_hour[9]["visitors"] == 0


def test_to_dict_has_all_sections():
    data = aggregate_events([ev("A")], now=NOW).to_dict()
    assert set(data) == {
        "total_visitors", "active_users", "top_pages", "top_referrers",
        "top_countries", "top_cities", "device_types", "operating_systems",
        "browsers", "visitors_by_hour",
    }
