from datetime import datetime, timedelta, timezone

import pytest

from feed_scraper.errors import ContentNeverLoaded
from feed_scraper.utils.dates import DateWindow, RangeCounter, convert_date

D1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
D2 = datetime(2024, 1, 31, tzinfo=timezone.utc)


@pytest.mark.parametrize("value, expected", [
    (1704067200, D1),
    (1704067200000, D1),
    ("1704067200", D1),
    ("2024-01-01T00:00:00Z", D1),
    ("2024-01-01", D1),
    (datetime(2024, 1, 1), D1),
])
def test_convert_date(value, expected):
    assert convert_date(value) == expected


def test_convert_date_relative_and_garbage():
    now = datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert convert_date("3 days", now=now) == now - timedelta(days=3)
    assert convert_date("2 weeks ago", now=now) == now - timedelta(days=14)
    assert convert_date("not a date") is None
    assert convert_date("") is None
    assert convert_date(None) is None


def test_window_rejects_inverted_bounds():
    with pytest.raises(ValueError):
        DateWindow(min=D2, max=D1)


def test_open_window_accepts_anything_dated():
    window = DateWindow()
    assert window.accepts(D1)
    assert not window.accepts(None)


def test_time_accepts_only_inside_window():
    counter = RangeCounter(DateWindow(D1, D2), threshold=5)
    stream = [
        D2 + timedelta(days=2),
        D2 + timedelta(hours=1),
        D2,
        D1 + timedelta(days=10),
        D1,
        D1 - timedelta(seconds=1),
        D1 - timedelta(days=3),
    ]
    counter.add(len(stream))

    accepted = []
    for ts in stream[:2]:
        accepted.append(counter.time(ts))
        assert counter.over_streak == 0

    accepted += [counter.time(ts) for ts in stream[2:]]

    assert accepted == [False, False, True, True, True, False, False]
    assert counter.in_range == 3
    assert counter.over_streak == 2
    assert counter.in_range <= counter.total_seen


def test_over_range_streak_threshold():
    counter = RangeCounter(DateWindow(D1, D2), threshold=4)
    old = D1 - timedelta(days=1)

    for _ in range(3):
        counter.time(old)
    assert not counter.is_over()

    counter.time(old)
    assert counter.is_over()


def test_in_range_item_resets_streak():
    counter = RangeCounter(DateWindow(D1, D2), threshold=3)
    counter.time(D1 - timedelta(days=1))
    counter.time(D1 - timedelta(days=2))
    counter.time(D1 + timedelta(days=1))
    counter.time(D1 - timedelta(days=3))
    assert counter.over_streak == 1
    assert not counter.is_over()


def test_never_loaded_heuristic():
    counter = RangeCounter(DateWindow(), threshold=5)
    for n in (0, 0, 3, 0, 0):
        counter.add(n)

    assert counter.stats() == {"calls": 5, "empty": 4, "total": 3, "inRange": 0}
    assert counter.failing
    with pytest.raises(ContentNeverLoaded) as info:
        counter.check("getPostUrls", "https://m.facebook.com/somepage")
    assert info.value.namespace == "getPostUrls"
    assert info.value.url == "https://m.facebook.com/somepage"


def test_filtered_out_is_not_never_loaded():
    counter = RangeCounter(DateWindow(D1, D2), threshold=5)
    for n in (10, 0, 10, 0):
        counter.add(n)
    assert not counter.failing
    counter.check("getPostUrls")


def test_naive_bounds_are_read_as_utc():
    window = DateWindow(min=datetime(2024, 1, 1), max=datetime(2024, 1, 31))
    assert window.min == D1
    assert window.max == D2

    counter = RangeCounter(window)
    assert counter.time(D1 + timedelta(days=1))
    assert not counter.time(D1 - timedelta(days=1))


def test_window_bounds_accept_other_date_forms():
    window = DateWindow(min="2024-01-01", max=1706659200)
    assert window == DateWindow(D1, D2)
