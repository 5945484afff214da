from datetime import datetime, timezone

import pytest

from conftest import make_point, make_track, ts
from location_history.models import Period
from location_history.periods import (
    PeriodManager,
    count_in_period,
    dataset_range,
    parse_period_bound,
    select,
)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def day_points():
    # One point every hour from 00:00 to 23:00 on 2024-03-01.
    return [make_point(50.0 + i * 0.01, 8.0, ts(2024, 3, 1, i)) for i in range(24)]


def test_select_is_inclusive_and_order_preserving():
    points = [
        make_point(1.0, 1.0, ts(2024, 3, 1, 12)),
        make_point(2.0, 2.0, ts(2024, 3, 1, 10)),
        make_point(3.0, 3.0, ts(2024, 3, 1, 9, 59, 59)),
        make_point(4.0, 4.0, ts(2024, 3, 1, 12, 0, 1)),
    ]
    period = Period(1, utc(2024, 3, 1, 10), utc(2024, 3, 1, 12))

    selected = select(points, period)

    assert [p.lat_e7 for p in selected] == [10_000_000, 20_000_000]
    assert count_in_period(points, period) == 2


def test_select_treats_naive_bounds_as_utc():
    points = [make_point(1.0, 1.0, ts(2024, 3, 1, 10))]
    period = Period(1, datetime(2024, 3, 1, 10), datetime(2024, 3, 1, 10))
    assert select(points, period) == points


def test_dataset_range():
    assert dataset_range([]) is None
    points = make_track(ts(2024, 3, 1, 8), 3)
    assert dataset_range(points) == (utc(2024, 3, 1, 8), utc(2024, 3, 1, 8, 2))


def test_add_defaults_to_full_range_and_clamps(day_points):
    manager = PeriodManager(day_points)

    full = manager.add()
    assert (full.start_date, full.end_date) == (utc(2024, 3, 1, 0), utc(2024, 3, 1, 23))

    clamped = manager.add(utc(2024, 2, 1), utc(2024, 3, 1, 5))
    assert clamped.id == 2
    assert clamped.start_date == utc(2024, 3, 1, 0)
    assert clamped.end_date == utc(2024, 3, 1, 5)


def test_add_inverted_bounds_collapses_to_start(day_points):
    manager = PeriodManager(day_points)
    period = manager.add(utc(2024, 3, 1, 10), utc(2024, 3, 1, 4))
    assert period.start_date == period.end_date == utc(2024, 3, 1, 10)


def test_remove_renumbers_contiguously(day_points):
    manager = PeriodManager(day_points)
    for hour in (1, 5, 9):
        manager.add(utc(2024, 3, 1, hour), utc(2024, 3, 1, hour + 2))

    manager.remove(1)

    assert [p.id for p in manager.periods] == [1, 2]
    assert manager.get(1).start_date == utc(2024, 3, 1, 5)
    with pytest.raises(ValueError):
        manager.get(3)


def test_update_moves_opposite_bound_when_inverted(day_points):
    manager = PeriodManager(day_points)
    manager.add(utc(2024, 3, 1, 5), utc(2024, 3, 1, 8))

    period = manager.update(1, "start_date", utc(2024, 3, 1, 10))
    assert period.start_date == period.end_date == utc(2024, 3, 1, 10)

    period = manager.update(1, "end_date", utc(2024, 3, 1, 2))
    assert period.start_date == period.end_date == utc(2024, 3, 1, 2)

    period = manager.update(1, "end_date", utc(2030, 1, 1))
    assert period.end_date == utc(2024, 3, 1, 23)

    with pytest.raises(ValueError):
        manager.update(1, "id", utc(2024, 3, 1))


def test_summaries_use_the_same_filter_as_select(day_points):
    manager = PeriodManager(day_points)
    manager.add(utc(2024, 3, 1, 0), utc(2024, 3, 1, 5))
    manager.add(utc(2024, 3, 1, 6), utc(2024, 3, 1, 6))

    summaries = manager.summaries()

    assert [s.records for s in summaries] == [6, 1]
    assert len(manager.select(1)) == 6
    assert len(manager) == 2


def test_parse_period_bound():
    assert parse_period_bound("2024-03-01") == utc(2024, 3, 1)
    assert parse_period_bound(" 2024-03-01T10:30:00+02:00 ") == utc(2024, 3, 1, 8, 30)
    with pytest.raises(ValueError):
        parse_period_bound("first of march")
