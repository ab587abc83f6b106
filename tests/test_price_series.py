import pytest

from conftest import make_point, make_points
from quantdesk.services.price_series import MAX_POINTS, PriceSeries


def test_load_sorts_caps_and_decorates():
    series = PriceSeries("BTCUSDT", "1m")
    points = make_points([100.0 + i for i in range(250)])
    series.load(reversed(points))

    assert len(series) == MAX_POINTS
    assert series.points[0].timestamp == points[50].timestamp
    assert series.latest.timestamp == points[-1].timestamp
    assert series.latest.sma10 is not None


def test_same_timestamp_replaces_last_point():
    series = PriceSeries()
    series.load(make_points([100.0] * 20))
    last_ts = series.latest.timestamp

    assert series.merge(make_point(last_ts + 0.4, 120.0)) == "replaced"
    assert len(series) == 20
    assert series.latest.close == 120.0
    # indicators recomputed against the replaced close
    assert series.latest.sma10 == pytest.approx((100.0 * 9 + 120.0) / 10)


def test_newer_timestamp_appends():
    series = PriceSeries()
    series.load(make_points([100.0] * 5))
    assert series.merge(make_point(10_000.0, 101.0)) == "appended"
    assert len(series) == 6
    assert series.latest.close == 101.0


def test_append_at_capacity_evicts_oldest():
    series = PriceSeries()
    points = make_points([100.0] * MAX_POINTS)
    series.load(points)
    series.merge(make_point(points[-1].timestamp + 60, 105.0))

    assert len(series) == MAX_POINTS
    assert series.points[0].timestamp == points[1].timestamp


def test_older_timestamp_is_ignored():
    series = PriceSeries()
    series.load(make_points([100.0] * 5, start=1000.0))
    before = series.points
    assert series.merge(make_point(10.0, 50.0)) == "ignored"
    assert series.points == before


def test_unusable_close_is_ignored():
    series = PriceSeries()
    series.load(make_points([100.0] * 5))
    assert series.merge(make_point(99_999.0, float("nan"))) == "ignored"
    assert series.merge(make_point(99_999.0, 0.0)) == "ignored"
    assert len(series) == 5


def test_merge_into_empty_series_appends():
    series = PriceSeries()
    assert series.merge(make_point(1.0, 10.0)) == "appended"
    assert series.latest.sma10 is None
