"""Tests for range compression of per-day price series."""
from datetime import date, timedelta

import pytest

from pricesync.pricing.compressor import compress_price_series, expand_ranges, round_price
from pricesync.pricing.types import PricePoint, RateRange


def _series(start: date, prices):
    return [PricePoint(day=start + timedelta(days=i), price=p) for i, p in enumerate(prices)]


JAN1 = date(2025, 1, 1)


class TestCompressExamples:
    def test_two_price_levels(self):
        ranges = compress_price_series(_series(JAN1, [100, 100, 120, 120, 120]))
        assert ranges == [
            RateRange(date(2025, 1, 1), date(2025, 1, 2), 100.0),
            RateRange(date(2025, 1, 3), date(2025, 1, 5), 120.0),
        ]

    def test_all_equal_prices_single_range(self):
        ranges = compress_price_series(_series(JAN1, [90] * 5))
        assert ranges == [RateRange(date(2025, 1, 1), date(2025, 1, 5), 90.0)]

    def test_empty_series(self):
        assert compress_price_series([]) == []

    def test_single_point(self):
        ranges = compress_price_series(_series(JAN1, [75.5]))
        assert ranges == [RateRange(JAN1, JAN1, 75.5)]
        assert ranges[0].nights == 1

    def test_alternating_prices_never_merge(self):
        ranges = compress_price_series(_series(JAN1, [100, 110, 100, 110]))
        assert len(ranges) == 4
        assert [r.price for r in ranges] == [100, 110, 100, 110]

    def test_spans_month_boundary(self):
        ranges = compress_price_series(_series(date(2025, 1, 30), [80, 80, 80, 95]))
        assert ranges[0] == RateRange(date(2025, 1, 30), date(2025, 2, 1), 80.0)
        assert ranges[1] == RateRange(date(2025, 2, 2), date(2025, 2, 2), 95.0)


class TestRounding:
    def test_round_half_up_to_cents(self):
        assert round_price(100.005) == 100.01
        assert round_price(99.994) == 99.99
        assert round_price(120) == 120.0

    def test_prices_equal_after_rounding_merge(self):
        ranges = compress_price_series(_series(JAN1, [100.001, 100.004, 99.999]))
        assert ranges == [RateRange(JAN1, date(2025, 1, 3), 100.0)]

    def test_one_cent_difference_splits(self):
        ranges = compress_price_series(_series(JAN1, [100.00, 100.01]))
        assert len(ranges) == 2


class TestInputValidation:
    def test_gap_raises(self):
        points = [PricePoint(JAN1, 100), PricePoint(date(2025, 1, 3), 100)]
        with pytest.raises(ValueError, match="gap-free"):
            compress_price_series(points)

    def test_out_of_order_raises(self):
        points = [PricePoint(date(2025, 1, 2), 100), PricePoint(JAN1, 100)]
        with pytest.raises(ValueError):
            compress_price_series(points)

    def test_duplicate_day_raises(self):
        points = [PricePoint(JAN1, 100), PricePoint(JAN1, 100)]
        with pytest.raises(ValueError):
            compress_price_series(points)


# A realistic two-month calendar: weekday/weekend pricing plus a holiday spike.
CALENDAR = _series(
    date(2025, 3, 1),
    [
        150.0 if (date(2025, 3, 1) + timedelta(days=i)).weekday() >= 4 else 120.0
        for i in range(61)
    ],
)
CALENDAR[40] = PricePoint(CALENDAR[40].day, 210.0)
CALENDAR[41] = PricePoint(CALENDAR[41].day, 210.0)


class TestCompressionProperties:
    @pytest.mark.parametrize("points", [
        [],
        _series(JAN1, [90] * 5),
        _series(JAN1, [100, 100, 120, 120, 120]),
        _series(JAN1, [55.25, 60.10, 60.10, 55.25, 55.25, 70.00, 70.00]),
        CALENDAR,
    ])
    def test_round_trip_reproduces_series(self, points):
        expanded = expand_ranges(compress_price_series(points))
        assert expanded == [(p.day, p.price) for p in points]

    def test_ranges_sorted_contiguous_and_non_overlapping(self):
        ranges = compress_price_series(CALENDAR)
        assert ranges[0].start_date == CALENDAR[0].day
        assert ranges[-1].end_date == CALENDAR[-1].day
        for prev, nxt in zip(ranges, ranges[1:]):
            assert nxt.start_date == prev.end_date + timedelta(days=1)
            assert nxt.price != prev.price
        assert sum(r.nights for r in ranges) == len(CALENDAR)

    def test_idempotent(self):
        assert compress_price_series(CALENDAR) == compress_price_series(CALENDAR)

    def test_minimal_for_calendar(self):
        ranges = compress_price_series(CALENDAR)
        # Every boundary in the output corresponds to a real price change
        changes = sum(
            1 for a, b in zip(CALENDAR, CALENDAR[1:]) if a.price != b.price
        )
        assert len(ranges) == changes + 1
