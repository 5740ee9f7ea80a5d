"""
Range compression: per-day price series → minimal list of same-price ranges.

The channel API accepts rates as date ranges; sending one rate per night for a
two-year horizon is ~730 entries per bucket, while real calendars collapse to
a few dozen ranges.

Merging is greedy and local: the open range is extended while the next day's
price, rounded to the currency minor unit, equals the range's price. Both
functions here are pure.
"""
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Sequence, Tuple

from pricesync.pricing.types import PricePoint, RateRange

MINOR_UNIT = Decimal("0.01")


def round_price(value: float) -> float:
    """Round half-up to the currency minor unit (cents)."""
    return float(Decimal(str(value)).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP))


def compress_price_series(points: Sequence[PricePoint]) -> List[RateRange]:
    """
    Collapse an ordered, gap-free per-day series into contiguous rate ranges.

    Args:
        points: PricePoints sorted ascending by day with no missing days.

    Returns:
        Ranges sorted by start_date, covering every input day exactly once,
        with no two adjacent ranges sharing a price. Empty input → [].

    Raises:
        ValueError: if the series is out of order, repeats a day, or has a gap.
    """
    ranges: List[RateRange] = []
    if not points:
        return ranges

    start = points[0].day
    end = start
    price = round_price(points[0].price)

    for pt in points[1:]:
        if pt.day != end + timedelta(days=1):
            raise ValueError(
                f"Price series must be ordered and gap-free: {pt.day} follows {end}"
            )
        rounded = round_price(pt.price)
        if rounded == price:
            end = pt.day
            continue
        ranges.append(RateRange(start_date=start, end_date=end, price=price))
        start = end = pt.day
        price = rounded

    ranges.append(RateRange(start_date=start, end_date=end, price=price))
    return ranges


def expand_ranges(ranges: Sequence[RateRange]) -> List[Tuple[date, float]]:
    """Inverse of compress_price_series: one (day, price) pair per covered night."""
    days: List[Tuple[date, float]] = []
    for rng in ranges:
        for offset in range(rng.nights):
            days.append((rng.start_date + timedelta(days=offset), rng.price))
    return days
