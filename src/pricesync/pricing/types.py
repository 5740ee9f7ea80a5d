"""
In-memory pricing values shared by the fetcher, compressor and payload builder.

These are plain dataclasses / pydantic models with no DB dependencies. They are
produced fresh on every run and never persisted.
"""
from dataclasses import dataclass
from datetime import date

from pydantic import BaseModel


@dataclass(frozen=True)
class PricePoint:
    """One night's computed price for a property and stay-length bucket."""

    day: date
    price: float
    min_price_enforced: bool = False  # the property's floor price won over the computed one


@dataclass(frozen=True)
class RateRange:
    """A contiguous span of days sharing one nightly price (end_date inclusive)."""

    start_date: date
    end_date: date
    price: float

    @property
    def nights(self) -> int:
        return (self.end_date - self.start_date).days + 1


class StayBucket(BaseModel):
    """
    A booking-length classification compressed and pushed independently.

    `lookup_stay_length` is the representative stay length passed to the
    price lookup; prices for the whole bucket are taken from it.
    """

    name: str
    min_stay: int
    max_stay: int
    lookup_stay_length: int
    price_per_additional_guest: float = 5.0
    additional_guests_starts_from: int = 2


DEFAULT_STAY_BUCKETS = [
    StayBucket(name="short", min_stay=2, max_stay=6, lookup_stay_length=3),
    StayBucket(name="long", min_stay=7, max_stay=1000, lookup_stay_length=7),
]
