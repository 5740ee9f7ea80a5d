"""
Channel payload assembly and validation.

The payload for one property is:

    {
        "property_id": 12345,          # channel property id
        "room_type_id": 678,           # channel room type (0 if unknown)
        "rates": [
            {"is_default": true,  "price_per_day": 120.0, "min_stay": 2, ...},
            {"is_default": false, "start_date": "2025-01-01", "end_date": "2025-01-02", ...},
            ...
        ]
    }

Exactly one default rate is emitted (the channel rejects payloads without one),
carrying the base price and the first (short-stay) bucket's stay bounds. Each
bucket's compressed ranges follow in ascending date order.
"""
import logging
from datetime import date
from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from pricesync.errors import ConfigurationError
from pricesync.pricing.compressor import round_price
from pricesync.pricing.types import RateRange, StayBucket

logger = logging.getLogger(__name__)


class ChannelRate(BaseModel):
    is_default: bool
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    price_per_day: float
    min_stay: int
    max_stay: int
    price_per_additional_guest: float
    additional_guests_starts_from: int


class ChannelPayload(BaseModel):
    property_id: int
    room_type_id: int
    rates: List[ChannelRate]

    def to_wire(self) -> dict:
        """JSON-ready dict; default rate omits its date bounds."""
        return self.model_dump(mode="json", exclude_none=True)


def _rate(bucket: StayBucket, price: float, rng: Optional[RateRange] = None) -> ChannelRate:
    return ChannelRate(
        is_default=rng is None,
        start_date=rng.start_date if rng else None,
        end_date=rng.end_date if rng else None,
        price_per_day=price,
        min_stay=bucket.min_stay,
        max_stay=bucket.max_stay,
        price_per_additional_guest=bucket.price_per_additional_guest,
        additional_guests_starts_from=bucket.additional_guests_starts_from,
    )


def build_payload(
    *,
    external_property_id: Optional[str],
    base_price: Optional[float],
    room_type_id: Optional[int],
    bucket_ranges: Sequence[Tuple[StayBucket, Sequence[RateRange]]],
) -> ChannelPayload:
    """
    Assemble and validate the full submission payload for one property.

    Args:
        external_property_id: Channel property id (must be numeric).
        base_price: Property's base nightly price, used for the default rate.
        room_type_id: Channel room type id; 0 when not configured.
        bucket_ranges: (bucket, compressed ranges) pairs; the first bucket
            supplies the default rate's stay bounds.

    Raises:
        ConfigurationError: missing base price / property id, no buckets, or
            a payload the channel would reject.
    """
    if base_price is None:
        raise ConfigurationError("Property has no base price configured")
    if not external_property_id:
        raise ConfigurationError("Property has no channel property id")
    try:
        channel_property_id = int(external_property_id)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Channel property id {external_property_id!r} is not numeric"
        ) from None
    if not bucket_ranges:
        raise ConfigurationError("No stay-length buckets configured")

    default_bucket = bucket_ranges[0][0]
    rates = [_rate(default_bucket, round_price(base_price))]
    for bucket, ranges in bucket_ranges:
        for rng in sorted(ranges, key=lambda r: r.start_date):
            rates.append(_rate(bucket, rng.price, rng))

    payload = ChannelPayload(
        property_id=channel_property_id,
        room_type_id=room_type_id or 0,
        rates=rates,
    )

    errors, warnings = validate_payload(payload)
    for warning in warnings:
        logger.warning("Payload for channel property %s: %s", channel_property_id, warning)
    if errors:
        raise ConfigurationError("; ".join(errors))
    return payload


def validate_payload(payload: ChannelPayload) -> Tuple[List[str], List[str]]:
    """
    Check a payload against the channel's rate rules.

    Returns:
        (errors, warnings). Errors make the payload unsendable.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if payload.property_id <= 0:
        errors.append("property_id must be a positive number")
    if payload.room_type_id == 0:
        warnings.append("room_type_id is not configured")

    defaults = [r for r in payload.rates if r.is_default]
    if not defaults:
        errors.append("Payload must include a default rate")
    elif len(defaults) > 1:
        errors.append("Payload must include exactly one default rate")

    for i, rate in enumerate(payload.rates):
        errors.extend(_validate_rate(rate, i))

    errors.extend(_overlap_errors(r for r in payload.rates if not r.is_default))
    return errors, warnings


def _validate_rate(rate: ChannelRate, index: int) -> List[str]:
    errors = []
    if rate.price_per_day <= 0:
        errors.append(f"Rate {index}: price_per_day must be positive")
    if not rate.is_default:
        if rate.start_date is None or rate.end_date is None:
            errors.append(f"Rate {index}: non-default rates need start_date and end_date")
        elif rate.start_date > rate.end_date:
            errors.append(f"Rate {index}: start_date is after end_date")
    if rate.min_stay < 1 or rate.max_stay < 1:
        errors.append(f"Rate {index}: min_stay and max_stay must be positive")
    elif rate.min_stay > rate.max_stay:
        errors.append(f"Rate {index}: min_stay cannot exceed max_stay")
    if rate.price_per_additional_guest < 0:
        errors.append(f"Rate {index}: price_per_additional_guest must not be negative")
    if rate.additional_guests_starts_from < 1:
        errors.append(f"Rate {index}: additional_guests_starts_from must be positive")
    return errors


def _overlap_errors(rates: Iterable[ChannelRate]) -> List[str]:
    """Ranges of the same stay bucket must not overlap."""
    by_bucket = {}
    for rate in rates:
        if rate.start_date and rate.end_date:
            by_bucket.setdefault((rate.min_stay, rate.max_stay), []).append(rate)

    errors = []
    for (min_stay, max_stay), bucket_rates in by_bucket.items():
        bucket_rates.sort(key=lambda r: r.start_date)
        for prev, nxt in zip(bucket_rates, bucket_rates[1:]):
            if nxt.start_date <= prev.end_date:
                errors.append(
                    f"Overlapping ranges {prev.start_date}..{prev.end_date} and "
                    f"{nxt.start_date}..{nxt.end_date} for {min_stay}-{max_stay} nights"
                )
    return errors
