"""
Price series retrieval from the price-computation collaborator.

Prices are computed inside the store by `preview_pricing_calendar(property,
start, end, stay_length)`. RpcPriceLookup calls it over the store's RPC
endpoint; PriceSeriesFetcher turns its rows into an ordered PricePoint series.
Anything exposing an async `preview_pricing(...)` works as a lookup (tests
pass an AsyncMock).
"""
import logging
import math
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from pricesync.errors import PriceLookupError
from pricesync.pricing.types import PricePoint

logger = logging.getLogger(__name__)


class RpcPriceLookup:
    """Calls the store's `preview_pricing_calendar` RPC over HTTP."""

    def __init__(self, http: httpx.AsyncClient, url: str, api_key: str = ""):
        """
        Args:
            http: Shared AsyncClient for the run (owns timeouts and pooling).
            url: Full RPC URL, e.g. https://<project>/rest/v1/rpc/preview_pricing_calendar
            api_key: Service key sent as both `apikey` and bearer token.
        """
        self._http = http
        self._url = url
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["apikey"] = api_key
            self._headers["Authorization"] = f"Bearer {api_key}"

    async def preview_pricing(
        self,
        property_id: str,
        start_date: date,
        end_date: date,
        stay_length: int,
    ) -> List[Dict[str, Any]]:
        body = {
            "p_property_id": property_id,
            "p_start_date": start_date.isoformat(),
            "p_end_date": end_date.isoformat(),
            "p_stay_length": stay_length,
        }
        try:
            response = await self._http.post(self._url, json=body, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PriceLookupError(
                f"Price lookup returned {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise PriceLookupError(f"Price lookup request failed: {exc}") from exc

        rows = response.json()
        if not isinstance(rows, list):
            raise PriceLookupError("Price lookup did not return a list of rows")
        return rows


class PriceSeriesFetcher:
    """Fetches one bucket's per-day price series for a property."""

    def __init__(self, lookup):
        self.lookup = lookup

    async def fetch(
        self,
        property_id: str,
        start_date: date,
        end_date: date,
        stay_length: int,
    ) -> List[PricePoint]:
        """
        Return the ordered per-day series for [start_date, end_date].

        Raises:
            PriceLookupError: if the lookup fails or a row is malformed.
        """
        rows = await self.lookup.preview_pricing(property_id, start_date, end_date, stay_length)
        points = [_row_to_point(row) for row in rows]
        points.sort(key=lambda p: p.day)

        enforced = sum(1 for p in points if p.min_price_enforced)
        logger.debug(
            "Fetched %d prices for property %s (stay %d, %d at minimum price)",
            len(points), property_id, stay_length, enforced,
        )
        return points


def _row_to_point(row: Dict[str, Any]) -> PricePoint:
    try:
        day = row["check_date"]
        if isinstance(day, str):
            day = date.fromisoformat(day[:10])
        price = float(row["final_price_per_night"])
        if not math.isfinite(price):
            raise ValueError(f"price {price} is not finite")
    except (KeyError, TypeError, ValueError) as exc:
        raise PriceLookupError(f"Malformed price row {row!r}: {exc}") from exc
    enforced: Optional[bool] = row.get("min_price_enforced")
    return PricePoint(day=day, price=price, min_price_enforced=bool(enforced))
