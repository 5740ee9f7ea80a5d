"""
Retrying client for the channel manager's rate endpoint.

One call to submit() performs up to `max_attempts` POSTs and classifies the
outcome instead of raising:

    2xx                      → SUCCESS
    429                      → RATE_LIMITED (retryable)
    timeout / transport      → TRANSIENT_NETWORK_ERROR (retryable)
    any other status         → PERMANENT_API_ERROR (payload or key is bad)

Retryable outcomes sleep `backoff(attempt)` seconds before the next attempt.
The default schedule is fixed (5s, 10s, 20s); tests inject a zero-delay policy.
The client never touches the store: the dispatcher interprets the result.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

import httpx

from pricesync.pricing.payload import ChannelPayload

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS = (5.0, 10.0, 20.0)
DEFAULT_MAX_ATTEMPTS = 3

BackoffPolicy = Callable[[int], float]


class Outcome(str, Enum):
    SUCCESS = "SUCCESS"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT_NETWORK_ERROR = "TRANSIENT_NETWORK_ERROR"
    PERMANENT_API_ERROR = "PERMANENT_API_ERROR"


RETRYABLE = {Outcome.RATE_LIMITED, Outcome.TRANSIENT_NETWORK_ERROR}


@dataclass
class SubmissionResult:
    """Classified result of one submit() call (after any in-call retries)."""

    outcome: Outcome
    attempts: int
    status_code: Optional[int] = None
    message: str = ""
    retry_after: Optional[float] = None  # seconds suggested by a 429

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


def fixed_backoff(delays: Sequence[float] = DEFAULT_RETRY_DELAYS) -> BackoffPolicy:
    """Delay before retry n (0-based) is delays[n], clamped to the last entry."""
    delays = tuple(delays) or (0.0,)

    def policy(attempt: int) -> float:
        return delays[min(attempt, len(delays) - 1)]

    return policy


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a Retry-After header given in delta-seconds form."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class ChannelClient:
    """POSTs rate payloads to the channel API with bounded in-call retries."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        url: str,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff: Optional[BackoffPolicy] = None,
        sleep: Callable = asyncio.sleep,
    ):
        """
        Args:
            http: Shared AsyncClient; its timeout is the per-request timeout.
            url: Rate submission endpoint.
            max_attempts: Total attempts per submit(), including the first.
            backoff: Seconds to wait before retry n (0-based).
            sleep: Awaitable sleep (patched in tests).
        """
        self._http = http
        self.url = url
        self.max_attempts = max_attempts
        self.backoff = backoff or fixed_backoff()
        self._sleep = sleep

    async def submit(self, payload: ChannelPayload, api_key: str) -> SubmissionResult:
        """Send one property's payload; never raises for API or network failures."""
        body = payload.to_wire()
        headers = {"Content-Type": "application/json", "X-ApiKey": api_key}

        result: Optional[SubmissionResult] = None
        for attempt in range(self.max_attempts):
            result = await self._attempt(body, headers, attempt + 1)
            if result.outcome not in RETRYABLE:
                break
            if attempt < self.max_attempts - 1:
                delay = self.backoff(attempt)
                logger.info(
                    "Channel property %s: %s on attempt %d, retrying in %.1fs",
                    payload.property_id, result.outcome.value, attempt + 1, delay,
                )
                await self._sleep(delay)

        if not result.ok:
            logger.warning(
                "Channel property %s: giving up after %d attempt(s): %s %s",
                payload.property_id, result.attempts, result.outcome.value, result.message,
            )
        return result

    async def _attempt(self, body: dict, headers: dict, attempt: int) -> SubmissionResult:
        try:
            response = await self._http.post(self.url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            return SubmissionResult(
                Outcome.TRANSIENT_NETWORK_ERROR, attempt, message=f"Request timed out: {exc}"
            )
        except httpx.TransportError as exc:
            return SubmissionResult(
                Outcome.TRANSIENT_NETWORK_ERROR, attempt, message=f"Network error: {exc}"
            )

        if response.is_success:
            return SubmissionResult(Outcome.SUCCESS, attempt, status_code=response.status_code)
        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("retry-after"))
            return SubmissionResult(
                Outcome.RATE_LIMITED,
                attempt,
                status_code=429,
                message="Too many requests",
                retry_after=retry_after if retry_after is not None else self.backoff(0),
            )
        return SubmissionResult(
            Outcome.PERMANENT_API_ERROR,
            attempt,
            status_code=response.status_code,
            message=response.text or response.reason_phrase,
        )
