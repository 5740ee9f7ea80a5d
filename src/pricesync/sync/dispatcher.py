"""
BatchDispatcher — orchestrates one synchronization run.

Flow for a run:
  1. Expire sync operations abandoned by a killed invocation
  2. Split properties into batches of `batch_size`
  3. For each batch (strictly one after another):
       a. create a pending SyncOperation for every member
       b. run all member pipelines concurrently and wait for all of them
  4. Fold the per-property outcomes into a RunSummary
  5. Record the summary on the parent run record, if the trigger gave one
     (or mark it "failed" when a store error aborts the run)

Pipeline for one property:
  processing → fetch prices per stay bucket → compress → build payload →
  submit (with in-call retries) → completed | failed

A property's failure is captured as a PropertyOutcome value; it never cancels
or delays siblings. Concurrency is bounded by the batch size because the
channel API rate-limits well below what asyncio could fan out.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from pricesync.channel.client import ChannelClient, fixed_backoff
from pricesync.errors import ConfigurationError, ErrorCode, InvocationError, PriceLookupError
from pricesync.models.property import Property, PropertyIntegration
from pricesync.models.sync import SyncOperation, new_operation_id
from pricesync.pricing.compressor import compress_price_series
from pricesync.pricing.fetcher import PriceSeriesFetcher, RpcPriceLookup
from pricesync.pricing.payload import ChannelPayload, build_payload
from pricesync.pricing.types import DEFAULT_STAY_BUCKETS, StayBucket
from pricesync.sync.schemas import RunSummary, SyncErrorSummary, SyncTrigger, TriggerProperty
from pricesync.sync.tracker import SyncFailure, SyncOperationTracker

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 2


@dataclass
class PropertyOutcome:
    property_id: str
    failure: Optional[SyncFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class PropertyContext:
    """Store data one pipeline needs besides the trigger entry."""

    api_key: str
    external_property_id: str
    base_price: Optional[float]
    room_type_id: Optional[int]


def partition(items: Sequence, size: int) -> List[Sequence]:
    """Split items into consecutive chunks of at most `size`."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchDispatcher:
    """Runs the fetch → compress → submit pipeline for a set of properties."""

    def __init__(
        self,
        engine,
        fetcher: PriceSeriesFetcher,
        channel: ChannelClient,
        tracker: SyncOperationTracker,
        *,
        buckets: Sequence[StayBucket] = DEFAULT_STAY_BUCKETS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        horizon_days: int = 730,
        stale_after: timedelta = timedelta(minutes=30),
        today: Callable[[], date] = date.today,
    ):
        """
        Args:
            engine: SQLAlchemy engine for reading properties/integrations.
            fetcher: PriceSeriesFetcher (or AsyncMock in tests).
            channel: ChannelClient (or AsyncMock in tests).
            tracker: SyncOperationTracker sharing the same engine.
            buckets: Stay-length buckets; the first supplies the default rate.
            batch_size: Max properties in flight at once.
            horizon_days: Days ahead of today to price.
            stale_after: Age after which pending/processing rows are abandoned.
            today: Clock for the pricing horizon (patched in tests).
        """
        self.engine = engine
        self.fetcher = fetcher
        self.channel = channel
        self.tracker = tracker
        self.buckets = list(buckets)
        self.batch_size = batch_size
        self.horizon_days = horizon_days
        self.stale_after = stale_after
        self.today = today

    async def run_trigger(self, trigger: SyncTrigger) -> RunSummary:
        return await self.run(
            trigger.properties,
            parent_run_id=trigger.sync_operation_id,
            trigger_source=trigger.trigger_source,
        )

    async def run(
        self,
        properties: Sequence[TriggerProperty],
        parent_run_id: Optional[str] = None,
        trigger_source: str = "scheduled",
    ) -> RunSummary:
        """
        Synchronize every property and return the run summary.

        Only store failures outside a property pipeline (expiring stale rows,
        creating a batch's operations, recording the summary) propagate. The
        parent run record, if any, is marked "failed" before they do.
        """
        started = time.monotonic()
        execution_id = parent_run_id or new_operation_id()
        logger.info(
            "Sync run %s starting: %d properties, batch size %d",
            execution_id, len(properties), self.batch_size,
        )

        try:
            summary = await self._run_batches(
                properties, execution_id, parent_run_id, trigger_source, started
            )
        except Exception as exc:
            logger.error("Sync run %s aborted: %s", execution_id, exc)
            if parent_run_id:
                self._abort_run(parent_run_id, exc)
            raise

        logger.info(
            "Sync run %s finished in %d ms: %d ok, %d failed",
            execution_id, summary.execution_time_ms,
            summary.successful_syncs, summary.failed_syncs,
        )
        return summary

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _run_batches(
        self,
        properties: Sequence[TriggerProperty],
        execution_id: str,
        parent_run_id: Optional[str],
        trigger_source: str,
        started: float,
    ) -> RunSummary:
        self.tracker.expire_stale(self.stale_after)

        outcomes: List[PropertyOutcome] = []
        for batch in partition(list(properties), self.batch_size):
            outcomes.extend(await self._run_batch(batch, parent_run_id, trigger_source))

        summary = RunSummary(
            execution_id=execution_id,
            total_properties=len(properties),
            successful_syncs=sum(1 for o in outcomes if o.ok),
            failed_syncs=sum(1 for o in outcomes if not o.ok),
            execution_time_ms=int((time.monotonic() - started) * 1000),
            errors=[
                SyncErrorSummary(
                    property_id=o.property_id,
                    error_code=o.failure.code.value,
                    error_message=o.failure.message,
                    retry_scheduled=o.failure.retry_scheduled,
                )
                for o in outcomes
                if not o.ok
            ],
        )
        if parent_run_id:
            self.tracker.finish_run(parent_run_id, summary.model_dump(mode="json"))
        return summary

    def _abort_run(self, run_id: str, exc: Exception) -> None:
        try:
            self.tracker.fail_run(run_id, str(exc) or type(exc).__name__)
        except SQLAlchemyError as store_exc:
            # The original error is re-raised by the caller
            logger.error("Could not mark run %s failed: %s", run_id, store_exc)

    async def _run_batch(
        self,
        batch: Sequence[TriggerProperty],
        parent_run_id: Optional[str],
        trigger_source: str,
    ) -> List[PropertyOutcome]:
        ops = [
            self.tracker.create(
                prop.property_id,
                parent_run_id=parent_run_id,
                operation_type=trigger_source,
                details={"external_property_id": prop.external_property_id},
            )
            for prop in batch
        ]
        results = await asyncio.gather(
            *(self._sync_property(prop, op) for prop, op in zip(batch, ops)),
            return_exceptions=True,
        )

        outcomes = []
        for prop, result in zip(batch, results):
            if isinstance(result, Exception):
                # Raised before or while recording the outcome (store trouble)
                logger.error("Sync pipeline for property %s crashed: %r", prop.property_id, result)
                result = PropertyOutcome(
                    prop.property_id,
                    SyncFailure(ErrorCode.SYNC_FAILED, str(result) or type(result).__name__),
                )
            elif isinstance(result, BaseException):
                raise result
            outcomes.append(result)
        return outcomes

    async def _sync_property(self, prop: TriggerProperty, op: SyncOperation) -> PropertyOutcome:
        self.tracker.mark_processing(op.id)

        try:
            context = self._load_context(prop)
            payload = await self._build_payload(prop, context)
            result = await self.channel.submit(payload, context.api_key)
        except ConfigurationError as exc:
            failure = SyncFailure(ErrorCode.CONFIGURATION_ERROR, str(exc))
        except PriceLookupError as exc:
            failure = SyncFailure(ErrorCode.PRICE_LOOKUP_FAILED, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error syncing property %s", prop.property_id)
            failure = SyncFailure(ErrorCode.SYNC_FAILED, str(exc) or type(exc).__name__)
        else:
            if result.ok:
                self.tracker.complete(op.id, prop.integration_id, attempts=result.attempts)
                logger.info(
                    "Synced property %s (channel %s) in %d attempt(s)",
                    prop.property_id, prop.external_property_id, result.attempts,
                )
                return PropertyOutcome(prop.property_id)
            failure = SyncFailure(
                ErrorCode(result.outcome.value),
                result.message,
                status_code=result.status_code,
                attempts=result.attempts,
            )

        logger.error(
            "Sync failed for property %s (channel %s): %s %s",
            prop.property_id, prop.external_property_id, failure.code.value, failure.message,
        )
        self.tracker.fail(op.id, prop.integration_id, failure)
        return PropertyOutcome(prop.property_id, failure)

    def _load_context(self, prop: TriggerProperty) -> PropertyContext:
        with Session(self.engine) as s:
            integration = s.get(PropertyIntegration, prop.integration_id)
            if integration is None or not integration.api_key:
                raise ConfigurationError(
                    f"No API key found for property {prop.external_property_id}"
                )
            if integration.property_id != prop.property_id:
                raise ConfigurationError(
                    f"Integration {prop.integration_id} belongs to property "
                    f"{integration.property_id}, not {prop.property_id}"
                )
            row = s.get(Property, prop.property_id)
            if row is None:
                raise ConfigurationError(f"Property not found: {prop.property_id}")
            return PropertyContext(
                api_key=integration.api_key,
                external_property_id=prop.external_property_id or integration.external_property_id,
                base_price=row.base_price_per_day,
                room_type_id=row.channel_room_type_id,
            )

    async def _build_payload(self, prop: TriggerProperty, context: PropertyContext) -> ChannelPayload:
        if context.base_price is None:
            raise ConfigurationError(f"Property {prop.property_id} has no base price")

        start = self.today()
        end = start + timedelta(days=self.horizon_days)

        bucket_ranges = []
        for bucket in self.buckets:
            points = await self.fetcher.fetch(
                prop.property_id, start, end, bucket.lookup_stay_length
            )
            if not points:
                logger.warning(
                    "No prices for property %s (%s stays); sending default rate only",
                    prop.property_id, bucket.name,
                )
            try:
                ranges = compress_price_series(points)
            except ValueError as exc:
                raise ConfigurationError(str(exc)) from exc
            bucket_ranges.append((bucket, ranges))

        return build_payload(
            external_property_id=context.external_property_id,
            base_price=context.base_price,
            room_type_id=context.room_type_id,
            bucket_ranges=bucket_ranges,
        )


def build_dispatcher(engine, http, settings) -> BatchDispatcher:
    """
    Wire a dispatcher from settings around one shared httpx.AsyncClient.

    Raises:
        InvocationError: if required settings are missing.
    """
    if not settings.pricing_rpc_url:
        raise InvocationError("PRICING_RPC_URL is not configured")
    if not settings.channel_api_url:
        raise InvocationError("CHANNEL_API_URL is not configured")

    backoff = fixed_backoff(settings.sync_retry_delays)
    return BatchDispatcher(
        engine,
        fetcher=PriceSeriesFetcher(
            RpcPriceLookup(http, settings.pricing_rpc_url, settings.pricing_rpc_key)
        ),
        channel=ChannelClient(
            http,
            settings.channel_api_url,
            max_attempts=settings.sync_max_attempts,
            backoff=backoff,
        ),
        tracker=SyncOperationTracker(engine, retry_delay_seconds=backoff(0)),
        buckets=settings.stay_buckets,
        batch_size=settings.sync_batch_size,
        horizon_days=settings.pricing_horizon_days,
        stale_after=timedelta(minutes=settings.stale_operation_minutes),
    )
