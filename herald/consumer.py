"""
Consumer Loop - turns at-least-once delivery into an effectively-once side effect.

For every record polled from the log:

    parse ──invalid──────────────────────────────────────────► commit
      │  └──unknown kind──────────────────► dead-letter ────► commit
      │
    barrier.is_processed ──duplicate─────────────────────────► commit
      │          └──store unreachable──► rewind, no commit (redelivered)
    executor.dispatch ──retries exhausted──► dead-letter ────► commit
      │
    barrier.mark_processed ──────────────────────────────────► commit
                 └──store unreachable──► rewind, no commit (redelivered)

Offsets are committed only after a terminal outcome. When a record is
deferred, the rest of its partition's batch is skipped so per-partition
order is kept; it is read again on the next poll.

Usage:
    >>> loop = ConsumerLoop(log_consumer, barrier, executor, dead_letters)
    >>> await loop.start()  # Runs until stopped
    >>> # or
    >>> outcomes = await loop.poll_once()  # Process one batch
"""

import asyncio
import logging
import signal
from collections import Counter

from herald.barrier.barrier import IdempotencyBarrier
from herald.brokers.base import BrokerError, LogConsumer, LogRecord
from herald.core.exceptions import BarrierError, DispatchError, EnvelopeError, UnknownEventKindError
from herald.dead_letter import DeadLetterSink
from herald.dispatch.executor import SideEffectExecutor
from herald.monitoring.metrics import PipelineMetrics
from herald.types import ConsumerConfig, Envelope, ProcessedRecord, ProcessingOutcome


class ConsumerLoop:
    """
    Cooperative consumer for the envelope topic.

    Features:
        - Manual, per-record offset commits
        - Idempotency barrier before dispatch, marked after success
        - Bounded retries with dead-lettering
        - Rewind and redelivery when the barrier is unreachable
        - Graceful shutdown on SIGTERM/SIGINT

    Lifecycle:
        1. Poll a bounded batch
        2. Process records in per-partition offset order
        3. Commit each record once it reaches a terminal outcome
        4. On deferral, rewind the partition and back off before polling again
        5. Repeat until stopped
    """

    def __init__(
        self,
        log_consumer: LogConsumer,
        barrier: IdempotencyBarrier,
        executor: SideEffectExecutor,
        dead_letters: DeadLetterSink,
        config: ConsumerConfig | None = None,
        metrics: PipelineMetrics | None = None,
        logger: logging.Logger | None = None,
    ):
        self.log_consumer = log_consumer
        self.barrier = barrier
        self.executor = executor
        self.dead_letters = dead_letters
        self.config = config or ConsumerConfig()
        self.metrics = metrics
        self.logger = logger or logging.getLogger(__name__)

        self._running = False
        self._subscribed = False
        self._shutdown_event = asyncio.Event()
        self._shutdown_task: asyncio.Task | None = None

        # Stats
        self._received = 0
        self._outcomes: Counter[ProcessingOutcome] = Counter()
        self._commit_failures = 0

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def subscribe(self) -> None:
        if not self._subscribed:
            await self.log_consumer.subscribe([self.config.topic])
            self._subscribed = True

    async def start(self) -> None:
        """
        Start the consumer loop.

        Runs continuously until stop() is called or a shutdown signal is received.
        """
        await self.subscribe()
        self._running = True
        self._shutdown_event.clear()
        if self.metrics:
            self.metrics.set_running(True)

        self.logger.info(
            f"Consumer for {self.config.topic} starting",
            extra={"topic": self.config.topic, "consumer_group": self.config.consumer_group},
        )
        self._setup_signal_handlers()

        try:
            while self._running:
                await self._run_iteration()
        finally:
            self._running = False
            self._remove_signal_handlers()
            if self.metrics:
                self.metrics.set_running(False)
            self.logger.info(f"Consumer for {self.config.topic} stopped", extra={"topic": self.config.topic})

    async def _run_iteration(self) -> None:
        try:
            outcomes = await self.poll_once()
        except BrokerError as e:
            self.logger.error(f"Polling {self.config.topic} failed: {e}", extra={"topic": self.config.topic})
            await self._wait(self.config.poll_timeout_seconds)
            return

        if ProcessingOutcome.DEFERRED in outcomes:
            await self._wait(self.config.barrier_retry_backoff_seconds)

    async def _wait(self, seconds: float) -> None:
        """Sleep for `seconds` unless shutdown is requested first."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except (NotImplementedError, RuntimeError):  # pragma: no cover
                pass  # Windows, or not running in the main thread

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):  # pragma: no cover
                pass

    def _handle_shutdown(self) -> None:
        """Handle shutdown signal."""
        self.logger.info(f"Shutdown signal received for consumer of {self.config.topic}")
        # Store reference to prevent garbage collection
        self._shutdown_task = asyncio.create_task(self.stop())

    async def stop(self) -> None:
        """
        Stop the loop gracefully.

        Observed between records and between polls; a dispatch in progress
        (including its retries) finishes first.
        """
        self.logger.info(f"Stopping consumer for {self.config.topic}")
        self._running = False
        self._shutdown_event.set()

    async def close(self) -> None:
        """Leave the consumer group. Uncommitted records are redelivered to the next member."""
        await self.log_consumer.close()
        self._subscribed = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ========================================================================
    # Processing
    # ========================================================================

    async def poll_once(self) -> list[ProcessingOutcome]:
        """
        Poll one bounded batch and process it.

        Returns:
            The outcome of every record processed, in processing order
        """
        await self.subscribe()
        records = await self.log_consumer.poll(
            timeout=self.config.poll_timeout_seconds,
            max_records=self.config.max_poll_records,
        )

        outcomes: list[ProcessingOutcome] = []
        blocked: set[tuple[str, int]] = set()
        for record in records:
            partition = (record.topic, record.partition)
            if partition in blocked:
                continue

            if self._shutdown_event.is_set():
                # leave the rest of this partition for the next poll or the next member
                await self._rewind(record)
                blocked.add(partition)
                continue

            outcome = await self.process_record(record)
            outcomes.append(outcome)
            if outcome is ProcessingOutcome.DEFERRED:
                blocked.add(partition)

        return outcomes

    async def process_record(self, record: LogRecord) -> ProcessingOutcome:
        """
        Drive one record to its outcome.

        Every outcome except DEFERRED is committed before returning.
        """
        self._received += 1
        if self.metrics:
            self.metrics.record_received(record.topic)

        try:
            envelope = Envelope.from_json(record.value)
        except UnknownEventKindError as e:
            # nothing was sent; keep it for a consumer that knows the kind
            self.logger.error(
                f"Dead-lettering record at {record.topic}[{record.partition}]@{record.offset}: {e}",
                extra={**self._record_extra(record), "message_id": e.wire.get("message_id")},
            )
            await self.dead_letters.send(e.wire, e)
            return await self._finish(record, ProcessingOutcome.DEAD_LETTERED)
        except EnvelopeError as e:
            self.logger.warning(
                f"Skipping invalid record at {record.topic}[{record.partition}]@{record.offset}: {e}",
                extra=self._record_extra(record),
            )
            return await self._finish(record, ProcessingOutcome.SKIPPED_INVALID)

        extra = {**self._record_extra(record), "message_id": envelope.message_id, "kind": envelope.kind.value}

        try:
            already_processed = await self.barrier.is_processed(envelope.message_id)
        except BarrierError as e:
            return await self._defer(record, envelope, e)

        if already_processed:
            self.logger.info(f"Duplicate message {envelope.message_id} detected, skipping", extra=extra)
            return await self._finish(record, ProcessingOutcome.SKIPPED_DUPLICATE, envelope)

        try:
            result = await self.executor.dispatch(envelope)
        except DispatchError as e:
            self.logger.error(f"Dispatch failed for {envelope.message_id}: {e}", extra=extra)
            await self.dead_letters.send(envelope, e)
            return await self._finish(record, ProcessingOutcome.DEAD_LETTERED, envelope)

        try:
            await self.barrier.mark_processed(envelope.message_id, ProcessedRecord.for_envelope(envelope))
        except BarrierError as e:
            # the side effect already happened; redelivery may repeat it
            return await self._defer(record, envelope, e)

        self.logger.info(
            f"Delivered {envelope.kind.value} for {envelope.message_id} after {result.attempts} attempt(s)",
            extra={**extra, "attempt": result.attempts},
        )
        return await self._finish(record, ProcessingOutcome.DELIVERED, envelope)

    async def _finish(
        self,
        record: LogRecord,
        outcome: ProcessingOutcome,
        envelope: Envelope | None = None,
    ) -> ProcessingOutcome:
        try:
            await self.log_consumer.commit(record)
        except BrokerError as e:
            self._commit_failures += 1
            if self.metrics:
                self.metrics.record_commit_failure()
            self.logger.error(
                f"Commit failed at {record.topic}[{record.partition}]@{record.offset}: {e}",
                extra={**self._record_extra(record), "outcome": outcome.value},
            )

        self._count(outcome, envelope)
        return outcome

    async def _defer(self, record: LogRecord, envelope: Envelope, error: BarrierError) -> ProcessingOutcome:
        if self.metrics:
            self.metrics.record_barrier_error(error.operation)
        self.logger.error(
            f"Dedup state unknown for {envelope.message_id}, leaving it uncommitted: {error}",
            extra={
                **self._record_extra(record),
                "message_id": envelope.message_id,
                "operation": error.operation,
            },
        )
        await self._rewind(record)
        self._count(ProcessingOutcome.DEFERRED, envelope)
        return ProcessingOutcome.DEFERRED

    async def _rewind(self, record: LogRecord) -> None:
        try:
            await self.log_consumer.rewind(record)
        except BrokerError as e:
            # without a rewind the record comes back after a restart or rebalance
            self.logger.error(
                f"Rewind to {record.topic}[{record.partition}]@{record.offset} failed: {e}",
                extra=self._record_extra(record),
            )

    def _count(self, outcome: ProcessingOutcome, envelope: Envelope | None) -> None:
        self._outcomes[outcome] += 1
        if self.metrics:
            self.metrics.record_outcome(outcome.value, envelope.kind.value if envelope else None)

    @staticmethod
    def _record_extra(record: LogRecord) -> dict:
        return {"topic": record.topic, "partition": record.partition, "offset": record.offset}

    def get_stats(self) -> dict:
        """
        Get consumer statistics.

        Returns:
            Dictionary of stats
        """
        return {
            "topic": self.config.topic,
            "consumer_group": self.config.consumer_group,
            "running": self._running,
            "records_received": self._received,
            **{outcome.value: self._outcomes[outcome] for outcome in ProcessingOutcome},
            "commit_failures": self._commit_failures,
        }
