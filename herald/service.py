"""
Email service runner - wires the pipeline together and runs it.

Every collaborator can be injected; anything left out is built from the
PipelineConfig (BROKER_TYPE log clients, Redis, the configured transport).

Usage:
    >>> service = PipelineService(PipelineConfig.from_env())
    >>> await service.run()  # consumer loop + health surface until SIGTERM
"""

import asyncio
import logging

import uvicorn

from herald.barrier.barrier import IdempotencyBarrier
from herald.barrier.base import KeyValueStore
from herald.barrier.redis import RedisKeyValueStore
from herald.brokers.base import BaseBroker, LogConsumer
from herald.brokers.factory import create_broker, create_log_consumer
from herald.brokers.memory import InMemoryLog
from herald.consumer import ConsumerLoop
from herald.core.config import PipelineConfig
from herald.dead_letter import DeadLetterSink
from herald.dispatch.executor import SideEffectExecutor
from herald.dispatch.transport import Transport, create_transport
from herald.health import HealthReporter
from herald.integrations.fastapi import create_health_app
from herald.monitoring.metrics import PipelineMetrics, start_metrics_server


class PipelineService:
    """
    One consumer instance plus its health surface.

    Lifecycle:
        1. Validate configuration
        2. Connect the dead-letter producer and join the consumer group
        3. Serve /health and /stats while the consumer loop runs
        4. On shutdown, finish the in-flight record, then close everything
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        log_consumer: LogConsumer | None = None,
        dead_letter_broker: BaseBroker | None = None,
        store: KeyValueStore | None = None,
        transport: Transport | None = None,
        metrics: PipelineMetrics | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config or PipelineConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.config.validate()

        self.metrics = metrics or PipelineMetrics()
        self.store = store or RedisKeyValueStore(self.config.redis_url)
        self.barrier = IdempotencyBarrier(self.store, self.config.barrier, logger=self.logger)
        self.executor = SideEffectExecutor(
            transport or create_transport(self.config.transport, logger=self.logger),
            self.config.retry,
            metrics=self.metrics,
            logger=self.logger,
        )
        if dead_letter_broker is None or log_consumer is None:
            default_broker, default_consumer = self._build_log_clients()
            dead_letter_broker = dead_letter_broker or default_broker
            log_consumer = log_consumer or default_consumer
        self.dead_letter_broker = dead_letter_broker
        self.dead_letters = DeadLetterSink(
            self.dead_letter_broker,
            topic=self.config.consumer.dead_letter_topic,
            consumer_group=self.config.consumer.consumer_group,
            metrics=self.metrics,
            logger=self.logger,
        )
        self.consumer = ConsumerLoop(
            log_consumer,
            self.barrier,
            self.executor,
            self.dead_letters,
            config=self.config.consumer,
            metrics=self.metrics,
            logger=self.logger,
        )
        self.reporter = HealthReporter(self.barrier, self.consumer, logger=self.logger)
        self.app = create_health_app(self.reporter)
        self._server: uvicorn.Server | None = None

    def _build_log_clients(self) -> tuple[BaseBroker, LogConsumer]:
        """Dead-letter producer and envelope consumer for the configured BROKER_TYPE."""
        broker_type = self.config.broker_type
        if broker_type == "memory":
            # both sides share one log so dead letters stay visible in-process
            log = InMemoryLog()
            return (
                create_broker(broker_type, log=log),
                create_log_consumer(broker_type, log=log, group_id=self.config.consumer.consumer_group),
            )
        return (
            create_broker(broker_type, config=self.config.kafka),
            create_log_consumer(broker_type, config=self.config.kafka_consumer),
        )

    async def startup(self) -> None:
        """Check the barrier and connect to the log."""
        result = await self.barrier.health_check()
        if not result.is_healthy:
            self.logger.warning(f"Idempotency store not reachable at startup: {result.message}")

        await self.dead_letter_broker.connect()
        await self.consumer.subscribe()

        if self.config.metrics_port:
            start_metrics_server(self.config.metrics_port)

        self.logger.info(
            f"Email service ready (transport={self.config.transport.mode}, "
            f"topic={self.config.consumer.topic}, group={self.config.consumer.consumer_group})",
            extra={"topic": self.config.consumer.topic, "consumer_group": self.config.consumer.consumer_group},
        )

    async def shutdown(self) -> None:
        """Stop consuming and release every connection."""
        await self.consumer.stop()
        if self._server is not None:
            self._server.should_exit = True

        await self.consumer.close()
        await self.dead_letters.close()
        await self.dead_letter_broker.close()
        await self.barrier.close()
        self.logger.info("Email service stopped")

    async def run(self, serve_http: bool = True) -> None:
        """Run until the consumer loop stops or the HTTP server exits."""
        await self.startup()

        tasks = {asyncio.create_task(self.consumer.start(), name="consumer")}
        if serve_http:
            self._server = uvicorn.Server(
                uvicorn.Config(
                    self.app,
                    host=self.config.service_host,
                    port=self.config.service_port,
                    log_config=None,
                )
            )
            tasks.add(asyncio.create_task(self._server.serve(), name="health-server"))

        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.exception() is not None:
                    self.logger.error(f"{task.get_name()} exited with error: {task.exception()}")
        finally:
            await self.consumer.stop()
            if self._server is not None:
                self._server.should_exit = True
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.shutdown()
