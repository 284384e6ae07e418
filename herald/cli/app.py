"""
Herald CLI Application - Built with Click.

Commands:
    herald consume                       # Run the email service
    herald publish verification_code a@x.com -d code=123456 --sync
    herald health                        # Idempotency store health and stats
    herald inspect MESSAGE_ID            # Show the idempotency record
    herald forget MESSAGE_ID             # Allow a message to be sent again
"""

import asyncio

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from herald.barrier.barrier import BarrierConfig, IdempotencyBarrier
from herald.barrier.redis import RedisKeyValueStore, redis_url_from_env
from herald.brokers.base import BrokerError
from herald.brokers.factory import create_broker_from_env
from herald.core.config import PipelineConfig
from herald.core.env import get_env
from herald.core.exceptions import BarrierError, EnvelopeValidationError, HeraldError
from herald.monitoring.logging import configure_logging
from herald.producer import EnvelopeProducer
from herald.types import ConsumerConfig, Envelope, EventKind

console = Console()


# ============================================================================
# CLI Group
# ============================================================================


class OrderedGroup(click.Group):
    """Click Group that lists commands in the order they were added."""

    def list_commands(self, ctx):
        return list(self.commands.keys())


@click.group(cls=OrderedGroup)
@click.version_option(package_name="herald", prog_name="herald")
def cli():
    """
    Herald - idempotent, retry-aware notification dispatch.

    \b
    Commands:
      consume          Run the email service (consumer + health surface)
      publish          Publish one envelope
      health           Check the idempotency store
      inspect          Show the idempotency record of a message
      forget           Remove the idempotency record of a message
    """
    get_env()


def _build_barrier() -> IdempotencyBarrier:
    return IdempotencyBarrier(RedisKeyValueStore(redis_url_from_env()), BarrierConfig.from_env())


def _build_producer() -> EnvelopeProducer:
    return EnvelopeProducer(create_broker_from_env())


def _parse_data(pairs: tuple[str, ...]) -> dict[str, str]:
    data: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            msg = f"Expected KEY=VALUE, got {pair!r}"
            raise click.BadParameter(msg, param_hint="--data")
        data[key] = value
    return data


# ============================================================================
# herald consume
# ============================================================================


@click.command()
@click.option("--no-http", is_flag=True, help="Do not serve /health and /stats")
def consume_cmd(no_http: bool):
    """
    Run the email service until SIGINT/SIGTERM.

    \b
    Configuration is read from the environment (and .env):
      KAFKA_BOOTSTRAP_SERVERS, KAFKA_TOPIC_EMAIL_EVENTS, KAFKA_TOPIC_EMAIL_DLQ,
      KAFKA_CONSUMER_GROUP, REDIS_URL, EMAIL_MODE, SMTP_*, MAX_RETRIES, ...
    """
    from herald.service import PipelineService

    configure_logging()
    try:
        config = PipelineConfig.from_env()
        service = PipelineService(config)
    except HeraldError as e:
        raise click.ClickException(str(e)) from e

    asyncio.run(service.run(serve_http=not no_http))


# ============================================================================
# herald publish
# ============================================================================


@click.command()
@click.argument("kind", type=click.Choice([k.value for k in EventKind]))
@click.argument("target")
@click.option("-d", "--data", "data_pairs", multiple=True, help="Payload field as KEY=VALUE (repeatable)")
@click.option("--message-id", help="Explicit message id (default: random UUID)")
@click.option("--topic", help="Topic to publish to (default: KAFKA_TOPIC_EMAIL_EVENTS)")
@click.option("--sync", "wait", is_flag=True, help="Wait for the log to confirm persistence")
def publish_cmd(kind: str, target: str, data_pairs: tuple[str, ...], message_id: str | None, topic: str | None, wait: bool):
    """
    Publish one envelope.

    \b
    Example:
        herald publish verification_code a@x.com -d code=123456 --sync
    """
    try:
        envelope = Envelope.create(kind, target, _parse_data(data_pairs), message_id=message_id)
    except EnvelopeValidationError as e:
        raise click.BadParameter(str(e), param_hint="--data") from e

    topic = topic or ConsumerConfig.from_env().topic
    try:
        producer = _build_producer()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    async def _publish():
        try:
            if wait:
                return await producer.publish_sync(topic, envelope)
            await producer.publish(topic, envelope)
            return None
        finally:
            await producer.close()

    try:
        report = asyncio.run(_publish())
    except (BrokerError, HeraldError) as e:
        raise click.ClickException(f"Publish failed: {e}") from e

    if report is not None:
        console.print(
            f"[green]✓[/green] {envelope.message_id} persisted at "
            f"{report.topic}[{report.partition}]@{report.offset}"
        )
    else:
        console.print(f"[green]✓[/green] {envelope.message_id} handed to {topic}")


# ============================================================================
# herald health
# ============================================================================


@click.command()
def health_cmd():
    """Check the idempotency store and show record statistics."""
    barrier = _build_barrier()

    async def _check():
        try:
            return await barrier.health_check()
        finally:
            await barrier.close()

    result = asyncio.run(_check())

    table = Table(title="Idempotency Store")
    table.add_column("Check", style="cyan")
    table.add_column("Value")
    status_icon = "[green]●[/green]" if result.is_healthy else "[red]○[/red]"
    table.add_row("Status", f"{status_icon} {result.status.value}")
    table.add_row("Latency", f"{result.latency_ms:.1f} ms")
    table.add_row("Records", str(result.details.get("idempotency_records", "-")))
    table.add_row("TTL", f"{barrier.config.ttl_hours:g} h")
    table.add_row("Message", result.message)
    console.print(table)

    if not result.is_healthy:
        raise SystemExit(1)


# ============================================================================
# herald inspect / forget
# ============================================================================


@click.command()
@click.argument("message_id")
def inspect_cmd(message_id: str):
    """Show the idempotency record stored for MESSAGE_ID."""
    barrier = _build_barrier()

    async def _inspect():
        try:
            return await barrier.get_record(message_id)
        finally:
            await barrier.close()

    try:
        record = asyncio.run(_inspect())
    except BarrierError as e:
        raise click.ClickException(str(e)) from e

    if record is None:
        console.print(f"[yellow]No idempotency record for {message_id}[/yellow]")
        raise SystemExit(1)

    console.print(
        Panel.fit(
            f"[bold]completed_at[/bold]  {record.completed_at.isoformat()}\n"
            f"[bold]target[/bold]        {record.target}\n"
            f"[bold]kind[/bold]          {record.kind}",
            title=message_id,
            border_style="blue",
        )
    )


@click.command()
@click.argument("message_id")
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation")
def forget_cmd(message_id: str, yes: bool):
    """
    Remove the idempotency record for MESSAGE_ID.

    A later redelivery of the message will be dispatched again.
    """
    if not yes:
        click.confirm(f"Forget {message_id}? Its notification may be sent again", abort=True)

    barrier = _build_barrier()

    async def _forget():
        try:
            return await barrier.forget(message_id)
        finally:
            await barrier.close()

    try:
        removed = asyncio.run(_forget())
    except BarrierError as e:
        raise click.ClickException(str(e)) from e

    if removed:
        console.print(f"[green]✓[/green] Forgot {message_id}")
    else:
        console.print(f"[yellow]No idempotency record for {message_id}[/yellow]")


# ============================================================================
# Command Registration
# ============================================================================

cli.add_command(consume_cmd, name="consume")
cli.add_command(publish_cmd, name="publish")
cli.add_command(health_cmd, name="health")
cli.add_command(inspect_cmd, name="inspect")
cli.add_command(forget_cmd, name="forget")


if __name__ == "__main__":
    cli()
