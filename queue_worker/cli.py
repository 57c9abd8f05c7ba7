#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Command line interface for queue_worker."""

import logging
import sys

import click

from .bootstrap import build_broker, build_connection_pool, build_runner
from .exceptions import ConfigurationError, QueueWorkerError
from .utils.config_manager import DEFAULT_CONFIG_PATH, ConfigManager
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


@click.group()
@click.option('--config', 'config_file', default=DEFAULT_CONFIG_PATH,
              help='Path to the configuration file.', type=click.Path(dir_okay=False))
@click.option('--debug', is_flag=True, help='Enable debug logging.')
@click.option('--log-level', type=click.Choice(LOG_LEVELS, case_sensitive=False), default=None,
              help='Override the configured log level.')
@click.pass_context
def cli(ctx, config_file, debug, log_level):
    """RabbitMQ producer/consumer worker with a SQLite user store."""
    try:
        config = ConfigManager.load(config_file)
    except ConfigurationError as e:
        raise click.ClickException(str(e))
    if debug:
        config.set('app.debug', True)
        config.set('logging.level', 'DEBUG')
    if log_level:
        config.set('logging.level', log_level.upper())
    setup_logging(config)

    ctx.ensure_object(dict)
    ctx.obj['CONFIG'] = config


def _run_workers(config: ConfigManager, producer: bool, consumer: bool):
    logger.info(f"Starting {config.get('app.name')} {config.get('app.version')} "
                f"({config.get('app.environment')})")
    try:
        runner = build_runner(config, producer=producer, consumer=consumer)
    except QueueWorkerError as e:
        logger.critical(f"Failed to start: {e}")
        sys.exit(1)
    click.echo("Workers started. Press Ctrl+C to stop.")
    runner.run()
    logger.info("Shutdown complete")


@cli.command('producer')
@click.pass_context
def producer_command(ctx):
    """Start the producer worker that publishes messages periodically."""
    _run_workers(ctx.obj['CONFIG'], producer=True, consumer=False)


@cli.command('consumer')
@click.pass_context
def consumer_command(ctx):
    """Start the consumer worker that processes messages into the user store."""
    _run_workers(ctx.obj['CONFIG'], producer=False, consumer=True)


@cli.command('serve')
@click.pass_context
def serve_command(ctx):
    """Run the producer and the consumer in one process."""
    _run_workers(ctx.obj['CONFIG'], producer=True, consumer=True)


@cli.command('migrate')
@click.pass_context
def migrate_command(ctx):
    """Apply the database schema."""
    config = ctx.obj['CONFIG']
    try:
        pool = build_connection_pool(config, migrate=False)
        try:
            applied = pool.migrate()
        finally:
            pool.close()
    except QueueWorkerError as e:
        logger.critical(f"Migration failed: {e}")
        sys.exit(1)
    for name in applied:
        click.echo(f"Applied {name}")
    click.echo(f"Database ready at {config.get('database.path')}")


@cli.command('health')
@click.pass_context
def health_command(ctx):
    """Check connectivity to the database and the broker."""
    config = ctx.obj['CONFIG']
    healthy = True

    try:
        pool = build_connection_pool(config, migrate=False)
        pool.close()
        click.echo("database: ok")
    except QueueWorkerError as e:
        healthy = False
        click.echo(f"database: FAILED ({e})")

    config.set('rabbitmq.max_retries', 1)
    try:
        broker = build_broker(config)
        try:
            broker.health_check()
        finally:
            broker.close()
        click.echo("rabbitmq: ok")
    except QueueWorkerError as e:
        healthy = False
        click.echo(f"rabbitmq: FAILED ({e})")

    if not healthy:
        sys.exit(1)


@cli.command('version')
@click.pass_context
def version_command(ctx):
    """Show version information."""
    config = ctx.obj['CONFIG']
    click.echo(f"{config.get('app.name')} version {config.get('app.version')}")


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
