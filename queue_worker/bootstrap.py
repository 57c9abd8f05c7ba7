"""
Explicit construction of every component.

Each ``build_*`` function takes already-built dependencies and returns a new
component. The CLI composes them top-down; nothing looks services up at
runtime.
"""

import logging
import signal
import threading
from typing import Callable, List, Optional, Sequence

from .messaging.rabbitmq_client import RabbitMQClient
from .storage.database import ConnectionPool
from .storage.user_repository import UserRepository
from .utils.config_manager import ConfigManager
from .workers.base import BaseWorker
from .workers.consumer import ConsumerWorker
from .workers.handlers import build_handlers
from .workers.producer import ProducerWorker

logger = logging.getLogger(__name__)


def build_connection_pool(config: ConfigManager, migrate: bool = True) -> ConnectionPool:
    pool = ConnectionPool(
        path=config.get('database.path'),
        max_connections=config.get('database.max_connections', 5),
        timeout=config.get('database.timeout', 30.0),
    )
    pool.health_check()
    if migrate:
        pool.migrate()
    return pool


def build_user_repository(pool: ConnectionPool) -> UserRepository:
    return UserRepository(pool)


def build_broker(config: ConfigManager, connect: bool = True) -> RabbitMQClient:
    mq = config.section('rabbitmq')
    broker = RabbitMQClient(
        host=mq['host'],
        port=mq['port'],
        username=mq.get('user'),
        password=mq.get('password'),
        virtual_host=mq.get('virtual_host', '/'),
        exchange=mq['exchange'],
        queue_name=mq['queue_name'],
        heartbeat=mq.get('heartbeat', 600),
        blocked_connection_timeout=mq.get('blocked_connection_timeout', 300),
        max_retries=mq.get('max_retries', 5),
        retry_delay=mq.get('retry_delay', 5.0),
        prefetch_count=mq.get('prefetch_count', 1),
    )
    if connect:
        broker.connect()
    return broker


def build_producer(config: ConfigManager, broker: RabbitMQClient) -> ProducerWorker:
    return ProducerWorker(broker, interval=config.get('producer.interval', 5.0))


def build_consumer(config: ConfigManager, broker: RabbitMQClient, repository: UserRepository) -> ConsumerWorker:
    return ConsumerWorker(
        broker,
        build_handlers(repository),
        inactivity_timeout=config.get('consumer.inactivity_timeout', 1.0),
        reconnect_delay=config.get('consumer.reconnect_delay', 5.0),
    )


class ServiceRunner:
    """
    Runs a set of workers until a shutdown signal arrives or every worker exits,
    then stops them and releases resources in reverse order of acquisition.
    """

    def __init__(self, workers: Sequence[BaseWorker], cleanups: Sequence[Callable[[], None]] = (),
                 stop_timeout: float = 10.0):
        self.workers: List[BaseWorker] = list(workers)
        self.cleanups: List[Callable[[], None]] = list(cleanups)
        self.stop_timeout = stop_timeout
        self._shutdown = threading.Event()

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        self._shutdown.set()

    def install_signal_handlers(self):
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def request_shutdown(self):
        self._shutdown.set()

    def start(self):
        for worker in self.workers:
            worker.start()

    def stop(self):
        for worker in self.workers:
            worker.shutdown()
        for worker in self.workers:
            if not worker.wait(self.stop_timeout):
                logger.warning(f"{worker.name.capitalize()} worker did not exit within {self.stop_timeout}s")
        for cleanup in reversed(self.cleanups):
            cleanup()

    def run(self, poll_interval: float = 1.0, install_signals: bool = True):
        """Start every worker and block until shutdown is requested."""
        if install_signals:
            self.install_signal_handlers()
        try:
            self.start()
            while not self._shutdown.wait(poll_interval):
                if all(worker.wait(0) for worker in self.workers):
                    logger.warning("All workers have exited")
                    break
        finally:
            self.stop()


def close_quietly(name: str, close: Callable[[], None]) -> Callable[[], None]:
    """Wrap a close function so a failure is logged instead of aborting teardown."""
    def _cleanup():
        try:
            close()
        except Exception as e:
            logger.error(f"Error closing {name}: {e}")
    return _cleanup


def build_runner(config: ConfigManager, producer: bool = False, consumer: bool = False,
                 stop_timeout: Optional[float] = None) -> ServiceRunner:
    """
    Compose the selected workers with their dependencies.

    Each worker gets its own broker client; the connection pool is shared.
    """
    workers: List[BaseWorker] = []
    cleanups: List[Callable[[], None]] = []
    try:
        if consumer:
            pool = build_connection_pool(config)
            cleanups.append(close_quietly("database", pool.close))
            repository = build_user_repository(pool)
            consumer_broker = build_broker(config)
            cleanups.append(close_quietly("consumer broker", consumer_broker.close))
            workers.append(build_consumer(config, consumer_broker, repository))
        if producer:
            producer_broker = build_broker(config)
            cleanups.append(close_quietly("producer broker", producer_broker.close))
            workers.append(build_producer(config, producer_broker))
    except Exception:
        for cleanup in reversed(cleanups):
            cleanup()
        raise
    timeout = stop_timeout if stop_timeout is not None else max(10.0, config.get('consumer.inactivity_timeout', 1.0) * 2)
    return ServiceRunner(workers, cleanups, stop_timeout=timeout)
