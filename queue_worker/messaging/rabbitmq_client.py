import logging
import time
from typing import Iterator, Optional

import pika
import pika.exceptions

from ..exceptions import DeliveryAlreadySettled, TransportError

logger = logging.getLogger(__name__)


class Delivery:
    """
    A message received from the queue together with its settlement callbacks.

    Exactly one of ``ack()`` or ``nack()`` may be called per delivery.
    """

    def __init__(self, channel, delivery_tag: int, body: bytes, redelivered: bool = False, properties=None):
        self._channel = channel
        self.delivery_tag = delivery_tag
        self.body = body
        self.redelivered = redelivered
        self.properties = properties
        self.settled = False

    def _settle(self):
        if self.settled:
            raise DeliveryAlreadySettled(f"Delivery {self.delivery_tag} was already settled")
        self.settled = True

    def ack(self):
        """Remove the message from the queue."""
        self._settle()
        try:
            self._channel.basic_ack(delivery_tag=self.delivery_tag, multiple=False)
        except pika.exceptions.AMQPError as e:
            raise TransportError(f"Failed to ack delivery {self.delivery_tag}: {e}") from e

    def nack(self, requeue: bool = True):
        """Reject the message, returning it to the queue when ``requeue`` is True."""
        self._settle()
        try:
            self._channel.basic_nack(delivery_tag=self.delivery_tag, multiple=False, requeue=requeue)
        except pika.exceptions.AMQPError as e:
            raise TransportError(f"Failed to nack delivery {self.delivery_tag}: {e}") from e


class RabbitMQClient:
    """
    Owns one connection and one channel to RabbitMQ.

    The topology is a durable direct exchange and a durable queue bound to it
    with the queue name as routing key. A client must only be used from one
    thread at a time.
    """

    def __init__(self, host='localhost', port=5672, username=None, password=None,
                 virtual_host='/', exchange='worker_exchange', queue_name='worker_queue',
                 heartbeat=600, blocked_connection_timeout=300,
                 max_retries=5, retry_delay=5, prefetch_count=1):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.virtual_host = virtual_host
        self.exchange = exchange
        self.queue_name = queue_name
        self.heartbeat = heartbeat
        self.blocked_connection_timeout = blocked_connection_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.prefetch_count = prefetch_count
        self.connection: Optional[pika.BlockingConnection] = None
        self.channel = None
        self._consuming = False

    @property
    def is_connected(self) -> bool:
        return (self.connection is not None and self.connection.is_open
                and self.channel is not None and self.channel.is_open)

    def _connection_parameters(self) -> pika.ConnectionParameters:
        params = {
            'host': self.host,
            'port': self.port,
            'virtual_host': self.virtual_host,
            'heartbeat': self.heartbeat,  # Keep connection alive
            'blocked_connection_timeout': self.blocked_connection_timeout,
        }
        if self.username and self.password:
            params['credentials'] = pika.PlainCredentials(self.username, self.password)
        return pika.ConnectionParameters(**params)

    def _connect(self, attempts: Optional[int] = None):
        params = self._connection_parameters()
        max_attempts = attempts or self.max_retries
        retries = 0
        while True:
            try:
                self.connection = pika.BlockingConnection(params)
                self.channel = self.connection.channel()
                logger.info(f"Successfully connected to RabbitMQ at {self.host}:{self.port}")
                return
            except pika.exceptions.AMQPError as e:
                retries += 1
                logger.error(f"Failed to connect to RabbitMQ (attempt {retries}/{max_attempts}): {e}")
                if retries >= max_attempts:
                    logger.error("Max retries reached. Could not connect to RabbitMQ.")
                    raise TransportError(f"Could not connect to RabbitMQ at {self.host}:{self.port}: {e}") from e
                logger.info(f"Retrying in {self.retry_delay} seconds...")
                time.sleep(self.retry_delay)

    def connect(self, attempts: Optional[int] = None):
        """
        Open the connection and declare the topology.

        Up to ``attempts`` connection attempts are made, ``max_retries`` by
        default, sleeping ``retry_delay`` seconds between them.
        """
        self._connect(attempts)
        self.declare_topology()

    def _ensure_connected(self):
        if not self.is_connected:
            logger.warning("RabbitMQ connection lost. Attempting to reconnect...")
            self._reset()
            # Single attempt; callers own any backoff.
            self.connect(attempts=1)

    def _reset(self):
        # Drop a dead connection without raising; the broker requeues unacked messages.
        for resource in (self.channel, self.connection):
            if resource is not None and resource.is_open:
                try:
                    resource.close()
                except pika.exceptions.AMQPError as e:
                    logger.debug(f"Ignoring error while discarding RabbitMQ resource: {e}")
        self.channel = None
        self.connection = None

    def declare_topology(self):
        """Declare the exchange, the queue and their binding. Idempotent."""
        try:
            self.channel.exchange_declare(exchange=self.exchange, exchange_type='direct', durable=True)
            self.channel.queue_declare(queue=self.queue_name, durable=True)
            self.channel.queue_bind(exchange=self.exchange, queue=self.queue_name, routing_key=self.queue_name)
        except pika.exceptions.AMQPError as e:
            logger.error(f"Failed to declare topology for exchange '{self.exchange}': {e}")
            raise TransportError(f"Failed to declare RabbitMQ topology: {e}") from e
        logger.info(f"Queue '{self.queue_name}' bound to exchange '{self.exchange}' "
                    f"with routing key '{self.queue_name}'.")

    def publish(self, body: bytes):
        """
        Publish a serialized envelope to the exchange.

        Raises:
            TransportError: if the broker is unavailable or the publish fails.
        """
        self._ensure_connected()
        try:
            self.channel.basic_publish(
                exchange=self.exchange,
                routing_key=self.queue_name,
                body=body,
                properties=pika.BasicProperties(
                    content_type='application/json',
                    delivery_mode=pika.spec.PERSISTENT_DELIVERY_MODE,
                    timestamp=int(time.time()),
                )
            )
        except pika.exceptions.AMQPError as e:
            logger.error(f"Failed to publish message to exchange '{self.exchange}', "
                         f"routing key '{self.queue_name}': {e}")
            raise TransportError(f"Failed to publish message: {e}") from e
        logger.debug(f"Published {len(body)} bytes to exchange '{self.exchange}'")

    def subscribe(self, inactivity_timeout: float = 1.0) -> Iterator[Optional[Delivery]]:
        """
        Yield deliveries from the queue until the consumer is cancelled.

        ``None`` is yielded whenever no message arrived within
        ``inactivity_timeout`` seconds, so the caller can check for shutdown.
        A lost connection is re-established with a single attempt and
        consumption resumes.

        Raises:
            TransportError: if the connection cannot be re-established or the
                channel fails.
        """
        while True:
            self._ensure_connected()
            channel = self.channel
            try:
                channel.basic_qos(prefetch_count=self.prefetch_count)
                self._consuming = True
                logger.info(f"Starting to consume messages from queue '{self.queue_name}'.")
                for method, properties, body in channel.consume(
                        self.queue_name, auto_ack=False, inactivity_timeout=inactivity_timeout):
                    if method is None:
                        yield None
                        continue
                    yield Delivery(channel, method.delivery_tag, body,
                                   redelivered=method.redelivered, properties=properties)
                logger.info(f"Subscription to queue '{self.queue_name}' ended.")
                return
            except pika.exceptions.AMQPConnectionError as e:
                logger.warning(f"Connection lost while consuming from '{self.queue_name}': {e}. Reconnecting...")
                self._reset()
            except pika.exceptions.AMQPChannelError as e:
                logger.error(f"Channel error while consuming from '{self.queue_name}': {e}")
                raise TransportError(f"Channel failure while consuming: {e}") from e
            finally:
                if self._consuming and channel.is_open:
                    try:
                        channel.cancel()
                    except pika.exceptions.AMQPError as e:
                        logger.debug(f"Ignoring error while cancelling consumer: {e}")
                self._consuming = False

    def health_check(self):
        """Raise TransportError unless the connection is open and responsive."""
        if not self.is_connected:
            raise TransportError("RabbitMQ connection is not open")
        try:
            self.connection.process_data_events(time_limit=0)
        except pika.exceptions.AMQPError as e:
            raise TransportError(f"RabbitMQ health check failed: {e}") from e

    def close(self):
        """Close the channel, then the connection. Safe to call more than once."""
        if self.channel is not None and self.channel.is_open:
            if self._consuming:
                try:
                    self.channel.cancel()
                except pika.exceptions.AMQPError as e:
                    logger.error(f"Error cancelling consumer: {e}")
            try:
                self.channel.close()
                logger.info("RabbitMQ channel closed.")
            except pika.exceptions.AMQPError as e:
                logger.error(f"Error closing RabbitMQ channel: {e}")
        if self.connection is not None and self.connection.is_open:
            try:
                self.connection.close()
                logger.info("RabbitMQ connection closed.")
            except pika.exceptions.AMQPError as e:
                logger.error(f"Error closing RabbitMQ connection: {e}")
        self.channel = None
        self.connection = None
        self._consuming = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
