import logging
import time
from typing import Callable

from ..messaging.rabbitmq_client import RabbitMQClient
from ..messaging.schemas import Envelope, build_create_user_envelope
from .base import BaseWorker

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5.0


class ProducerWorker(BaseWorker):
    """
    Publishes one ``create_user`` envelope every ``interval`` seconds.

    A failed publish is logged and the next tick proceeds as usual.
    """

    name = "producer"

    def __init__(self, broker: RabbitMQClient, interval: float = DEFAULT_INTERVAL,
                 envelope_factory: Callable[[], Envelope] = build_create_user_envelope):
        super().__init__()
        self.broker = broker
        self.interval = interval
        self.envelope_factory = envelope_factory
        self.published_count = 0
        self.failed_count = 0

    def _run(self):
        # wait() returns True as soon as shutdown() sets the event.
        while not self._stop_event.wait(self.interval):
            try:
                self.produce_message()
            except Exception as e:
                self.failed_count += 1
                logger.error(f"Failed to produce message: {e}")

    def produce_message(self) -> Envelope:
        """Build, serialize and publish one envelope."""
        envelope = self.envelope_factory()
        started = time.monotonic()
        self.broker.publish(envelope.to_bytes())
        self.published_count += 1
        logger.info(f"Produced message {envelope.id} ({envelope.action}) "
                    f"in {(time.monotonic() - started) * 1000:.1f} ms")
        return envelope
