import logging
from typing import Dict, Iterator, Optional

from ..exceptions import EnvelopeDecodeError, TransportError
from ..messaging.rabbitmq_client import Delivery, RabbitMQClient
from ..messaging.schemas import Envelope
from .base import BaseWorker
from .handlers import Handler

logger = logging.getLogger(__name__)

DEFAULT_INACTIVITY_TIMEOUT = 1.0
DEFAULT_RECONNECT_DELAY = 5.0


class ConsumerWorker(BaseWorker):
    """
    Consumes envelopes from the queue and dispatches them by action.

    Every delivery is settled exactly once: acknowledged when it was handled
    or its action is unknown, rejected with requeue when it cannot be decoded
    or its handler fails.
    """

    name = "consumer"

    def __init__(self, broker: RabbitMQClient, handlers: Dict[str, Handler],
                 inactivity_timeout: float = DEFAULT_INACTIVITY_TIMEOUT,
                 reconnect_delay: float = DEFAULT_RECONNECT_DELAY):
        super().__init__()
        self.broker = broker
        self.handlers = dict(handlers)
        self.inactivity_timeout = inactivity_timeout
        self.reconnect_delay = reconnect_delay
        self._subscription: Optional[Iterator[Optional[Delivery]]] = None
        self.acked_count = 0
        self.nacked_count = 0

    def _before_start(self):
        self._subscription = self.broker.subscribe(inactivity_timeout=self.inactivity_timeout)

    def _run(self):
        while not self._stop_event.is_set():
            try:
                exhausted = self._drain(self._subscription)
            except TransportError as e:
                logger.error(f"Subscription failed: {e}. Reopening in {self.reconnect_delay} seconds.")
                if self._stop_event.wait(self.reconnect_delay):
                    break
                self._subscription = self.broker.subscribe(inactivity_timeout=self.inactivity_timeout)
                continue
            if exhausted:
                logger.info("Message subscription closed")
                break

    def _drain(self, subscription: Iterator[Optional[Delivery]]) -> bool:
        """Process deliveries until shutdown (False) or the subscription ends (True)."""
        try:
            for delivery in subscription:
                if self._stop_event.is_set():
                    if delivery is not None:
                        # Not processed; hand it back to the broker.
                        self._settle(delivery, ack=False)
                    return False
                if delivery is None:
                    continue
                self.process_delivery(delivery)
            return True
        finally:
            if self._stop_event.is_set():
                subscription.close()

    def dispatch(self, envelope: Envelope) -> bool:
        """
        Run the handler registered for the envelope's action.

        Returns:
            False if no handler is registered for the action, True otherwise.
        """
        handler = self.handlers.get(envelope.action)
        if handler is None:
            logger.warning(f"Unknown action '{envelope.action}' in message {envelope.id}; dropping it")
            return False
        handler(envelope)
        return True

    def process_delivery(self, delivery: Delivery):
        """Decode, dispatch and settle a single delivery."""
        try:
            envelope = Envelope.from_json(delivery.body)
        except EnvelopeDecodeError as e:
            logger.error(f"Failed to decode message (delivery {delivery.delivery_tag}): {e}. Requeuing.")
            self._settle(delivery, ack=False)
            return

        logger.info(f"Processing message {envelope.id} (action={envelope.action}, "
                    f"redelivered={delivery.redelivered})")
        try:
            self.dispatch(envelope)
        except Exception as e:
            logger.error(f"Failed to process message {envelope.id}: {e}. Requeuing.")
            self._settle(delivery, ack=False)
        else:
            self._settle(delivery, ack=True)

    def _settle(self, delivery: Delivery, ack: bool):
        try:
            if ack:
                delivery.ack()
                self.acked_count += 1
            else:
                delivery.nack(requeue=True)
                self.nacked_count += 1
        except TransportError as e:
            # The broker redelivers unsettled messages once the channel is gone.
            logger.error(f"Failed to settle delivery {delivery.delivery_tag}: {e}")
