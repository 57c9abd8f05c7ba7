"""
Messaging module for communication between the producer and consumer workers.

This module contains:
- The RabbitMQ client used for publishing and subscribing.
- The message envelope schema and its typed payloads.
"""

from .rabbitmq_client import Delivery, RabbitMQClient
from .schemas import CREATE_USER_ACTION, CreateUserPayload, Envelope, PAYLOAD_TYPES

__all__ = [
    "Delivery",
    "RabbitMQClient",
    "Envelope",
    "CreateUserPayload",
    "CREATE_USER_ACTION",
    "PAYLOAD_TYPES",
]
