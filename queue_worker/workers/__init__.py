"""Producer and consumer worker loops."""

from .base import WorkerState
from .consumer import ConsumerWorker
from .handlers import CreateUserHandler, build_handlers
from .producer import ProducerWorker

__all__ = [
    "WorkerState",
    "ProducerWorker",
    "ConsumerWorker",
    "CreateUserHandler",
    "build_handlers",
]
