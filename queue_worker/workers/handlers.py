"""
Message handlers and the dispatch table that maps an action tag to them.

A handler receives a decoded ``Envelope``. Returning normally means the
message was processed and may be acknowledged; raising means it should be
requeued.
"""

import logging
from typing import Callable, Dict

from ..exceptions import ConstraintViolation
from ..messaging.schemas import CREATE_USER_ACTION, CreateUserPayload, Envelope
from ..storage.user_repository import User, UserRepository

logger = logging.getLogger(__name__)

Handler = Callable[[Envelope], None]


class CreateUserHandler:
    """Creates a user from a ``create_user`` envelope."""

    def __init__(self, repository: UserRepository):
        self.repository = repository

    def __call__(self, envelope: Envelope):
        payload: CreateUserPayload = envelope.typed_payload()
        try:
            user = self.repository.create(User(name=payload.name, email=payload.email))
        except ConstraintViolation as e:
            # Redelivery of an already-stored message lands here.
            logger.warning(f"Skipping duplicate user from message {envelope.id}: {e}")
            return
        logger.info(f"Created user {user.id} ({user.name} <{user.email}>) from message {envelope.id}")


def build_handlers(repository: UserRepository) -> Dict[str, Handler]:
    """Return the action-to-handler dispatch table."""
    return {
        CREATE_USER_ACTION: CreateUserHandler(repository),
    }
