"""
Message schemas exchanged between the producer and the consumer.

The wire format is a JSON object ``{"action": str, "payload": any, "id": str}``.
``Envelope`` is the untyped wire form; ``PAYLOAD_TYPES`` maps each known
action to the dataclass its payload decodes into.
"""

import json
import time
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Type, Union

from ..exceptions import EnvelopeDecodeError, ValidationError

CREATE_USER_ACTION = "create_user"


@dataclass
class Envelope:
    """Unit of work published to the broker."""
    action: str
    payload: Any
    id: str

    def to_json(self) -> str:
        """Convert the envelope to a JSON string."""
        payload = self.payload
        if hasattr(payload, "__dataclass_fields__"):
            payload = asdict(payload)
        return json.dumps({"action": self.action, "payload": payload, "id": self.id})

    def to_bytes(self) -> bytes:
        return self.to_json().encode("utf-8")

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> 'Envelope':
        """
        Create an envelope from a JSON document.

        Raises:
            EnvelopeDecodeError: if the body is not valid JSON, is not an object,
                or carries a non-string ``action`` or ``id``.
        """
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode("utf-8")
            data = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise EnvelopeDecodeError(f"Message body is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise EnvelopeDecodeError(f"Expected a JSON object, got {type(data).__name__}")
        action = data.get("action")
        if not isinstance(action, str):
            raise EnvelopeDecodeError("Envelope 'action' must be a string")
        message_id = data.get("id", "")
        if not isinstance(message_id, str):
            raise EnvelopeDecodeError("Envelope 'id' must be a string")
        return cls(action=action, payload=data.get("payload"), id=message_id)

    def typed_payload(self) -> Any:
        """
        Decode the payload into the dataclass registered for this action.

        Raises:
            ValidationError: if the action has no registered payload type or
                the payload does not match it.
        """
        payload_type = PAYLOAD_TYPES.get(self.action)
        if payload_type is None:
            raise ValidationError(f"No payload type registered for action '{self.action}'")
        if isinstance(self.payload, payload_type):
            return self.payload
        return payload_type.from_dict(self.payload)


@dataclass
class CreateUserPayload:
    """Payload of a ``create_user`` envelope."""
    name: str
    email: str

    @classmethod
    def from_dict(cls, data: Any) -> 'CreateUserPayload':
        if not isinstance(data, dict):
            raise ValidationError(f"create_user payload must be an object, got {type(data).__name__}")
        name = data.get("name")
        email = data.get("email")
        if not isinstance(name, str):
            raise ValidationError("create_user payload is missing a string 'name'")
        if not isinstance(email, str):
            raise ValidationError("create_user payload is missing a string 'email'")
        return cls(name=name, email=email)


PAYLOAD_TYPES: Dict[str, Type] = {
    CREATE_USER_ACTION: CreateUserPayload,
}


def new_message_id() -> str:
    """Return a process-unique message id of the form ``msg_<nanoseconds>``."""
    return f"msg_{time.time_ns()}"


def build_create_user_envelope(now: Optional[float] = None) -> Envelope:
    """Build the synthetic ``create_user`` envelope emitted by the producer."""
    timestamp = int(now if now is not None else time.time())
    payload = CreateUserPayload(
        name=f"User_{timestamp}",
        email=f"user_{timestamp}@example.com",
    )
    return Envelope(action=CREATE_USER_ACTION, payload=payload, id=new_message_id())
