"""Request validation: message sequence shape and serialized size ceiling.

Runs before admission control and before any network I/O. Errors raised
here are never retried.
"""

from collections.abc import Iterable

from chat_gateway.errors import ValidationError
from chat_gateway.models import ChatRole, Message


def validate_messages(messages: Iterable[Message | dict], max_request_size: int) -> list[Message]:
    """Validate and normalize a message sequence.

    Accepts Message objects or OpenAI-style dicts ({"role", "content"}).
    Size is the total UTF-8 byte length of message content.

    Raises:
        ValidationError: empty list, unknown role, blank content, or total
            size above max_request_size.
    """
    if messages is None:
        raise ValidationError("Messages are required")
    if isinstance(messages, (str, bytes, dict)) or not isinstance(messages, Iterable):
        raise ValidationError("Messages must be a list")

    normalized = [_normalize(msg) for msg in messages]
    if not normalized:
        raise ValidationError("Message list cannot be empty")

    total = 0
    for msg in normalized:
        total += len(msg.content.encode("utf-8"))
        if total > max_request_size:
            raise ValidationError(
                f"Total message content size exceeds the configured limit of {max_request_size} bytes"
            )
    return normalized


def _normalize(msg: Message | dict) -> Message:
    if msg is None:
        raise ValidationError("Message list cannot contain null elements")

    if isinstance(msg, Message):
        role, content = msg.role, msg.content
    elif isinstance(msg, dict):
        role, content = msg.get("role"), msg.get("content")
    else:
        raise ValidationError(f"Unsupported message type: {type(msg).__name__}")

    try:
        role = ChatRole(role)
    except ValueError:
        raise ValidationError(f"Unsupported chat role: {role}")

    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Message content cannot be empty or whitespace")

    return Message(role=role, content=content)
