"""
Hard validation rules for channel subscriptions.

- conversation id: non-empty string, no whitespace, no filter metacharacters, max 128 chars
- on_message and on_status_change are required callables
- on_presence is optional but must be callable when given
"""
import re
from typing import Any

MAX_CONVERSATION_ID_LENGTH = 128

# Characters that would break the "conversation_id=eq.<id>" change filter
_FORBIDDEN_ID_CHARS = re.compile(r"[\s,()]")


class ChannelSubscriptionError(ValueError):
    """Raised when a subscribe call is malformed."""
    pass


def validate_conversation_id(conversation_id: Any) -> str:
    """Return the conversation id unchanged if usable as a channel key and filter value."""
    if not isinstance(conversation_id, str):
        raise ChannelSubscriptionError(
            f"conversation_id must be a string, got {type(conversation_id).__name__}"
        )
    if not conversation_id.strip():
        raise ChannelSubscriptionError("conversation_id must not be empty")
    if len(conversation_id) > MAX_CONVERSATION_ID_LENGTH:
        raise ChannelSubscriptionError(
            f"conversation_id must be at most {MAX_CONVERSATION_ID_LENGTH} characters"
        )
    if _FORBIDDEN_ID_CHARS.search(conversation_id):
        raise ChannelSubscriptionError(
            f"conversation_id contains whitespace or filter characters: {conversation_id!r}"
        )
    return conversation_id


def validate_handlers(handlers: Any) -> None:
    """on_message and on_status_change required; on_presence optional."""
    if handlers is None:
        raise ChannelSubscriptionError("handlers are required")
    for name in ("on_message", "on_status_change"):
        cb = getattr(handlers, name, None)
        if cb is None:
            raise ChannelSubscriptionError(f"handlers.{name} is required")
        if not callable(cb):
            raise ChannelSubscriptionError(f"handlers.{name} must be callable")
    presence = getattr(handlers, "on_presence", None)
    if presence is not None and not callable(presence):
        raise ChannelSubscriptionError("handlers.on_presence must be callable")
