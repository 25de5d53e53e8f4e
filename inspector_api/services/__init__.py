from inspector_api.services.conversation_service import (
    deactivate_conversation,
    load_conversation,
    read_context,
    save_context,
)
from inspector_api.services.identity_service import get_or_create_user, lock_user
from inspector_api.services.message_service import save_message

__all__ = [
    "load_conversation",
    "read_context",
    "save_context",
    "deactivate_conversation",
    "get_or_create_user",
    "lock_user",
    "save_message",
]
