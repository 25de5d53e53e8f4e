from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy.orm import Session

from inspector_api.logging_config import get_logger
from inspector_api.models import Conversation
from inspector_api.schemas.workflow import WorkflowContext

logger = get_logger("conversation_service")


def load_conversation(db: Session, user_id: int) -> Conversation:
    """Return the user's active conversation, creating an empty one if none exists.

    Callers must hold the user lock (see identity_service.lock_user); the
    partial unique index on active conversations backs this up.
    """
    conversation = (
        db.query(Conversation)
        .filter(Conversation.user_id == user_id, Conversation.active.is_(True))
        .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
        .with_for_update()
        .first()
    )

    if not conversation:
        now = datetime.now(timezone.utc)
        conversation = Conversation(
            user_id=user_id,
            context={},
            active=True,
            started_at=now,
            last_message_at=now,
        )
        db.add(conversation)
        db.flush()
        logger.info(f"Started conversation {conversation.id} for user {user_id}")

    return conversation


def read_context(conversation: Conversation) -> WorkflowContext:
    """Typed view of the stored context. Unreadable context yields an empty one."""
    raw = conversation.context or {}
    if not isinstance(raw, dict):
        logger.warning(
            "Conversation context is not an object, resetting",
            extra={"context": {"conversation_id": conversation.id, "type": type(raw).__name__}},
        )
        return WorkflowContext()
    try:
        return WorkflowContext.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "Conversation context failed validation, resetting",
            extra={"context": {"conversation_id": conversation.id, "error": str(e)}},
        )
        return WorkflowContext()


def save_context(db: Session, conversation: Conversation, context: WorkflowContext) -> None:
    """Replace the stored context and bump last activity."""
    conversation.context = context.to_storage()
    conversation.last_message_at = datetime.now(timezone.utc)
    db.flush()


def deactivate_conversation(db: Session, conversation: Conversation) -> None:
    """Soft-reset: clear context and close. The next message opens a fresh conversation."""
    now = datetime.now(timezone.utc)
    conversation.context = {}
    conversation.active = False
    conversation.closed_at = now
    conversation.last_message_at = now
    db.flush()
    logger.info(f"Closed conversation {conversation.id}")
