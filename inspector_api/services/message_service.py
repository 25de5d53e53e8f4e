from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from inspector_api.models import Message


def save_message(
    db: Session,
    conversation_id: int,
    direction: str,
    content: str,
    message_type: str = "text",
    media_id: Optional[int] = None,
    provider_message_id: Optional[str] = None,
    intent: Optional[str] = None,
    confidence: Optional[float] = None,
    message_metadata: Optional[dict] = None,
) -> Message:
    """Append a message to the conversation log. Rows are never updated afterwards."""
    message = Message(
        conversation_id=conversation_id,
        direction=direction,
        message_type=message_type,
        content=content or "",
        media_id=media_id,
        provider_message_id=provider_message_id,
        intent=intent,
        confidence=confidence,
        message_metadata=message_metadata or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message
