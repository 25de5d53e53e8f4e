from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from inspector_api.logging_config import get_logger
from inspector_api.models import ChecklistInstanceItem, Conversation, Media
from inspector_api.schemas.inbound import MediaDownload
from inspector_api.services.checklist_service import append_comment
from inspector_api.services.result import Result

logger = get_logger("media_service")


def store_media(
    db: Session,
    conversation: Conversation,
    download: MediaDownload,
    work_order_id: Optional[int] = None,
    caption: Optional[str] = None,
) -> Media:
    """Persist downloaded media unbound. Binding happens separately."""
    media = Media(
        conversation_id=conversation.id,
        work_order_id=work_order_id,
        media_type=download.media_type,
        file_name=download.file_name,
        content_type=download.content_type,
        content=download.content,
        provider_media_id=download.provider_media_id,
        caption=caption or None,
        created_at=datetime.now(timezone.utc),
    )
    db.add(media)
    db.flush()
    logger.info(
        "Stored media",
        extra={
            "context": {
                "media_id": media.id,
                "conversation_id": conversation.id,
                "work_order_id": work_order_id,
                "bytes": len(download.content),
            }
        },
    )
    return media


def bind_media(db: Session, conversation: Conversation, media: Media, item: ChecklistInstanceItem) -> Result[Media]:
    """Attach media to a checklist item.

    The media must come from the caller's active conversation. Rebinding
    moves the media to the new item and logs the item it left.
    """
    if not conversation.active or media.conversation_id != conversation.id:
        return Result.failure("Media does not belong to the active conversation", code="foreign_media")

    if media.checklist_instance_item_id == item.id:
        return Result.success(media)

    if media.checklist_instance_item_id is not None:
        logger.warning(
            "Rebinding media to a different item",
            extra={
                "context": {
                    "media_id": media.id,
                    "from_item_id": media.checklist_instance_item_id,
                    "to_item_id": item.id,
                }
            },
        )

    media.checklist_instance_item_id = item.id
    media.bound_at = datetime.now(timezone.utc)
    db.flush()
    return Result.success(media)


def unbound_media(db: Session, conversation: Conversation, work_order_id: int) -> list[Media]:
    return (
        db.query(Media)
        .filter(
            Media.conversation_id == conversation.id,
            Media.work_order_id == work_order_id,
            Media.checklist_instance_item_id.is_(None),
        )
        .order_by(Media.created_at, Media.id)
        .all()
    )


def bind_pending_media(
    db: Session,
    conversation: Conversation,
    work_order_id: int,
    item: ChecklistInstanceItem,
) -> int:
    """Bind media received for this job before an item was selected. Returns the count bound.

    Captions sent with the media are added to the item's comments in arrival order.
    """
    count = 0
    for media in unbound_media(db, conversation, work_order_id):
        if bind_media(db, conversation, media, item).ok:
            if media.caption:
                append_comment(item, media.caption)
            count += 1
    if count:
        db.flush()
        logger.info(f"Bound {count} pending media to item {item.id}")
    return count
