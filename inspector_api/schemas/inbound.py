from dataclasses import dataclass
from typing import Literal, Optional

from pydantic import BaseModel

MessageType = Literal["text", "image", "video", "audio", "document"]
MEDIA_MESSAGE_TYPES = {"image", "video", "audio", "document"}


class InboundMessage(BaseModel):
    """Provider-agnostic inbound message."""

    message_id: str
    sender: str
    timestamp: int  # epoch milliseconds
    type: MessageType = "text"
    text: Optional[str] = None
    media_ref: Optional[str] = None  # provider media id or download url
    caption: Optional[str] = None
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
    sender_name: Optional[str] = None
    provider: str = "whatsapp"

    @property
    def has_media(self) -> bool:
        return self.type in MEDIA_MESSAGE_TYPES and bool(self.media_ref)

    @property
    def body(self) -> str:
        """Text the classifier sees: message text or media caption."""
        return (self.text or self.caption or "").strip()


@dataclass
class MediaDownload:
    content: bytes
    content_type: str
    file_name: str
    media_type: str
    provider_media_id: Optional[str] = None
