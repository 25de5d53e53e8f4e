from abc import ABC, abstractmethod
from typing import Optional

from inspector_api.schemas.inbound import InboundMessage, MediaDownload

EXTENSIONS = {"image": "jpg", "video": "mp4", "audio": "mp3", "document": "pdf"}
DEFAULT_CONTENT_TYPES = {
    "image": "image/jpeg",
    "video": "video/mp4",
    "audio": "audio/mpeg",
    "document": "application/pdf",
}


class ProviderError(Exception):
    """Raised when a messaging provider call fails."""


class MediaDownloadError(ProviderError):
    pass


def normalize_phone(value: Optional[str]) -> Optional[str]:
    """Strip jid suffixes and formatting so both providers agree on identity."""
    if not value:
        return None
    text = str(value).split("@", 1)[0]
    digits = "".join(ch for ch in text if ch.isdigit())
    return digits or None


def default_file_name(message: InboundMessage) -> str:
    if message.file_name:
        return message.file_name
    return f"{message.message_id}.{EXTENSIONS.get(message.type, 'bin')}"


class MessagingProvider(ABC):
    """Capability interface every messaging provider implements."""

    name: str = "base"

    @abstractmethod
    def send_message(self, to: str, text: str) -> bool:
        """Send a text message. Raises ProviderError on failure."""

    @abstractmethod
    def parse_inbound_message(self, payload: dict) -> Optional[InboundMessage]:
        """Normalize a webhook payload; None when there is nothing to process."""

    @abstractmethod
    def download_media(self, message: InboundMessage) -> MediaDownload:
        """Fetch media bytes referenced by the message. Raises MediaDownloadError."""
