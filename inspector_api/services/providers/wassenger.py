from typing import Optional

import httpx

from inspector_api.logging_config import get_logger
from inspector_api.schemas.inbound import InboundMessage, MediaDownload
from inspector_api.services.providers.base import (
    DEFAULT_CONTENT_TYPES,
    MediaDownloadError,
    MessagingProvider,
    ProviderError,
    default_file_name,
    normalize_phone,
)

logger = get_logger("providers.wassenger")

# Wassenger calls plain text messages "chat"
WASSENGER_TYPES = {"chat": "text", "image": "image", "video": "video", "audio": "audio", "document": "document"}
INBOUND_EVENTS = {"message", "message:in:new"}


class WassengerProvider(MessagingProvider):
    """Wassenger WhatsApp gateway provider."""

    name = "wassenger"

    def __init__(
        self,
        api_key: Optional[str],
        device_id: Optional[str] = None,
        api_url: str = "https://api.wassenger.com/v1",
        timeout_seconds: float = 30.0,
    ):
        self.api_key = api_key
        self.device_id = device_id
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict:
        return {"Token": self.api_key or "", "Content-Type": "application/json"}

    def send_message(self, to: str, text: str) -> bool:
        if not self.api_key:
            raise ProviderError("Wassenger is not configured")

        phone = to if to.startswith("+") else f"+{to}"
        payload = {"phone": phone, "message": text, "priority": "high"}
        if self.device_id:
            payload["device"] = self.device_id

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(f"{self.api_url}/messages", headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(f"Wassenger send failed: {e}") from e

        if response.status_code not in (200, 201):
            logger.error(f"Wassenger send error: status={response.status_code}, body={response.text[:200]}")
            raise ProviderError(f"Wassenger API error: {response.status_code}")
        return True

    def parse_inbound_message(self, payload: dict) -> Optional[InboundMessage]:
        if not isinstance(payload, dict) or payload.get("event") not in INBOUND_EVENTS:
            return None

        data = payload.get("data") or {}
        message = data.get("message", data)
        if not isinstance(message, dict) or message.get("fromMe"):
            return None

        sender = normalize_phone(message.get("fromNumber") or message.get("chatId") or message.get("from"))
        msg_type = WASSENGER_TYPES.get(message.get("type"))
        if not sender or not message.get("id") or not msg_type:
            logger.info(f"Ignoring Wassenger message type: {message.get('type')}")
            return None

        fields = {
            "message_id": message["id"],
            "sender": sender,
            "timestamp": int(message.get("timestamp") or 0) * 1000,
            "sender_name": (message.get("chat") or {}).get("name"),
            "provider": self.name,
        }
        if msg_type == "text":
            return InboundMessage(type="text", text=message.get("body"), **fields)

        media = message.get("media") or {}
        return InboundMessage(
            type=msg_type,
            media_ref=message.get("mediaUrl") or media.get("links", {}).get("download") or media.get("id"),
            mime_type=message.get("mimetype") or media.get("mime"),
            caption=message.get("caption") or message.get("body") or None,
            file_name=message.get("filename") or media.get("filename"),
            **fields,
        )

    def download_media(self, message: InboundMessage) -> MediaDownload:
        if not message.media_ref:
            raise MediaDownloadError("Message has no media reference")

        url = message.media_ref
        if not url.startswith("http"):
            url = f"{self.api_url}/{url.lstrip('/')}"

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.get(url, headers={"Token": self.api_key or ""})
        except httpx.HTTPError as e:
            raise MediaDownloadError(f"Wassenger media download failed: {e}") from e

        if response.status_code != 200:
            raise MediaDownloadError(f"Wassenger media download failed: {response.status_code}")

        content_type = message.mime_type or DEFAULT_CONTENT_TYPES.get(message.type, "application/octet-stream")
        return MediaDownload(
            content=response.content,
            content_type=content_type,
            file_name=default_file_name(message),
            media_type=message.type,
            provider_media_id=message.media_ref,
        )
