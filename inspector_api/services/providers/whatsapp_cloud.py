from typing import Optional

import httpx

from inspector_api.logging_config import get_logger
from inspector_api.schemas.inbound import MEDIA_MESSAGE_TYPES, InboundMessage, MediaDownload
from inspector_api.services.providers.base import (
    DEFAULT_CONTENT_TYPES,
    MediaDownloadError,
    MessagingProvider,
    ProviderError,
    default_file_name,
    normalize_phone,
)

logger = get_logger("providers.whatsapp")


class WhatsAppCloudProvider(MessagingProvider):
    """WhatsApp Business Cloud API (Graph) provider."""

    name = "whatsapp"

    def __init__(
        self,
        access_token: Optional[str],
        phone_number_id: Optional[str],
        api_url: str = "https://graph.facebook.com/v17.0",
        timeout_seconds: float = 30.0,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    def send_message(self, to: str, text: str) -> bool:
        if not self.access_token or not self.phone_number_id:
            raise ProviderError("WhatsApp Cloud API is not configured")

        recipient = to[1:] if to.startswith("+") else to
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "text",
            "text": {"body": text},
        }
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    f"{self.api_url}/{self.phone_number_id}/messages",
                    headers=self._headers(),
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"WhatsApp send failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"WhatsApp send error: status={response.status_code}, body={response.text[:200]}")
            raise ProviderError(f"WhatsApp API error: {response.status_code}")
        return True

    def parse_inbound_message(self, payload: dict) -> Optional[InboundMessage]:
        if not isinstance(payload, dict) or payload.get("object") != "whatsapp_business_account":
            return None

        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                if change.get("field") != "messages" or not value.get("messages"):
                    # delivery/read status callbacks land here
                    continue

                message = value["messages"][0]
                contacts = value.get("contacts") or [{}]
                msg_type = message.get("type")
                sender = normalize_phone(message.get("from"))
                if not sender or not message.get("id"):
                    return None

                fields = {
                    "message_id": message["id"],
                    "sender": sender,
                    "timestamp": int(message.get("timestamp") or 0) * 1000,
                    "sender_name": (contacts[0].get("profile") or {}).get("name"),
                    "provider": self.name,
                }

                if msg_type == "text":
                    return InboundMessage(type="text", text=(message.get("text") or {}).get("body"), **fields)
                if msg_type == "button":
                    return InboundMessage(type="text", text=(message.get("button") or {}).get("text"), **fields)
                if msg_type == "interactive":
                    interactive = message.get("interactive") or {}
                    reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
                    return InboundMessage(type="text", text=reply.get("title"), **fields)
                if msg_type in MEDIA_MESSAGE_TYPES:
                    media = message.get(msg_type) or {}
                    return InboundMessage(
                        type=msg_type,
                        media_ref=media.get("id"),
                        mime_type=media.get("mime_type"),
                        caption=media.get("caption") or None,
                        file_name=media.get("filename"),
                        **fields,
                    )

                logger.info(f"Unsupported WhatsApp message type: {msg_type}")
                return None

        return None

    def download_media(self, message: InboundMessage) -> MediaDownload:
        if not message.media_ref:
            raise MediaDownloadError("Message has no media reference")

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                info = client.get(f"{self.api_url}/{message.media_ref}", headers=self._headers())
                if info.status_code != 200:
                    raise MediaDownloadError(f"Media lookup failed: {info.status_code}")
                try:
                    metadata = info.json()
                except ValueError as e:
                    raise MediaDownloadError(f"Media lookup returned invalid JSON: {e}") from e
                url = metadata.get("url") if isinstance(metadata, dict) else None
                if not url:
                    raise MediaDownloadError("Media lookup returned no url")

                response = client.get(url, headers=self._headers())
                if response.status_code != 200:
                    raise MediaDownloadError(f"Media download failed: {response.status_code}")
        except httpx.HTTPError as e:
            raise MediaDownloadError(f"Media download failed: {e}") from e

        content_type = message.mime_type or response.headers.get("content-type") or DEFAULT_CONTENT_TYPES.get(
            message.type, "application/octet-stream"
        )
        return MediaDownload(
            content=response.content,
            content_type=content_type.split(";")[0].strip(),
            file_name=default_file_name(message),
            media_type=message.type,
            provider_media_id=message.media_ref,
        )
