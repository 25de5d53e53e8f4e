from unittest.mock import Mock, patch

import httpx
import pytest

from inspector_api.schemas.inbound import InboundMessage
from inspector_api.services.providers import (
    MediaDownloadError,
    ProviderError,
    WassengerProvider,
    WhatsAppCloudProvider,
    get_messaging_provider,
    normalize_phone,
)


def _whatsapp_payload(message, contacts=None):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "1234",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "contacts": contacts or [{"profile": {"name": "Ana"}, "wa_id": "15550001111"}],
                            "messages": [message],
                        },
                    }
                ],
            }
        ],
    }


@pytest.fixture
def whatsapp():
    return WhatsAppCloudProvider(access_token="token", phone_number_id="PHONE_ID", api_url="https://graph.test/v17.0")


@pytest.fixture
def wassenger():
    return WassengerProvider(api_key="key", device_id="device-1", api_url="https://wassenger.test/v1")


class TestNormalizePhone:
    def test_strips_jid_suffix(self):
        assert normalize_phone("15550001111@s.whatsapp.net") == "15550001111"

    def test_strips_formatting(self):
        assert normalize_phone("+1 (555) 000-1111") == "15550001111"

    def test_empty(self):
        assert normalize_phone(None) is None
        assert normalize_phone("abc") is None


class TestWhatsAppParse:
    def test_text_message(self, whatsapp):
        payload = _whatsapp_payload(
            {"from": "15550001111", "id": "wamid.abc", "timestamp": "1700000000", "type": "text", "text": {"body": "jobs"}}
        )
        message = whatsapp.parse_inbound_message(payload)

        assert message.message_id == "wamid.abc"
        assert message.sender == "15550001111"
        assert message.timestamp == 1700000000000
        assert message.type == "text"
        assert message.text == "jobs"
        assert message.sender_name == "Ana"
        assert message.provider == "whatsapp"

    def test_image_message(self, whatsapp):
        payload = _whatsapp_payload(
            {
                "from": "15550001111",
                "id": "wamid.img",
                "timestamp": "1700000000",
                "type": "image",
                "image": {"id": "media-123", "mime_type": "image/jpeg", "caption": "crack in slab"},
            }
        )
        message = whatsapp.parse_inbound_message(payload)

        assert message.type == "image"
        assert message.media_ref == "media-123"
        assert message.caption == "crack in slab"
        assert message.has_media is True
        assert message.body == "crack in slab"

    def test_button_reply_is_text(self, whatsapp):
        payload = _whatsapp_payload(
            {
                "from": "15550001111",
                "id": "wamid.btn",
                "timestamp": "1700000000",
                "type": "interactive",
                "interactive": {"type": "button_reply", "button_reply": {"id": "b1", "title": "done"}},
            }
        )
        assert whatsapp.parse_inbound_message(payload).text == "done"

    def test_status_callback_is_ignored(self, whatsapp):
        payload = {
            "object": "whatsapp_business_account",
            "entry": [{"changes": [{"field": "messages", "value": {"statuses": [{"id": "wamid.abc"}]}}]}],
        }
        assert whatsapp.parse_inbound_message(payload) is None

    def test_foreign_payload_is_ignored(self, whatsapp):
        assert whatsapp.parse_inbound_message({"object": "page"}) is None
        assert whatsapp.parse_inbound_message([]) is None


class TestWhatsAppSend:
    def test_send_posts_to_messages_endpoint(self, whatsapp):
        with patch("inspector_api.services.providers.whatsapp_cloud.httpx.Client") as client_cls:
            client = client_cls.return_value.__enter__.return_value
            client.post.return_value = Mock(status_code=200)

            assert whatsapp.send_message("+15550001111", "hello") is True

        args, kwargs = client.post.call_args
        assert args[0] == "https://graph.test/v17.0/PHONE_ID/messages"
        assert kwargs["json"]["to"] == "15550001111"
        assert kwargs["json"]["text"] == {"body": "hello"}
        assert kwargs["headers"]["Authorization"] == "Bearer token"

    def test_error_status_raises(self, whatsapp):
        with patch("inspector_api.services.providers.whatsapp_cloud.httpx.Client") as client_cls:
            client_cls.return_value.__enter__.return_value.post.return_value = Mock(status_code=500, text="oops")
            with pytest.raises(ProviderError):
                whatsapp.send_message("15550001111", "hello")

    def test_transport_error_raises(self, whatsapp):
        with patch("inspector_api.services.providers.whatsapp_cloud.httpx.Client") as client_cls:
            client_cls.return_value.__enter__.return_value.post.side_effect = httpx.ConnectError("down")
            with pytest.raises(ProviderError):
                whatsapp.send_message("15550001111", "hello")

    def test_unconfigured_raises(self):
        with pytest.raises(ProviderError):
            WhatsAppCloudProvider(access_token=None, phone_number_id=None).send_message("1", "hi")


class TestWhatsAppDownload:
    def _message(self):
        return InboundMessage(
            message_id="wamid.img",
            sender="15550001111",
            timestamp=0,
            type="image",
            media_ref="media-123",
            mime_type="image/jpeg",
        )

    def test_download_resolves_url_then_fetches(self, whatsapp):
        with patch("inspector_api.services.providers.whatsapp_cloud.httpx.Client") as client_cls:
            client = client_cls.return_value.__enter__.return_value
            client.get.side_effect = [
                Mock(status_code=200, json=Mock(return_value={"url": "https://cdn.test/file"})),
                Mock(status_code=200, content=b"bytes", headers={"content-type": "image/jpeg"}),
            ]
            download = whatsapp.download_media(self._message())

        assert download.content == b"bytes"
        assert download.content_type == "image/jpeg"
        assert download.file_name == "wamid.img.jpg"
        assert download.provider_media_id == "media-123"

    def test_lookup_failure_raises(self, whatsapp):
        with patch("inspector_api.services.providers.whatsapp_cloud.httpx.Client") as client_cls:
            client_cls.return_value.__enter__.return_value.get.return_value = Mock(status_code=404)
            with pytest.raises(MediaDownloadError):
                whatsapp.download_media(self._message())

    def test_non_json_lookup_raises_download_error(self, whatsapp):
        with patch("inspector_api.services.providers.whatsapp_cloud.httpx.Client") as client_cls:
            client_cls.return_value.__enter__.return_value.get.return_value = httpx.Response(
                200, text="<html>gateway</html>"
            )
            with pytest.raises(MediaDownloadError):
                whatsapp.download_media(self._message())

    def test_lookup_without_url_raises(self, whatsapp):
        with patch("inspector_api.services.providers.whatsapp_cloud.httpx.Client") as client_cls:
            client_cls.return_value.__enter__.return_value.get.return_value = httpx.Response(200, json=["nope"])
            with pytest.raises(MediaDownloadError):
                whatsapp.download_media(self._message())


class TestWassenger:
    def test_chat_message(self, wassenger):
        payload = {
            "event": "message:in:new",
            "data": {
                "id": "wz-1",
                "type": "chat",
                "body": "jobs",
                "fromNumber": "+15550001111",
                "timestamp": 1700000000,
                "fromMe": False,
                "chat": {"name": "Ana"},
            },
        }
        message = wassenger.parse_inbound_message(payload)

        assert message.message_id == "wz-1"
        assert message.sender == "15550001111"
        assert message.type == "text"
        assert message.text == "jobs"
        assert message.provider == "wassenger"

    def test_outgoing_echo_is_ignored(self, wassenger):
        payload = {"event": "message:in:new", "data": {"id": "wz-2", "type": "chat", "fromMe": True}}
        assert wassenger.parse_inbound_message(payload) is None

    def test_other_events_are_ignored(self, wassenger):
        assert wassenger.parse_inbound_message({"event": "message:out:ack", "data": {}}) is None

    def test_send_uses_token_header(self, wassenger):
        with patch("inspector_api.services.providers.wassenger.httpx.Client") as client_cls:
            client = client_cls.return_value.__enter__.return_value
            client.post.return_value = Mock(status_code=201)

            wassenger.send_message("15550001111", "hi")

        args, kwargs = client.post.call_args
        assert args[0] == "https://wassenger.test/v1/messages"
        assert kwargs["headers"]["Token"] == "key"
        assert kwargs["json"] == {"phone": "+15550001111", "message": "hi", "priority": "high", "device": "device-1"}


class TestProviderFactory:
    def test_known_providers(self):
        assert isinstance(get_messaging_provider("whatsapp"), WhatsAppCloudProvider)
        assert isinstance(get_messaging_provider("Wassenger"), WassengerProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_messaging_provider("telegram")
