from typing import Optional

from inspector_api.config import settings
from inspector_api.services.providers.base import (
    MediaDownloadError,
    MessagingProvider,
    ProviderError,
    normalize_phone,
)
from inspector_api.services.providers.wassenger import WassengerProvider
from inspector_api.services.providers.whatsapp_cloud import WhatsAppCloudProvider

PROVIDER_NAMES = ("whatsapp", "wassenger")


def get_messaging_provider(name: Optional[str] = None) -> MessagingProvider:
    """Build the provider registered under `name` (defaults to settings.messaging_provider)."""
    name = (name or settings.messaging_provider or "whatsapp").strip().lower()
    if name == "whatsapp":
        return WhatsAppCloudProvider(
            access_token=settings.whatsapp_access_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            api_url=settings.whatsapp_api_url,
        )
    if name == "wassenger":
        return WassengerProvider(
            api_key=settings.wassenger_api_key,
            device_id=settings.wassenger_device_id,
            api_url=settings.wassenger_api_url,
        )
    raise ValueError(f"Unknown messaging provider: {name}")


__all__ = [
    "MessagingProvider",
    "ProviderError",
    "MediaDownloadError",
    "WhatsAppCloudProvider",
    "WassengerProvider",
    "PROVIDER_NAMES",
    "get_messaging_provider",
    "normalize_phone",
]
