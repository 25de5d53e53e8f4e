from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from inspector_api.config import settings
from inspector_api.database import get_db
from inspector_api.logging_config import get_logger
from inspector_api.schemas.webhook import WebhookResponse
from inspector_api.services.inbound_service import process_inbound_message
from inspector_api.services.intent_service import classify_intent
from inspector_api.services.providers import PROVIDER_NAMES, get_messaging_provider

logger = get_logger("webhook")

router = APIRouter()


def _get_request_webhook_secret(request: Request) -> Optional[str]:
    header_secret = request.headers.get("X-Webhook-Secret")
    if header_secret:
        return header_secret.strip()
    query_secret = request.query_params.get("webhook_secret")
    if query_secret:
        return query_secret.strip()
    return None


def verify_subscription(mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> str:
    """Meta verification handshake. Returns the challenge or raises 403."""
    expected = settings.whatsapp_verify_token
    if mode == "subscribe" and expected and token == expected and challenge is not None:
        return challenge
    logger.warning("Webhook verification rejected", extra={"context": {"mode": mode}})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    return verify_subscription(hub_mode, hub_verify_token, hub_challenge)


@router.get("/webhook/{provider_name}", response_class=PlainTextResponse)
async def verify_provider_webhook(
    provider_name: str,
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Same handshake on the per-provider callback url."""
    return verify_subscription(hub_mode, hub_verify_token, hub_challenge)


@router.post("/webhook/{provider_name}", response_model=WebhookResponse)
async def handle_webhook(provider_name: str, request: Request, db: Session = Depends(get_db)):
    """Inbound delivery from a messaging provider. Always acknowledged once authenticated."""
    if settings.webhook_secret and _get_request_webhook_secret(request) != settings.webhook_secret:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    name = provider_name.strip().lower()
    if name not in PROVIDER_NAMES:
        logger.warning(f"Webhook for unknown provider: {provider_name}")
        return WebhookResponse(success=True, message=f"Unknown provider '{provider_name}'")

    try:
        payload = await request.json()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during read", extra={"context": {"provider": name}})
        return WebhookResponse(success=True, message="Client disconnected")
    except Exception as exc:
        logger.warning("Webhook payload is not valid JSON", extra={"context": {"provider": name, "error": str(exc)}})
        return WebhookResponse(success=True, message="Invalid JSON payload")

    provider = get_messaging_provider(name)
    try:
        message = provider.parse_inbound_message(payload)
    except Exception as exc:
        logger.warning("Webhook payload could not be parsed", extra={"context": {"provider": name, "error": str(exc)}})
        return WebhookResponse(success=True, message="Invalid payload")

    if message is None:
        return WebhookResponse(success=True, message="Nothing to process")

    logger.info(f"Webhook received: provider={name}, message_id={message.message_id}, type={message.type}")
    try:
        return await run_in_threadpool(process_inbound_message, db, message, provider, classify_intent)
    except Exception as exc:
        logger.error(
            "Inbound processing escaped its handler",
            extra={"context": {"provider": name, "message_id": message.message_id, "error": str(exc)}},
            exc_info=True,
        )
        return WebhookResponse(success=True, message="Processing failed")
