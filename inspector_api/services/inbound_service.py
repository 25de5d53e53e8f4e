import time
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inspector_api.config import settings
from inspector_api.logging_config import LoggerAdapter, get_logger
from inspector_api.schemas.inbound import InboundMessage, MediaDownload
from inspector_api.schemas.webhook import WebhookResponse
from inspector_api.schemas.workflow import IntentResult, WorkflowContext, WorkflowResult
from inspector_api.services import (
    conversation_service,
    dedup_service,
    identity_service,
    media_service,
    message_service,
    outbox_service,
)
from inspector_api.services.intent_service import Intent, classify_intent, unknown_intent
from inspector_api.services.providers import MediaDownloadError, MessagingProvider
from inspector_api.services.state_machine import WorkflowEngine

logger = get_logger("inbound")

Classifier = Callable[[str, WorkflowContext, str], IntentResult]

MSG_NOT_REGISTERED = "This number isn't registered. Please contact your office to get access."
MSG_MEDIA_FAILED = "I couldn't download your file. Please try sending it again."
MSG_PROCESSING_ERROR = "Something went wrong on our side. Please try again in a moment."


def _classify(classifier: Classifier, message: InboundMessage, context: WorkflowContext, role: str, log) -> IntentResult:
    try:
        return classifier(message.body, context, role)
    except Exception as e:
        log.error(f"Classifier failed: {e}")
        return unknown_intent()


def _reject_unregistered(db: Session, message: InboundMessage, log) -> WebhookResponse:
    if not dedup_service.claim_message(db, message.message_id):
        return WebhookResponse(success=True, message="Duplicate message_id")
    outbox_service.enqueue_reply(db, to=message.sender, text=MSG_NOT_REGISTERED, inbound_message_id=message.message_id)
    log.info("Rejected unregistered sender")
    return WebhookResponse(success=True, message="Sender not registered")


def _apply_message(
    db: Session,
    message: InboundMessage,
    download: Optional[MediaDownload],
    media_failed: bool,
    classifier: Classifier,
    log,
) -> WebhookResponse:
    """Everything that must commit or roll back together."""
    user = identity_service.find_user(db, message.sender)
    if user is None:
        if settings.require_registration:
            return _reject_unregistered(db, message, log)
        user = identity_service.get_or_create_user(db, message.sender, name=message.sender_name)

    user = identity_service.lock_user(db, user.id)
    if not dedup_service.claim_message(db, message.message_id):
        log.info("Duplicate message, already processed")
        return WebhookResponse(success=True, message="Duplicate message_id")

    conversation = conversation_service.load_conversation(db, user.id)
    engine = WorkflowEngine(db, user, conversation)
    context = engine.reconcile(conversation_service.read_context(conversation))

    media = None
    if download is not None:
        media = media_service.store_media(
            db, conversation, download, work_order_id=context.current_work_order_id, caption=message.caption
        )

    if media_failed:
        intent_result = IntentResult(intent=Intent.ADD_MEDIA.value, confidence=1.0)
    elif media is not None:
        intent_result = IntentResult(
            intent=Intent.ADD_MEDIA.value,
            params={"media_id": media.id, "caption": message.caption},
            confidence=1.0,
        )
    else:
        intent_result = _classify(classifier, message, context, user.role, log)

    message_service.save_message(
        db,
        conversation_id=conversation.id,
        direction="inbound",
        content=message.body,
        message_type=message.type,
        media_id=media.id if media else None,
        provider_message_id=message.message_id,
        intent=intent_result.intent,
        confidence=intent_result.confidence,
        message_metadata={"provider": message.provider, "timestamp": message.timestamp},
    )

    if media_failed:
        new_context, result = context, WorkflowResult().reply(user.phone, MSG_MEDIA_FAILED)
    else:
        new_context, result = engine.apply(context, intent_result)

    new_context = new_context.model_copy(
        update={"last_intent": intent_result.intent, "last_message_id": message.message_id}
    )
    if result.deactivate:
        conversation_service.deactivate_conversation(db, conversation)
    else:
        conversation_service.save_context(db, conversation, new_context)

    for reply in result.replies:
        message_service.save_message(
            db,
            conversation_id=conversation.id,
            direction="outbound",
            content=reply.text,
            message_type="text",
            intent=intent_result.intent,
        )
    outbox_service.enqueue_workflow_result(
        db,
        result=result,
        conversation_id=conversation.id,
        inbound_message_id=message.message_id,
    )

    return WebhookResponse(
        success=True,
        message="Processed",
        conversation_id=conversation.id,
        intent=intent_result.intent,
    )


def _send_error_reply(db: Session, message: InboundMessage, log) -> None:
    try:
        outbox_service.enqueue_reply(
            db, to=message.sender, text=MSG_PROCESSING_ERROR, inbound_message_id=message.message_id
        )
        db.commit()
    except Exception as e:
        db.rollback()
        log.error(f"Failed to queue error reply: {e}")


def process_inbound_message(
    db: Session,
    message: InboundMessage,
    provider: MessagingProvider,
    classifier: Classifier = classify_intent,
) -> WebhookResponse:
    """Run one inbound message through the workflow. Never raises.

    Media is downloaded before the transaction starts so no lock is held
    during provider I/O.
    """
    log = LoggerAdapter(
        logger,
        {"message_id": message.message_id, "sender": message.sender, "provider": message.provider},
    )
    started = time.monotonic()

    try:
        if dedup_service.is_processed(db, message.message_id):
            log.info("Duplicate message, skipped before processing")
            return WebhookResponse(success=True, message="Duplicate message_id")
    except Exception as e:
        db.rollback()
        log.error(f"Dedup pre-check failed: {e}")

    download = None
    media_failed = False
    if message.has_media:
        try:
            download = provider.download_media(message)
        except MediaDownloadError as e:
            media_failed = True
            log.warning(f"Media download failed: {e}")
        except Exception as e:
            media_failed = True
            log.error(f"Unexpected media download error: {e}", exc_info=True)

    try:
        response = _apply_message(db, message, download, media_failed, classifier, log)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        try:
            duplicate = dedup_service.is_processed(db, message.message_id)
        except Exception:
            db.rollback()
            duplicate = False
        if duplicate:
            log.info("Duplicate message detected at commit")
            return WebhookResponse(success=True, message="Duplicate message_id")
        log.error(f"Integrity error while processing message: {e}", exc_info=True)
        _send_error_reply(db, message, log)
        return WebhookResponse(success=True, message="Processing failed")
    except Exception as e:
        db.rollback()
        log.error(f"Message processing failed: {e}", exc_info=True)
        _send_error_reply(db, message, log)
        return WebhookResponse(success=True, message="Processing failed")

    dedup_service.mark_processed(message.message_id)
    log.info(
        "Message processed",
        context={
            "intent": response.intent,
            "conversation_id": response.conversation_id,
            "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
        },
    )
    return response
