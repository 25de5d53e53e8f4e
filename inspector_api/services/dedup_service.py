from datetime import datetime, timezone
from typing import Optional

import redis
from sqlalchemy.orm import Session

from inspector_api.config import settings
from inspector_api.logging_config import get_logger
from inspector_api.models import MessageDedup

logger = get_logger("dedup_service")

DEDUP_KEY_PREFIX = "inspector:processed"
DEDUP_SOCKET_TIMEOUT_SECONDS = 0.5

_redis_client: Optional[redis.Redis] = None
_redis_url: Optional[str] = None


def _get_redis_client() -> Optional[redis.Redis]:
    global _redis_client, _redis_url
    if not settings.redis_url:
        return None
    if _redis_client is None or _redis_url != settings.redis_url:
        _redis_url = settings.redis_url
        _redis_client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=DEDUP_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=DEDUP_SOCKET_TIMEOUT_SECONDS,
        )
    return _redis_client


def _cache_key(message_id: str) -> str:
    return f"{DEDUP_KEY_PREFIX}:{message_id}"


def is_processed(db: Session, message_id: str) -> bool:
    """Fast pre-check outside the user lock. The claim below is authoritative."""
    cache = _get_redis_client()
    if cache:
        try:
            if cache.exists(_cache_key(message_id)):
                return True
        except redis.RedisError as exc:
            logger.warning(f"Dedup cache read failed: {exc}")

    return db.query(MessageDedup.id).filter(MessageDedup.provider_message_id == message_id).first() is not None


def claim_message(db: Session, message_id: str) -> bool:
    """Record the message id inside the current transaction.

    Must run under the user lock. Returns False when the id was already
    recorded; a concurrent claim that slipped past surfaces as an
    IntegrityError at flush or commit.
    """
    exists = db.query(MessageDedup.id).filter(MessageDedup.provider_message_id == message_id).first()
    if exists:
        return False

    db.add(MessageDedup(provider_message_id=message_id, received_at=datetime.now(timezone.utc)))
    db.flush()
    return True


def mark_processed(message_id: str) -> None:
    """Remember a committed message id in redis. Only called after commit."""
    cache = _get_redis_client()
    if not cache:
        return
    try:
        cache.set(_cache_key(message_id), "1", ex=settings.dedup_ttl_seconds, nx=True)
    except redis.RedisError as exc:
        logger.warning(f"Dedup cache write failed: {exc}")
