from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inspector_api.config import settings
from inspector_api.logging_config import get_logger
from inspector_api.models import User
from inspector_api.models.user import USER_ROLES

logger = get_logger("identity_service")


def find_user(db: Session, phone: str) -> Optional[User]:
    return db.query(User).filter(User.phone == phone).first()


def get_or_create_user(db: Session, phone: str, name: Optional[str] = None) -> User:
    """Find user by messaging id or create one on first contact."""
    user = find_user(db, phone)
    if user:
        return user

    role = settings.default_user_role if settings.default_user_role in USER_ROLES else "inspector"
    user = User(phone=phone, name=name, role=role, created_at=datetime.now(timezone.utc))
    db.add(user)
    try:
        db.flush()
    except IntegrityError:
        # concurrent first message from the same sender created the row
        db.rollback()
        user = find_user(db, phone)
        if user is None:
            raise
        return user

    logger.info(f"Created user {user.id} for sender {phone} with role {role}")
    return user


def lock_user(db: Session, user_id: int) -> User:
    """Take the per-user row lock that serializes all workflow mutations for this user.

    Held until the surrounding transaction commits or rolls back.
    """
    user = db.query(User).filter(User.id == user_id).with_for_update().one()
    user.last_active_at = datetime.now(timezone.utc)
    return user
