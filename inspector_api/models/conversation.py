from sqlalchemy import TIMESTAMP, Boolean, Column, ForeignKey, Index, Integer, text
from sqlalchemy.orm import relationship

from inspector_api.database import Base, JSONType


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # at most one active conversation per user
        Index(
            "uq_conversations_active_user",
            "user_id",
            unique=True,
            postgresql_where=text("active"),
            sqlite_where=text("active"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    context = Column(JSONType, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=True)
    started_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_message_at = Column(TIMESTAMP(timezone=True))
    closed_at = Column(TIMESTAMP(timezone=True))

    user = relationship("User", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation")
