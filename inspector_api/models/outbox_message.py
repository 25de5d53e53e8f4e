from sqlalchemy import TIMESTAMP, Column, ForeignKey, Integer, Text

from inspector_api.database import Base, JSONType


class OutboxMessage(Base):
    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=True)
    inbound_message_id = Column(Text)
    kind = Column(Text, nullable=False)  # reply, trigger
    payload_json = Column(JSONType, nullable=False)
    status = Column(Text, nullable=False, default="PENDING")  # PENDING, PROCESSING, SENT, FAILED
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(TIMESTAMP(timezone=True))
    last_error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
