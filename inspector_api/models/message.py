from sqlalchemy import TIMESTAMP, Column, ForeignKey, Integer, Numeric, Text
from sqlalchemy.orm import relationship

from inspector_api.database import Base, JSONType


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    direction = Column(Text, nullable=False)  # inbound, outbound
    message_type = Column(Text, nullable=False)  # text, image, video, audio, document, system
    content = Column(Text, nullable=False, default="")
    media_id = Column(Integer, ForeignKey("media.id"))
    provider_message_id = Column(Text)
    intent = Column(Text)
    confidence = Column(Numeric(5, 3))
    message_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    conversation = relationship("Conversation", back_populates="messages")
