from sqlalchemy import TIMESTAMP, Column, Integer, Text

from inspector_api.database import Base


class MessageDedup(Base):
    __tablename__ = "message_dedup"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_message_id = Column(Text, nullable=False, unique=True)
    received_at = Column(TIMESTAMP(timezone=True), nullable=False)
