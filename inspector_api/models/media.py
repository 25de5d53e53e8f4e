from sqlalchemy import TIMESTAMP, Column, ForeignKey, Integer, LargeBinary, Text
from sqlalchemy.orm import relationship

from inspector_api.database import Base


class Media(Base):
    __tablename__ = "media"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False)
    work_order_id = Column(Integer, ForeignKey("work_orders.id"))  # job open when the media arrived
    checklist_instance_item_id = Column(Integer, ForeignKey("checklist_instance_items.id"))  # null until bound
    media_type = Column(Text, nullable=False)  # image, video, audio, document
    file_name = Column(Text, nullable=False)
    content_type = Column(Text, nullable=False)
    content = Column(LargeBinary, nullable=False)
    provider_media_id = Column(Text)
    caption = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    bound_at = Column(TIMESTAMP(timezone=True))

    item = relationship("ChecklistInstanceItem", back_populates="media")
