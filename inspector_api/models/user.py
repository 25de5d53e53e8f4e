from sqlalchemy import TIMESTAMP, Column, Integer, Text
from sqlalchemy.orm import relationship

from inspector_api.database import Base

USER_ROLES = ("inspector", "admin", "customer")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(Text, nullable=False, unique=True)  # messaging id, digits only
    name = Column(Text)
    email = Column(Text)
    role = Column(Text, nullable=False, default="inspector")  # inspector, admin, customer
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_active_at = Column(TIMESTAMP(timezone=True))

    conversations = relationship("Conversation", back_populates="user")
