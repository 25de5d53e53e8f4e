from sqlalchemy import TIMESTAMP, Column, Date, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from inspector_api.database import Base


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(Text, nullable=False)
    city = Column(Text)
    state = Column(Text)
    postal_code = Column(Text)
    property_type = Column(Text)  # residential, commercial, industrial, land
    created_at = Column(TIMESTAMP(timezone=True))


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False)
    start_date = Column(Date)
    end_date = Column(Date)
    status = Column(Text, nullable=False, default="active")
    created_at = Column(TIMESTAMP(timezone=True))

    customer = relationship("User")
    property = relationship("Property")
