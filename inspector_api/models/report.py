from sqlalchemy import TIMESTAMP, Boolean, Column, ForeignKey, Integer

from inspector_api.database import Base


class Report(Base):
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    work_order_id = Column(Integer, ForeignKey("work_orders.id"), nullable=False, unique=True)
    requested_at = Column(TIMESTAMP(timezone=True), nullable=False)
    generated_at = Column(TIMESTAMP(timezone=True))
    sent_to_customer = Column(Boolean, nullable=False, default=False)
