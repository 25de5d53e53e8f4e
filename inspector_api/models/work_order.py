from sqlalchemy import TIMESTAMP, Column, Date, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from inspector_api.database import Base


class WorkOrder(Base):
    __tablename__ = "work_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False)
    inspector_id = Column(Integer, ForeignKey("users.id"))
    checklist_template_id = Column(Integer, ForeignKey("checklist_templates.id"), nullable=False)
    scheduled_date = Column(Date, nullable=False)
    scheduled_time_window = Column(Text)
    status = Column(Text, nullable=False, default="scheduled")  # scheduled, in_progress, completed, cancelled
    notes = Column(Text)
    started_at = Column(TIMESTAMP(timezone=True))
    completed_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True))

    contract = relationship("Contract")
    inspector = relationship("User")
    checklist_template = relationship("ChecklistTemplate")
    checklist_instance = relationship("ChecklistInstance", back_populates="work_order", uselist=False)
