from sqlalchemy import TIMESTAMP, Column, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from inspector_api.database import Base


class ChecklistTemplate(Base):
    __tablename__ = "checklist_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    description = Column(Text)

    items = relationship(
        "ChecklistTemplateItem",
        back_populates="template",
        order_by="ChecklistTemplateItem.item_order",
    )


class ChecklistTemplateItem(Base):
    __tablename__ = "checklist_template_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    template_id = Column(Integer, ForeignKey("checklist_templates.id"), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    item_order = Column(Integer, nullable=False)

    template = relationship("ChecklistTemplate", back_populates="items")


class ChecklistInstance(Base):
    __tablename__ = "checklist_instances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    work_order_id = Column(Integer, ForeignKey("work_orders.id"), nullable=False, unique=True)
    status = Column(Text, nullable=False, default="not_started")  # not_started, in_progress, completed
    started_at = Column(TIMESTAMP(timezone=True))
    completed_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    work_order = relationship("WorkOrder", back_populates="checklist_instance")
    items = relationship("ChecklistInstanceItem", back_populates="instance")


class ChecklistInstanceItem(Base):
    __tablename__ = "checklist_instance_items"
    __table_args__ = (UniqueConstraint("checklist_instance_id", "template_item_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    checklist_instance_id = Column(Integer, ForeignKey("checklist_instances.id"), nullable=False)
    template_item_id = Column(Integer, ForeignKey("checklist_template_items.id"), nullable=False)
    status = Column(Text, nullable=False, default="pending")  # pending, completed, skipped, issue_found
    comments = Column(Text)
    completed_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))

    instance = relationship("ChecklistInstance", back_populates="items")
    template_item = relationship("ChecklistTemplateItem")
    media = relationship("Media", back_populates="item")

    @property
    def name(self) -> str:
        return self.template_item.name if self.template_item else f"Item {self.id}"
