from inspector_api.models.checklist import (
    ChecklistInstance,
    ChecklistInstanceItem,
    ChecklistTemplate,
    ChecklistTemplateItem,
)
from inspector_api.models.conversation import Conversation
from inspector_api.models.media import Media
from inspector_api.models.message import Message
from inspector_api.models.message_dedup import MessageDedup
from inspector_api.models.outbox_message import OutboxMessage
from inspector_api.models.property import Contract, Property
from inspector_api.models.report import Report
from inspector_api.models.user import User
from inspector_api.models.work_order import WorkOrder

__all__ = [
    "User",
    "Property",
    "Contract",
    "WorkOrder",
    "ChecklistTemplate",
    "ChecklistTemplateItem",
    "ChecklistInstance",
    "ChecklistInstanceItem",
    "Media",
    "Conversation",
    "Message",
    "MessageDedup",
    "OutboxMessage",
    "Report",
]
