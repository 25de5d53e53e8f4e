from inspector_api.schemas.inbound import InboundMessage, MediaDownload
from inspector_api.schemas.webhook import WebhookResponse
from inspector_api.schemas.workflow import (
    IntentResult,
    OutboundReply,
    Trigger,
    WorkflowContext,
    WorkflowResult,
)

__all__ = [
    "InboundMessage",
    "MediaDownload",
    "WebhookResponse",
    "IntentResult",
    "OutboundReply",
    "Trigger",
    "WorkflowContext",
    "WorkflowResult",
]
