from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class WorkflowContext(BaseModel):
    """Persisted position of a user within the inspection workflow.

    Only these four keys are ever stored; anything else found in the
    conversation row is dropped on load.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    current_work_order_id: Optional[int] = Field(default=None, alias="currentWorkOrderId")
    current_checklist_item_id: Optional[int] = Field(default=None, alias="currentChecklistItemId")
    last_intent: Optional[str] = Field(default=None, alias="lastIntent")
    last_message_id: Optional[str] = Field(default=None, alias="lastMessageId")

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def cleared(self) -> "WorkflowContext":
        return WorkflowContext(last_intent=self.last_intent, last_message_id=self.last_message_id)


class IntentResult(BaseModel):
    """Classifier output."""

    intent: str = "unknown"
    params: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    direct_reply: Optional[str] = None
    context_deltas: dict[str, Any] = Field(default_factory=dict)


class OutboundReply(BaseModel):
    to: str
    text: str


TriggerName = Literal["generate_report", "notify_admin", "notify_customer"]


class Trigger(BaseModel):
    name: TriggerName
    work_order_id: int
    text: Optional[str] = None


class WorkflowResult(BaseModel):
    replies: list[OutboundReply] = Field(default_factory=list)
    triggers: list[Trigger] = Field(default_factory=list)
    deactivate: bool = False

    def reply(self, to: str, text: str) -> "WorkflowResult":
        self.replies.append(OutboundReply(to=to, text=text))
        return self

    def trigger(self, name: str, work_order_id: int, text: Optional[str] = None) -> "WorkflowResult":
        self.triggers.append(Trigger(name=name, work_order_id=work_order_id, text=text))
        return self
