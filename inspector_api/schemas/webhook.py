from typing import Optional

from pydantic import BaseModel


class WebhookResponse(BaseModel):
    success: bool
    message: str
    conversation_id: Optional[int] = None
    intent: Optional[str] = None
