"""API request and response models."""

from pydantic import BaseModel, Field
from typing import Optional, List
from pulse.models.audit import AuditEntry
from pulse.models.chat import Chat, Message
from pulse.models.escalation import Escalation
from pulse.models.triage import Severity


class ActiveChatRequest(BaseModel):
    """Get-or-create the active chat. Patients may omit ``patient_id``."""

    patient_id: Optional[str] = Field(None, description="Patient ID")


class ActiveChatResponse(BaseModel):
    chat_id: str


class SendMessageRequest(BaseModel):
    """Patient message for the triage assistant."""

    content: str = Field(..., min_length=1, max_length=5000)


class SendMessageResponse(BaseModel):
    chat_id: str
    response: str
    escalated: bool = False
    escalation_id: Optional[str] = None
    severity: Optional[Severity] = None


class ChatListResponse(BaseModel):
    chats: List[Chat]


class MessageListResponse(BaseModel):
    chat_id: str
    messages: List[Message]


class ResolveEscalationRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=5000)


class EscalationListResponse(BaseModel):
    escalations: List[Escalation]
    count: int


class SuccessResponse(BaseModel):
    success: bool = True


class AuditLogResponse(BaseModel):
    entries: List[AuditEntry]
