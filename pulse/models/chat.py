"""MongoDB schema for chats and chat messages."""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from bson import ObjectId
from pulse.models.triage import ChatStatus, MessageRole
from pulse.utils.time_utils import utc_now
import uuid


def new_chat_id() -> str:
    """Time-ordered id: later chats from one process sort after earlier ones."""
    return str(ObjectId())


class Chat(BaseModel):
    """Chat session document. At most one ``active`` chat per patient."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "chat_id": "665f1c2ab8e4a1d3c9f01a2b",
                "patient_id": "patient123",
                "status": "active",
            }
        }
    )

    chat_id: str = Field(default_factory=new_chat_id)
    patient_id: str
    status: ChatStatus = ChatStatus.ACTIVE
    created_at: datetime = Field(default_factory=utc_now)
    escalated_at: Optional[datetime] = None
    escalated_to: Optional[str] = None
    resolved_at: Optional[datetime] = None


class Message(BaseModel):
    """Individual message in a chat. Append-only."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    chat_id: str
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: dict = Field(default_factory=dict)
