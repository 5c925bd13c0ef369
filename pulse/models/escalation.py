"""MongoDB schema for escalations."""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from pulse.models.triage import EscalationStatus, Severity
from pulse.utils.time_utils import utc_now
import uuid


class Escalation(BaseModel):
    """A patient interaction routed to a physician (or fallback admin).

    ``reason``, ``severity``, ``chat_id`` and ``patient_id`` are fixed at
    creation; only the lifecycle fields change afterwards.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "escalation_id": "9b2d7c1e-0f4a-4c65-a0a5-3e7f7bb1c2d4",
                "chat_id": "665f1c2ab8e4a1d3c9f01a2b",
                "patient_id": "patient123",
                "physician_id": "physician456",
                "reason": "Patient reports chest pain radiating to left arm",
                "severity": "urgent",
                "status": "pending",
            }
        }
    )

    escalation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    chat_id: str
    patient_id: str
    physician_id: str
    reason: str
    severity: Severity
    status: EscalationStatus = EscalationStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None


class EscalationStats(BaseModel):
    """Counts for a physician dashboard."""

    pending: int = 0
    acknowledged: int = 0
    resolved: int = 0
    urgent_count: int = 0
