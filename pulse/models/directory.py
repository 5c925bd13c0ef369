"""MongoDB schema for user accounts and patient profiles."""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from pulse.models.triage import UserRole
from pulse.utils.time_utils import utc_now
import uuid


class User(BaseModel):
    """Account linked to the external identity provider."""

    user_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    external_id: Optional[str] = None
    email: Optional[str] = None
    role: UserRole
    created_at: datetime = Field(default_factory=utc_now)
    last_login_at: Optional[datetime] = None


class Patient(BaseModel):
    """Patient profile. The triage pipeline only reads it."""

    patient_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    first_name: str
    last_name: str
    date_of_birth: Optional[str] = None
    phone_number: Optional[str] = None
    assigned_physician_id: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
