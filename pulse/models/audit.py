"""MongoDB schema for audit trail entries."""

from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from pulse.utils.time_utils import utc_now


class AuditEntry(BaseModel):
    """Write-once record of a guarded operation.

    ``metadata`` is always the sanitized projection of the request, never the
    raw input.
    """

    user_id: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    duration_ms: Optional[int] = None
    policy_version: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
