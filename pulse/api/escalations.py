"""Escalation API endpoints for physicians and admins."""

from fastapi import APIRouter, Depends, Query
from typing import Any, Dict, Optional
import logging

from pulse.api.dependencies import (
    ensure_chat_access,
    ensure_escalation_access,
    ensure_patient_access,
    get_current_user,
    require_roles,
)
from pulse.middleware.audit import audited_operation
from pulse.models.escalation import Escalation, EscalationStats
from pulse.models.messages import (
    EscalationListResponse,
    ResolveEscalationRequest,
    SuccessResponse,
)
from pulse.models.triage import EscalationStatus, Severity, UserRole
from pulse.services.chat_service import get_chat_service
from pulse.services.escalation_service import get_escalation_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/escalations", tags=["Escalations"])

_clinician = require_roles(UserRole.PHYSICIAN, UserRole.ADMIN)


@router.get("", response_model=EscalationListResponse)
async def list_for_physician(
    status: Optional[EscalationStatus] = Query(None),
    current_user: Dict[str, Any] = Depends(_clinician),
):
    """Escalations assigned to the calling physician."""

    async def _op(status: Optional[EscalationStatus]) -> EscalationListResponse:
        escalations = await get_escalation_service().list_for_physician(
            current_user["user_id"], status
        )
        return EscalationListResponse(escalations=escalations, count=len(escalations))

    return await audited_operation(
        "escalation_list", "escalation", _op, current_user, status=status
    )


@router.get("/stats", response_model=EscalationStats)
async def get_stats(current_user: Dict[str, Any] = Depends(_clinician)):
    physician_id = (
        None if current_user["role"] == UserRole.ADMIN else current_user["user_id"]
    )
    return await get_escalation_service().get_stats(physician_id)


@router.get("/urgent", response_model=EscalationListResponse)
async def get_urgent(current_user: Dict[str, Any] = Depends(_clinician)):
    """Pending urgent escalations for the dashboard."""
    physician_id = (
        None if current_user["role"] == UserRole.ADMIN else current_user["user_id"]
    )

    async def _op(
        severity: Severity, physician_id: Optional[str]
    ) -> EscalationListResponse:
        escalations = await get_escalation_service().list_pending_by_severity(
            severity, physician_id
        )
        return EscalationListResponse(escalations=escalations, count=len(escalations))

    return await audited_operation(
        "escalation_list_urgent",
        "escalation",
        _op,
        current_user,
        severity=Severity.URGENT,
        physician_id=physician_id,
    )


@router.get("/patient/{patient_id}", response_model=EscalationListResponse)
async def list_for_patient(
    patient_id: str, current_user: Dict[str, Any] = Depends(get_current_user)
):
    async def _op(patient_id: str) -> EscalationListResponse:
        await ensure_patient_access(current_user, patient_id)
        escalations = await get_escalation_service().list_for_patient(patient_id)
        return EscalationListResponse(escalations=escalations, count=len(escalations))

    return await audited_operation(
        "escalation_list", "escalation", _op, current_user, patient_id=patient_id
    )


@router.get("/chat/{chat_id}", response_model=EscalationListResponse)
async def list_for_chat(
    chat_id: str, current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Escalations raised from one chat, newest first."""

    async def _op(chat_id: str) -> EscalationListResponse:
        chat = await get_chat_service().require_chat(chat_id)
        await ensure_chat_access(current_user, chat)
        escalations = await get_escalation_service().list_for_chat(chat_id)
        return EscalationListResponse(escalations=escalations, count=len(escalations))

    return await audited_operation(
        "escalation_list", "escalation", _op, current_user, chat_id=chat_id
    )


@router.get("/{escalation_id}", response_model=Escalation)
async def get_escalation(
    escalation_id: str, current_user: Dict[str, Any] = Depends(get_current_user)
):
    async def _op(escalation_id: str) -> Escalation:
        escalation = await get_escalation_service().require_escalation(escalation_id)
        await ensure_escalation_access(current_user, escalation)
        return escalation

    return await audited_operation(
        "escalation_view", "escalation", _op, current_user, escalation_id=escalation_id
    )


@router.post("/{escalation_id}/acknowledge", response_model=SuccessResponse)
async def acknowledge_escalation(
    escalation_id: str, current_user: Dict[str, Any] = Depends(_clinician)
):
    async def _op(escalation_id: str) -> SuccessResponse:
        await get_escalation_service().acknowledge_escalation(
            escalation_id, actor=current_user
        )
        return SuccessResponse()

    return await audited_operation(
        "escalation_acknowledge",
        "escalation",
        _op,
        current_user,
        escalation_id=escalation_id,
    )


@router.post("/{escalation_id}/resolve", response_model=SuccessResponse)
async def resolve_escalation(
    escalation_id: str,
    request: ResolveEscalationRequest,
    current_user: Dict[str, Any] = Depends(_clinician),
):
    async def _op(escalation_id: str, notes: Optional[str]) -> SuccessResponse:
        await get_escalation_service().resolve_escalation(
            escalation_id, notes=notes, actor=current_user
        )
        return SuccessResponse()

    return await audited_operation(
        "escalation_resolve",
        "escalation",
        _op,
        current_user,
        escalation_id=escalation_id,
        notes=request.notes,
    )
