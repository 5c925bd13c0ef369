"""Chat API endpoints.

Patients talk to the triage assistant through their single active chat.
Every route that reads or changes chat data runs through the audit
middleware, so message content is only ever logged as ``[REDACTED]``.
"""

from fastapi import APIRouter, Depends
from typing import Any, Dict
import logging

from pulse.api.dependencies import (
    ensure_chat_access,
    ensure_patient_access,
    get_current_user,
    require_roles,
)
from pulse.errors import NotFoundError
from pulse.middleware.audit import audited_operation
from pulse.models.messages import (
    ActiveChatRequest,
    ActiveChatResponse,
    ChatListResponse,
    MessageListResponse,
    SendMessageRequest,
    SendMessageResponse,
    SuccessResponse,
)
from pulse.models.chat import Chat
from pulse.models.triage import UserRole
from pulse.services.chat_service import get_chat_service
from pulse.services.directory_service import get_directory_service
from pulse.services.triage_service import get_triage_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chats", tags=["Chats"])


async def _load_chat_for(user: Dict[str, Any], chat_id: str) -> Chat:
    chat = await get_chat_service().require_chat(chat_id)
    await ensure_chat_access(user, chat)
    return chat


@router.post("/active", response_model=ActiveChatResponse)
async def get_or_create_active_chat(
    request: ActiveChatRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    """Return the caller's active chat, creating one if none exists."""
    patient_id = request.patient_id
    if patient_id is None:
        patient = await get_directory_service().get_patient_by_user(
            current_user["user_id"]
        )
        if patient is None:
            raise NotFoundError("patient profile for user", current_user["user_id"])
        patient_id = patient.patient_id

    async def _op(patient_id: str) -> ActiveChatResponse:
        await ensure_patient_access(current_user, patient_id)
        chat_id = await get_chat_service().get_or_create_active_chat(patient_id)
        return ActiveChatResponse(chat_id=chat_id)

    return await audited_operation(
        "chat_access", "chat", _op, current_user, patient_id=patient_id
    )


@router.get("/patient/{patient_id}", response_model=ChatListResponse)
async def list_patient_chats(
    patient_id: str, current_user: Dict[str, Any] = Depends(get_current_user)
):
    async def _op(patient_id: str) -> ChatListResponse:
        await ensure_patient_access(current_user, patient_id)
        chats = await get_chat_service().list_patient_chats(patient_id)
        return ChatListResponse(chats=chats)

    return await audited_operation(
        "chat_list", "chat", _op, current_user, patient_id=patient_id
    )


@router.get("/escalated", response_model=ChatListResponse)
async def list_escalated_chats(
    current_user: Dict[str, Any] = Depends(
        require_roles(UserRole.PHYSICIAN, UserRole.ADMIN)
    ),
):
    """Chats escalated to the calling physician."""

    async def _op(physician_id: str) -> ChatListResponse:
        chats = await get_chat_service().list_escalated_for_physician(physician_id)
        return ChatListResponse(chats=chats)

    return await audited_operation(
        "chat_list_escalated",
        "chat",
        _op,
        current_user,
        physician_id=current_user["user_id"],
    )


@router.get("/{chat_id}", response_model=Chat)
async def get_chat(chat_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    async def _op(chat_id: str) -> Chat:
        return await _load_chat_for(current_user, chat_id)

    return await audited_operation(
        "chat_view", "chat", _op, current_user, chat_id=chat_id
    )


@router.get("/{chat_id}/messages", response_model=MessageListResponse)
async def get_messages(
    chat_id: str, current_user: Dict[str, Any] = Depends(get_current_user)
):
    async def _op(chat_id: str) -> MessageListResponse:
        await _load_chat_for(current_user, chat_id)
        messages = await get_chat_service().get_messages(chat_id)
        return MessageListResponse(chat_id=chat_id, messages=messages)

    return await audited_operation(
        "chat_messages_view", "chat", _op, current_user, chat_id=chat_id
    )


@router.post("/{chat_id}/messages", response_model=SendMessageResponse)
async def send_message(
    chat_id: str,
    request: SendMessageRequest,
    current_user: Dict[str, Any] = Depends(
        require_roles(UserRole.PATIENT, UserRole.ADMIN)
    ),
):
    """
    Send a patient message to the triage assistant.

    The reply may be the assistant's answer, a fixed escalation notice, or a
    fixed apology when the assistant is unavailable.
    """

    async def _op(chat_id: str, content: str) -> SendMessageResponse:
        await _load_chat_for(current_user, chat_id)
        outcome = await get_triage_service().handle_inbound_message(chat_id, content)
        return SendMessageResponse(
            chat_id=chat_id,
            response=outcome.reply,
            escalated=outcome.escalated,
            escalation_id=outcome.escalation_id,
            severity=outcome.severity,
        )

    return await audited_operation(
        "chat_message_send",
        "chat",
        _op,
        current_user,
        chat_id=chat_id,
        content=request.content,
    )


@router.post("/{chat_id}/resolve", response_model=SuccessResponse)
async def resolve_chat(
    chat_id: str, current_user: Dict[str, Any] = Depends(get_current_user)
):
    async def _op(chat_id: str) -> SuccessResponse:
        await _load_chat_for(current_user, chat_id)
        await get_chat_service().resolve_chat(chat_id)
        return SuccessResponse()

    return await audited_operation(
        "chat_resolve", "chat", _op, current_user, chat_id=chat_id
    )
