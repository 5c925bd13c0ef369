"""Triage orchestration for inbound patient messages.

One inbound message produces exactly one persisted pair, user turn first:

  - assistant failure  -> [user, assistant apology]           (degraded)
  - plain reply        -> [user, assistant reply]
  - escalation reply   -> [user, system escalation notice]    (+ Escalation, chat escalated)
  - escalation that cannot be routed -> [user, system routing failure], then
    the configuration error propagates to the caller
"""

from langchain_core.language_models import BaseChatModel
from pydantic import BaseModel
from pulse.agents.prompts import (
    ASSISTANT_ERROR_MESSAGE,
    ESCALATED_TO_PHYSICIAN_MESSAGE,
    ESCALATED_UNASSIGNED_MESSAGE,
    ESCALATION_ROUTING_FAILED_MESSAGE,
)
from pulse.agents.triage_agent import MarkerReplyParser, ReplyParser, build_context
from pulse.config.llm_config import get_assistant_model
from pulse.errors import AssistantUnavailableError, ConfigurationError, InvalidTransitionError
from pulse.models.chat import Chat
from pulse.models.directory import Patient
from pulse.models.triage import ChatStatus, MessageRole, Severity
from pulse.services.chat_service import ChatService, get_chat_service
from pulse.services.directory_service import DirectoryService, get_directory_service
from pulse.services.escalation_service import EscalationService
from pulse.utils.llm_helpers import invoke_llm_with_timeout
from pulse.utils.severity import classify
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class TriageOutcome(BaseModel):
    """Result of handling one inbound message."""

    chat_id: str
    reply: str
    degraded: bool = False
    escalated: bool = False
    escalation_id: Optional[str] = None
    severity: Optional[Severity] = None


class TriageService:
    """Drives the assistant call and the chat/escalation state machines."""

    def __init__(
        self,
        llm: Optional[BaseChatModel] = None,
        chat_service: Optional[ChatService] = None,
        escalation_service: Optional[EscalationService] = None,
        directory_service: Optional[DirectoryService] = None,
        reply_parser: Optional[ReplyParser] = None,
    ):
        self._llm = llm
        self.chats = chat_service or get_chat_service()
        self.directory = directory_service or get_directory_service()
        self.escalations = escalation_service or EscalationService(
            chat_service=self.chats, directory_service=self.directory
        )
        self.parser = reply_parser or MarkerReplyParser()

    @property
    def llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = get_assistant_model()
        return self._llm

    async def send_message(self, chat_id: str, content: str) -> str:
        """Handle a patient message and return the text shown to the patient."""
        outcome = await self.handle_inbound_message(chat_id, content)
        return outcome.reply

    async def handle_inbound_message(self, chat_id: str, text: str) -> TriageOutcome:
        """
        Run one triage turn for a patient message.

        Args:
            chat_id: Chat the message belongs to
            text: Patient message

        Returns:
            TriageOutcome with the patient-facing reply

        Raises:
            NotFoundError: If the chat does not exist
            InvalidTransitionError: If the chat is resolved
            NoFallbackAdminError: If an unassigned escalation has no admin to go to
        """
        chat = await self.chats.require_chat(chat_id)
        if chat.status == ChatStatus.RESOLVED:
            raise InvalidTransitionError(
                f"Chat {chat_id} is resolved; start a new chat instead"
            )

        history = await self.chats.get_messages(chat_id)
        patient = await self.directory.get_patient(chat.patient_id)
        if patient is None:
            logger.warning(f"Patient {chat.patient_id} for chat {chat_id} not found")

        context = build_context(history, patient, text)

        try:
            reply_text = await invoke_llm_with_timeout(self.llm, context)
        except AssistantUnavailableError as e:
            logger.warning(f"Degraded reply for chat {chat_id}: {e.detail}")
            await self.chats.add_message_pair(
                chat_id,
                text,
                MessageRole.ASSISTANT,
                ASSISTANT_ERROR_MESSAGE,
                {"degraded": True},
            )
            return TriageOutcome(
                chat_id=chat_id, reply=ASSISTANT_ERROR_MESSAGE, degraded=True
            )

        verdict = self.parser.parse(reply_text)
        if not verdict.is_escalation:
            await self.chats.add_message_pair(
                chat_id, text, MessageRole.ASSISTANT, verdict.reply_text
            )
            return TriageOutcome(chat_id=chat_id, reply=verdict.reply_text)

        return await self._escalate(chat, patient, text, verdict.reason)

    async def _escalate(
        self, chat: Chat, patient: Optional[Patient], text: str, reason: str
    ) -> TriageOutcome:
        severity = classify(reason)
        physician_id = patient.assigned_physician_id if patient else None

        try:
            if physician_id:
                escalation = await self.escalations.create_escalation(
                    chat_id=chat.chat_id,
                    patient_id=chat.patient_id,
                    physician_id=physician_id,
                    reason=reason,
                    severity=severity,
                )
                notice = ESCALATED_TO_PHYSICIAN_MESSAGE
            else:
                escalation = await self.escalations.create_unassigned_escalation(
                    chat_id=chat.chat_id,
                    patient_id=chat.patient_id,
                    reason=reason,
                    severity=severity,
                )
                notice = ESCALATED_UNASSIGNED_MESSAGE
        except ConfigurationError as e:
            logger.error(f"Escalation for chat {chat.chat_id} could not be routed: {e}")
            await self.chats.add_message_pair(
                chat.chat_id,
                text,
                MessageRole.SYSTEM,
                ESCALATION_ROUTING_FAILED_MESSAGE,
                {"escalation_info": {"routed": False, "severity": severity.value}},
            )
            raise

        await self.chats.add_message_pair(
            chat.chat_id,
            text,
            MessageRole.SYSTEM,
            notice,
            {
                "escalation_info": {
                    "routed": True,
                    "escalation_id": escalation.escalation_id,
                    "severity": severity.value,
                    "unassigned": not physician_id,
                }
            },
        )

        try:
            await self.chats.escalate_chat(chat.chat_id, escalation.physician_id)
        except InvalidTransitionError as e:
            # Chat was resolved meanwhile; the escalation stays pending for its physician.
            logger.warning(
                f"Escalation {escalation.escalation_id} created for chat "
                f"{chat.chat_id} that is no longer open: {e.detail}"
            )

        logger.info(
            f"Chat {chat.chat_id} escalated ({severity.value}) "
            f"as {escalation.escalation_id}"
        )
        return TriageOutcome(
            chat_id=chat.chat_id,
            reply=notice,
            escalated=True,
            escalation_id=escalation.escalation_id,
            severity=severity,
        )


# Global service instance
_triage_service: Optional[TriageService] = None


def get_triage_service() -> TriageService:
    """Get or create TriageService instance."""
    global _triage_service
    if _triage_service is None:
        _triage_service = TriageService()
    return _triage_service
