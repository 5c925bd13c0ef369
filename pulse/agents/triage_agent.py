"""Context assembly and reply interpretation for the triage assistant.

The orchestrator never looks at the raw marker convention: replies go
through a ``ReplyParser`` that yields an ``AssistantVerdict``.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from pulse.agents.prompts import PATIENT_CONTEXT_TEMPLATE, PULSE_SYSTEM_PROMPT
from pulse.config.settings import settings
from pulse.models.chat import Message
from pulse.models.directory import Patient
from pulse.models.triage import MessageRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssistantVerdict:
    """Typed reading of one assistant reply."""

    is_escalation: bool
    reason: str
    reply_text: str


class ReplyParser(Protocol):
    def parse(self, reply_text: str) -> AssistantVerdict: ...


class MarkerReplyParser:
    """Escalation iff the reply starts with ``marker``; the rest is the reason."""

    def __init__(self, marker: Optional[str] = None):
        self.marker = marker or settings.escalation_marker

    def parse(self, reply_text: str) -> AssistantVerdict:
        text = reply_text or ""
        if text.startswith(self.marker):
            reason = text[len(self.marker):].strip()
            return AssistantVerdict(is_escalation=True, reason=reason, reply_text=text)
        return AssistantVerdict(is_escalation=False, reason="", reply_text=text)


def build_context(
    history: Sequence[Message],
    patient: Optional[Patient],
    new_message: str,
    history_limit: Optional[int] = None,
) -> List[BaseMessage]:
    """
    Assemble the assistant's input for one turn.

    Order: system prompt, patient identity line (when known), the most recent
    user/assistant turns (system notices are skipped), then the new user turn.

    Args:
        history: Stored chat messages in ascending order
        patient: Patient the chat belongs to, if found
        new_message: The inbound patient message
        history_limit: Max historical turns (defaults to settings.assistant_history_limit)

    Returns:
        LangChain messages ready for ``ainvoke``
    """
    if history_limit is None:
        history_limit = settings.assistant_history_limit

    messages: List[BaseMessage] = [
        SystemMessage(
            content=PULSE_SYSTEM_PROMPT.format(
                escalation_marker=settings.escalation_marker
            )
        )
    ]

    if patient is not None:
        messages.append(
            SystemMessage(
                content=PATIENT_CONTEXT_TEMPLATE.format(
                    display_name=patient.display_name
                )
            )
        )

    turns = [m for m in history if m.role in (MessageRole.USER, MessageRole.ASSISTANT)]
    if history_limit >= 0 and len(turns) > history_limit:
        logger.info(f"Trimming chat history from {len(turns)} to {history_limit} turns")
        turns = turns[len(turns) - history_limit:]

    for msg in turns:
        if msg.role == MessageRole.USER:
            messages.append(HumanMessage(content=msg.content))
        else:
            messages.append(AIMessage(content=msg.content))

    messages.append(HumanMessage(content=new_message))
    return messages
