"""Triage, chat and escalation enums."""

from enum import Enum


class Severity(str, Enum):
    """Escalation urgency, ordered low < medium < high < urgent."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.URGENT: 3,
}


class ChatStatus(str, Enum):
    """Chat lifecycle status."""

    ACTIVE = "active"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class MessageRole(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class EscalationStatus(str, Enum):
    """Escalation lifecycle status."""

    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class UserRole(str, Enum):
    """Role claimed by the identity provider."""

    PATIENT = "patient"
    PHYSICIAN = "physician"
    ADMIN = "admin"
