"""Escalation storage, routing and lifecycle transitions."""

from pulse.models.escalation import Escalation, EscalationStats
from pulse.models.triage import EscalationStatus, Severity, UserRole
from pulse.config.database import get_escalations_collection
from pulse.errors import AccessDeniedError, InvalidTransitionError, NotFoundError
from pulse.services.chat_service import ChatService, get_chat_service
from pulse.services.directory_service import DirectoryService, get_directory_service
from pulse.utils.time_utils import utc_now
from pymongo import DESCENDING
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

UNASSIGNED_PATIENT_TAG = "[UNASSIGNED PATIENT]"


class EscalationService:
    """Service for managing escalations."""

    def __init__(
        self,
        chat_service: Optional[ChatService] = None,
        directory_service: Optional[DirectoryService] = None,
    ):
        self.chats = chat_service or get_chat_service()
        self.directory = directory_service or get_directory_service()

    async def create_escalation(
        self,
        chat_id: str,
        patient_id: str,
        physician_id: str,
        reason: str,
        severity: Severity,
    ) -> Escalation:
        """
        Create a pending escalation bound to a physician.

        Args:
            chat_id: Chat that triggered the escalation
            patient_id: Patient the chat belongs to
            physician_id: Clinician (or admin) responsible for it
            reason: Escalation reason as stated by the assistant
            severity: Classified severity

        Returns:
            The stored Escalation
        """
        escalation = Escalation(
            chat_id=chat_id,
            patient_id=patient_id,
            physician_id=physician_id,
            reason=reason,
            severity=severity,
            status=EscalationStatus.PENDING,
        )

        collection = await get_escalations_collection()
        await collection.insert_one(escalation.model_dump(by_alias=True))

        logger.info(
            f"Created {severity.value} escalation {escalation.escalation_id} "
            f"for chat {chat_id} -> {physician_id}"
        )
        return escalation

    async def create_unassigned_escalation(
        self,
        chat_id: str,
        patient_id: str,
        reason: str,
        severity: Severity,
    ) -> Escalation:
        """
        Create an escalation for a patient with no assigned physician.

        The fallback admin receives it and the reason is tagged so the admin
        can tell it apart from their own caseload.

        Raises:
            NoFallbackAdminError: If no admin account exists
        """
        admin = await self.directory.find_fallback_admin()
        return await self.create_escalation(
            chat_id=chat_id,
            patient_id=patient_id,
            physician_id=admin.user_id,
            reason=f"{UNASSIGNED_PATIENT_TAG} {reason}",
            severity=severity,
        )

    async def get_escalation(self, escalation_id: str) -> Optional[Escalation]:
        collection = await get_escalations_collection()
        doc = await collection.find_one({"escalation_id": escalation_id})

        if doc:
            return Escalation(**doc)
        return None

    async def require_escalation(self, escalation_id: str) -> Escalation:
        escalation = await self.get_escalation(escalation_id)
        if escalation is None:
            raise NotFoundError("escalation", escalation_id)
        return escalation

    async def list_for_physician(
        self, physician_id: str, status: Optional[EscalationStatus] = None
    ) -> List[Escalation]:
        """Escalations assigned to a physician, newest first, optionally by status."""
        query: Dict[str, Any] = {"physician_id": physician_id}
        if status is not None:
            query["status"] = status

        collection = await get_escalations_collection()
        cursor = collection.find(query).sort("created_at", DESCENDING)
        return [Escalation(**doc) async for doc in cursor]

    async def list_for_patient(self, patient_id: str) -> List[Escalation]:
        collection = await get_escalations_collection()
        cursor = collection.find({"patient_id": patient_id}).sort(
            "created_at", DESCENDING
        )
        return [Escalation(**doc) async for doc in cursor]

    async def list_for_chat(self, chat_id: str) -> List[Escalation]:
        collection = await get_escalations_collection()
        cursor = collection.find({"chat_id": chat_id}).sort("created_at", DESCENDING)
        return [Escalation(**doc) async for doc in cursor]

    async def list_pending_by_severity(
        self, severity: Severity, physician_id: Optional[str] = None
    ) -> List[Escalation]:
        """Pending escalations of one severity, oldest first."""
        query: Dict[str, Any] = {
            "severity": severity,
            "status": EscalationStatus.PENDING,
        }
        if physician_id is not None:
            query["physician_id"] = physician_id

        collection = await get_escalations_collection()
        cursor = collection.find(query).sort("created_at", 1)
        return [Escalation(**doc) async for doc in cursor]

    async def get_stats(self, physician_id: Optional[str] = None) -> EscalationStats:
        """Counts by status plus pending urgent count, optionally per physician."""
        base: Dict[str, Any] = {}
        if physician_id is not None:
            base["physician_id"] = physician_id

        collection = await get_escalations_collection()
        counts = {}
        for status in EscalationStatus:
            counts[status.value] = await collection.count_documents(
                {**base, "status": status}
            )
        urgent = await collection.count_documents(
            {**base, "status": EscalationStatus.PENDING, "severity": Severity.URGENT}
        )
        return EscalationStats(**counts, urgent_count=urgent)

    def _check_actor(self, escalation: Escalation, actor: Optional[dict]) -> None:
        if actor is None:
            return
        role = actor.get("role")
        if role == UserRole.ADMIN:
            return
        if role == UserRole.PHYSICIAN and actor.get("user_id") == escalation.physician_id:
            return
        raise AccessDeniedError(
            f"Escalation {escalation.escalation_id} is not assigned to this user"
        )

    async def acknowledge_escalation(
        self, escalation_id: str, actor: Optional[dict] = None
    ) -> None:
        """
        Acknowledge a pending escalation.

        Args:
            escalation_id: Escalation identifier
            actor: Authenticated user performing the transition, if any

        Raises:
            NotFoundError: If the escalation does not exist
            AccessDeniedError: If a physician acts on someone else's escalation
            InvalidTransitionError: If the escalation is not pending
        """
        escalation = await self.require_escalation(escalation_id)
        self._check_actor(escalation, actor)

        collection = await get_escalations_collection()
        result = await collection.update_one(
            {"escalation_id": escalation_id, "status": EscalationStatus.PENDING},
            {
                "$set": {
                    "status": EscalationStatus.ACKNOWLEDGED,
                    "acknowledged_at": utc_now(),
                }
            },
        )
        if result.modified_count == 0:
            current = await self.require_escalation(escalation_id)
            raise InvalidTransitionError(
                f"Escalation {escalation_id} is {current.status.value} "
                "and cannot be acknowledged"
            )

        logger.info(f"Acknowledged escalation {escalation_id}")

    async def resolve_escalation(
        self,
        escalation_id: str,
        notes: Optional[str] = None,
        actor: Optional[dict] = None,
    ) -> None:
        """
        Resolve an escalation and the chat it came from.

        Raises:
            NotFoundError: If the escalation does not exist
            AccessDeniedError: If a physician acts on someone else's escalation
            InvalidTransitionError: If the escalation is already resolved
        """
        escalation = await self.require_escalation(escalation_id)
        self._check_actor(escalation, actor)

        collection = await get_escalations_collection()
        result = await collection.update_one(
            {
                "escalation_id": escalation_id,
                "status": {
                    "$in": [EscalationStatus.PENDING, EscalationStatus.ACKNOWLEDGED]
                },
            },
            {
                "$set": {
                    "status": EscalationStatus.RESOLVED,
                    "resolved_at": utc_now(),
                    "notes": notes,
                }
            },
        )
        if result.modified_count == 0:
            raise InvalidTransitionError(
                f"Escalation {escalation_id} is already resolved"
            )

        logger.info(f"Resolved escalation {escalation_id}")

        # Another escalation on the same chat may have closed it already.
        if not await self.chats.close_chat(escalation.chat_id):
            logger.info(
                f"Chat {escalation.chat_id} for escalation {escalation_id} "
                "was already resolved or no longer exists"
            )


# Global service instance
_escalation_service: Optional[EscalationService] = None


def get_escalation_service() -> EscalationService:
    """Get or create EscalationService instance."""
    global _escalation_service
    if _escalation_service is None:
        _escalation_service = EscalationService()
    return _escalation_service
