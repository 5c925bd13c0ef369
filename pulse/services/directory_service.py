"""User and patient directory lookups."""

from pulse.models.directory import User, Patient
from pulse.models.triage import UserRole
from pulse.config.database import get_users_collection, get_patients_collection
from pulse.errors import NoFallbackAdminError, NotFoundError
from pulse.utils.time_utils import utc_now
from pymongo import ASCENDING
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class DirectoryService:
    """Read-mostly access to accounts and patient profiles."""

    async def get_user(self, user_id: str) -> Optional[User]:
        collection = await get_users_collection()
        doc = await collection.find_one({"user_id": user_id})
        if doc:
            return User(**doc)
        return None

    async def upsert_user(
        self, external_id: str, email: Optional[str], role: UserRole
    ) -> User:
        """
        Create the account for an identity on first sight, else touch it.

        The new account's ``user_id`` is the identity provider subject, so
        it matches the ``userId`` claim every route authorizes against. The
        role is only set at creation; later logins never change it.

        Args:
            external_id: Subject id from the identity provider
            email: Email claim, if any
            role: Role claim

        Returns:
            The stored User
        """
        collection = await get_users_collection()
        now = utc_now()
        doc = await collection.find_one({"external_id": external_id})

        if doc:
            await collection.update_one(
                {"user_id": doc["user_id"]},
                {"$set": {"email": email, "last_login_at": now}},
            )
            doc.update({"email": email, "last_login_at": now})
            return User(**doc)

        user = User(
            user_id=external_id,
            external_id=external_id,
            email=email,
            role=role,
            created_at=now,
            last_login_at=now,
        )
        await collection.insert_one(user.model_dump(by_alias=True))
        logger.info(f"Created {role.value} user {user.user_id}")
        return user

    async def find_fallback_admin(self) -> User:
        """
        Pick the admin who receives escalations for unassigned patients.

        Admins are ordered by (created_at, user_id) so repeated calls agree.

        Raises:
            NoFallbackAdminError: If no admin account exists
        """
        collection = await get_users_collection()
        cursor = (
            collection.find({"role": UserRole.ADMIN})
            .sort([("created_at", ASCENDING), ("user_id", ASCENDING)])
            .limit(1)
        )
        async for doc in cursor:
            return User(**doc)

        logger.error("No admin account exists to receive unassigned escalations")
        raise NoFallbackAdminError()

    async def get_patient(self, patient_id: str) -> Optional[Patient]:
        collection = await get_patients_collection()
        doc = await collection.find_one({"patient_id": patient_id})
        if doc:
            return Patient(**doc)
        return None

    async def require_patient(self, patient_id: str) -> Patient:
        patient = await self.get_patient(patient_id)
        if patient is None:
            raise NotFoundError("patient", patient_id)
        return patient

    async def get_patient_by_user(self, user_id: str) -> Optional[Patient]:
        collection = await get_patients_collection()
        doc = await collection.find_one({"user_id": user_id})
        if doc:
            return Patient(**doc)
        return None

    async def create_patient(self, patient: Patient) -> Patient:
        collection = await get_patients_collection()
        await collection.insert_one(patient.model_dump(by_alias=True))
        logger.info(f"Created patient {patient.patient_id} for user {patient.user_id}")
        return patient

    async def assign_physician(self, patient_id: str, physician_id: str) -> None:
        """
        Assign (or reassign) a patient's physician.

        Raises:
            NotFoundError: If the patient or physician does not exist
        """
        physician = await self.get_user(physician_id)
        if physician is None or physician.role != UserRole.PHYSICIAN:
            raise NotFoundError("physician", physician_id)

        collection = await get_patients_collection()
        result = await collection.update_one(
            {"patient_id": patient_id},
            {"$set": {"assigned_physician_id": physician_id}},
        )
        if result.matched_count == 0:
            raise NotFoundError("patient", patient_id)
        logger.info(f"Assigned physician {physician_id} to patient {patient_id}")


# Global service instance
_directory_service: Optional[DirectoryService] = None


def get_directory_service() -> DirectoryService:
    """Get or create DirectoryService instance."""
    global _directory_service
    if _directory_service is None:
        _directory_service = DirectoryService()
    return _directory_service
