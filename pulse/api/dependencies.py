"""FastAPI dependencies for authentication and resource access.

The JWTAuthMiddleware (registered in main.py) stores the verified identity
in ``request.state.user``:

    {
        "user_id": str,
        "role":    UserRole,   # patient | physician | admin
        "email":   str,
        "subject": str,
    }

Access rules raise ``AccessDeniedError`` (403) and ``NotFoundError`` (404)
so the two stay distinguishable for callers.
"""

from typing import Any, Callable, Dict

from fastapi import HTTPException, Request, status
import logging

from pulse.errors import AccessDeniedError
from pulse.models.chat import Chat
from pulse.models.escalation import Escalation
from pulse.models.triage import UserRole
from pulse.services.directory_service import get_directory_service

logger = logging.getLogger(__name__)


async def get_current_user(request: Request) -> Dict[str, Any]:
    """Return the authenticated user attached by JWTAuthMiddleware.

    The first call per request upserts the caller's directory account, so
    admins and physicians exist in ``users`` once they have logged in.

    Raises:
        HTTP 401 - if the middleware did not populate request.state.user
    """
    user: Dict[str, Any] | None = getattr(request.state, "user", None)

    if not user or not user.get("user_id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated. Provide a valid bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.get("provisioned"):
        account = await get_directory_service().upsert_user(
            external_id=user["user_id"],
            email=user.get("email") or None,
            role=user["role"],
        )
        user["user_id"] = account.user_id
        user["provisioned"] = True

    return user


def require_roles(*roles: UserRole) -> Callable:
    """Dependency factory: the caller's role must be one of ``roles``."""

    async def _check(request: Request) -> Dict[str, Any]:
        user = await get_current_user(request)
        if user.get("role") not in roles:
            logger.info(
                "Denied %s for role=%s (needs %s)",
                request.url.path,
                user.get("role"),
                [r.value for r in roles],
            )
            raise AccessDeniedError(
                "You do not have permission to access this resource"
            )
        return user

    return _check


async def ensure_patient_access(user: Dict[str, Any], patient_id: str) -> None:
    """
    Patients may only reach their own records; physicians only their
    assigned patients; admins anyone.
    """
    role = user.get("role")
    if role == UserRole.ADMIN:
        return

    directory = get_directory_service()
    patient = await directory.require_patient(patient_id)

    if role == UserRole.PATIENT and patient.user_id == user["user_id"]:
        return
    if role == UserRole.PHYSICIAN and patient.assigned_physician_id == user["user_id"]:
        return
    raise AccessDeniedError(f"Access denied to patient {patient_id}")


async def ensure_chat_access(user: Dict[str, Any], chat: Chat) -> None:
    """Patient-level access, plus physicians a chat was escalated to."""
    if user.get("role") == UserRole.PHYSICIAN and chat.escalated_to == user["user_id"]:
        return
    await ensure_patient_access(user, chat.patient_id)


async def ensure_escalation_access(user: Dict[str, Any], escalation: Escalation) -> None:
    if user.get("role") == UserRole.PHYSICIAN and escalation.physician_id == user["user_id"]:
        return
    await ensure_patient_access(user, escalation.patient_id)
