"""Audit middleware with fail-closed field sanitization.

Every key of an operation's input lands in exactly one bucket:
  - deny-listed (PHI/PII)  -> "[REDACTED]"
  - allow-listed (ids/enums) -> the value if primitive, else "[OBJECT]"
  - anything else          -> a type tag such as "[string]", never the value

Keys match exactly or case-insensitively, with ``_`` and ``-`` ignored, so
``date_of_birth``, ``dateOfBirth`` and ``DATE-OF-BIRTH`` are the same field.
The tables live in a versioned ``AuditPolicy`` handed to ``AuditMiddleware``.
"""

import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

from pydantic import BaseModel, Field, PrivateAttr

from pulse.config.settings import settings
from pulse.models.audit import AuditEntry
from pulse.services.audit_service import AuditService, get_audit_service

logger = logging.getLogger(__name__)

T = TypeVar("T")

REDACTED = "[REDACTED]"
OBJECT_TAG = "[OBJECT]"


def normalize_field_name(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


class AuditPolicy(BaseModel):
    """Versioned field-classification table."""

    version: str
    deny_fields: frozenset = Field(default_factory=frozenset)
    allow_fields: frozenset = Field(default_factory=frozenset)

    _deny: set = PrivateAttr(default_factory=set)
    _allow: set = PrivateAttr(default_factory=set)

    def model_post_init(self, __context: Any) -> None:
        self._deny = {normalize_field_name(f) for f in self.deny_fields}
        self._allow = {normalize_field_name(f) for f in self.allow_fields}

    def is_denied(self, key: str) -> bool:
        return normalize_field_name(key) in self._deny

    def is_allowed(self, key: str) -> bool:
        return normalize_field_name(key) in self._allow


DEFAULT_AUDIT_POLICY = AuditPolicy(
    version="2024-01-v1",
    deny_fields=frozenset(
        {
            "password",
            "ssn",
            "socialSecurityNumber",
            "dateOfBirth",
            "dob",
            "phoneNumber",
            "phone",
            "email",
            "address",
            "medicalHistory",
            "diagnosis",
            "treatment",
            "prescription",
            "labResults",
            "symptoms",
            "notes",
            "content",
            "message",
            "reason",
            "firstName",
            "lastName",
            "emergencyContact",
            "insuranceNumber",
            "creditCard",
            "bankAccount",
        }
    ),
    allow_fields=frozenset(
        {
            "id",
            "_id",
            "patientId",
            "userId",
            "documentId",
            "chatId",
            "escalationId",
            "physicianId",
            "category",
            "action",
            "status",
            "severity",
            "role",
            "type",
            "page",
            "limit",
            "sortBy",
            "sortOrder",
        }
    ),
)


def load_audit_policy(path: Optional[str] = None) -> AuditPolicy:
    """
    Load the audit policy from a JSON file, or return the built-in default.

    The file holds ``{"version": ..., "deny_fields": [...], "allow_fields": [...]}``.
    """
    if not path:
        return DEFAULT_AUDIT_POLICY

    with open(path, "r") as fh:
        policy = AuditPolicy.model_validate_json(fh.read())
    logger.info("Loaded audit policy %s from %s", policy.version, path)
    return policy


def _type_tag(value: Any) -> str:
    if value is None:
        return "[null]"
    if isinstance(value, bool):
        return "[boolean]"
    if isinstance(value, (int, float)):
        return "[number]"
    if isinstance(value, str):
        return "[string]"
    return "[object]"


def _is_primitive(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def sanitize_for_audit(
    payload: Any, policy: AuditPolicy = DEFAULT_AUDIT_POLICY
) -> Dict[str, Any]:
    """
    Project an operation's input onto loggable metadata.

    Args:
        payload: Raw input (mapping or pydantic model); anything else yields {}
        policy: Field-classification table

    Returns:
        Sanitized metadata dict with the same keys as the input
    """
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    if not isinstance(payload, Mapping):
        return {}

    sanitized: Dict[str, Any] = {}
    for key, value in payload.items():
        key = str(key)

        if policy.is_denied(key):
            sanitized[key] = REDACTED
            continue

        if policy.is_allowed(key):
            if isinstance(value, Enum):
                value = value.value
            sanitized[key] = value if _is_primitive(value) else OBJECT_TAG
            continue

        sanitized[key] = _type_tag(value)

    return sanitized


def _resource_id_from(params: Mapping[str, Any]) -> Optional[str]:
    """First ``*_id`` parameter with a primitive value, as the audited resource."""
    for key, value in params.items():
        if key.endswith("_id") and isinstance(value, (str, int)):
            return str(value)
    return None


class AuditMiddleware:
    """Wraps sensitive operations and records an audit entry on success."""

    def __init__(
        self,
        policy: AuditPolicy = DEFAULT_AUDIT_POLICY,
        recorder: Optional[AuditService] = None,
    ):
        self.policy = policy
        self.recorder = recorder or get_audit_service()

    def wrap(
        self,
        action: str,
        resource_type: str,
        operation: Callable[..., Awaitable[T]],
    ) -> Callable[..., Awaitable[T]]:
        """
        Return ``guarded(current_user, **params)`` running ``operation(**params)``.

        One AuditEntry is written only when the operation returns normally
        and ``current_user`` carries a user id. Errors from the operation
        propagate untouched and leave no entry.
        """

        async def guarded(current_user: Optional[dict], **params: Any) -> T:
            started = time.monotonic()
            result = await operation(**params)

            user_id = (current_user or {}).get("user_id")
            if user_id:
                entry = AuditEntry(
                    user_id=user_id,
                    action=action,
                    resource_type=resource_type,
                    resource_id=_resource_id_from(params),
                    duration_ms=int((time.monotonic() - started) * 1000),
                    policy_version=self.policy.version,
                    metadata=sanitize_for_audit(params, self.policy),
                )
                await self.recorder.record(entry)

            return result

        guarded.__name__ = getattr(operation, "__name__", "guarded")
        return guarded

    async def run(
        self,
        action: str,
        resource_type: str,
        operation: Callable[..., Awaitable[T]],
        current_user: Optional[dict],
        **params: Any,
    ) -> T:
        """Wrap and invoke in one step."""
        return await self.wrap(action, resource_type, operation)(current_user, **params)


# Global middleware instance
_audit_middleware: Optional[AuditMiddleware] = None


def get_audit_middleware() -> AuditMiddleware:
    """Get or create the AuditMiddleware configured from settings."""
    global _audit_middleware
    if _audit_middleware is None:
        _audit_middleware = AuditMiddleware(
            policy=load_audit_policy(settings.audit_policy_path)
        )
    return _audit_middleware


async def audited_operation(
    action: str,
    resource_type: str,
    operation: Callable[..., Awaitable[T]],
    current_user: Optional[dict],
    **params: Any,
) -> T:
    """Run ``operation(**params)`` through the shared audit middleware."""
    return await get_audit_middleware().run(
        action, resource_type, operation, current_user, **params
    )
