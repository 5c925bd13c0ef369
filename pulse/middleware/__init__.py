from pulse.middleware.jwt_auth import JWTAuthMiddleware
from pulse.middleware.audit import (
    AuditMiddleware,
    AuditPolicy,
    DEFAULT_AUDIT_POLICY,
    audited_operation,
    get_audit_middleware,
    sanitize_for_audit,
)

__all__ = [
    "JWTAuthMiddleware",
    "AuditMiddleware",
    "AuditPolicy",
    "DEFAULT_AUDIT_POLICY",
    "audited_operation",
    "get_audit_middleware",
    "sanitize_for_audit",
]
