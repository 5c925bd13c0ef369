"""JWT Authentication Middleware for the Pulse triage service.

Tokens are issued by the external identity provider. The middleware reads
the token from the ``Authorization: Bearer`` header or the ``access_token``
cookie, verifies it with the provider's public key, and attaches a
normalised user dict to ``request.state.user``:

  - user_id : ``userId`` claim, falling back to ``sub``
  - role    : ``patient`` | ``physician`` | ``admin`` from the configured
              role claim (top level or under ``metadata``)
  - email   : ``email`` claim, if present
"""

import logging
from typing import Optional, Dict, Any

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from pulse.config.settings import settings
from pulse.models.triage import UserRole

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Routes that bypass JWT authentication
# ---------------------------------------------------------------------------
_PUBLIC_PREFIXES = ("/health", "/docs", "/openapi.json", "/redoc")


def _is_public_route(path: str) -> bool:
    return path == "/" or any(path == p or path.startswith(p) for p in _PUBLIC_PREFIXES)


# ---------------------------------------------------------------------------
# Key loader
# ---------------------------------------------------------------------------


def _load_public_key() -> Optional[str]:
    """Read the verification key (PEM, or shared secret for HS*) from disk."""
    try:
        with open(settings.jwt_public_key_path, "r") as fh:
            key = fh.read().strip()
        logger.info("JWT verification key loaded from %s", settings.jwt_public_key_path)
        return key
    except FileNotFoundError:
        logger.warning(
            "JWT verification key not found at '%s'. "
            "Set jwt_public_key_path in your .env file.",
            settings.jwt_public_key_path,
        )
        return None


# ---------------------------------------------------------------------------
# Token decoding helpers
# ---------------------------------------------------------------------------


def decode_jwt(token: str, public_key: str) -> Optional[Dict[str, Any]]:
    """Decode and verify a JWT.

    Returns the full payload dict, or None if the token is invalid / expired.
    """
    try:
        payload: Dict[str, Any] = jwt.decode(
            token,
            public_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={
                "verify_aud": False,
                "verify_exp": True,
                "verify_iss": settings.jwt_issuer is not None,
            },
        )
        return payload
    except ExpiredSignatureError:
        logger.debug("JWT token has expired")
        return None
    except InvalidTokenError as exc:
        logger.debug("Invalid JWT token: %s", exc)
        return None


def _extract_role(payload: Dict[str, Any]) -> Optional[UserRole]:
    raw = payload.get(settings.jwt_role_claim)
    if raw is None:
        raw = (payload.get("metadata") or {}).get("role")
    try:
        return UserRole(str(raw).lower()) if raw is not None else None
    except ValueError:
        return None


def payload_to_user(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Map JWT payload claims -> normalised user dict (None if unusable)."""
    user_id = payload.get("userId") or payload.get("sub")
    role = _extract_role(payload)
    if not user_id or role is None:
        return None
    return {
        "user_id": str(user_id),
        "role": role,
        "email": payload.get("email", ""),
        "subject": payload.get("sub", ""),
    }


def _token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(settings.jwt_access_cookie_name)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces JWT authentication.

    On every non-public request:
      1. Reads the bearer header, else the ``access_token`` cookie.
      2. Verifies it and maps claims to ``{user_id, role, ...}``.
      3. Returns HTTP 401 JSON if that fails.
      4. On success, sets ``request.state.user`` for FastAPI dependencies.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self._public_key: Optional[str] = _load_public_key()

    def _ensure_key(self) -> bool:
        """Lazy-reload the key if it wasn't available at boot."""
        if not self._public_key:
            self._public_key = _load_public_key()
        return self._public_key is not None

    @staticmethod
    def _unauthorized(detail: str, error_code: str = "UNAUTHORIZED") -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content={"detail": detail, "error": error_code},
        )

    async def dispatch(self, request: Request, call_next):
        # CORS preflight carries no credentials.
        if request.method == "OPTIONS":
            return await call_next(request)

        if _is_public_route(request.url.path):
            return await call_next(request)

        if not self._ensure_key():
            logger.error(
                "JWT verification key unavailable - cannot authenticate request to %s",
                request.url.path,
            )
            return JSONResponse(
                status_code=503,
                content={
                    "detail": "Authentication service unavailable (verification key not configured).",
                    "error": "SERVICE_UNAVAILABLE",
                },
            )

        user_info: Optional[Dict[str, Any]] = None
        token = _token_from_request(request)
        if token:
            payload = decode_jwt(token, self._public_key)
            if payload:
                user_info = payload_to_user(payload)

        if not user_info:
            logger.warning(
                "Unauthenticated request: %s %s",
                request.method,
                request.url.path,
            )
            return self._unauthorized(
                detail="Authentication required. Provide a valid bearer token."
            )

        logger.debug(
            "Authenticated user_id=%s role=%s",
            user_info["user_id"],
            user_info["role"].value,
        )
        request.state.user = user_info
        return await call_next(request)
