"""
Request identity resolution.

Every authenticated route resolves one ``AuthContext`` with a fixed
precedence:

1. ``Authorization: Bearer <jwt>``: a platform user token (``id`` or ``sub``
   claim) or, on import routes only, a browser-extension token. A bearer that
   fails verification is rejected; it never falls through to the weaker
   mechanisms below.
2. Service credential: ``X-Service-Key`` matching ``SERVICE_API_KEY`` plus
   ``X-User-Id``.
3. Developer override: ``X-Dev-User-Id`` when ``DEV_AUTH_ENABLED`` is set.
"""
import hmac
from dataclasses import dataclass

from fastapi import Request
from jose import JWTError

from app.core.audit import audit_logger
from app.core.config import settings
from app.core.exceptions import UnauthorizedError
from app.core.security import decode_extension_token, is_extension_claims, verify_jwt_token
from app.log.logging import logger

SERVICE_KEY_HEADER = "X-Service-Key"
SERVICE_USER_HEADER = "X-User-Id"
DEV_USER_HEADER = "X-Dev-User-Id"


@dataclass(frozen=True)
class AuthContext:
    """Who is calling and through which mechanism."""

    user_id: str
    method: str  # "jwt", "extension", "service", "dev"
    pairing_id: str | None = None


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Invalid authorization header")
    return token.strip()


def _from_bearer(token: str, allow_extension: bool) -> AuthContext:
    try:
        claims = verify_jwt_token(token)
    except JWTError as e:
        raise UnauthorizedError("Invalid or expired token") from e

    if is_extension_claims(claims):
        if not allow_extension:
            raise UnauthorizedError("Extension tokens are only valid for application import")
        try:
            claims = decode_extension_token(token)
        except JWTError as e:
            raise UnauthorizedError("Invalid or expired token") from e
        user_id = claims.get("uid")
        if not user_id:
            raise UnauthorizedError("Invalid or expired token")
        return AuthContext(user_id=str(user_id), method="extension", pairing_id=claims.get("pid"))

    user_id = claims.get("id") or claims.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid or expired token")
    return AuthContext(user_id=str(user_id), method="jwt")


def resolve_auth_context(request: Request, allow_extension: bool = False) -> AuthContext:
    """
    Resolve the caller's identity.

    Raises:
        UnauthorizedError: if no mechanism yields a user id
    """
    try:
        token = _bearer_token(request)
        if token is not None:
            return _from_bearer(token, allow_extension)
    except UnauthorizedError as e:
        audit_logger.log_token_invalid(ip_address=_client_ip(request), reason=e.message)
        raise

    service_key = request.headers.get(SERVICE_KEY_HEADER)
    if service_key is not None:
        user_id = request.headers.get(SERVICE_USER_HEADER)
        if (
            settings.service_api_key
            and hmac.compare_digest(service_key.encode(), settings.service_api_key.encode())
            and user_id
        ):
            return AuthContext(user_id=user_id, method="service")
        audit_logger.log_auth_failure(
            user_id=user_id, ip_address=_client_ip(request), reason="invalid service credential"
        )
        raise UnauthorizedError("Invalid service credentials")

    dev_user_id = request.headers.get(DEV_USER_HEADER)
    if dev_user_id and settings.dev_auth_enabled:
        logger.debug("Dev auth override used", user_id=dev_user_id, event_type="dev_auth")
        return AuthContext(user_id=dev_user_id, method="dev")

    raise UnauthorizedError("Authentication required")


async def get_current_user(request: Request) -> str:
    """Dependency returning the authenticated user id."""
    return resolve_auth_context(request, allow_extension=False).user_id


async def get_import_user(request: Request) -> str:
    """Like :func:`get_current_user`, also accepting extension tokens."""
    return resolve_auth_context(request, allow_extension=True).user_id
