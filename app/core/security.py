# app/core/security.py
from datetime import datetime, timedelta

from jose import jwt

from app.core.config import settings
from app.core.zoned_time import utc_now

EXTENSION_TOKEN_TYPE = "ext"
EXTENSION_TOKEN_SCOPE = "application_import"


def verify_jwt_token(token: str) -> dict:
    """
    Verify a user JWT issued by the platform's auth service.

    Args:
        token: Token to verify

    Returns:
        Decoded token data

    Raises:
        jose.JWTError: if the signature, expiry or format is invalid
    """
    return jwt.decode(
        token,
        settings.secret_key,
        algorithms=[settings.algorithm],
        options={"verify_aud": False},
    )


def create_extension_token(
    user_id: str, pairing_id: str, now: datetime | None = None
) -> tuple[str, datetime]:
    """
    Mint the long-lived token handed to a paired browser extension.

    The token is restricted to the import routes by its ``typ``/``scope``
    claims and is only accepted with the configured issuer and audience.

    Returns:
        The encoded token and its expiry instant.
    """
    issued_at = now or utc_now()
    expires_at = issued_at + timedelta(days=settings.extension_token_ttl_days)
    claims = {
        "typ": EXTENSION_TOKEN_TYPE,
        "scope": EXTENSION_TOKEN_SCOPE,
        "uid": user_id,
        "pid": pairing_id,
        "iss": settings.extension_token_issuer,
        "aud": settings.extension_token_audience,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    token = jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)
    return token, expires_at


def decode_extension_token(token: str) -> dict:
    """
    Verify an extension token, including issuer and audience.

    Raises:
        jose.JWTError: if the token is not a valid extension token
    """
    return jwt.decode(
        token,
        settings.secret_key,
        algorithms=[settings.algorithm],
        audience=settings.extension_token_audience,
        issuer=settings.extension_token_issuer,
    )


def is_extension_claims(claims: dict) -> bool:
    return (
        claims.get("typ") == EXTENSION_TOKEN_TYPE and claims.get("scope") == EXTENSION_TOKEN_SCOPE
    )
