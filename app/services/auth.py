# =============================================================================
# Auth Service — Bearer Token Signing & Verification
# =============================================================================
#
# Pure functions. No FastAPI dependency; used by the auth dependency and
# by tests.
#
# Tokens are HS256 JWTs issued by the fan identity service, not by this
# API. Claims we rely on:
#
#     id   — the fan's user id (string or number)
#     exp  — expiry; the identity service issues 24 h tokens
#
# DESIGN DECISION: Shared-secret JWT (not a token table lookup).
# The core only needs a trustworthy user id per request; it stores no
# users. PyJWT checks the signature and the expiry; anything it rejects,
# or a token without an "id" claim, is treated as unauthenticated.
# =============================================================================

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import jwt

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
DEFAULT_TOKEN_LIFETIME = timedelta(hours=24)


def sign_user_token(
    user_id: str,
    secret: str,
    expires_in: timedelta = DEFAULT_TOKEN_LIFETIME,
) -> str:
    """Issue a token for user_id. Used by the identity service and tests."""
    if not user_id:
        raise ValueError("user_id must be non-empty")
    payload = {"id": user_id, "exp": datetime.now(UTC) + expires_in}
    return jwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def verify_user_token(token: str, secret: str) -> str | None:
    """Return the user id carried by a valid, unexpired token, else None."""
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[TOKEN_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Rejected expired bearer token")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug("Rejected bearer token: %s", e)
        return None

    user_id = payload.get("id")
    if user_id is None or user_id == "":
        return None
    return str(user_id)
