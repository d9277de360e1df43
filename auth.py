import logging
from typing import Optional

import jwt
from fastapi import Header, HTTPException, status

import config

logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    """
    Verify an identity-provider token and return its claims.
    Raises 401 if the signature, expiry, audience or issuer check fails.
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALG],
            audience=config.JWT_AUDIENCE,
            issuer=config.JWT_ISSUER,
        )
    except jwt.PyJWTError as e:
        logger.info("Rejected token: %s", e)
        raise _unauthorized("Invalid token")


def get_current_user(authorization_header: Optional[str]) -> dict:
    """
    Takes the header ``Authorization: Bearer <token>``, validates it and
    returns the claims. Raises 401 when missing or invalid.
    """
    if not authorization_header:
        raise _unauthorized("No authorization header")

    scheme, _, token = authorization_header.partition(" ")
    if scheme.lower() != "bearer":
        raise _unauthorized("Invalid authorization header format")

    token = token.strip()
    if not token:
        raise _unauthorized("No token provided")

    payload = decode_token(token)
    if not payload.get("sub"):
        raise _unauthorized("Token without subject")

    return payload


def get_current_uid(authorization: Optional[str] = Header(None)) -> str:
    """FastAPI dependency yielding the caller's uid."""
    return get_current_user(authorization)["sub"]
