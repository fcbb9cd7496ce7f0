from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import bcrypt
import jwt

from .config import AuthConfig
from .errors import InvalidCredential, Unauthenticated

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10


@dataclass(frozen=True)
class AuthClaims:
    user_id: str
    username: str
    expires_at: datetime


def issue_token(
    user_id: str,
    username: str,
    config: AuthConfig,
    now: Optional[datetime] = None,
) -> str:
    """Sign a bearer token carrying userId and username, valid for config.expires_in."""
    issued_at = now or datetime.now(timezone.utc)
    claims = {
        "userId": str(user_id),
        "username": username,
        "iat": issued_at,
        "exp": issued_at + config.expires_in,
    }
    return jwt.encode(claims, config.secret, algorithm=config.algorithm)


def verify_token(token: str, config: AuthConfig) -> AuthClaims:
    """
    Check the signature and expiry of a bearer token and return its claims.

    Raises:
        InvalidCredential: If the token is expired, tampered with or incomplete
    """
    try:
        decoded = jwt.decode(
            token,
            config.secret,
            algorithms=[config.algorithm],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise InvalidCredential("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise InvalidCredential(f"Invalid token: {exc}") from exc

    user_id = decoded.get("userId")
    username = decoded.get("username")
    if not user_id or not username:
        raise InvalidCredential("Token is missing the userId or username claim")

    return AuthClaims(
        user_id=str(user_id),
        username=str(username),
        expires_at=datetime.fromtimestamp(int(decoded["exp"]), tz=timezone.utc),
    )


def _header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    wanted = name.lower()
    for key, candidate in headers.items():
        if key.lower() == wanted:
            return candidate
    return None


def extract_bearer_token(headers: Mapping[str, Any]) -> str:
    """
    Pull the token out of an ``Authorization: Bearer <token>`` header.

    Raises:
        Unauthenticated: If the header is absent, uses another scheme or does
            not have exactly two space-separated parts
    """
    auth_header = _header(headers, "authorization")
    if not auth_header:
        raise Unauthenticated("Not authorized: no token provided")

    parts = auth_header.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise Unauthenticated("Invalid authorization header format")
    return parts[1]


def require_auth(headers: Mapping[str, Any], config: AuthConfig) -> AuthClaims:
    """
    Gate every mutation: return the caller's claims or raise.

    Raises:
        Unauthenticated: No usable bearer credential
        InvalidCredential: The credential failed verification
    """
    token = extract_bearer_token(headers)
    claims = verify_token(token, config)
    logger.debug("Authenticated user %s", claims.user_id)
    return claims


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False
