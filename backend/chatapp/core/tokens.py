"""
Signed credentials for the session layer.

Access and refresh tokens are HS256 JWTs signed with different secrets. Both
carry the owning session id (``sid``) so that deleting the session row
invalidates every token issued for it.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt

from chatapp.core.config import Settings

ACCESS = "access"
REFRESH = "refresh"


class TokenError(Exception):
    pass


class TokenExpired(TokenError):
    pass


def _encode(subject: str, session_id: str, kind: str, ttl: timedelta, secret: str, alg: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "sid": session_id,
        "typ": kind,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=alg)


def _decode(token: str, kind: str, secret: str, alg: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[alg])
    except ExpiredSignatureError as exc:
        raise TokenExpired(f"{kind} token expired") from exc
    except JWTError as exc:
        raise TokenError(f"invalid {kind} token") from exc

    if payload.get("typ") != kind or not payload.get("sub") or not payload.get("sid"):
        raise TokenError(f"invalid {kind} token payload")
    return payload


def create_access_token(settings: Settings, user_id: int, session_id: str) -> str:
    return _encode(
        str(user_id),
        session_id,
        ACCESS,
        timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        settings.JWT_SECRET,
        settings.JWT_ALGORITHM,
    )


def create_refresh_token(settings: Settings, user_id: int, session_id: str) -> str:
    return _encode(
        str(user_id),
        session_id,
        REFRESH,
        timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        settings.JWT_REFRESH_SECRET,
        settings.JWT_ALGORITHM,
    )


def decode_access_token(settings: Settings, token: str) -> dict:
    return _decode(token, ACCESS, settings.JWT_SECRET, settings.JWT_ALGORITHM)


def decode_refresh_token(settings: Settings, token: str) -> dict:
    return _decode(token, REFRESH, settings.JWT_REFRESH_SECRET, settings.JWT_ALGORITHM)
