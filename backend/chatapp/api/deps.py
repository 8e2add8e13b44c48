from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from chatapp.db.session import get_db
from chatapp.models.session import UserSession
from chatapp.models.user import User
from chatapp.security.csrf import CSRF_HEADER
from chatapp.services.auth import SessionAuthority
from chatapp.services.groups import GroupDirectory
from chatapp.services.ledger import MessageLedger

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"
SESSION_COOKIE = "sessionId"


def get_auth(request: Request) -> SessionAuthority:
    return request.app.state.auth


def get_ledger(request: Request) -> MessageLedger:
    return request.app.state.ledger


def get_groups(request: Request) -> GroupDirectory:
    return request.app.state.groups


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    auth: SessionAuthority = Depends(get_auth),
) -> User:
    user, _ = auth.authenticate(
        db,
        request.cookies.get(ACCESS_COOKIE),
        request.cookies.get(SESSION_COOKIE),
    )
    return user


def require_csrf(
    request: Request,
    db: Session = Depends(get_db),
    auth: SessionAuthority = Depends(get_auth),
) -> UserSession:
    """Header token must match the one stored on the caller's session."""
    return auth.validate_csrf(db, request.headers.get(CSRF_HEADER), request.cookies.get(SESSION_COOKIE))
