# backend/chatapp/api/routes/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from chatapp.api.deps import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    SESSION_COOKIE,
    get_auth,
    get_current_user,
    get_ledger,
    require_csrf,
)
from chatapp.core.config import Settings
from chatapp.db.session import get_db
from chatapp.models.user import User
from chatapp.schemas.auth import (
    DisappearSettingIn,
    DisappearSettingsOut,
    LoginIn,
    OtpIssuedOut,
    SignupIn,
    UserOut,
    VerifyOtpIn,
)
from chatapp.schemas.message import StatusOut
from chatapp.security.csrf import CSRF_COOKIE
from chatapp.services.auth import IssuedSession, SessionAuthority
from chatapp.services.ledger import MessageLedger

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_cookie(response: Response, settings: Settings, key: str, value: str, max_age: int, httponly: bool = True):
    response.set_cookie(
        key=key,
        value=value,
        max_age=max_age,
        httponly=httponly,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
        path="/",
    )


def set_session_cookies(response: Response, settings: Settings, issued: IssuedSession) -> None:
    session_age = settings.SESSION_TTL_HOURS * 3600
    _set_cookie(response, settings, ACCESS_COOKIE, issued.access_token, settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60)
    _set_cookie(response, settings, REFRESH_COOKIE, issued.refresh_token, settings.REFRESH_TOKEN_EXPIRE_DAYS * 86400)
    _set_cookie(response, settings, SESSION_COOKIE, issued.session_id, session_age)
    # read by client script and echoed back in x-csrf-token
    _set_cookie(response, settings, CSRF_COOKIE, issued.csrf_token, session_age, httponly=False)


def clear_session_cookies(response: Response, settings: Settings) -> None:
    for key in (ACCESS_COOKIE, REFRESH_COOKIE, SESSION_COOKIE, CSRF_COOKIE):
        response.delete_cookie(
            key,
            path="/",
            secure=settings.COOKIE_SECURE,
            httponly=key != CSRF_COOKIE,
            samesite=settings.COOKIE_SAMESITE,
        )


@router.post("/signup", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def signup(payload: SignupIn, db: Session = Depends(get_db), auth: SessionAuthority = Depends(get_auth)):
    return auth.signup(db, payload.email, payload.full_name, payload.password)


@router.post("/login", response_model=OtpIssuedOut)
def login(payload: LoginIn, db: Session = Depends(get_db), auth: SessionAuthority = Depends(get_auth)):
    auth.login(db, payload.email, payload.password)
    return OtpIssuedOut()


@router.post("/verify-otp", response_model=UserOut)
def verify_otp(
    payload: VerifyOtpIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    auth: SessionAuthority = Depends(get_auth),
):
    issued = auth.verify_otp(
        db,
        payload.email,
        payload.otp,
        remote_addr=request.client.host if request.client else None,
        forwarded_for=request.headers.get("x-forwarded-for"),
    )
    set_session_cookies(response, auth.settings, issued)
    return issued.user


@router.post("/refresh-token", response_model=StatusOut)
def refresh_token(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    auth: SessionAuthority = Depends(get_auth),
):
    access_token = auth.refresh(db, request.cookies.get(REFRESH_COOKIE))
    settings = auth.settings
    _set_cookie(response, settings, ACCESS_COOKIE, access_token, settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60)
    return StatusOut(message="Token refreshed")


@router.post("/logout", response_model=StatusOut)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    auth: SessionAuthority = Depends(get_auth),
):
    """Delete the session row; tokens bound to it stop working."""
    auth.logout(db, request.cookies.get(SESSION_COOKIE))
    clear_session_cookies(response, auth.settings)
    return StatusOut(message="Logged out successfully")


@router.get("/check", response_model=UserOut)
def check(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/disappear-settings", response_model=DisappearSettingsOut)
def get_disappear_settings(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return DisappearSettingsOut(disappear_settings=ledger.get_disappear_settings(db, current_user.id))


@router.post("/disappear-settings", response_model=DisappearSettingsOut, dependencies=[Depends(require_csrf)])
def set_disappear_setting(
    payload: DisappearSettingIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    ledger.set_disappear_setting(db, current_user.id, payload.target_kind, payload.target_id, payload.setting)
    return DisappearSettingsOut(disappear_settings=ledger.get_disappear_settings(db, current_user.id))
