"""
SessionAuthority: password + OTP login, sessions, tokens and CSRF.

Lifecycle of a login::

    Unauthenticated --login--> OTPPending --verify_otp--> Authenticated --logout--> LoggedOut
                                                            |  ^
                                                            +--+ refresh

Failed OTP, CSRF or refresh checks raise without touching an existing session.
Every expiry (OTP, session, tokens) is checked against stored timestamps when
the credential is presented; nothing here runs a timer.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from chatapp.core.config import Settings
from chatapp.core.errors import AuthError, Forbidden, TooManyAttempts, ValidationError
from chatapp.core.security import hash_otp, verify_otp_hash, verify_password
from chatapp.core.tokens import (
    TokenError,
    TokenExpired,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
)
from chatapp.crud import users as users_crud
from chatapp.db.base import utcnow
from chatapp.models.session import UserSession
from chatapp.models.user import User
from chatapp.security.csrf import CSRFTokenManager, tokens_match
from chatapp.security.otp import generate_otp, is_well_formed
from chatapp.security.rate_limit import RateLimiter
from chatapp.services.client_ip import ClientIpResolver
from chatapp.services.notifications import OtpNotifier

logger = logging.getLogger(__name__)

MIN_PASSWORD_LEN = 6


@dataclass(frozen=True)
class LoginPending:
    email: str
    otp_expires_at: datetime


@dataclass(frozen=True)
class IssuedSession:
    user: User
    session_id: str
    csrf_token: str
    access_token: str
    refresh_token: str


class SessionAuthority:
    def __init__(
        self,
        settings: Settings,
        notifier: OtpNotifier,
        ip_resolver: ClientIpResolver,
        csrf: CSRFTokenManager,
        limiter: RateLimiter | None = None,
    ):
        self.settings = settings
        self.notifier = notifier
        self.ip_resolver = ip_resolver
        self.csrf = csrf
        self.limiter = limiter or RateLimiter()

    @property
    def session_ttl(self) -> timedelta:
        return timedelta(hours=self.settings.SESSION_TTL_HOURS)

    def _check_rate(self, key: str) -> None:
        delay = self.limiter.retry_after(key)
        if delay > 0:
            raise TooManyAttempts(f"Too many attempts. Try again in {int(delay) + 1} seconds.", retry_after=delay)

    # --- registration -----------------------------------------------------

    def signup(self, db: Session, email: str, full_name: str, password: str) -> User:
        if not full_name or not full_name.strip():
            raise ValidationError("All fields are required")
        if len(password) < MIN_PASSWORD_LEN:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LEN} characters")
        if users_crud.get_by_email(db, email):
            raise ValidationError("Email already exists")

        user = users_crud.create_user(db, email, full_name, password)
        logger.info("User %s registered", user.id)
        return user

    # --- login ------------------------------------------------------------

    def login(self, db: Session, email: str, password: str) -> LoginPending:
        key = users_crud.normalize_email(email)
        self._check_rate(key)

        user = users_crud.get_by_email(db, email)
        if not user or user.status != "active" or not verify_password(password, user.password_hash):
            self.limiter.record_attempt(key, success=False)
            logger.info("Rejected login for %s", key)
            raise AuthError("Invalid credentials")
        self.limiter.record_attempt(key, success=True)

        otp = generate_otp()
        user.otp_hash = hash_otp(otp)
        user.otp_expires_at = utcnow() + timedelta(minutes=self.settings.OTP_TTL_MINUTES)
        db.commit()

        self.notifier.send_otp(user.email, otp, self.settings.OTP_TTL_MINUTES)
        return LoginPending(email=user.email, otp_expires_at=user.otp_expires_at)

    def verify_otp(
        self,
        db: Session,
        email: str,
        otp: str,
        remote_addr: str | None = None,
        forwarded_for: str | None = None,
    ) -> IssuedSession:
        key = f"otp:{users_crud.normalize_email(email)}"
        self._check_rate(key)

        user = users_crud.get_by_email(db, email)
        valid = (
            user is not None
            and is_well_formed(otp)
            and user.otp_expires_at is not None
            and user.otp_expires_at >= utcnow()
            and verify_otp_hash(otp, user.otp_hash)
        )
        if not valid:
            self.limiter.record_attempt(key, success=False)
            raise AuthError("Invalid or expired OTP")
        self.limiter.record_attempt(key, success=True)

        # single use
        user.otp_hash = None
        user.otp_expires_at = None
        user.last_login = utcnow()

        session = UserSession(
            user_id=user.id,
            session_id=secrets.token_hex(16),
            csrf_token=self.csrf.generate_token(),
            ip_address=self.ip_resolver.resolve(remote_addr, forwarded_for),
        )
        db.add(session)
        db.commit()
        logger.info("Session opened for user %s from %s", user.id, session.ip_address)

        return IssuedSession(
            user=user,
            session_id=session.session_id,
            csrf_token=session.csrf_token,
            access_token=create_access_token(self.settings, user.id, session.session_id),
            refresh_token=create_refresh_token(self.settings, user.id, session.session_id),
        )

    # --- session checks ---------------------------------------------------

    def _live_session(self, db: Session, session_id: str | None) -> UserSession | None:
        if not session_id:
            return None
        stmt = select(UserSession).where(UserSession.session_id == session_id)
        session = db.execute(stmt).scalar_one_or_none()
        if session is None or session.created_at + self.session_ttl < utcnow():
            return None
        return session

    def authenticate(self, db: Session, access_token: str | None, session_id: str | None) -> tuple[User, UserSession]:
        if not access_token or not session_id:
            raise AuthError("Unauthorized - No token or session provided")

        try:
            claims = decode_access_token(self.settings, access_token)
        except TokenExpired:
            raise AuthError("Unauthorized - Access token expired")
        except TokenError:
            raise AuthError("Unauthorized - Invalid token")

        if claims["sid"] != session_id:
            raise AuthError("Unauthorized - Invalid session")

        session = self._live_session(db, session_id)
        if session is None or str(session.user_id) != claims["sub"]:
            raise AuthError("Unauthorized - Invalid session")

        user = users_crud.get_by_id(db, session.user_id)
        if user is None or user.status != "active":
            raise AuthError("Unauthorized - Invalid session")
        return user, session

    def refresh(self, db: Session, refresh_token: str | None) -> str:
        """Issue a new access token; the refresh token itself is not rotated."""
        if not refresh_token:
            raise AuthError("Unauthorized - No refresh token provided")

        try:
            claims = decode_refresh_token(self.settings, refresh_token)
        except TokenExpired:
            raise AuthError("Unauthorized - Refresh token expired")
        except TokenError:
            raise AuthError("Unauthorized - Invalid refresh token")

        session = self._live_session(db, claims["sid"])
        if session is None or str(session.user_id) != claims["sub"]:
            raise AuthError("Unauthorized - Session expired")

        return create_access_token(self.settings, session.user_id, session.session_id)

    def validate_csrf(self, db: Session, header_token: str | None, session_id: str | None) -> UserSession:
        session = self._live_session(db, session_id)
        if session is None:
            raise Forbidden("Forbidden - No session")
        if not tokens_match(header_token, session.csrf_token):
            logger.warning("CSRF token mismatch for session of user %s", session.user_id)
            raise Forbidden("Forbidden - Invalid CSRF token")
        return session

    def logout(self, db: Session, session_id: str | None) -> None:
        if not session_id:
            return
        db.execute(delete(UserSession).where(UserSession.session_id == session_id))
        db.commit()

    def purge_expired_sessions(self, db: Session) -> int:
        cutoff = utcnow() - self.session_ttl
        result = db.execute(delete(UserSession).where(UserSession.created_at < cutoff))
        db.commit()
        return result.rowcount or 0
