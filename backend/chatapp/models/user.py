from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatapp.db.base import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(128), nullable=False)

    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[str] = mapped_column(String(16), default="user", nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="active", nullable=False)

    # pending one-time passcode (argon2 hash), cleared on use
    otp_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    otp_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    last_login: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    sessions = relationship("UserSession", back_populates="user", cascade="all,delete", passive_deletes=True)
    disappear_settings = relationship(
        "DisappearSetting",
        back_populates="user",
        cascade="all,delete",
        passive_deletes=True,
    )
    memberships = relationship("GroupMember", back_populates="user", cascade="all,delete", passive_deletes=True)


class DisappearSetting(Base):
    __tablename__ = "disappear_settings"
    __table_args__ = (UniqueConstraint("user_id", "target_kind", "target_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    # "user" for a direct peer, "group" for a group
    target_kind: Mapped[str] = mapped_column(String(8), nullable=False)
    target_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # "off" or "<N>min"
    setting: Mapped[str] = mapped_column(String(16), default="off", nullable=False)

    user = relationship("User", back_populates="disappear_settings")
