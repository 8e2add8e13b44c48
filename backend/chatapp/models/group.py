from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatapp.db.base import Base, utcnow


class Group(Base):
    __tablename__ = "groups"
    # ids are never reused, so nothing keyed by a deleted group's id resurfaces
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    members = relationship("GroupMember", back_populates="group", cascade="all,delete-orphan")
    messages = relationship("Message", back_populates="group", cascade="all,delete", passive_deletes=True)

    @property
    def member_ids(self) -> list[int]:
        return [m.user_id for m in self.members]

    @property
    def admin_ids(self) -> list[int]:
        return [m.user_id for m in self.members if m.is_admin]


class GroupMember(Base):
    """Membership row; ``is_admin`` keeps the admin set a subset of members."""

    __tablename__ = "group_members"

    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    group = relationship("Group", back_populates="members")
    user = relationship("User", back_populates="memberships")
