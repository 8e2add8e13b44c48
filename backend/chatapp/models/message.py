from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chatapp.db.base import Base, utcnow


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        # a message belongs to exactly one conversation: a peer or a group
        CheckConstraint(
            "(receiver_id IS NULL) <> (group_id IS NULL)",
            name="ck_messages_one_conversation",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    receiver_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=True
    )
    group_id: Mapped[int | None] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"), index=True, nullable=True
    )

    # MessageCodec token "ivHex:cipherHex"
    text: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Media references (already uploaded elsewhere)
    image: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    gif: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    voice: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    video: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    document: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    original_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    location: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    contact: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    replied_to_id: Mapped[int | None] = mapped_column(
        ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )

    pinned: Mapped[bool] = mapped_column(Boolean, default=False, index=True, nullable=False)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, index=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    sender = relationship("User", foreign_keys=[sender_id])
    group = relationship("Group", back_populates="messages")
    reactions = relationship("MessageReaction", back_populates="message", cascade="all,delete-orphan")
    reads = relationship("MessageRead", back_populates="message", cascade="all,delete-orphan")

    @property
    def is_group(self) -> bool:
        return self.group_id is not None

    @property
    def read_by(self) -> list[int]:
        return [r.user_id for r in self.reads]

    def reaction_map(self) -> dict[str, list[int]]:
        buckets: dict[str, list[int]] = {}
        for r in sorted(self.reactions, key=lambda r: r.id or 0):
            buckets.setdefault(r.emoji, []).append(r.user_id)
        return buckets


class MessageReaction(Base):
    """
    One row per (message, user). The unique key is the user -> emoji reverse
    index: a user can hold at most one emoji on a message.
    """

    __tablename__ = "message_reactions"
    __table_args__ = (UniqueConstraint("message_id", "user_id", name="uq_reaction_user"),)

    id: Mapped[int] = mapped_column(primary_key=True)

    message_id: Mapped[int] = mapped_column(ForeignKey("messages.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    emoji: Mapped[str] = mapped_column(String(32), nullable=False)

    message = relationship("Message", back_populates="reactions")


class MessageRead(Base):
    __tablename__ = "message_reads"

    message_id: Mapped[int] = mapped_column(ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    read_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    message = relationship("Message", back_populates="reads")
