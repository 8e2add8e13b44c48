"""
MessageLedger: message CRUD and the message lifecycle.

A message is created by ``send_direct``/``send_group``, mutated by edit,
react/unreact, pin/unpin and mark_read, and removed by an explicit delete or
by the expiry sweep. Text is encrypted with MessageCodec before it is stored
and decrypted only when a view is built for a client.

Every mutation commits first and then hands the resulting view to the
Dispatcher: direct events go to {sender, receiver}, group events to the
group's current members. Concurrent writes to the same message are
last-write-wins, except reactions, where the (message, user) unique key keeps
each user on a single emoji.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from chatapp.core.config import Settings
from chatapp.core.errors import Forbidden, InternalError, LimitExceeded, NotFound, ValidationError
from chatapp.crud import users as users_crud
from chatapp.crypto.codec import MessageCodec
from chatapp.db.base import utcnow
from chatapp.models.message import Message, MessageReaction, MessageRead
from chatapp.models.user import User
from chatapp.realtime import events
from chatapp.realtime.dispatcher import Dispatcher
from chatapp.schemas.group import GroupOut
from chatapp.schemas.message import ConversationOut, MessageOut, MessageSendRequest, ReactionUser, ReadReceipt
from chatapp.services.groups import GroupDirectory, group_view

logger = logging.getLogger(__name__)

DISAPPEAR_OFF = "off"
_DISAPPEAR_RE = re.compile(r"^([1-9]\d*)min$")

# media gallery filter -> column; voice notes are filed under "audio"
MEDIA_COLUMNS = {
    "image": Message.image,
    "gif": Message.gif,
    "video": Message.video,
    "document": Message.document,
    "audio": Message.voice,
}


def parse_disappear_setting(setting: str | None) -> int | None:
    """Minutes until expiry for a disappear setting, None when off."""
    if not setting or setting == DISAPPEAR_OFF:
        return None
    match = _DISAPPEAR_RE.match(setting)
    if match is None:
        return None
    return int(match.group(1))


def _direct_pair(a: int, b: int) -> ColumnElement[bool]:
    return or_(
        and_(Message.sender_id == a, Message.receiver_id == b),
        and_(Message.sender_id == b, Message.receiver_id == a),
    )


class MessageLedger:
    def __init__(self, codec: MessageCodec, groups: GroupDirectory, dispatcher: Dispatcher, settings: Settings):
        self.codec = codec
        self.groups = groups
        self.dispatcher = dispatcher
        self.edit_window = timedelta(minutes=settings.EDIT_WINDOW_MINUTES)
        self.max_pinned = settings.MAX_PINNED_MESSAGES

    # --- helpers ----------------------------------------------------------

    def view(self, message: Message) -> MessageOut:
        return MessageOut(
            id=message.id,
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            group_id=message.group_id,
            sender_name=message.sender.full_name if message.is_group and message.sender else None,
            text=self.codec.decrypt(message.text),
            image=message.image,
            gif=message.gif,
            voice=message.voice,
            video=message.video,
            document=message.document,
            original_name=message.original_name,
            location=message.location,
            contact=message.contact,
            replied_to=message.replied_to_id,
            pinned=message.pinned,
            is_edited=message.is_edited,
            read_by=message.read_by,
            reactions=message.reaction_map(),
            expires_at=message.expires_at,
            created_at=message.created_at,
            updated_at=message.updated_at,
        )

    @staticmethod
    def _not_expired(now: datetime | None = None) -> ColumnElement[bool]:
        now = now or utcnow()
        return or_(Message.expires_at.is_(None), Message.expires_at > now)

    def _get(self, db: Session, message_id: int) -> Message:
        message = db.get(Message, message_id)
        if message is None or (message.expires_at is not None and message.expires_at <= utcnow()):
            raise NotFound("Message not found")
        return message

    def _conversation(self, message: Message) -> ColumnElement[bool]:
        if message.is_group:
            return Message.group_id == message.group_id
        return _direct_pair(message.sender_id, message.receiver_id)

    def _recipients(self, db: Session, message: Message) -> list[int]:
        if message.is_group:
            return self.groups.member_ids(db, message.group_id)
        # sender included so their own client stays in sync
        return [message.sender_id, message.receiver_id]

    def _require_participant(self, db: Session, message: Message, user_id: int) -> None:
        if message.is_group:
            if not self.groups.is_member(db, message.group_id, user_id):
                raise Forbidden("You are not a member of this group")
        elif user_id not in (message.sender_id, message.receiver_id):
            raise Forbidden("You are not part of this conversation")

    def _emit(self, db: Session, kind: str, message: Message, data, recipients: Iterable[int] | None = None) -> None:
        event = events.lifecycle_event(kind, message.is_group)
        if recipients is None:
            recipients = self._recipients(db, message)
        self.dispatcher.dispatch(event, data, recipients)

    def _commit(self, db: Session, action: str) -> None:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Failed to %s: %s", action, exc)
            raise InternalError(f"Failed to {action}") from exc

    # --- send -------------------------------------------------------------

    def _expires_at(self, db: Session, sender_id: int, target_kind: str, target_id: int) -> datetime | None:
        setting = users_crud.get_disappear_setting(db, sender_id, target_kind, target_id)
        minutes = parse_disappear_setting(setting)
        if minutes is None:
            return None
        return utcnow() + timedelta(minutes=minutes)

    def _build(self, db: Session, sender_id: int, payload: MessageSendRequest) -> Message:
        if not payload.has_content():
            raise ValidationError("Message cannot be empty")

        location = None
        if payload.location is not None:
            location = payload.location.model_dump()
            if not location.get("type") or not location.get("coordinates"):
                raise ValidationError("Location type and coordinates are required")

        contact = None
        if payload.contact is not None:
            contact_user = users_crud.get_by_id(db, payload.contact.user_id)
            if contact_user is None:
                raise ValidationError("Contact not found")
            contact = {"userId": contact_user.id, "fullName": contact_user.full_name}

        return Message(
            sender_id=sender_id,
            text=self.codec.encrypt(payload.text) if payload.text else None,
            image=payload.image,
            gif=payload.gif,
            voice=payload.voice,
            video=payload.video,
            document=payload.document,
            original_name=payload.original_name,
            location=location,
            contact=contact,
        )

    def _check_reply(self, db: Session, message: Message, replied_to: int | None) -> None:
        if replied_to is None:
            return
        original = db.get(Message, replied_to)
        if original is None:
            raise ValidationError("Replied message not found")
        same_conversation = (
            original.group_id == message.group_id
            if message.group_id is not None
            else original.group_id is None
            and {original.sender_id, original.receiver_id} == {message.sender_id, message.receiver_id}
        )
        if not same_conversation:
            raise ValidationError("Replied message belongs to another conversation")
        message.replied_to_id = original.id

    def send_direct(self, db: Session, sender_id: int, receiver_id: int, payload: MessageSendRequest) -> MessageOut:
        message = self._build(db, sender_id, payload)
        if users_crud.get_by_id(db, receiver_id) is None:
            raise NotFound("Receiver not found")

        message.receiver_id = receiver_id
        message.expires_at = self._expires_at(db, sender_id, "user", receiver_id)
        self._check_reply(db, message, payload.replied_to)

        db.add(message)
        self._commit(db, "send message")

        view = self.view(message)
        self._emit(db, "new", message, view.event_data())
        return view

    def send_group(self, db: Session, sender_id: int, group_id: int, payload: MessageSendRequest) -> MessageOut:
        message = self._build(db, sender_id, payload)
        self.groups.require_member(db, group_id, sender_id)

        message.group_id = group_id
        message.expires_at = self._expires_at(db, sender_id, "group", group_id)
        self._check_reply(db, message, payload.replied_to)

        db.add(message)
        self._commit(db, "send group message")
        db.refresh(message)

        view = self.view(message)
        self._emit(db, "new", message, view.event_data())
        return view

    # --- lifecycle --------------------------------------------------------

    def edit(self, db: Session, message_id: int, new_text: str, requester_id: int) -> MessageOut:
        if not new_text or not new_text.strip():
            raise ValidationError("Message cannot be empty")

        message = self._get(db, message_id)
        if message.sender_id != requester_id:
            raise Forbidden("Only the sender can edit this message")
        if utcnow() - message.created_at > self.edit_window:
            raise Forbidden("Messages can only be edited within %d minutes" % (self.edit_window.seconds // 60))

        message.text = self.codec.encrypt(new_text)
        message.is_edited = True
        self._commit(db, "edit message")

        view = self.view(message)
        self._emit(db, "updated", message, view.event_data())
        return view

    def react(self, db: Session, message_id: int, emoji: str, user_id: int) -> MessageOut:
        if not emoji or not emoji.strip():
            raise ValidationError("Emoji is required")

        message = self._get(db, message_id)
        self._require_participant(db, message, user_id)

        existing = next((r for r in message.reactions if r.user_id == user_id), None)
        if existing is not None:
            # a user holds one emoji at a time: drop the old one first
            message.reactions.remove(existing)
            db.flush()
        message.reactions.append(MessageReaction(user_id=user_id, emoji=emoji))
        self._commit(db, "react to message")

        view = self.view(message)
        self._emit(db, "reaction", message, view.event_data())
        return view

    def unreact(self, db: Session, message_id: int, emoji: str, user_id: int) -> MessageOut:
        message = self._get(db, message_id)
        self._require_participant(db, message, user_id)

        bucket = [r for r in message.reactions if r.emoji == emoji]
        if not bucket:
            raise NotFound("Reaction not found")
        held = next((r for r in bucket if r.user_id == user_id), None)
        if held is None:
            raise Forbidden("You are not authorized to remove this reaction")

        message.reactions.remove(held)
        self._commit(db, "remove reaction")

        view = self.view(message)
        self._emit(db, "reaction", message, view.event_data())
        return view

    def pinned_count(self, db: Session, message: Message) -> int:
        stmt = select(Message.id).where(self._conversation(message), Message.pinned.is_(True), self._not_expired())
        return len(db.execute(stmt).scalars().all())

    def pin(self, db: Session, message_id: int, requester_id: int) -> MessageOut:
        message = self._get(db, message_id)
        self._require_participant(db, message, requester_id)

        if not message.pinned:
            if self.pinned_count(db, message) >= self.max_pinned:
                logger.info("Pin limit reached for message %s", message.id)
                raise LimitExceeded(f"Maximum of {self.max_pinned} pinned messages allowed")
            message.pinned = True
            self._commit(db, "pin message")

        view = self.view(message)
        self._emit(db, "pinned", message, view.event_data())
        return view

    def unpin(self, db: Session, message_id: int, requester_id: int) -> MessageOut:
        message = self._get(db, message_id)
        self._require_participant(db, message, requester_id)

        if message.pinned:
            message.pinned = False
            self._commit(db, "unpin message")

        view = self.view(message)
        self._emit(db, "unpinned", message, view.event_data())
        return view

    def mark_read(self, db: Session, message_id: int, user_id: int) -> MessageOut:
        message = self._get(db, message_id)
        self._require_participant(db, message, user_id)

        if user_id not in message.read_by:
            message.reads.append(MessageRead(user_id=user_id))
            self._commit(db, "mark message as read")
            # only the sender cares about receipts
            self._emit(
                db,
                "read",
                message,
                ReadReceipt(message_id=message.id, read_by=message.read_by).model_dump(by_alias=True),
                recipients=[message.sender_id],
            )
        return self.view(message)

    def delete_message(self, db: Session, message_id: int, requester_id: int) -> None:
        message = self._get(db, message_id)
        if message.sender_id != requester_id:
            raise Forbidden("Only the sender can delete this message")

        recipients = self._recipients(db, message)
        data = {"messageId": message.id, "receiverId": message.receiver_id, "groupId": message.group_id}
        db.delete(message)
        self._commit(db, "delete message")
        self._emit(db, "deleted", message, data, recipients=recipients)

    def delete_chat(self, db: Session, user_id: int, peer_id: int) -> int:
        messages = db.execute(select(Message).where(_direct_pair(user_id, peer_id))).scalars().all()
        for message in messages:
            db.delete(message)
        self._commit(db, "delete chat")

        self.dispatcher.dispatch(events.CHAT_DELETED, {"userId": user_id, "peerId": peer_id}, [user_id, peer_id])
        return len(messages)

    # --- expiry -----------------------------------------------------------

    def sweep_expired(self, db: Session, now: datetime | None = None) -> int:
        """Delete every message past its ``expiresAt`` and tell the clients."""
        now = now or utcnow()
        expired = db.execute(select(Message).where(Message.expires_at <= now)).scalars().all()
        if not expired:
            return 0

        notices = []
        for message in expired:
            data = {"messageId": message.id, "receiverId": message.receiver_id, "groupId": message.group_id}
            notices.append((events.lifecycle_event("expired", message.is_group), data, self._recipients(db, message)))
            db.delete(message)
        self._commit(db, "sweep expired messages")

        for event, data, recipients in notices:
            self.dispatcher.dispatch(event, data, recipients)
        logger.info("Expiry sweep removed %d message(s)", len(expired))
        return len(expired)

    # --- reads ------------------------------------------------------------

    def list_direct(self, db: Session, user_id: int, peer_id: int) -> list[MessageOut]:
        stmt = (
            select(Message)
            .where(_direct_pair(user_id, peer_id), self._not_expired())
            .order_by(Message.created_at, Message.id)
        )
        return [self.view(m) for m in db.execute(stmt).scalars()]

    def list_group(self, db: Session, group_id: int, user_id: int) -> list[MessageOut]:
        self.groups.require_member(db, group_id, user_id)
        stmt = (
            select(Message)
            .where(Message.group_id == group_id, self._not_expired())
            .order_by(Message.created_at, Message.id)
        )
        return [self.view(m) for m in db.execute(stmt).scalars()]

    def list_pinned_direct(self, db: Session, user_id: int, peer_id: int) -> list[MessageOut]:
        return [m for m in self.list_direct(db, user_id, peer_id) if m.pinned]

    def list_pinned_group(self, db: Session, group_id: int, user_id: int) -> list[MessageOut]:
        return [m for m in self.list_group(db, group_id, user_id) if m.pinned]

    def reaction_users(self, db: Session, message_id: int, requester_id: int) -> dict[str, list[ReactionUser]]:
        message = self._get(db, message_id)
        self._require_participant(db, message, requester_id)

        buckets = message.reaction_map()
        users = {u.id: u for u in users_crud.get_many(db, [uid for ids in buckets.values() for uid in ids])}
        return {
            emoji: [ReactionUser(id=uid, full_name=users[uid].full_name) for uid in ids if uid in users]
            for emoji, ids in buckets.items()
        }

    def conversations(self, db: Session, user_id: int) -> list[ConversationOut]:
        """Peers the user has talked to, newest conversation first."""
        stmt = (
            select(Message)
            .where(
                Message.group_id.is_(None),
                or_(Message.sender_id == user_id, Message.receiver_id == user_id),
                self._not_expired(),
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
        )
        latest: dict[int, Message] = {}
        for message in db.execute(stmt).scalars():
            peer = message.receiver_id if message.sender_id == user_id else message.sender_id
            latest.setdefault(peer, message)

        peers = {u.id: u for u in users_crud.get_many(db, latest)}
        return [
            ConversationOut(
                id=peer_id,
                full_name=peers[peer_id].full_name,
                email=peers[peer_id].email,
                latest_message=self.view(message),
            )
            for peer_id, message in latest.items()
            if peer_id in peers
        ]

    def group_overview(self, db: Session, user_id: int) -> list[GroupOut]:
        """The user's groups with their latest message, most recent first."""
        overview = []
        for group in self.groups.groups_for(db, user_id):
            stmt = (
                select(Message)
                .where(Message.group_id == group.id, self._not_expired())
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(1)
            )
            latest = db.execute(stmt).scalar_one_or_none()
            view = group_view(group)
            view.latest_message = self.view(latest) if latest else None
            overview.append(view)

        overview.sort(
            key=lambda g: g.latest_message.created_at if g.latest_message else datetime.min,
            reverse=True,
        )
        return overview

    def _media_page(
        self, db: Session, where: ColumnElement[bool], media_filter: str, page: int, limit: int
    ) -> list[MessageOut]:
        if media_filter == "all":
            columns = list(MEDIA_COLUMNS.values())
        elif media_filter in MEDIA_COLUMNS:
            columns = [MEDIA_COLUMNS[media_filter]]
        else:
            raise ValidationError(f"Unknown media filter: {media_filter}")
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        stmt = (
            select(Message)
            .where(where, or_(*(c.is_not(None) for c in columns)), self._not_expired())
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return [self.view(m) for m in db.execute(stmt).scalars()]

    def list_media_direct(
        self, db: Session, user_id: int, peer_id: int, media_filter: str = "all", page: int = 1, limit: int = 10
    ) -> list[MessageOut]:
        """Shared media with a peer, newest first, one page at a time."""
        return self._media_page(db, _direct_pair(user_id, peer_id), media_filter, page, limit)

    def list_media_group(
        self, db: Session, group_id: int, user_id: int, media_filter: str = "all", page: int = 1, limit: int = 10
    ) -> list[MessageOut]:
        self.groups.require_member(db, group_id, user_id)
        return self._media_page(db, Message.group_id == group_id, media_filter, page, limit)

    def users_not_messaged(self, db: Session, user_id: int) -> list[User]:
        """Everyone the user has no direct conversation with yet."""
        talked = {c.id for c in self.conversations(db, user_id)}
        return [u for u in users_crud.list_users(db, exclude_id=user_id) if u.id not in talked]

    # --- disappear settings -----------------------------------------------

    def get_disappear_settings(self, db: Session, user_id: int) -> dict[str, str]:
        return {
            f"{row.target_kind}:{row.target_id}": row.setting
            for row in users_crud.list_disappear_settings(db, user_id)
        }

    def set_disappear_setting(self, db: Session, user_id: int, target_kind: str, target_id: int, setting: str) -> None:
        if target_kind not in ("user", "group"):
            raise ValidationError("Unknown conversation kind")
        if setting != DISAPPEAR_OFF and parse_disappear_setting(setting) is None:
            raise ValidationError("Setting must be 'off' or '<minutes>min'")

        if target_kind == "user":
            if db.get(User, target_id) is None:
                raise NotFound("User not found")
        else:
            self.groups.require_member(db, target_id, user_id)

        users_crud.set_disappear_setting(db, user_id, target_kind, target_id, setting)
