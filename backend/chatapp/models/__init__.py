# backend/chatapp/models/__init__.py
from .user import User, DisappearSetting
from .session import UserSession
from .group import Group, GroupMember
from .message import Message, MessageReaction, MessageRead

__all__ = [
    "User",
    "DisappearSetting",
    "UserSession",
    "Group",
    "GroupMember",
    "Message",
    "MessageReaction",
    "MessageRead",
]
