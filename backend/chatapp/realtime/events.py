# server -> client
ONLINE_USERS = "getOnlineUsers"

NEW_MESSAGE = "newMessage"
MESSAGE_UPDATED = "messageUpdated"
MESSAGE_REACTION = "messageReaction"
MESSAGE_PINNED = "messagePinned"
MESSAGE_UNPINNED = "messageUnpinned"
MESSAGE_READ = "messageRead"
MESSAGE_DELETED = "messageDeleted"
MESSAGE_EXPIRED = "messageExpired"
CHAT_DELETED = "chatDeleted"

NEW_GROUP_MESSAGE = "newGroupMessage"
GROUP_MESSAGE_UPDATED = "groupMessageUpdated"
GROUP_MESSAGE_REACTION = "groupMessageReaction"
GROUP_MESSAGE_PINNED = "groupMessagePinned"
GROUP_MESSAGE_UNPINNED = "groupMessageUnpinned"
GROUP_MESSAGE_READ = "groupMessageRead"
GROUP_MESSAGE_DELETED = "groupMessageDeleted"
GROUP_MESSAGE_EXPIRED = "groupMessageExpired"

NEW_GROUP_CREATED = "newGroupCreated"
GROUP_UPDATED = "groupUpdated"
MEMBERS_ADDED = "membersAddedToGroup"
USER_ADDED = "userAddedToGroup"
MEMBERS_REMOVED = "membersRemovedFromGroup"
USER_REMOVED = "userRemovedFromGroup"
GROUP_ADMINS_UPDATED = "groupAdminsUpdated"
GROUP_DELETED = "groupDeleted"

# client -> server, relayed
TYPING = "typing"
GROUP_TYPING = "groupTyping"

# (direct, group) variants of message lifecycle events
LIFECYCLE = {
    "new": (NEW_MESSAGE, NEW_GROUP_MESSAGE),
    "updated": (MESSAGE_UPDATED, GROUP_MESSAGE_UPDATED),
    "reaction": (MESSAGE_REACTION, GROUP_MESSAGE_REACTION),
    "pinned": (MESSAGE_PINNED, GROUP_MESSAGE_PINNED),
    "unpinned": (MESSAGE_UNPINNED, GROUP_MESSAGE_UNPINNED),
    "read": (MESSAGE_READ, GROUP_MESSAGE_READ),
    "deleted": (MESSAGE_DELETED, GROUP_MESSAGE_DELETED),
    "expired": (MESSAGE_EXPIRED, GROUP_MESSAGE_EXPIRED),
}


def lifecycle_event(kind: str, is_group: bool) -> str:
    direct, group = LIFECYCLE[kind]
    return group if is_group else direct
