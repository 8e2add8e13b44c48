from __future__ import annotations

import logging
from typing import Any, Iterable

from chatapp.realtime import events
from chatapp.realtime.presence import PresenceRegistry, Pushable

logger = logging.getLogger(__name__)


def frame(event: str, data: Any) -> dict:
    return {"event": event, "data": data}


class Dispatcher:
    """
    Fans lifecycle events out to online recipients.

    Fire-and-forget: offline recipients are skipped, nothing is queued for
    later and there is no retry. Clients re-fetch state after reconnecting.
    """

    def __init__(self, presence: PresenceRegistry):
        self.presence = presence

    def connect(self, user_id: int, connection: Pushable) -> None:
        replaced = self.presence.register(user_id, connection)
        if replaced is not None and hasattr(replaced, "close"):
            replaced.close()
        logger.info("User %s connected (%d online)", user_id, len(self.presence))
        self.broadcast_online_users()

    def disconnect(self, user_id: int, connection: Pushable | None = None) -> None:
        if self.presence.unregister(user_id, connection):
            logger.info("User %s disconnected (%d online)", user_id, len(self.presence))
            self.broadcast_online_users()

    def broadcast_online_users(self) -> None:
        # the full set every time, not a diff
        payload = frame(events.ONLINE_USERS, self.presence.online_user_ids())
        for connection in self.presence.snapshot():
            connection.push(payload)

    def dispatch(self, event: str, data: Any, recipients: Iterable[int]) -> int:
        """Push ``event`` to each online recipient once; returns the delivery count."""
        payload = frame(event, data)
        delivered = 0
        for user_id in dict.fromkeys(recipients):
            connection = self.presence.lookup(user_id)
            if connection is None:
                continue
            connection.push(payload)
            delivered += 1
        logger.debug("%s -> %d online recipient(s)", event, delivered)
        return delivered
