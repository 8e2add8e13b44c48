from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from chatapp.core.errors import ChatError
from chatapp.services.auth import SessionAuthority
from chatapp.services.ledger import MessageLedger

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """
    Periodically removes expired messages and lapsed sessions.

    Reads already hide expired rows, so the sweep only has to catch up on
    storage and tell connected clients to drop what disappeared.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: MessageLedger,
        auth: SessionAuthority,
        interval_seconds: float = 30.0,
    ):
        self.session_factory = session_factory
        self.ledger = ledger
        self.auth = auth
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    def run_once(self) -> tuple[int, int]:
        """Run one sweep; returns (messages removed, sessions purged)."""
        with self.session_factory() as db:
            messages = self.ledger.sweep_expired(db)
            sessions = self.auth.purge_expired_sessions(db)
        if sessions:
            logger.info("Purged %d lapsed session(s)", sessions)
        return messages, sessions

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._sweep())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _sweep(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                try:
                    await run_in_threadpool(self.run_once)
                except (SQLAlchemyError, ChatError) as exc:
                    logger.error("Expiry sweep failed: %s", exc)
        except asyncio.CancelledError:
            return
