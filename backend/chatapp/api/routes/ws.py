from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from chatapp.api.deps import ACCESS_COOKIE, SESSION_COOKIE
from chatapp.core.errors import AuthError
from chatapp.realtime import events
from chatapp.realtime.presence import Connection

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _authenticate(app, access_token: str | None, session_id: str | None) -> int:
    with app.state.sessionmaker() as db:
        user, _ = app.state.auth.authenticate(db, access_token, session_id)
        return user.id


def _group_peers(app, group_id: int, user_id: int) -> list[int]:
    with app.state.sessionmaker() as db:
        members = app.state.groups.member_ids(db, group_id)
    if user_id not in members:
        return []
    return [m for m in members if m != user_id]


async def _handle_client_event(app, user_id: int, message: dict) -> None:
    """Typing indicators are the only client -> server events."""
    event = message.get("event")
    data = message.get("data") or {}
    dispatcher = app.state.dispatcher

    if event == events.TYPING:
        receiver_id = data.get("receiverId")
        if isinstance(receiver_id, int):
            dispatcher.dispatch(events.TYPING, {"senderId": user_id}, [receiver_id])
    elif event == events.GROUP_TYPING:
        group_id = data.get("groupId")
        if isinstance(group_id, int):
            peers = await run_in_threadpool(_group_peers, app, group_id, user_id)
            dispatcher.dispatch(events.GROUP_TYPING, {"groupId": group_id, "senderId": user_id}, peers)
    else:
        logger.debug("Ignoring unknown client event %r from user %s", event, user_id)


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket):
    app = websocket.app
    try:
        user_id = await run_in_threadpool(
            _authenticate,
            app,
            websocket.cookies.get(ACCESS_COOKIE),
            websocket.cookies.get(SESSION_COOKIE),
        )
    except AuthError as exc:
        logger.info("Rejected socket: %s", exc.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = Connection(websocket, max_pending=app.state.settings.WS_SEND_QUEUE_SIZE)
    writer = asyncio.create_task(connection.run_writer())
    app.state.dispatcher.connect(user_id, connection)

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except (ValueError, KeyError):
                # malformed JSON or a binary frame
                continue
            if connection.closed:
                # replaced by a newer socket or dropped as a slow client
                break
            if isinstance(message, dict):
                await _handle_client_event(app, user_id, message)
    except WebSocketDisconnect:
        pass
    finally:
        app.state.dispatcher.disconnect(user_id, connection)
        connection.close(close_socket=False)
        await writer
