"""
End-to-end scenario at the service layer:
1. Three users sign up and log in with password + OTP
2. A group chat is created, a message fans out to everyone online
3. Disappearing direct messages expire and the sweeper removes them
4. Logout ends the session
"""
import asyncio
from datetime import timedelta

import pytest

from chatapp.core.errors import AuthError
from chatapp.db.base import utcnow
from chatapp.db.session import build_sessionmaker
from chatapp.models.message import Message
from chatapp.schemas.message import MessageSendRequest
from chatapp.services.expiry import ExpirySweeper

from conftest import PASSWORD


def test_full_scenario(auth, ledger, groups, db, engine, notifier, online):
    # ========== STEP 1: signup + login ==========
    users, sessions = {}, {}
    for name in ("alice", "bob", "carol"):
        email = f"{name}@example.com"
        users[name] = auth.signup(db, email, name.title(), PASSWORD)
        auth.login(db, email, PASSWORD)
        sessions[name] = auth.verify_otp(db, email, notifier.last_otp(email), remote_addr="127.0.0.1")
    a, b, c = users["alice"], users["bob"], users["carol"]

    conns = {name: online(user) for name, user in users.items()}
    assert conns["alice"].last("getOnlineUsers") == sorted(u.id for u in users.values())

    # ========== STEP 2: group fanout ==========
    g = groups.create_group(db, "G", "", [b.id, c.id], a.id)
    ledger.send_group(db, a.id, g.id, MessageSendRequest(text="hi"))

    for conn in conns.values():
        data = conn.last("newGroupMessage")
        assert data["text"] == "hi"
        assert data["senderId"] == a.id

    # ========== STEP 3: disappearing messages ==========
    ledger.set_disappear_setting(db, a.id, "user", b.id, "1min")
    brief = ledger.send_direct(db, a.id, b.id, MessageSendRequest(text="self-destruct"))
    assert brief.expires_at is not None

    db.get(Message, brief.id).expires_at = utcnow() - timedelta(seconds=1)
    db.commit()

    sweeper = ExpirySweeper(build_sessionmaker(engine), ledger, auth, interval_seconds=3600)
    removed, purged = sweeper.run_once()
    assert (removed, purged) == (1, 0)
    assert conns["bob"].last("messageExpired")["messageId"] == brief.id
    assert ledger.list_direct(db, b.id, a.id) == []

    # ========== STEP 4: logout ==========
    carol = sessions["carol"]
    auth.logout(db, carol.session_id)
    with pytest.raises(AuthError):
        auth.authenticate(db, carol.access_token, carol.session_id)
    assert auth.authenticate(db, sessions["alice"].access_token, sessions["alice"].session_id)[0].id == a.id


def test_sweeper_task_starts_and_stops(auth, ledger, engine):
    async def scenario():
        sweeper = ExpirySweeper(build_sessionmaker(engine), ledger, auth, interval_seconds=0.01)
        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()
        return sweeper._task

    assert asyncio.run(scenario()) is None
