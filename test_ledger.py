"""MessageLedger: send, lifecycle mutations, reads and expiry."""
import random
from datetime import timedelta

import pytest

from chatapp.core.errors import Forbidden, LimitExceeded, NotFound, ValidationError
from chatapp.db.base import utcnow
from chatapp.models.message import Message
from chatapp.schemas.message import ContactRef, Location, MessageSendRequest


def text(value):
    return MessageSendRequest(text=value)


@pytest.fixture
def pair(make_user):
    return make_user("alice"), make_user("bob")


# --- send ---------------------------------------------------------------------


def test_send_direct_encrypts_at_rest_and_notifies_both(ledger, db, pair, online):
    alice, bob = pair
    a_conn, b_conn = online(alice), online(bob)

    out = ledger.send_direct(db, alice.id, bob.id, text("hello bob"))

    assert out.text == "hello bob"
    stored = db.get(Message, out.id)
    assert stored.text != "hello bob" and ":" in stored.text

    for conn in (a_conn, b_conn):
        data = conn.last("newMessage")
        assert data["text"] == "hello bob"
        assert data["senderId"] == alice.id and data["receiverId"] == bob.id


def test_send_requires_content(ledger, db, pair):
    alice, bob = pair
    with pytest.raises(ValidationError):
        ledger.send_direct(db, alice.id, bob.id, MessageSendRequest(text="   "))
    assert db.query(Message).count() == 0


def test_send_to_unknown_receiver(ledger, db, pair):
    alice, _ = pair
    with pytest.raises(NotFound):
        ledger.send_direct(db, alice.id, 9999, text("anyone?"))


def test_media_only_message(ledger, db, pair):
    alice, bob = pair
    out = ledger.send_direct(
        db, alice.id, bob.id, MessageSendRequest(document="https://cdn.example/a.pdf", original_name="a.pdf")
    )
    assert out.text is None
    assert out.document == "https://cdn.example/a.pdf" and out.original_name == "a.pdf"


def test_location_and_contact_snapshot(ledger, db, pair, make_user):
    alice, bob = pair
    carol = make_user("carol")

    out = ledger.send_direct(
        db,
        alice.id,
        bob.id,
        MessageSendRequest(location=Location(coordinates=[21.0, 52.2]), contact=ContactRef(user_id=carol.id)),
    )
    assert out.location == {"type": "Point", "coordinates": [21.0, 52.2]}
    assert out.contact == {"userId": carol.id, "fullName": carol.full_name}

    with pytest.raises(ValidationError):
        ledger.send_direct(db, alice.id, bob.id, MessageSendRequest(contact=ContactRef(user_id=4242)))


def test_reply_must_stay_in_conversation(ledger, db, pair, make_user):
    alice, bob = pair
    carol = make_user("carol")
    original = ledger.send_direct(db, bob.id, alice.id, text("question?"))
    elsewhere = ledger.send_direct(db, carol.id, alice.id, text("unrelated"))

    reply = ledger.send_direct(db, alice.id, bob.id, MessageSendRequest(text="answer", replied_to=original.id))
    assert reply.replied_to == original.id

    with pytest.raises(ValidationError):
        ledger.send_direct(db, alice.id, bob.id, MessageSendRequest(text="oops", replied_to=elsewhere.id))
    with pytest.raises(ValidationError):
        ledger.send_direct(db, alice.id, bob.id, MessageSendRequest(text="oops", replied_to=12345))


# --- edit ---------------------------------------------------------------------


def test_edit_by_sender(ledger, db, pair, online):
    alice, bob = pair
    b_conn = online(bob)
    msg = ledger.send_direct(db, alice.id, bob.id, text("helo"))

    out = ledger.edit(db, msg.id, "hello", alice.id)

    assert out.text == "hello" and out.is_edited
    assert b_conn.last("messageUpdated")["text"] == "hello"


def test_edit_by_non_sender_forbidden_and_text_unchanged(ledger, db, pair, online):
    alice, bob = pair
    a_conn = online(alice)
    msg = ledger.send_direct(db, alice.id, bob.id, text("original"))

    with pytest.raises(Forbidden):
        ledger.edit(db, msg.id, "hijacked", bob.id)

    assert ledger.list_direct(db, alice.id, bob.id)[0].text == "original"
    assert a_conn.events("messageUpdated") == []


def test_edit_window_closes_after_five_minutes(ledger, db, pair):
    alice, bob = pair
    msg = ledger.send_direct(db, alice.id, bob.id, text("typo"))
    stored = db.get(Message, msg.id)
    stored.created_at = utcnow() - timedelta(minutes=6)
    db.commit()

    with pytest.raises(Forbidden):
        ledger.edit(db, msg.id, "fixed", alice.id)


def test_edit_rejects_empty_text(ledger, db, pair):
    alice, bob = pair
    msg = ledger.send_direct(db, alice.id, bob.id, text("keep"))
    with pytest.raises(ValidationError):
        ledger.edit(db, msg.id, "  ", alice.id)


# --- reactions ----------------------------------------------------------------


def test_react_moves_user_between_buckets(ledger, db, pair, online):
    alice, bob = pair
    a_conn = online(alice)
    msg = ledger.send_direct(db, alice.id, bob.id, text("news"))

    ledger.react(db, msg.id, "👍", bob.id)
    ledger.react(db, msg.id, "👍", alice.id)
    out = ledger.react(db, msg.id, "❤️", bob.id)

    assert out.reactions == {"👍": [alice.id], "❤️": [bob.id]}
    assert a_conn.last("messageReaction")["reactions"] == {"👍": [alice.id], "❤️": [bob.id]}


def test_unreact_errors(ledger, db, pair):
    alice, bob = pair
    msg = ledger.send_direct(db, alice.id, bob.id, text("news"))
    ledger.react(db, msg.id, "👍", bob.id)

    with pytest.raises(NotFound):
        ledger.unreact(db, msg.id, "🎉", bob.id)
    with pytest.raises(Forbidden):
        ledger.unreact(db, msg.id, "👍", alice.id)

    out = ledger.unreact(db, msg.id, "👍", bob.id)
    assert out.reactions == {}


def test_reaction_exclusivity_under_random_sequences(ledger, db, make_user):
    users = [make_user(f"member{i}") for i in range(4)]
    g = ledger.groups.create_group(db, "Crew", "", [u.id for u in users[1:]], users[0].id)
    msg = ledger.send_group(db, users[0].id, g.id, text("react to me"))

    rng = random.Random(1234)
    emojis = ["👍", "❤️", "😂"]
    held = {}
    for _ in range(60):
        user = rng.choice(users)
        emoji = rng.choice(emojis)
        if rng.random() < 0.6:
            out = ledger.react(db, msg.id, emoji, user.id)
            held[user.id] = emoji
        else:
            try:
                out = ledger.unreact(db, msg.id, emoji, user.id)
            except (NotFound, Forbidden):
                continue
            held.pop(user.id, None)

        flat = [uid for ids in out.reactions.values() for uid in ids]
        assert len(flat) == len(set(flat))
        assert all(out.reactions.values())
        assert {uid: e for e, ids in out.reactions.items() for uid in ids} == held


def test_reaction_users(ledger, db, pair, make_user):
    alice, bob = pair
    msg = ledger.send_direct(db, alice.id, bob.id, text("hey"))
    ledger.react(db, msg.id, "👍", bob.id)

    users = ledger.reaction_users(db, msg.id, alice.id)
    assert [(u.id, u.full_name) for u in users["👍"]] == [(bob.id, bob.full_name)]

    outsider = make_user("eve")
    with pytest.raises(Forbidden):
        ledger.reaction_users(db, msg.id, outsider.id)


def test_outsider_cannot_react(ledger, db, pair, make_user):
    alice, bob = pair
    eve = make_user("eve")
    msg = ledger.send_direct(db, alice.id, bob.id, text("private"))
    with pytest.raises(Forbidden):
        ledger.react(db, msg.id, "👀", eve.id)


# --- pins ---------------------------------------------------------------------


def test_pin_cap_per_conversation(ledger, db, pair, make_user, online):
    alice, bob = pair
    carol = make_user("carol")
    b_conn = online(bob)
    ids = [ledger.send_direct(db, alice.id, bob.id, text(f"m{i}")).id for i in range(4)]

    for mid in ids[:3]:
        assert ledger.pin(db, mid, bob.id).pinned

    with pytest.raises(LimitExceeded):
        ledger.pin(db, ids[3], alice.id)
    assert not db.get(Message, ids[3]).pinned
    assert len(b_conn.events("messagePinned")) == 3

    # the cap is per conversation
    other = ledger.send_direct(db, alice.id, carol.id, text("hi carol"))
    assert ledger.pin(db, other.id, alice.id).pinned

    ledger.unpin(db, ids[0], alice.id)
    assert ledger.pin(db, ids[3], alice.id).pinned
    assert [m.id for m in ledger.list_pinned_direct(db, bob.id, alice.id)] == ids[1:]


def test_repin_is_noop(ledger, db, pair):
    alice, bob = pair
    ids = [ledger.send_direct(db, alice.id, bob.id, text(f"m{i}")).id for i in range(3)]
    for mid in ids:
        ledger.pin(db, mid, alice.id)

    assert ledger.pin(db, ids[0], alice.id).pinned


def test_expired_pins_do_not_count(ledger, db, pair):
    alice, bob = pair
    ids = [ledger.send_direct(db, alice.id, bob.id, text(f"m{i}")).id for i in range(4)]
    for mid in ids[:3]:
        ledger.pin(db, mid, alice.id)

    db.get(Message, ids[0]).expires_at = utcnow() - timedelta(seconds=1)
    db.commit()

    assert ledger.pin(db, ids[3], alice.id).pinned


def test_group_pin_events(ledger, db, make_user, online):
    alice, bob = make_user("alice"), make_user("bob")
    g = ledger.groups.create_group(db, "Pins", "", [bob.id], alice.id)
    b_conn = online(bob)
    msg = ledger.send_group(db, alice.id, g.id, text("pin me"))

    ledger.pin(db, msg.id, bob.id)
    ledger.unpin(db, msg.id, bob.id)

    assert b_conn.last("groupMessagePinned")["id"] == msg.id
    assert b_conn.last("groupMessageUnpinned")["pinned"] is False


# --- reads --------------------------------------------------------------------


def test_mark_read_idempotent_and_only_sender_notified(ledger, db, pair, online):
    alice, bob = pair
    a_conn, b_conn = online(alice), online(bob)
    msg = ledger.send_direct(db, alice.id, bob.id, text("read me"))

    assert ledger.mark_read(db, msg.id, bob.id).read_by == [bob.id]
    assert ledger.mark_read(db, msg.id, bob.id).read_by == [bob.id]

    receipts = a_conn.events("messageRead")
    assert len(receipts) == 1
    assert receipts[0]["data"] == {"messageId": msg.id, "readBy": [bob.id]}
    assert b_conn.events("messageRead") == []


def test_list_direct_is_chronological_and_scoped(ledger, db, pair, make_user):
    alice, bob = pair
    carol = make_user("carol")
    ledger.send_direct(db, alice.id, bob.id, text("1"))
    ledger.send_direct(db, bob.id, alice.id, text("2"))
    ledger.send_direct(db, alice.id, carol.id, text("not yours"))

    assert [m.text for m in ledger.list_direct(db, bob.id, alice.id)] == ["1", "2"]


def test_conversations_newest_first(ledger, db, pair, make_user):
    alice, bob = pair
    carol = make_user("carol")
    ledger.send_direct(db, alice.id, bob.id, text("to bob"))
    ledger.send_direct(db, carol.id, alice.id, text("from carol"))

    convs = ledger.conversations(db, alice.id)
    assert [c.id for c in convs] == [carol.id, bob.id]
    assert convs[0].latest_message.text == "from carol"


def test_users_not_messaged(ledger, db, pair, make_user):
    alice, bob = pair
    carol, dave = make_user("carol"), make_user("dave")
    ledger.send_direct(db, carol.id, alice.id, text("hi"))

    assert [u.id for u in ledger.users_not_messaged(db, alice.id)] == [bob.id, dave.id]
    assert [u.id for u in ledger.users_not_messaged(db, carol.id)] == [bob.id, dave.id]


def test_media_gallery_filters_and_pages(ledger, db, pair, make_user):
    alice, bob = pair
    carol = make_user("carol")
    images = [ledger.send_direct(db, alice.id, bob.id, MessageSendRequest(image=f"img{i}")).id for i in range(3)]
    voice = ledger.send_direct(db, bob.id, alice.id, MessageSendRequest(voice="note.ogg")).id
    doc = ledger.send_direct(
        db, alice.id, bob.id, MessageSendRequest(document="doc.pdf", original_name="Plan.pdf")
    ).id
    ledger.send_direct(db, alice.id, bob.id, text("no media"))
    ledger.send_direct(db, alice.id, carol.id, MessageSendRequest(image="elsewhere"))

    gone = ledger.send_direct(db, alice.id, bob.id, MessageSendRequest(image="brief")).id
    db.get(Message, gone).expires_at = utcnow() - timedelta(seconds=1)
    db.commit()

    everything = ledger.list_media_direct(db, bob.id, alice.id, limit=50)
    assert [m.id for m in everything] == [doc, voice, *reversed(images)]
    assert everything[0].original_name == "Plan.pdf"

    assert [m.id for m in ledger.list_media_direct(db, alice.id, bob.id, "audio")] == [voice]
    first = ledger.list_media_direct(db, alice.id, bob.id, "image", page=1, limit=2)
    second = ledger.list_media_direct(db, alice.id, bob.id, "image", page=2, limit=2)
    assert [m.id for m in first + second] == list(reversed(images))

    with pytest.raises(ValidationError):
        ledger.list_media_direct(db, alice.id, bob.id, "sticker")


def test_group_media_requires_membership(ledger, db, make_user):
    a, b, eve = make_user("alice"), make_user("bob"), make_user("eve")
    g = ledger.groups.create_group(db, "G", "", [b.id], a.id)
    gif = ledger.send_group(db, b.id, g.id, MessageSendRequest(gif="party.gif")).id
    ledger.send_group(db, a.id, g.id, text("plain"))

    assert [m.id for m in ledger.list_media_group(db, g.id, a.id)] == [gif]
    assert ledger.list_media_group(db, g.id, a.id, "video") == []
    with pytest.raises(Forbidden):
        ledger.list_media_group(db, g.id, eve.id)


# --- delete -------------------------------------------------------------------


def test_delete_message_sender_only(ledger, db, pair, online):
    alice, bob = pair
    b_conn = online(bob)
    msg = ledger.send_direct(db, alice.id, bob.id, text("oops"))
    ledger.react(db, msg.id, "😬", bob.id)

    with pytest.raises(Forbidden):
        ledger.delete_message(db, msg.id, bob.id)

    ledger.delete_message(db, msg.id, alice.id)
    assert db.get(Message, msg.id) is None
    assert b_conn.last("messageDeleted")["messageId"] == msg.id


def test_delete_chat_removes_both_directions(ledger, db, pair, make_user, online):
    alice, bob = pair
    carol = make_user("carol")
    b_conn = online(bob)
    ledger.send_direct(db, alice.id, bob.id, text("a"))
    ledger.send_direct(db, bob.id, alice.id, text("b"))
    ledger.send_direct(db, alice.id, carol.id, text("c"))

    assert ledger.delete_chat(db, alice.id, bob.id) == 2
    assert ledger.list_direct(db, alice.id, bob.id) == []
    assert len(ledger.list_direct(db, alice.id, carol.id)) == 1
    assert b_conn.last("chatDeleted") == {"userId": alice.id, "peerId": bob.id}


# --- disappearing messages ----------------------------------------------------


def test_disappear_setting_sets_expiry(ledger, db, pair):
    alice, bob = pair
    ledger.set_disappear_setting(db, alice.id, "user", bob.id, "5min")
    assert ledger.get_disappear_settings(db, alice.id) == {f"user:{bob.id}": "5min"}

    out = ledger.send_direct(db, alice.id, bob.id, text("poof"))
    assert out.expires_at is not None
    assert timedelta(minutes=4) < out.expires_at - utcnow() <= timedelta(minutes=5)

    # the setting is the sender's, not the receiver's
    assert ledger.send_direct(db, bob.id, alice.id, text("stays")).expires_at is None


@pytest.mark.parametrize("setting", ["0min", "5", "five min", "-3min", ""])
def test_disappear_setting_validation(ledger, db, pair, setting):
    alice, bob = pair
    with pytest.raises(ValidationError):
        ledger.set_disappear_setting(db, alice.id, "user", bob.id, setting)


def test_disappear_setting_for_group_requires_membership(ledger, db, make_user):
    alice, bob, eve = make_user("alice"), make_user("bob"), make_user("eve")
    g = ledger.groups.create_group(db, "G", "", [bob.id], alice.id)
    with pytest.raises(Forbidden):
        ledger.set_disappear_setting(db, eve.id, "group", g.id, "10min")

    ledger.set_disappear_setting(db, bob.id, "group", g.id, "10min")
    assert ledger.send_group(db, bob.id, g.id, text("brief")).expires_at is not None
    assert ledger.send_group(db, alice.id, g.id, text("lasting")).expires_at is None


def test_sweep_removes_expired_and_notifies(ledger, db, pair, make_user, online):
    alice, bob = pair
    carol = make_user("carol")
    g = ledger.groups.create_group(db, "G", "", [bob.id, carol.id], alice.id)
    a_conn, c_conn = online(alice), online(carol)

    direct = ledger.send_direct(db, alice.id, bob.id, text("gone soon"))
    grouped = ledger.send_group(db, bob.id, g.id, text("group gone soon"))
    kept = ledger.send_direct(db, alice.id, bob.id, text("kept"))
    for mid in (direct.id, grouped.id):
        db.get(Message, mid).expires_at = utcnow() - timedelta(seconds=1)
    db.commit()

    # hidden from reads before the sweep runs
    assert [m.id for m in ledger.list_direct(db, alice.id, bob.id)] == [kept.id]
    with pytest.raises(NotFound):
        ledger.react(db, direct.id, "👍", bob.id)

    assert ledger.sweep_expired(db) == 2
    assert db.get(Message, direct.id) is None and db.get(Message, grouped.id) is None
    assert db.get(Message, kept.id) is not None

    assert a_conn.last("messageExpired")["messageId"] == direct.id
    assert c_conn.last("groupMessageExpired") == {"messageId": grouped.id, "receiverId": None, "groupId": g.id}
    assert ledger.sweep_expired(db) == 0


# --- groups -------------------------------------------------------------------


def test_group_fanout(ledger, db, make_user, online):
    a, b, c = make_user("alice"), make_user("bob"), make_user("carol")
    g = ledger.groups.create_group(db, "G", "", [b.id, c.id], a.id)
    conns = [online(u) for u in (a, b, c)]

    ledger.send_group(db, a.id, g.id, text("hi"))

    for conn in conns:
        data = conn.last("newGroupMessage")
        assert data["text"] == "hi"
        assert data["senderId"] == a.id
        assert data["groupId"] == g.id
        assert data["senderName"] == a.full_name


def test_group_send_requires_membership(ledger, db, make_user):
    a, b, eve = make_user("alice"), make_user("bob"), make_user("eve")
    g = ledger.groups.create_group(db, "G", "", [b.id], a.id)

    with pytest.raises(Forbidden):
        ledger.send_group(db, eve.id, g.id, text("let me in"))
    with pytest.raises(Forbidden):
        ledger.list_group(db, g.id, eve.id)
    with pytest.raises(NotFound):
        ledger.send_group(db, a.id, 999, text("nowhere"))


def test_group_overview_latest_message_first(ledger, db, make_user):
    a, b = make_user("alice"), make_user("bob")
    quiet = ledger.groups.create_group(db, "Quiet", "", [b.id], a.id)
    busy = ledger.groups.create_group(db, "Busy", "", [b.id], a.id)
    ledger.send_group(db, b.id, busy.id, text("latest"))

    overview = ledger.group_overview(db, a.id)
    assert [g.id for g in overview] == [busy.id, quiet.id]
    assert overview[0].latest_message.text == "latest"
    assert overview[1].latest_message is None
