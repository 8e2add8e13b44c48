"""GroupDirectory: membership, admins and the at-least-one-admin rule."""
import pytest

from chatapp.core.errors import Forbidden, LimitExceeded, NotFound, ValidationError
from chatapp.models.group import GroupMember
from chatapp.models.message import Message
from chatapp.schemas.message import MessageSendRequest


@pytest.fixture
def trio(make_user):
    return make_user("alice"), make_user("bob"), make_user("carol")


@pytest.fixture
def group(groups, db, trio):
    alice, bob, carol = trio
    return groups.create_group(db, "Team", "weekly sync", [bob.id, carol.id], alice.id)


def test_create_group_creator_is_sole_admin(groups, db, trio, online):
    alice, bob, carol = trio
    b_conn = online(bob)

    g = groups.create_group(db, "  Team ", "", [bob.id, bob.id, alice.id], alice.id)

    assert g.name == "Team"
    assert g.members == sorted([alice.id, bob.id])
    assert g.admin == [alice.id]
    assert b_conn.last("newGroupCreated")["id"] == g.id
    assert [x.id for x in groups.groups_for(db, bob.id)] == [g.id]
    assert groups.groups_for(db, carol.id) == []


def test_create_group_unknown_member(groups, db, trio):
    alice, _, _ = trio
    with pytest.raises(NotFound):
        groups.create_group(db, "Ghosts", "", [4242], alice.id)


def test_create_group_requires_name(groups, db, trio):
    alice, _, _ = trio
    with pytest.raises(ValidationError):
        groups.create_group(db, "   ", "", [], alice.id)


def test_add_members_admin_only(groups, db, trio, group, make_user, online):
    alice, bob, carol = trio
    dave = make_user("dave")
    d_conn, c_conn = online(dave), online(carol)

    with pytest.raises(Forbidden):
        groups.add_members(db, group.id, [dave.id], bob.id)

    out = groups.add_members(db, group.id, [dave.id, bob.id], alice.id)

    assert dave.id in out.members and out.members.count(bob.id) == 1
    assert d_conn.last("userAddedToGroup")["id"] == group.id
    assert dave.id in c_conn.last("membersAddedToGroup")["members"]
    assert d_conn.events("membersAddedToGroup")


def test_remove_members_strips_admin_and_notifies(groups, db, trio, group, online):
    alice, bob, carol = trio
    b_conn, c_conn = online(bob), online(carol)
    groups.make_admin(db, group.id, bob.id, alice.id)

    out = groups.remove_members(db, group.id, [bob.id], alice.id)

    assert bob.id not in out.members and out.admin == [alice.id]
    assert b_conn.last("userRemovedFromGroup") == {"groupId": group.id}
    assert bob.id not in c_conn.last("membersRemovedFromGroup")["members"]
    assert groups.groups_for(db, bob.id) == []


def test_remove_members_cannot_drop_last_admin(groups, db, trio, group):
    alice, bob, carol = trio

    with pytest.raises(LimitExceeded):
        groups.remove_members(db, group.id, [alice.id, carol.id], alice.id)

    assert sorted(groups.member_ids(db, group.id)) == sorted([alice.id, bob.id, carol.id])
    assert groups.is_admin(db, group.id, alice.id)


def test_remove_members_of_non_members(groups, db, trio, group, make_user):
    alice, _, _ = trio
    eve = make_user("eve")
    with pytest.raises(ValidationError):
        groups.remove_members(db, group.id, [eve.id], alice.id)


def test_make_admin_rules(groups, db, trio, group, make_user, online):
    alice, bob, carol = trio
    eve = make_user("eve")
    c_conn = online(carol)

    with pytest.raises(Forbidden):
        groups.make_admin(db, group.id, carol.id, bob.id)
    with pytest.raises(ValidationError):
        groups.make_admin(db, group.id, eve.id, alice.id)

    out = groups.make_admin(db, group.id, bob.id, alice.id)
    assert out.admin == sorted([alice.id, bob.id])
    assert c_conn.last("groupAdminsUpdated")["admin"] == sorted([alice.id, bob.id])

    with pytest.raises(ValidationError):
        groups.make_admin(db, group.id, bob.id, alice.id)


def test_remove_admin_keeps_at_least_one(groups, db, trio, group):
    alice, bob, carol = trio

    with pytest.raises(LimitExceeded):
        groups.remove_admin(db, group.id, alice.id, alice.id)
    assert groups.is_admin(db, group.id, alice.id)

    with pytest.raises(ValidationError):
        groups.remove_admin(db, group.id, carol.id, alice.id)

    groups.make_admin(db, group.id, bob.id, alice.id)
    out = groups.remove_admin(db, group.id, alice.id, bob.id)
    assert out.admin == [bob.id]
    assert alice.id in out.members


def test_admins_always_subset_of_members(groups, db, trio, group):
    alice, bob, carol = trio
    groups.make_admin(db, group.id, carol.id, alice.id)
    groups.remove_members(db, group.id, [carol.id], alice.id)
    groups.add_members(db, group.id, [carol.id], alice.id)

    g = groups.get(db, group.id)
    assert set(g.admin_ids) <= set(g.member_ids)
    assert g.admin_ids == [alice.id]


def test_update_details_admin_only(groups, db, trio, group, online):
    alice, bob, _ = trio
    b_conn = online(bob)

    with pytest.raises(Forbidden):
        groups.update_details(db, group.id, bob.id, name="Mine now")

    out = groups.update_details(db, group.id, alice.id, description="daily sync")
    assert out.name == "Team" and out.description == "daily sync"
    assert b_conn.last("groupUpdated")["description"] == "daily sync"


def test_members_and_non_members(groups, db, trio, group, make_user):
    alice, bob, carol = trio
    eve = make_user("eve")

    members = groups.members(db, group.id, bob.id)
    assert [(m.id, m.is_admin) for m in members] == [(alice.id, True), (bob.id, False), (carol.id, False)]
    assert [u.id for u in groups.non_members(db, group.id, alice.id)] == [eve.id]

    with pytest.raises(Forbidden):
        groups.members(db, group.id, eve.id)


def test_delete_group_removes_everything(groups, ledger, db, trio, group, online):
    alice, bob, carol = trio
    c_conn = online(carol)
    ledger.send_group(db, bob.id, group.id, MessageSendRequest(text="bye"))

    with pytest.raises(Forbidden):
        groups.delete_group(db, group.id, bob.id)

    groups.delete_group(db, group.id, alice.id)

    assert c_conn.last("groupDeleted") == {"groupId": group.id}
    assert db.query(GroupMember).count() == 0
    assert db.query(Message).filter(Message.group_id == group.id).count() == 0
    assert groups.groups_for(db, carol.id) == []
    with pytest.raises(NotFound):
        groups.get(db, group.id)


def test_deleted_group_settings_do_not_leak_into_a_new_group(groups, ledger, db, trio, group):
    alice, bob, carol = trio
    ledger.set_disappear_setting(db, alice.id, "group", group.id, "1min")

    groups.delete_group(db, group.id, alice.id)

    assert ledger.get_disappear_settings(db, alice.id) == {}
    fresh = groups.create_group(db, "Again", "", [bob.id], alice.id)
    assert fresh.id != group.id

    sent = ledger.send_group(db, alice.id, fresh.id, MessageSendRequest(text="hello"))
    assert sent.expires_at is None
