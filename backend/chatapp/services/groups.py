"""
GroupDirectory: groups, membership and the admin invariant.

Every group keeps at least one admin for as long as it exists. All
membership-changing operations funnel through ``_assert_admins_remain`` so the
rule is checked the same way everywhere and a rejected call leaves the group
untouched.
"""
from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from chatapp.core.errors import Forbidden, LimitExceeded, NotFound, ValidationError
from chatapp.crud import users as users_crud
from chatapp.models.group import Group, GroupMember
from chatapp.models.user import User
from chatapp.realtime import events
from chatapp.realtime.dispatcher import Dispatcher
from chatapp.schemas.group import GroupOut, MemberOut

logger = logging.getLogger(__name__)


def group_view(group: Group) -> GroupOut:
    return GroupOut(
        id=group.id,
        name=group.name,
        description=group.description,
        members=sorted(group.member_ids),
        admin=sorted(group.admin_ids),
        created_at=group.created_at,
        updated_at=group.updated_at,
    )


def _assert_admins_remain(group: Group, remaining_admins: Iterable[int]) -> None:
    if not set(remaining_admins):
        logger.info("Rejected change leaving group %s without an admin", group.id)
        raise LimitExceeded("At least one admin must remain")


class GroupDirectory:
    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher

    # --- lookups ----------------------------------------------------------

    def get(self, db: Session, group_id: int) -> Group:
        group = db.get(Group, group_id)
        if group is None:
            raise NotFound("Group not found")
        return group

    def member_ids(self, db: Session, group_id: int) -> list[int]:
        stmt = select(GroupMember.user_id).where(GroupMember.group_id == group_id)
        return list(db.execute(stmt).scalars())

    def is_member(self, db: Session, group_id: int, user_id: int) -> bool:
        return db.get(GroupMember, (group_id, user_id)) is not None

    def is_admin(self, db: Session, group_id: int, user_id: int) -> bool:
        self.get(db, group_id)
        membership = db.get(GroupMember, (group_id, user_id))
        return membership is not None and membership.is_admin

    def require_member(self, db: Session, group_id: int, user_id: int) -> Group:
        group = self.get(db, group_id)
        if not self.is_member(db, group_id, user_id):
            raise Forbidden("You are not a member of this group")
        return group

    def _require_admin(self, group: Group, user_id: int, action: str) -> None:
        if user_id not in group.admin_ids:
            raise Forbidden(f"Only an admin can {action}")

    def groups_for(self, db: Session, user_id: int) -> list[Group]:
        stmt = (
            select(Group)
            .join(GroupMember, GroupMember.group_id == Group.id)
            .where(GroupMember.user_id == user_id)
            .order_by(Group.id)
        )
        return list(db.execute(stmt).scalars())

    def members(self, db: Session, group_id: int, requester_id: int) -> list[MemberOut]:
        group = self.require_member(db, group_id, requester_id)
        return [
            MemberOut(id=m.user.id, full_name=m.user.full_name, email=m.user.email, is_admin=m.is_admin)
            for m in sorted(group.members, key=lambda m: m.user_id)
        ]

    def non_members(self, db: Session, group_id: int, requester_id: int) -> list[MemberOut]:
        group = self.require_member(db, group_id, requester_id)
        stmt = select(User).where(User.id.not_in(group.member_ids)).order_by(User.id)
        return [MemberOut(id=u.id, full_name=u.full_name, email=u.email) for u in db.execute(stmt).scalars()]

    def directory(self, db: Session, requester_id: int) -> list[MemberOut]:
        """Everyone except the requester, for picking members of a new group."""
        return [
            MemberOut(id=u.id, full_name=u.full_name, email=u.email)
            for u in users_crud.list_users(db, exclude_id=requester_id)
        ]

    def _existing_user_ids(self, db: Session, user_ids: Iterable[int]) -> list[int]:
        wanted = list(dict.fromkeys(user_ids))
        found = {u.id for u in users_crud.get_many(db, wanted)}
        missing = [uid for uid in wanted if uid not in found]
        if missing:
            raise NotFound(f"Unknown user(s): {', '.join(str(m) for m in missing)}")
        return wanted

    # --- mutations --------------------------------------------------------

    def create_group(
        self,
        db: Session,
        name: str,
        description: str,
        members: Iterable[int],
        creator_id: int,
    ) -> GroupOut:
        if not name or not name.strip():
            raise ValidationError("Group name is required")

        member_ids = self._existing_user_ids(db, [creator_id, *members])

        group = Group(name=name.strip(), description=(description or "").strip())
        group.members = [GroupMember(user_id=uid, is_admin=(uid == creator_id)) for uid in member_ids]
        db.add(group)
        db.commit()
        db.refresh(group)

        view = group_view(group)
        logger.info("Group %s created by %s with %d member(s)", group.id, creator_id, len(member_ids))
        self.dispatcher.dispatch(events.NEW_GROUP_CREATED, view.event_data(), view.members)
        return view

    def update_details(
        self,
        db: Session,
        group_id: int,
        requester_id: int,
        name: str | None = None,
        description: str | None = None,
    ) -> GroupOut:
        group = self.get(db, group_id)
        self._require_admin(group, requester_id, "update group details")

        if name is not None:
            if not name.strip():
                raise ValidationError("Group name cannot be empty")
            group.name = name.strip()
        if description is not None:
            group.description = description.strip()
        db.commit()
        db.refresh(group)

        view = group_view(group)
        self.dispatcher.dispatch(events.GROUP_UPDATED, view.event_data(), view.members)
        return view

    def add_members(self, db: Session, group_id: int, member_ids: Iterable[int], requester_id: int) -> GroupOut:
        group = self.get(db, group_id)
        self._require_admin(group, requester_id, "add members")

        current = set(group.member_ids)
        added = [uid for uid in self._existing_user_ids(db, member_ids) if uid not in current]
        for uid in added:
            group.members.append(GroupMember(user_id=uid, is_admin=False))
        db.commit()
        db.refresh(group)

        view = group_view(group)
        data = view.event_data()
        self.dispatcher.dispatch(events.MEMBERS_ADDED, data, view.members)
        self.dispatcher.dispatch(events.USER_ADDED, data, added)
        return view

    def remove_members(self, db: Session, group_id: int, member_ids: Iterable[int], requester_id: int) -> GroupOut:
        group = self.get(db, group_id)
        self._require_admin(group, requester_id, "remove members")

        to_remove = set(member_ids) & set(group.member_ids)
        if not to_remove:
            raise ValidationError("None of the given users are members of this group")

        # removing a member strips their admin rights too
        _assert_admins_remain(group, set(group.admin_ids) - to_remove)

        for membership in [m for m in group.members if m.user_id in to_remove]:
            group.members.remove(membership)
        db.commit()
        db.refresh(group)

        view = group_view(group)
        self.dispatcher.dispatch(events.MEMBERS_REMOVED, view.event_data(), view.members)
        self.dispatcher.dispatch(events.USER_REMOVED, {"groupId": group.id}, sorted(to_remove))
        return view

    def make_admin(self, db: Session, group_id: int, target_id: int, requester_id: int) -> GroupOut:
        group = self.get(db, group_id)
        self._require_admin(group, requester_id, "assign a new admin")

        membership = next((m for m in group.members if m.user_id == target_id), None)
        if membership is None:
            raise ValidationError("New admin must be a member of the group")
        if membership.is_admin:
            raise ValidationError("User is already an admin")

        membership.is_admin = True
        db.commit()
        return self._admins_changed(db, group)

    def remove_admin(self, db: Session, group_id: int, target_id: int, requester_id: int) -> GroupOut:
        group = self.get(db, group_id)
        self._require_admin(group, requester_id, "remove another admin")

        membership = next((m for m in group.members if m.user_id == target_id and m.is_admin), None)
        if membership is None:
            raise ValidationError("User is not an admin")

        _assert_admins_remain(group, set(group.admin_ids) - {target_id})

        membership.is_admin = False
        db.commit()
        return self._admins_changed(db, group)

    def _admins_changed(self, db: Session, group: Group) -> GroupOut:
        db.refresh(group)
        view = group_view(group)
        self.dispatcher.dispatch(events.GROUP_ADMINS_UPDATED, view.event_data(), view.members)
        return view

    def delete_group(self, db: Session, group_id: int, requester_id: int) -> None:
        group = self.get(db, group_id)
        self._require_admin(group, requester_id, "delete the group")

        former_members = list(group.member_ids)
        # membership rows are the members' group lists; messages go with the group
        db.delete(group)
        users_crud.delete_disappear_settings_for(db, "group", group_id)
        db.commit()

        logger.info("Group %s deleted by %s", group_id, requester_id)
        self.dispatcher.dispatch(events.GROUP_DELETED, {"groupId": group_id}, former_members)
