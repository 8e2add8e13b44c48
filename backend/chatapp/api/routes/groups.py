from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from chatapp.api.deps import get_current_user, get_groups, get_ledger, require_csrf
from chatapp.db.session import get_db
from chatapp.models.user import User
from chatapp.schemas.group import (
    AdminRequest,
    GroupCreateRequest,
    GroupDetailsRequest,
    GroupOut,
    IsAdminOut,
    MemberOut,
    MembersRequest,
)
from chatapp.schemas.message import MessageOut, MessageSendRequest, StatusOut
from chatapp.services.groups import GroupDirectory
from chatapp.services.ledger import MessageLedger

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("", response_model=List[GroupOut])
def list_groups(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.group_overview(db, current_user.id)


@router.post("", response_model=GroupOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_csrf)])
def create_group(
    req: GroupCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    return groups.create_group(db, req.name, req.description, req.members, current_user.id)


@router.get("/all-users", response_model=List[MemberOut])
def all_users(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    return groups.directory(db, current_user.id)


@router.get("/{group_id}/members", response_model=List[MemberOut])
def members(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    return groups.members(db, group_id, current_user.id)


@router.get("/{group_id}/non-members", response_model=List[MemberOut])
def non_members(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    return groups.non_members(db, group_id, current_user.id)


@router.get("/{group_id}/is-admin", response_model=IsAdminOut)
def is_admin(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    return IsAdminOut(is_admin=groups.is_admin(db, group_id, current_user.id))


@router.get("/{group_id}/messages", response_model=List[MessageOut])
def list_messages(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.list_group(db, group_id, current_user.id)


@router.get("/{group_id}/pinned", response_model=List[MessageOut])
def list_pinned(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.list_pinned_group(db, group_id, current_user.id)


@router.get("/{group_id}/media", response_model=List[MessageOut])
def list_media(
    group_id: int,
    media_filter: str = Query("all", alias="filter"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.list_media_group(db, group_id, current_user.id, media_filter, page, limit)


@router.post(
    "/{group_id}/messages",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf)],
)
def send_message(
    group_id: int,
    req: MessageSendRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.send_group(db, current_user.id, group_id, req)


@router.put("/{group_id}/add-members", response_model=GroupOut, dependencies=[Depends(require_csrf)])
def add_members(
    group_id: int,
    req: MembersRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    return groups.add_members(db, group_id, req.members, current_user.id)


@router.put("/{group_id}/remove-members", response_model=GroupOut, dependencies=[Depends(require_csrf)])
def remove_members(
    group_id: int,
    req: MembersRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    return groups.remove_members(db, group_id, req.members, current_user.id)


@router.put("/{group_id}/make-admin", response_model=GroupOut, dependencies=[Depends(require_csrf)])
def make_admin(
    group_id: int,
    req: AdminRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    return groups.make_admin(db, group_id, req.user_id, current_user.id)


@router.put("/{group_id}/remove-admin", response_model=GroupOut, dependencies=[Depends(require_csrf)])
def remove_admin(
    group_id: int,
    req: AdminRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    return groups.remove_admin(db, group_id, req.user_id, current_user.id)


@router.put("/{group_id}/details", response_model=GroupOut, dependencies=[Depends(require_csrf)])
def update_details(
    group_id: int,
    req: GroupDetailsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    return groups.update_details(db, group_id, current_user.id, name=req.name, description=req.description)


@router.delete("/{group_id}", response_model=StatusOut, dependencies=[Depends(require_csrf)])
def delete_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    groups: GroupDirectory = Depends(get_groups),
):
    groups.delete_group(db, group_id, current_user.id)
    return StatusOut(message="Group deleted successfully")
