from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from chatapp.api.deps import get_current_user, get_ledger, require_csrf
from chatapp.db.session import get_db
from chatapp.models.user import User
from chatapp.schemas.auth import UserOut
from chatapp.schemas.message import (
    ConversationOut,
    MessageEditRequest,
    MessageOut,
    MessageSendRequest,
    ReactionRequest,
    ReactionUser,
    StatusOut,
)
from chatapp.services.ledger import MessageLedger

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/users", response_model=List[ConversationOut])
def list_conversations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.conversations(db, current_user.id)


@router.get("/not-messaged", response_model=List[UserOut])
def users_not_messaged(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.users_not_messaged(db, current_user.id)


@router.post(
    "/send/{peer_id}",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_csrf)],
)
def send_message(
    peer_id: int,
    req: MessageSendRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.send_direct(db, current_user.id, peer_id, req)


@router.put("/edit/{message_id}", response_model=MessageOut, dependencies=[Depends(require_csrf)])
def edit_message(
    message_id: int,
    req: MessageEditRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.edit(db, message_id, req.text, current_user.id)


@router.delete("/chat/{peer_id}", response_model=StatusOut, dependencies=[Depends(require_csrf)])
def delete_chat(
    peer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    ledger.delete_chat(db, current_user.id, peer_id)
    return StatusOut(message="Chat deleted successfully")


@router.get("/{peer_id}", response_model=List[MessageOut])
def list_messages(
    peer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.list_direct(db, current_user.id, peer_id)


@router.get("/{peer_id}/pinned", response_model=List[MessageOut])
def list_pinned(
    peer_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.list_pinned_direct(db, current_user.id, peer_id)


@router.get("/{peer_id}/media", response_model=List[MessageOut])
def list_media(
    peer_id: int,
    media_filter: str = Query("all", alias="filter"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.list_media_direct(db, current_user.id, peer_id, media_filter, page, limit)


@router.delete("/{message_id}", response_model=StatusOut, dependencies=[Depends(require_csrf)])
def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    ledger.delete_message(db, message_id, current_user.id)
    return StatusOut(message="Message deleted successfully")


# --- lifecycle actions shared by direct and group messages --------------------


@router.post("/{message_id}/react", response_model=MessageOut, dependencies=[Depends(require_csrf)])
def react(
    message_id: int,
    req: ReactionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.react(db, message_id, req.emoji, current_user.id)


@router.post("/{message_id}/remove-reaction", response_model=MessageOut, dependencies=[Depends(require_csrf)])
def remove_reaction(
    message_id: int,
    req: ReactionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.unreact(db, message_id, req.emoji, current_user.id)


@router.get("/{message_id}/reactions", response_model=Dict[str, List[ReactionUser]])
def reaction_users(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.reaction_users(db, message_id, current_user.id)


@router.post("/{message_id}/pin", response_model=MessageOut, dependencies=[Depends(require_csrf)])
def pin(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.pin(db, message_id, current_user.id)


@router.post("/{message_id}/unpin", response_model=MessageOut, dependencies=[Depends(require_csrf)])
def unpin(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.unpin(db, message_id, current_user.id)


@router.post("/{message_id}/read", response_model=MessageOut, dependencies=[Depends(require_csrf)])
def mark_read(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ledger: MessageLedger = Depends(get_ledger),
):
    return ledger.mark_read(db, message_id, current_user.id)
