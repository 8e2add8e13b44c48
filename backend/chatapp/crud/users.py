# backend/chatapp/crud/users.py
from __future__ import annotations

from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from chatapp.core.security import hash_password
from chatapp.models.user import DisappearSetting, User


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_by_email(db: Session, email: str) -> User | None:
    stmt = select(User).where(User.email == normalize_email(email))
    return db.execute(stmt).scalar_one_or_none()


def get_by_id(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def get_many(db: Session, user_ids: Iterable[int]) -> list[User]:
    ids = list(set(user_ids))
    if not ids:
        return []
    stmt = select(User).where(User.id.in_(ids))
    return list(db.execute(stmt).scalars())


def create_user(db: Session, email: str, full_name: str, password: str, role: str = "user") -> User:
    u = User(
        email=normalize_email(email),
        full_name=full_name.strip(),
        password_hash=hash_password(password),
        role=role,
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def get_disappear_setting(db: Session, user_id: int, target_kind: str, target_id: int) -> str:
    stmt = select(DisappearSetting.setting).where(
        DisappearSetting.user_id == user_id,
        DisappearSetting.target_kind == target_kind,
        DisappearSetting.target_id == target_id,
    )
    return db.execute(stmt).scalar_one_or_none() or "off"


def list_disappear_settings(db: Session, user_id: int) -> list[DisappearSetting]:
    stmt = select(DisappearSetting).where(DisappearSetting.user_id == user_id)
    return list(db.execute(stmt).scalars())


def set_disappear_setting(db: Session, user_id: int, target_kind: str, target_id: int, setting: str) -> DisappearSetting:
    stmt = select(DisappearSetting).where(
        DisappearSetting.user_id == user_id,
        DisappearSetting.target_kind == target_kind,
        DisappearSetting.target_id == target_id,
    )
    row = db.execute(stmt).scalar_one_or_none()
    if row is None:
        row = DisappearSetting(user_id=user_id, target_kind=target_kind, target_id=target_id)
        db.add(row)
    row.setting = setting
    db.commit()
    return row


def delete_disappear_settings_for(db: Session, target_kind: str, target_id: int) -> int:
    """Drop every user's setting for a conversation; the caller commits."""
    stmt = delete(DisappearSetting).where(
        DisappearSetting.target_kind == target_kind,
        DisappearSetting.target_id == target_id,
    )
    return db.execute(stmt).rowcount


def list_users(db: Session, exclude_id: int | None = None) -> list[User]:
    stmt = select(User).order_by(User.full_name, User.id)
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    return list(db.execute(stmt).scalars())
