from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator

from chatapp.schemas.message import CamelModel, MessageOut


class GroupCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=128)
    description: str = Field(default="", max_length=2000)
    members: List[int] = Field(default_factory=list, max_length=256)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Group name cannot be empty")
        return v


class GroupDetailsRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    description: Optional[str] = Field(default=None, max_length=2000)


class MembersRequest(CamelModel):
    members: List[int] = Field(..., min_length=1, max_length=256)


class AdminRequest(CamelModel):
    user_id: int


class GroupOut(CamelModel):
    id: int
    name: str
    description: str
    members: List[int]
    admin: List[int]
    created_at: datetime
    updated_at: datetime
    latest_message: Optional[MessageOut] = None

    def event_data(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class MemberOut(CamelModel):
    id: int
    full_name: str
    email: str
    is_admin: bool = False


class IsAdminOut(CamelModel):
    is_admin: bool
