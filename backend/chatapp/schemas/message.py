from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Location(CamelModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., min_length=2, max_length=2, description="[longitude, latitude]")


class ContactRef(CamelModel):
    user_id: int


class MessageSendRequest(CamelModel):
    """
    Content of a new message. At least one content field must be present;
    that rule is enforced by MessageLedger so direct callers get it too.
    """
    model_config = ConfigDict(extra="forbid")

    text: Optional[str] = Field(default=None, max_length=10000)
    image: Optional[str] = Field(default=None, max_length=1024)
    gif: Optional[str] = Field(default=None, max_length=1024)
    voice: Optional[str] = Field(default=None, max_length=1024)
    video: Optional[str] = Field(default=None, max_length=1024)
    document: Optional[str] = Field(default=None, max_length=1024)
    original_name: Optional[str] = Field(default=None, max_length=255)
    location: Optional[Location] = None
    contact: Optional[ContactRef] = None
    replied_to: Optional[int] = None

    @field_validator("text")
    @classmethod
    def blank_text_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    def has_content(self) -> bool:
        return any(
            (self.text, self.image, self.gif, self.voice, self.video, self.document, self.location, self.contact)
        )


class MessageEditRequest(CamelModel):
    text: str = Field(..., max_length=10000)


class ReactionRequest(CamelModel):
    emoji: str = Field(..., min_length=1, max_length=32)


class MessageOut(CamelModel):
    """Client view of a message, text already decrypted."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    sender_id: int
    receiver_id: Optional[int] = None
    group_id: Optional[int] = None
    sender_name: Optional[str] = None

    text: Optional[str] = None
    image: Optional[str] = None
    gif: Optional[str] = None
    voice: Optional[str] = None
    video: Optional[str] = None
    document: Optional[str] = None
    original_name: Optional[str] = None
    location: Optional[dict] = None
    contact: Optional[dict] = None
    replied_to: Optional[int] = None

    pinned: bool = False
    is_edited: bool = False
    read_by: List[int] = []
    reactions: Dict[str, List[int]] = {}

    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    def event_data(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ReadReceipt(CamelModel):
    message_id: int
    read_by: List[int]


class ReactionUser(CamelModel):
    id: int
    full_name: str


class ConversationOut(CamelModel):
    id: int
    full_name: str
    email: str
    latest_message: Optional[MessageOut] = None


class StatusOut(CamelModel):
    message: str
    removed: Optional[bool] = None
