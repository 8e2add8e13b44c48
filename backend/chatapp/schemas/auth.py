from __future__ import annotations

from typing import Dict, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from chatapp.schemas.message import CamelModel


class SignupIn(CamelModel):
    model_config = ConfigDict(extra="forbid")

    full_name: str = Field(min_length=1, max_length=128)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Full name cannot be empty")
        return v


class LoginIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)

    @field_validator("password")
    @classmethod
    def validate_password_not_empty(cls, v: str) -> str:
        """Ensure password is not whitespace-only."""
        if not v.strip():
            raise ValueError("Password cannot be empty")
        return v


class VerifyOtpIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    otp: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class OtpIssuedOut(BaseModel):
    success: bool = True
    message: str = "OTP sent to your email"


class UserOut(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    email: str
    role: str


class DisappearSettingIn(CamelModel):
    target_kind: Literal["user", "group"] = "user"
    target_id: int
    setting: str = Field(min_length=2, max_length=16)


class DisappearSettingsOut(CamelModel):
    # keys are "user:<id>" / "group:<id>"
    disappear_settings: Dict[str, str]
