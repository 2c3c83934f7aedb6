import re
import uuid
from datetime import datetime
from typing import Optional

from pydantic import AliasGenerator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class CamelOut(BaseModel):
    """Response models: snake_case attributes, camelCase JSON."""

    model_config = ConfigDict(alias_generator=AliasGenerator(serialization_alias=to_camel), from_attributes=True)


class SendOtpIn(BaseModel):
    phone: str


class VerifyOtpIn(BaseModel):
    phone: str
    otp: str
    name: Optional[str] = Field(None, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None

    @field_validator("name")
    @classmethod
    def valid_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("Name must be a non-empty string")
        if len(v) > 100:
            raise ValueError("Name cannot exceed 100 characters")
        return v

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        # empty string clears the email
        if v and not EMAIL_RE.match(v):
            raise ValueError("Invalid email format")
        return v


class VerifyTokenIn(BaseModel):
    token: str = Field(min_length=1)


class CheckPhoneIn(BaseModel):
    phone: str


class UserOut(CamelOut):
    id: uuid.UUID
    phone: str
    name: Optional[str] = None
    email: Optional[str] = None
    is_verified: bool
    created_at: datetime
    last_login: Optional[datetime] = None


class OtpAckOut(CamelOut):
    phone: str
    expires_in: int


class AuthOut(CamelOut):
    user: UserOut
    token: str
    expires_in: int


class UserEnvelope(CamelOut):
    user: UserOut


class TokenCheckOut(CamelOut):
    valid: bool = True
    user: UserOut


class PhoneCheckOut(CamelOut):
    phone: str
    exists: bool
