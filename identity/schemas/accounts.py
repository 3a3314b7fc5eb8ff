from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RequestModel(BaseModel):
    """Request bodies accept both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(RequestModel):
    first_name: str = Field(default="", max_length=50)
    last_name: str = Field(default="", max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=20)
    password: str = Field(max_length=256)
    confirm_password: str = Field(max_length=256)


class ChangePasswordRequest(RequestModel):
    current_password: str = Field(min_length=1, max_length=256)
    new_password: str = Field(max_length=256)
    confirm_password: str = Field(max_length=256)


class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    status: str
    email_verified: bool
    phone_verified: bool
    missing_channels: list[str] = Field(default_factory=list)
    created_at: datetime
    last_login_at: Optional[datetime] = None


class RegisterResponse(BaseModel):
    message: str
    account: AccountResponse
    requires_email_verification: bool
    requires_phone_verification: bool


class PasswordPolicyInfo(BaseModel):
    min_length: int
    max_length: int
    min_strength: str
    strength_levels: list[str]
    required_character_classes: list[str]
    prevents: list[str]
    history_depth: Optional[int] = None


class PasswordPolicyResponse(BaseModel):
    message: str
    policy: PasswordPolicyInfo
