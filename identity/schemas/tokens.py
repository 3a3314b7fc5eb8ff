from typing import Optional

from pydantic import BaseModel, Field

from identity.schemas.accounts import AccountResponse, RequestModel


class MessageResponse(BaseModel):
    message: str


class EmailRequest(RequestModel):
    email: str = Field(min_length=3, max_length=255)


class VerifyEmailRequest(RequestModel):
    token: str = Field(min_length=1, max_length=128)


class VerifyEmailResponse(BaseModel):
    message: str
    account: AccountResponse


class ResetPasswordRequest(RequestModel):
    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(max_length=256)
    confirm_password: str = Field(max_length=256)


class LoginRequest(RequestModel):
    identifier: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=256)


class LoginResponse(BaseModel):
    message: str
    account: AccountResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    refresh_expires_in_seconds: int


class TokenRefreshRequest(RequestModel):
    refresh_token: str = Field(min_length=10, max_length=2048)


class TokenRefreshResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    refresh_token: Optional[str] = None
