from typing import Optional

from pydantic import BaseModel, Field

from identity.schemas.accounts import AccountResponse, RequestModel


class PhoneRequest(RequestModel):
    phone: str = Field(min_length=1, max_length=20)


class OtpResponse(BaseModel):
    message: str
    phone: str
    expires_in_seconds: int
    otp: Optional[str] = None


class OtpVerifyRequest(RequestModel):
    phone: str = Field(min_length=1, max_length=20)
    otp: str = Field(min_length=1, max_length=10)


class OtpVerifyResponse(BaseModel):
    message: str
    verified: bool
    account: Optional[AccountResponse] = None


class OperatorInfo(BaseModel):
    prefix: str
    name: str


class OperatorsResponse(BaseModel):
    message: str
    operators: list[OperatorInfo]


class PhoneValidationResponse(BaseModel):
    message: str
    valid: bool
    phone: Optional[str] = None
    local: Optional[str] = None
    operator: Optional[str] = None
    code: Optional[str] = None
