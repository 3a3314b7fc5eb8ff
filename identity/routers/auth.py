from typing import NoReturn

from fastapi import APIRouter, Header, HTTPException, status

from identity.config import settings
from identity.errors import ErrorCode, ServiceError
from identity.schemas.accounts import (
    AccountResponse,
    PasswordPolicyInfo,
    PasswordPolicyResponse,
    RegisterRequest,
    RegisterResponse,
)
from identity.schemas.otp import (
    OperatorInfo,
    OperatorsResponse,
    OtpResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    PhoneRequest,
    PhoneValidationResponse,
)
from identity.schemas.tokens import (
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ResetPasswordRequest,
    TokenRefreshRequest,
    TokenRefreshResponse,
    VerifyEmailRequest,
    VerifyEmailResponse,
)
from identity.services.accounts import account_service
from identity.services.identifiers import MOBILE_OPERATORS, normalize_phone
from identity.services.otp import OtpDispatch
from identity.services.passwords import CHARACTER_CLASSES, STRENGTH_LEVELS, password_service
from identity.services.registration import registration_service

router = APIRouter(prefix="/auth", tags=["auth"])

FORGOT_PASSWORD_MESSAGE = "If an account exists for this email, a reset link has been sent"


def raise_for(error: ServiceError, status_code: int | None = None) -> NoReturn:
    headers = None
    if error.retry_after is not None:
        headers = {"Retry-After": str(error.retry_after)}
    raise HTTPException(
        status_code=status_code or error.status_code,
        detail=error.to_detail(),
        headers=headers,
    )


def to_account_response(account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        first_name=account.first_name,
        last_name=account.last_name,
        email=account.email,
        phone=account.phone,
        status=account.status.value,
        email_verified=bool(account.email_verified),
        phone_verified=bool(account.phone_verified),
        missing_channels=account.missing_channels(),
        created_at=account.created_at,
        last_login_at=account.last_login_at,
    )


def _otp_response(dispatch: OtpDispatch, message: str) -> OtpResponse:
    return OtpResponse(
        message=message,
        phone=dispatch.phone,
        expires_in_seconds=settings.otp_ttl_seconds,
        otp=dispatch.code if settings.otp_debug else None,
    )


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
)
def register(payload: RegisterRequest) -> RegisterResponse:
    result = registration_service.register(payload)
    if isinstance(result, ServiceError):
        raise_for(result)
    return RegisterResponse(
        message="Registration successful, verify your contact details to activate the account",
        account=to_account_response(result.account),
        requires_email_verification=result.requires_email_verification,
        requires_phone_verification=result.requires_phone_verification,
    )


@router.post("/verify-email", response_model=VerifyEmailResponse)
def verify_email(payload: VerifyEmailRequest) -> VerifyEmailResponse:
    account = account_service.verify_email(payload.token)
    if isinstance(account, ServiceError):
        raise_for(account)
    return VerifyEmailResponse(
        message="Email verified", account=to_account_response(account)
    )


@router.post("/resend-verification", response_model=MessageResponse)
def resend_verification(payload: EmailRequest) -> MessageResponse:
    error = account_service.resend_verification(payload.email)
    if error is not None:
        raise_for(error)
    return MessageResponse(message="Verification email sent")


@router.post("/send-otp", response_model=OtpResponse, response_model_exclude_none=True)
def send_otp(payload: PhoneRequest) -> OtpResponse:
    dispatch = account_service.send_otp(payload.phone)
    if isinstance(dispatch, ServiceError):
        raise_for(dispatch)
    return _otp_response(dispatch, "OTP sent")


@router.post("/resend-otp", response_model=OtpResponse, response_model_exclude_none=True)
def resend_otp(payload: PhoneRequest) -> OtpResponse:
    dispatch = account_service.resend_otp(payload.phone)
    if isinstance(dispatch, ServiceError):
        raise_for(dispatch)
    return _otp_response(dispatch, "OTP resent")


@router.post("/verify-otp", response_model=OtpVerifyResponse, response_model_exclude_none=True)
def verify_otp(payload: OtpVerifyRequest) -> OtpVerifyResponse:
    verification = account_service.verify_phone(payload.phone, payload.otp)
    if isinstance(verification, ServiceError):
        raise_for(verification)
    account = verification.account
    return OtpVerifyResponse(
        message="OTP verified",
        verified=True,
        account=to_account_response(account) if account is not None else None,
    )


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest) -> LoginResponse:
    result = account_service.login(payload.identifier, payload.password)
    if isinstance(result, ServiceError):
        raise_for(result)
    return LoginResponse(
        message="Login successful",
        account=to_account_response(result.account),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        token_type="bearer",
        expires_in_seconds=settings.access_token_expire_minutes * 60,
        refresh_expires_in_seconds=settings.refresh_token_expire_days * 86400,
    )


@router.post("/refresh", response_model=TokenRefreshResponse, response_model_exclude_none=True)
def refresh_tokens(payload: TokenRefreshRequest) -> TokenRefreshResponse:
    access_token = account_service.refresh(payload.refresh_token)
    if isinstance(access_token, ServiceError):
        if access_token.code == ErrorCode.INVALID_TOKEN:
            raise_for(access_token, status.HTTP_401_UNAUTHORIZED)
        raise_for(access_token)
    return TokenRefreshResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in_seconds=settings.access_token_expire_minutes * 60,
    )


@router.post("/logout", response_model=MessageResponse)
def logout(authorization: str | None = Header(default=None)) -> MessageResponse:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": ErrorCode.INVALID_TOKEN.value, "message": "Missing Authorization header"},
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": ErrorCode.INVALID_TOKEN.value, "message": "Invalid Authorization header"},
        )
    error = account_service.logout(token)
    if error is not None:
        raise_for(error, status.HTTP_401_UNAUTHORIZED)
    return MessageResponse(message="Logged out")


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(payload: EmailRequest) -> MessageResponse:
    error = account_service.forgot_password(payload.email)
    if error is not None:
        raise_for(error)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(payload: ResetPasswordRequest) -> MessageResponse:
    error = account_service.reset_password(
        payload.token, payload.new_password, payload.confirm_password
    )
    if error is not None:
        raise_for(error)
    return MessageResponse(message="Password has been reset, log in with the new password")


@router.get("/password-policy", response_model=PasswordPolicyResponse)
def get_password_policy() -> PasswordPolicyResponse:
    policy = password_service.policy
    return PasswordPolicyResponse(
        message="Current password policy requirements",
        policy=PasswordPolicyInfo(
            min_length=policy.min_length,
            max_length=policy.max_length,
            min_strength=policy.min_strength,
            strength_levels=list(STRENGTH_LEVELS),
            required_character_classes=[label for label, _ in CHARACTER_CLASSES],
            prevents=[
                "sequential characters",
                "repeated characters",
                "personal information",
                "common passwords",
            ],
            history_depth=policy.history_depth,
        ),
    )


@router.post(
    "/validate-phone", response_model=PhoneValidationResponse, response_model_exclude_none=True
)
def validate_phone(payload: PhoneRequest) -> PhoneValidationResponse:
    normalized = normalize_phone(payload.phone)
    if isinstance(normalized, ServiceError):
        return PhoneValidationResponse(
            message=normalized.message, valid=False, code=normalized.code.value
        )
    return PhoneValidationResponse(
        message="Valid phone number",
        valid=True,
        phone=normalized.canonical,
        local=normalized.local,
        operator=normalized.operator,
    )


@router.get("/operators", response_model=OperatorsResponse)
def list_operators() -> OperatorsResponse:
    return OperatorsResponse(
        message="Supported mobile operators",
        operators=[
            OperatorInfo(prefix=prefix, name=name)
            for prefix, name in sorted(MOBILE_OPERATORS.items())
        ],
    )
