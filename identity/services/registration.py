"""Registration: validate, create the PENDING account, dispatch verification artifacts."""

from dataclasses import dataclass
import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from identity.config import settings
from identity.database import session_scope, utcnow
from identity.errors import ErrorCode, ServiceError
from identity.models.account import AccountEntry, AccountStatus
from identity.models.email_token import PURPOSE_VERIFY_EMAIL
from identity.schemas.accounts import RegisterRequest
from identity.services.email import (
    TEMPLATE_VERIFY_EMAIL,
    EmailSendError,
    EmailTransport,
    email_transport,
)
from identity.services.email_tokens import EmailTokenService, email_token_service
from identity.services.identifiers import normalize_email, normalize_phone
from identity.services.otp import OtpService, otp_service
from identity.services.passwords import PasswordService, password_service

LOGGER = logging.getLogger(__name__)

# OTP rejections that are handed back to the client rather than reported as a failed registration.
_PASSTHROUGH_OTP_CODES = (ErrorCode.TOO_MANY_OTP_REQUESTS, ErrorCode.RATE_LIMITED)


@dataclass(frozen=True)
class RegistrationResult:
    account: AccountEntry
    requires_email_verification: bool
    requires_phone_verification: bool


@dataclass(frozen=True)
class _ValidatedInput:
    first_name: str
    last_name: str
    email: Optional[str]
    phone: Optional[str]
    password: str


class RegistrationService:
    def __init__(
        self,
        passwords: PasswordService,
        tokens: EmailTokenService,
        otp: OtpService,
        transport: EmailTransport,
    ) -> None:
        self._passwords = passwords
        self._tokens = tokens
        self._otp = otp
        self.email_transport = transport

    def register(self, payload: RegisterRequest) -> RegistrationResult | ServiceError:
        validated = self._validate(payload)
        if isinstance(validated, ServiceError):
            return validated

        conflict = self._find_conflict(validated.email, validated.phone)
        if conflict is not None:
            return conflict

        password_hash = self._passwords.hash_password(validated.password)
        account = self._create_account(validated, password_hash)
        if isinstance(account, ServiceError):
            return account

        try:
            failure = self._dispatch(account)
        except Exception:
            LOGGER.exception("Registration dispatch crashed account_id=%s", account.id)
            failure = _failed()
        if failure is not None:
            self._rollback(account.id)
            return failure

        LOGGER.info(
            "Account registered account_id=%s email=%s phone=%s",
            account.id,
            bool(account.email),
            bool(account.phone),
        )
        return RegistrationResult(
            account=account,
            requires_email_verification=account.email is not None,
            requires_phone_verification=account.phone is not None,
        )

    def _validate(self, payload: RegisterRequest) -> _ValidatedInput | ServiceError:
        first_name = (payload.first_name or "").strip()
        last_name = (payload.last_name or "").strip()
        if not first_name:
            return ServiceError(
                ErrorCode.VALIDATION_ERROR, "First name is required", field="first_name"
            )
        if not last_name:
            return ServiceError(
                ErrorCode.VALIDATION_ERROR, "Last name is required", field="last_name"
            )

        raw_email = (payload.email or "").strip()
        raw_phone = (payload.phone or "").strip()
        if not raw_email and not raw_phone:
            return ServiceError(
                ErrorCode.VALIDATION_ERROR,
                "Either email or phone is required",
                field="email",
            )

        email = None
        if raw_email:
            email = normalize_email(raw_email)
            if isinstance(email, ServiceError):
                return email
        phone = None
        if raw_phone:
            normalized = normalize_phone(raw_phone)
            if isinstance(normalized, ServiceError):
                return normalized
            phone = normalized.canonical

        if payload.password != payload.confirm_password:
            return ServiceError(
                ErrorCode.PASSWORD_MISMATCH,
                "Passwords do not match",
                field="confirm_password",
            )
        personal = [first_name, last_name]
        if email:
            personal.append(email.split("@", 1)[0])
        strength = self._passwords.check_strength(payload.password, personal)
        if isinstance(strength, ServiceError):
            return strength

        return _ValidatedInput(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            password=payload.password,
        )

    def _find_conflict(self, email: str | None, phone: str | None) -> ServiceError | None:
        with session_scope() as session:
            if email:
                taken = session.execute(
                    select(AccountEntry.id).where(AccountEntry.email == email)
                ).first()
                if taken:
                    return _conflict("email")
            if phone:
                taken = session.execute(
                    select(AccountEntry.id).where(AccountEntry.phone == phone)
                ).first()
                if taken:
                    return _conflict("phone")
        return None

    def _create_account(
        self, validated: _ValidatedInput, password_hash: str
    ) -> AccountEntry | ServiceError:
        now = utcnow()
        try:
            with session_scope() as session:
                account = AccountEntry(
                    first_name=validated.first_name,
                    last_name=validated.last_name,
                    email=validated.email,
                    phone=validated.phone,
                    password_hash=password_hash,
                    status=AccountStatus.PENDING,
                    email_provided=validated.email is not None,
                    phone_provided=validated.phone is not None,
                    email_verified=False,
                    phone_verified=False,
                    created_at=now,
                    updated_at=now,
                    last_login_at=None,
                )
                session.add(account)
                session.flush()
                self._passwords.record(account.id, password_hash, session=session)
        except IntegrityError:
            # Lost the race against a concurrent registration.
            conflict = self._find_conflict(validated.email, validated.phone)
            LOGGER.warning("Registration lost uniqueness race")
            return conflict or _conflict("email" if validated.email else "phone")
        return account

    def _dispatch(self, account: AccountEntry) -> ServiceError | None:
        if account.email:
            token = self._tokens.issue(account.id, PURPOSE_VERIFY_EMAIL)
            variables = {
                "name": account.first_name,
                "link": f"{settings.frontend_url}/verify-email?token={token}",
                "expires_in_hours": max(
                    1, self._tokens.ttl_seconds(PURPOSE_VERIFY_EMAIL) // 3600
                ),
            }
            try:
                self.email_transport.send(account.email, TEMPLATE_VERIFY_EMAIL, variables)
            except EmailSendError as exc:
                LOGGER.error(
                    "Verification email failed account_id=%s: %s", account.id, exc
                )
                return _failed()

        if account.phone:
            sent = self._otp.send(account.phone, account.id)
            if isinstance(sent, ServiceError):
                if sent.code in _PASSTHROUGH_OTP_CODES:
                    return sent
                LOGGER.error(
                    "Verification OTP failed account_id=%s code=%s",
                    account.id,
                    sent.code.value,
                )
                return _failed()
        return None

    def _rollback(self, account_id: int) -> None:
        with session_scope() as session:
            self._tokens.revoke_all(account_id, session=session)
            self._otp.discard(account_id, session=session)
            self._passwords.discard_history(account_id, session=session)
            session.execute(delete(AccountEntry).where(AccountEntry.id == account_id))
        LOGGER.warning("Registration rolled back account_id=%s", account_id)


def _conflict(field_name: str) -> ServiceError:
    return ServiceError(
        ErrorCode.CONFLICT,
        f"An account with this {field_name} already exists",
        field=field_name,
    )


def _failed() -> ServiceError:
    return ServiceError(
        ErrorCode.REGISTRATION_FAILED,
        "Registration could not be completed, please try again",
    )


registration_service = RegistrationService(
    password_service, email_token_service, otp_service, email_transport
)
