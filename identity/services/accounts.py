from dataclasses import dataclass
import logging
from typing import Optional

from sqlalchemy import select, update

from identity.config import LoginPolicy, TokenPolicy, login_policy, settings, token_policy
from identity.database import session_scope, utcnow
from identity.errors import ErrorCode, ServiceError
from identity.models.account import AccountEntry
from identity.models.email_token import PURPOSE_RESET_PASSWORD, PURPOSE_VERIFY_EMAIL
from identity.services.email import (
    TEMPLATE_RESET_PASSWORD,
    TEMPLATE_VERIFY_EMAIL,
    EmailSendError,
    EmailTransport,
    email_transport,
)
from identity.services.email_tokens import EmailTokenService, email_token_service
from identity.services.identifiers import looks_like_email, normalize_email, normalize_phone
from identity.services.lifecycle import AccountLifecycle, account_lifecycle
from identity.services.otp import OtpDispatch, OtpService, otp_service
from identity.services.passwords import PasswordService, password_service
from identity.services.rate_limit import RateLimiter, check, enforce, rate_limiter
from identity.services.sessions import SessionStore, session_store
from identity.services.tokens import (
    TokenError,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhoneVerification:
    phone: str
    account: Optional[AccountEntry]


@dataclass(frozen=True)
class LoginResult:
    account: AccountEntry
    access_token: str
    refresh_token: str


class AccountService:
    """Flows that run after registration: verification, login and password recovery."""

    def __init__(
        self,
        policy: TokenPolicy,
        login: LoginPolicy,
        limiter: RateLimiter,
        tokens: EmailTokenService,
        otp: OtpService,
        passwords: PasswordService,
        lifecycle: AccountLifecycle,
        sessions: SessionStore,
        transport: EmailTransport,
    ) -> None:
        self._policy = policy
        self._login = login
        self._limiter = limiter
        self._tokens = tokens
        self._otp = otp
        self._passwords = passwords
        self._lifecycle = lifecycle
        self._sessions = sessions
        self.email_transport = transport

    def get_account(self, account_id: int) -> AccountEntry | None:
        with session_scope() as session:
            return session.get(AccountEntry, account_id)

    def verify_email(self, token: str) -> AccountEntry | ServiceError:
        with session_scope() as session:
            account_id = self._tokens.consume(token, PURPOSE_VERIFY_EMAIL, session=session)
            if isinstance(account_id, ServiceError):
                return account_id
            return self._lifecycle.mark_verified(account_id, "email", session=session)

    def verify_phone(self, phone: str, code: str) -> PhoneVerification | ServiceError:
        with session_scope() as session:
            entry = self._otp.verify(phone, code, session=session)
            if isinstance(entry, ServiceError):
                return entry
            account_id = entry.account_id
            if account_id is None:
                account_id = session.execute(
                    select(AccountEntry.id).where(AccountEntry.phone == entry.phone)
                ).scalar_one_or_none()
            if account_id is None:
                return PhoneVerification(phone=entry.phone, account=None)
            account = self._lifecycle.mark_verified(account_id, "phone", session=session)
            if isinstance(account, ServiceError):
                return account
            return PhoneVerification(phone=entry.phone, account=account)

    def send_otp(self, phone: str) -> OtpDispatch | ServiceError:
        return self._send_otp(phone, resend=False)

    def resend_otp(self, phone: str) -> OtpDispatch | ServiceError:
        return self._send_otp(phone, resend=True)

    def resend_verification(self, email: str) -> None | ServiceError:
        address = normalize_email(email)
        if isinstance(address, ServiceError):
            return address
        limit = enforce(self._limiter, address, self._policy.resend_limit)
        if not limit.allowed:
            LOGGER.warning("Verification resend limited retry_after=%s", limit.retry_after)
            return _rate_limited(limit.retry_after, "email")

        account = self._find_by_email(address)
        if account is None:
            return ServiceError(
                ErrorCode.ACCOUNT_NOT_FOUND, "Account not found", field="email"
            )
        if account.email_verified:
            return ServiceError(
                ErrorCode.ALREADY_VERIFIED, "Email is already verified", field="email"
            )
        token = self._tokens.issue(account.id, PURPOSE_VERIFY_EMAIL)
        return self._send_link(account, TEMPLATE_VERIFY_EMAIL, PURPOSE_VERIFY_EMAIL, token)

    def login(self, identifier: str, password: str) -> LoginResult | ServiceError:
        key = _attempt_key(identifier)
        lockout = check(self._limiter, key, self._login.lockout)
        if not lockout.allowed:
            LOGGER.warning("Login refused during lockout retry_after=%s", lockout.retry_after)
            return _locked_out(lockout.retry_after)

        account = self._find_by_identifier(identifier)
        if account is None or not self._passwords.verify_password(
            password, account.password_hash
        ):
            return self._login_failed(key)
        self._limiter.reset(key, self._login.failure_limit.action)

        gate = self._lifecycle.login_gate(account)
        if gate is not None:
            LOGGER.info("Login blocked account_id=%s code=%s", account.id, gate.code.value)
            return gate

        now = utcnow()
        with session_scope() as session:
            values = {"last_login_at": now}
            if self._passwords.needs_rehash(account.password_hash):
                values["password_hash"] = self._passwords.hash_password(password)
            session.execute(
                update(AccountEntry).where(AccountEntry.id == account.id).values(**values)
            )
            session_id = self._sessions.create_session(account.id, session=session)
        account.last_login_at = now

        access_token = create_access_token(account.id, session_id)
        refresh_token = create_refresh_token(account.id, session_id)
        LOGGER.info("Login succeeded account_id=%s", account.id)
        return LoginResult(
            account=account, access_token=access_token, refresh_token=refresh_token
        )

    def refresh(self, refresh_token: str) -> str | ServiceError:
        """Exchange a refresh token for a new access token on the same session."""
        try:
            claims = decode_refresh_token(refresh_token)
        except TokenError as exc:
            return ServiceError(ErrorCode.INVALID_TOKEN, str(exc), field="refresh_token")
        account_id = self._sessions.get_account_id(claims.session_id)
        if account_id is None or account_id != claims.account_id:
            return ServiceError(
                ErrorCode.INVALID_TOKEN, "Invalid refresh token", field="refresh_token"
            )
        account = self.get_account(account_id)
        if account is None:
            return ServiceError(ErrorCode.ACCOUNT_NOT_FOUND, "Account not found")
        gate = self._lifecycle.login_gate(account)
        if gate is not None:
            return gate
        return create_access_token(claims.account_id, claims.session_id)

    def logout(self, refresh_token: str) -> None | ServiceError:
        try:
            claims = decode_refresh_token(refresh_token)
        except TokenError as exc:
            return ServiceError(ErrorCode.INVALID_TOKEN, str(exc))
        if not self._sessions.revoke_session(claims.session_id):
            return ServiceError(ErrorCode.INVALID_TOKEN, "Invalid session token")
        LOGGER.info("Logged out account_id=%s", claims.account_id)
        return None

    def change_password(
        self, account_id: int, current: str, new: str, confirm: str
    ) -> None | ServiceError:
        account = self.get_account(account_id)
        if account is None:
            return ServiceError(ErrorCode.ACCOUNT_NOT_FOUND, "Account not found")
        if not self._passwords.verify_password(current, account.password_hash):
            LOGGER.warning("Password change rejected account_id=%s", account_id)
            return _invalid_credentials("current_password")
        rejected = self._validate_new_password(account, new, confirm)
        if rejected is not None:
            return rejected

        password_hash = self._passwords.hash_password(new)
        with session_scope() as session:
            self._store_password(session, account.id, password_hash)
        LOGGER.info("Password changed account_id=%s", account_id)
        return None

    def forgot_password(self, email: str) -> None | ServiceError:
        address = normalize_email(email)
        if isinstance(address, ServiceError):
            return address
        limit = enforce(self._limiter, address, self._policy.reset_request_limit)
        if not limit.allowed:
            LOGGER.warning("Password reset limited retry_after=%s", limit.retry_after)
            return _rate_limited(limit.retry_after, "email")

        account = self._find_by_email(address)
        if account is None:
            # Unknown addresses get the same answer as known ones.
            LOGGER.info("Password reset requested for unknown email")
            return None
        token = self._tokens.issue(account.id, PURPOSE_RESET_PASSWORD)
        return self._send_link(account, TEMPLATE_RESET_PASSWORD, PURPOSE_RESET_PASSWORD, token)

    def reset_password(self, token: str, new: str, confirm: str) -> None | ServiceError:
        entry = self._tokens.peek(token, PURPOSE_RESET_PASSWORD)
        if isinstance(entry, ServiceError):
            return entry
        account = self.get_account(entry.account_id)
        if account is None:
            return ServiceError(ErrorCode.INVALID_TOKEN, "Token is invalid", field="token")
        rejected = self._validate_new_password(account, new, confirm)
        if rejected is not None:
            return rejected

        password_hash = self._passwords.hash_password(new)
        with session_scope() as session:
            account_id = self._tokens.consume(token, PURPOSE_RESET_PASSWORD, session=session)
            if isinstance(account_id, ServiceError):
                return account_id
            self._store_password(session, account_id, password_hash)
            revoked = self._sessions.revoke_all(account_id, session=session)
        LOGGER.info(
            "Password reset account_id=%s revoked_sessions=%s", account.id, revoked
        )
        return None

    def _login_failed(self, key: str) -> ServiceError:
        failures = enforce(self._limiter, key, self._login.failure_limit)
        if failures.allowed and failures.remaining > 0:
            LOGGER.warning(
                "Login rejected: invalid credentials remaining=%s", failures.remaining
            )
            return _invalid_credentials("identifier")
        # Failure budget spent: start the lockout and begin a fresh count after it.
        enforce(self._limiter, key, self._login.lockout)
        self._limiter.reset(key, self._login.failure_limit.action)
        LOGGER.warning(
            "Login locked out after repeated failures lockout_seconds=%s",
            self._login.lockout.window_seconds,
        )
        return _locked_out(self._login.lockout.window_seconds)

    def _send_otp(self, phone: str, resend: bool) -> OtpDispatch | ServiceError:
        normalized = normalize_phone(phone)
        if isinstance(normalized, ServiceError):
            return normalized
        with session_scope() as session:
            account = session.execute(
                select(AccountEntry).where(AccountEntry.phone == normalized.canonical)
            ).scalar_one_or_none()
        if account is not None and account.phone_verified:
            return ServiceError(
                ErrorCode.ALREADY_VERIFIED, "Phone is already verified", field="phone"
            )
        account_id = account.id if account is not None else None
        if resend:
            return self._otp.resend(normalized.canonical, account_id)
        return self._otp.send(normalized.canonical, account_id)

    def _send_link(
        self, account: AccountEntry, template_id: str, purpose: str, token: str
    ) -> None | ServiceError:
        path = "verify-email" if purpose == PURPOSE_VERIFY_EMAIL else "reset-password"
        variables = {
            "name": account.first_name,
            "link": f"{settings.frontend_url}/{path}?token={token}",
            "expires_in_hours": max(1, self._tokens.ttl_seconds(purpose) // 3600),
        }
        try:
            self.email_transport.send(account.email, template_id, variables)
        except EmailSendError as exc:
            LOGGER.error(
                "Email delivery failed account_id=%s template=%s: %s",
                account.id,
                template_id,
                exc,
            )
            return ServiceError(
                ErrorCode.DELIVERY_FAILED, "Failed to send email", field="email"
            )
        return None

    def _validate_new_password(
        self, account: AccountEntry, new: str, confirm: str
    ) -> ServiceError | None:
        if new != confirm:
            return ServiceError(
                ErrorCode.PASSWORD_MISMATCH,
                "Passwords do not match",
                field="confirm_password",
            )
        personal = [account.first_name, account.last_name]
        if account.email:
            personal.append(account.email.split("@", 1)[0])
        strength = self._passwords.check_strength(new, personal)
        if isinstance(strength, ServiceError):
            return strength
        return self._passwords.check_history(account.id, new)

    def _store_password(self, session, account_id: int, password_hash: str) -> None:
        session.execute(
            update(AccountEntry)
            .where(AccountEntry.id == account_id)
            .values(password_hash=password_hash, updated_at=utcnow())
        )
        self._passwords.record(account_id, password_hash, session=session)

    def _find_by_email(self, email: str) -> AccountEntry | None:
        with session_scope() as session:
            return session.execute(
                select(AccountEntry).where(AccountEntry.email == email)
            ).scalar_one_or_none()

    def _find_by_identifier(self, identifier: str) -> AccountEntry | None:
        raw = (identifier or "").strip()
        if looks_like_email(raw):
            address = normalize_email(raw)
            if isinstance(address, ServiceError):
                return None
            return self._find_by_email(address)
        normalized = normalize_phone(raw)
        if isinstance(normalized, ServiceError):
            return None
        with session_scope() as session:
            return session.execute(
                select(AccountEntry).where(AccountEntry.phone == normalized.canonical)
            ).scalar_one_or_none()


def _invalid_credentials(field_name: str) -> ServiceError:
    return ServiceError(
        ErrorCode.INVALID_CREDENTIALS, "Invalid credentials", field=field_name
    )


def _locked_out(retry_after: int) -> ServiceError:
    return ServiceError(
        ErrorCode.RATE_LIMITED,
        f"Too many failed login attempts, try again in {retry_after} seconds",
        field="identifier",
        retry_after=retry_after,
    )


def _attempt_key(identifier: str) -> str:
    """Failures are counted per account identifier, whichever form it was typed in."""
    raw = (identifier or "").strip()
    if looks_like_email(raw):
        address = normalize_email(raw)
        if not isinstance(address, ServiceError):
            return address
    else:
        normalized = normalize_phone(raw)
        if not isinstance(normalized, ServiceError):
            return normalized.canonical
    return raw.lower()


def _rate_limited(retry_after: int, field_name: str) -> ServiceError:
    return ServiceError(
        ErrorCode.RATE_LIMITED,
        f"Too many requests, try again in {retry_after} seconds",
        field=field_name,
        retry_after=retry_after,
    )


account_service = AccountService(
    token_policy(),
    login_policy(),
    rate_limiter,
    email_token_service,
    otp_service,
    password_service,
    account_lifecycle,
    session_store,
    email_transport,
)
