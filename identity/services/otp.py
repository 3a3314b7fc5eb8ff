from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from identity.config import OtpPolicy, otp_policy
from identity.database import session_scope, use_session, utcnow
from identity.errors import ErrorCode, ServiceError
from identity.models.phone_otp import PhoneOtpEntry
from identity.services.identifiers import normalize_phone
from identity.services.rate_limit import RateLimiter, enforce, rate_limiter
from identity.services.sms import SmsSendError, SmsTransport, build_otp_message, sms_transport

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class OtpDispatch:
    phone: str
    code: str
    expires_at: datetime
    account_id: int | None


class OtpService:
    def __init__(
        self, policy: OtpPolicy, limiter: RateLimiter, transport: SmsTransport
    ) -> None:
        self._policy = policy
        self._limiter = limiter
        self.transport = transport

    @property
    def policy(self) -> OtpPolicy:
        return self._policy

    def send(self, phone: str, account_id: int | None = None) -> OtpDispatch | ServiceError:
        normalized = normalize_phone(phone)
        if isinstance(normalized, ServiceError):
            return normalized
        canonical = normalized.canonical

        limit = enforce(self._limiter, canonical, self._policy.send_limit)
        if not limit.allowed:
            LOGGER.warning(
                "OTP send limit reached phone=%s retry_after=%s",
                canonical,
                limit.retry_after,
            )
            return ServiceError(
                ErrorCode.TOO_MANY_OTP_REQUESTS,
                "Too many OTP requests, try again later",
                field="phone",
                retry_after=limit.retry_after,
            )

        now = utcnow()
        code = self._generate_code()
        expires_at = now + timedelta(seconds=self._policy.ttl_seconds)
        with session_scope() as session:
            session.execute(delete(PhoneOtpEntry).where(PhoneOtpEntry.expires_at <= now))
            # A new code supersedes whatever is still pending for this phone.
            session.execute(
                delete(PhoneOtpEntry).where(
                    PhoneOtpEntry.phone == canonical,
                    PhoneOtpEntry.verified_at.is_(None),
                )
            )
            entry = PhoneOtpEntry(
                phone=canonical,
                otp=code,
                account_id=account_id,
                attempts=0,
                max_attempts=self._policy.max_attempts,
                expires_at=expires_at,
                verified_at=None,
                created_at=now,
            )
            session.add(entry)
            session.flush()
            otp_id = entry.id

        try:
            self.transport.send(canonical, build_otp_message(code, self._policy.ttl_seconds))
        except SmsSendError as exc:
            LOGGER.error("OTP SMS delivery failed phone=%s: %s", canonical, exc)
            with session_scope() as session:
                session.execute(delete(PhoneOtpEntry).where(PhoneOtpEntry.id == otp_id))
            return ServiceError(
                ErrorCode.DELIVERY_FAILED,
                "Failed to send the verification code",
                field="phone",
            )

        LOGGER.info("OTP sent phone=%s operator=%s", canonical, normalized.operator)
        return OtpDispatch(
            phone=canonical, code=code, expires_at=expires_at, account_id=account_id
        )

    def resend(self, phone: str, account_id: int | None = None) -> OtpDispatch | ServiceError:
        normalized = normalize_phone(phone)
        if isinstance(normalized, ServiceError):
            return normalized
        cooldown = enforce(self._limiter, normalized.canonical, self._policy.resend_cooldown)
        if not cooldown.allowed:
            return ServiceError(
                ErrorCode.RATE_LIMITED,
                f"Please wait {cooldown.retry_after} seconds before requesting another code",
                field="phone",
                retry_after=cooldown.retry_after,
            )
        return self.send(normalized.canonical, account_id)

    def verify(
        self, phone: str, code: str, session: Session | None = None
    ) -> PhoneOtpEntry | ServiceError:
        normalized = normalize_phone(phone)
        if isinstance(normalized, ServiceError):
            return normalized
        canonical = normalized.canonical
        submitted = (code or "").strip()
        now = utcnow()

        with use_session(session) as scoped:
            entry = scoped.execute(
                select(PhoneOtpEntry)
                .where(
                    PhoneOtpEntry.phone == canonical,
                    PhoneOtpEntry.verified_at.is_(None),
                    PhoneOtpEntry.expires_at > now,
                )
                .order_by(PhoneOtpEntry.created_at.desc(), PhoneOtpEntry.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            if entry is None:
                return ServiceError(
                    ErrorCode.OTP_NOT_FOUND,
                    "No active code for this phone, request a new one",
                    field="phone",
                )
            if entry.attempts >= entry.max_attempts:
                return self._exhausted(canonical)

            still_open = (
                PhoneOtpEntry.id == entry.id,
                PhoneOtpEntry.verified_at.is_(None),
                PhoneOtpEntry.attempts < PhoneOtpEntry.max_attempts,
            )
            if submitted.isascii() and secrets.compare_digest(entry.otp, submitted):
                result = scoped.execute(
                    update(PhoneOtpEntry)
                    .where(*still_open)
                    .values(verified_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return self._lost_race(scoped, entry.id, canonical)
                entry.verified_at = now
                LOGGER.info("OTP verified phone=%s", canonical)
                return entry

            result = scoped.execute(
                update(PhoneOtpEntry)
                .where(*still_open)
                .values(attempts=PhoneOtpEntry.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return self._lost_race(scoped, entry.id, canonical)
            attempts = scoped.execute(
                select(PhoneOtpEntry.attempts).where(PhoneOtpEntry.id == entry.id)
            ).scalar_one()
            remaining = max(0, entry.max_attempts - attempts)
            LOGGER.warning(
                "OTP mismatch phone=%s attempts=%s remaining=%s", canonical, attempts, remaining
            )
            return ServiceError(
                ErrorCode.OTP_MISMATCH,
                "The code does not match",
                field="otp",
                details={"attempts_remaining": remaining},
            )

    def discard(self, account_id: int, session: Session | None = None) -> None:
        with use_session(session) as scoped:
            scoped.execute(delete(PhoneOtpEntry).where(PhoneOtpEntry.account_id == account_id))

    def purge_expired(self) -> int:
        with session_scope() as session:
            result = session.execute(
                delete(PhoneOtpEntry).where(PhoneOtpEntry.expires_at <= utcnow())
            )
            return result.rowcount

    def _lost_race(self, session: Session, otp_id: int, phone: str) -> ServiceError:
        row = session.execute(
            select(PhoneOtpEntry.attempts, PhoneOtpEntry.max_attempts).where(
                PhoneOtpEntry.id == otp_id
            )
        ).one_or_none()
        if row is not None and row.attempts >= row.max_attempts:
            return self._exhausted(phone)
        return ServiceError(
            ErrorCode.OTP_NOT_FOUND,
            "No active code for this phone, request a new one",
            field="phone",
        )

    def _exhausted(self, phone: str) -> ServiceError:
        LOGGER.warning("OTP max attempts exceeded phone=%s", phone)
        return ServiceError(
            ErrorCode.MAX_ATTEMPTS_EXCEEDED,
            "Maximum verification attempts exceeded, request a new code",
            field="otp",
        )

    def _generate_code(self) -> str:
        value = secrets.randbelow(10**self._policy.code_length)
        return str(value).zfill(self._policy.code_length)


otp_service = OtpService(otp_policy(), rate_limiter, sms_transport)
