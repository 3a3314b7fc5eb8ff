import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from identity.config import TokenPolicy, token_policy
from identity.database import as_utc, use_session, utcnow
from identity.errors import ErrorCode, ServiceError
from identity.models.email_token import (
    PURPOSE_RESET_PASSWORD,
    PURPOSE_VERIFY_EMAIL,
    EmailTokenEntry,
)

LOGGER = logging.getLogger(__name__)

TOKEN_BYTES = 32
PURPOSES = (PURPOSE_VERIFY_EMAIL, PURPOSE_RESET_PASSWORD)


class EmailTokenService:
    """Single-use, time-limited tokens for email verification and password reset."""

    def __init__(self, policy: TokenPolicy) -> None:
        self._policy = policy

    @property
    def policy(self) -> TokenPolicy:
        return self._policy

    def ttl_seconds(self, purpose: str) -> int:
        if purpose == PURPOSE_RESET_PASSWORD:
            return self._policy.reset_ttl_seconds
        return self._policy.verify_ttl_seconds

    def issue(self, account_id: int, purpose: str, session: Session | None = None) -> str:
        if purpose not in PURPOSES:
            raise ValueError(f"Unknown token purpose: {purpose}")
        now = utcnow()
        token = secrets.token_bytes(TOKEN_BYTES).hex()
        with use_session(session) as scoped:
            scoped.execute(delete(EmailTokenEntry).where(EmailTokenEntry.expires_at <= now))
            # At most one live token per purpose per account.
            scoped.execute(
                delete(EmailTokenEntry).where(
                    EmailTokenEntry.account_id == account_id,
                    EmailTokenEntry.purpose == purpose,
                )
            )
            scoped.add(
                EmailTokenEntry(
                    token=token,
                    account_id=account_id,
                    purpose=purpose,
                    expires_at=now + timedelta(seconds=self.ttl_seconds(purpose)),
                    created_at=now,
                )
            )
            scoped.flush()
        LOGGER.info("Issued %s token account_id=%s", purpose, account_id)
        return token

    def peek(
        self, token: str, purpose: str, session: Session | None = None
    ) -> EmailTokenEntry | ServiceError:
        clean = (token or "").strip().lower()
        with use_session(session) as scoped:
            entry = scoped.execute(
                select(EmailTokenEntry).where(EmailTokenEntry.token == clean)
            ).scalar_one_or_none()
            if entry is None or entry.purpose != purpose:
                return ServiceError(
                    ErrorCode.INVALID_TOKEN, "Token is invalid", field="token"
                )
            if as_utc(entry.expires_at) <= utcnow():
                scoped.delete(entry)
                scoped.flush()
                return ServiceError(
                    ErrorCode.TOKEN_EXPIRED, "Token has expired", field="token"
                )
            return entry

    def consume(
        self, token: str, purpose: str, session: Session | None = None
    ) -> int | ServiceError:
        """Delete the token and return its account id; a token is spent exactly once."""
        with use_session(session) as scoped:
            entry = self.peek(token, purpose, session=scoped)
            if isinstance(entry, ServiceError):
                return entry
            result = scoped.execute(
                delete(EmailTokenEntry).where(EmailTokenEntry.id == entry.id)
            )
            if result.rowcount != 1:
                # Another request spent it first.
                return ServiceError(
                    ErrorCode.INVALID_TOKEN, "Token is invalid", field="token"
                )
            return entry.account_id

    def revoke_all(self, account_id: int, session: Session | None = None) -> None:
        with use_session(session) as scoped:
            scoped.execute(
                delete(EmailTokenEntry).where(EmailTokenEntry.account_id == account_id)
            )

    def purge_expired(self) -> int:
        with use_session() as scoped:
            result = scoped.execute(
                delete(EmailTokenEntry).where(EmailTokenEntry.expires_at <= utcnow())
            )
            return result.rowcount


email_token_service = EmailTokenService(token_policy())
