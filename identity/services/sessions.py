from datetime import timedelta
import secrets

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from identity.config import settings
from identity.database import session_scope, use_session, utcnow
from identity.models.session import SessionEntry


class SessionStore:
    def __init__(self, ttl_days: int) -> None:
        self._ttl_days = ttl_days

    def create_session(self, account_id: int, session: Session | None = None) -> str:
        now = utcnow()
        token = secrets.token_urlsafe(32)
        with use_session(session) as scoped:
            scoped.execute(delete(SessionEntry).where(SessionEntry.expires_at <= now))
            scoped.add(
                SessionEntry(
                    token=token,
                    account_id=account_id,
                    created_at=now,
                    expires_at=now + timedelta(days=self._ttl_days),
                    revoked_at=None,
                )
            )
        return token

    def revoke_session(self, token: str) -> bool:
        with session_scope() as session:
            result = session.execute(
                update(SessionEntry)
                .where(SessionEntry.token == token, SessionEntry.revoked_at.is_(None))
                .values(revoked_at=utcnow())
            )
            return result.rowcount > 0

    def revoke_all(self, account_id: int, session: Session | None = None) -> int:
        with use_session(session) as scoped:
            result = scoped.execute(
                update(SessionEntry)
                .where(
                    SessionEntry.account_id == account_id,
                    SessionEntry.revoked_at.is_(None),
                )
                .values(revoked_at=utcnow())
            )
            return result.rowcount

    def get_account_id(self, token: str) -> int | None:
        now = utcnow()
        with session_scope() as session:
            entry = session.execute(
                select(SessionEntry).where(
                    SessionEntry.token == token,
                    SessionEntry.revoked_at.is_(None),
                    SessionEntry.expires_at > now,
                )
            ).scalar_one_or_none()
            if entry is None:
                return None
            return entry.account_id


session_store = SessionStore(settings.refresh_token_expire_days)
