"""
Account lifecycle.

    PENDING --mark_verified(channel)--> PENDING | ACTIVE
    ACTIVE  --suspend-->   SUSPENDED
    SUSPENDED --reinstate--> ACTIVE

An account becomes ACTIVE only once every channel supplied at registration
(``email_provided`` / ``phone_provided``) is verified. Every transition is a
conditional UPDATE so two verifications landing at the same time cannot leave
the account stuck in PENDING or flip a status that already moved.
"""

import logging

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from identity.database import use_session, utcnow
from identity.errors import ErrorCode, ServiceError
from identity.models.account import AccountEntry, AccountStatus

LOGGER = logging.getLogger(__name__)

CHANNELS = ("email", "phone")

_TRANSITIONS = {
    "suspend": (AccountStatus.ACTIVE, AccountStatus.SUSPENDED),
    "reinstate": (AccountStatus.SUSPENDED, AccountStatus.ACTIVE),
}


def _not_found() -> ServiceError:
    return ServiceError(ErrorCode.ACCOUNT_NOT_FOUND, "Account not found")


class AccountLifecycle:
    def mark_verified(
        self, account_id: int, channel: str, session: Session | None = None
    ) -> AccountEntry | ServiceError:
        if channel not in CHANNELS:
            raise ValueError(f"Unknown verification channel: {channel}")
        flag = AccountEntry.email_verified if channel == "email" else AccountEntry.phone_verified
        now = utcnow()
        with use_session(session) as scoped:
            result = scoped.execute(
                update(AccountEntry)
                .where(AccountEntry.id == account_id)
                .values({flag: True, AccountEntry.updated_at: now})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return _not_found()

            activated = scoped.execute(
                update(AccountEntry)
                .where(
                    AccountEntry.id == account_id,
                    AccountEntry.status == AccountStatus.PENDING,
                    or_(
                        AccountEntry.email_provided.is_(False),
                        AccountEntry.email_verified.is_(True),
                    ),
                    or_(
                        AccountEntry.phone_provided.is_(False),
                        AccountEntry.phone_verified.is_(True),
                    ),
                )
                .values(status=AccountStatus.ACTIVE, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if activated.rowcount == 1:
                LOGGER.info("Account activated account_id=%s", account_id)
            else:
                LOGGER.info("Account %s verified account_id=%s", channel, account_id)
            return self._load(scoped, account_id)

    def suspend(self, account_id: int, session: Session | None = None) -> AccountEntry | ServiceError:
        return self._transition(account_id, "suspend", session)

    def reinstate(
        self, account_id: int, session: Session | None = None
    ) -> AccountEntry | ServiceError:
        return self._transition(account_id, "reinstate", session)

    def login_gate(self, account: AccountEntry) -> ServiceError | None:
        if account.status == AccountStatus.ACTIVE:
            return None
        if account.status == AccountStatus.SUSPENDED:
            return ServiceError(ErrorCode.ACCOUNT_SUSPENDED, "Account is suspended")
        missing = account.missing_channels()
        return ServiceError(
            ErrorCode.ACCOUNT_NOT_VERIFIED,
            "Verify your " + " and ".join(missing) + " before logging in",
            details={"missing_channels": missing},
        )

    def _transition(
        self, account_id: int, name: str, session: Session | None
    ) -> AccountEntry | ServiceError:
        source, target = _TRANSITIONS[name]
        with use_session(session) as scoped:
            result = scoped.execute(
                update(AccountEntry)
                .where(AccountEntry.id == account_id, AccountEntry.status == source)
                .values(status=target, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            account = self._load(scoped, account_id)
            if isinstance(account, ServiceError):
                return account
            if result.rowcount != 1:
                return ServiceError(
                    ErrorCode.INVALID_TRANSITION,
                    f"Cannot {name} an account in status {account.status.value}",
                    details={"status": account.status.value},
                )
            LOGGER.info("Account %s account_id=%s", name, account_id)
            return account

    def _load(self, session: Session, account_id: int) -> AccountEntry | ServiceError:
        account = session.execute(
            select(AccountEntry)
            .where(AccountEntry.id == account_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if account is None:
            return _not_found()
        return account


account_lifecycle = AccountLifecycle()
