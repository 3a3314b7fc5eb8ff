"""Tests for the PENDING / ACTIVE / SUSPENDED account state machine."""

import pytest

from identity.errors import ErrorCode, ServiceError
from identity.models.account import AccountStatus
from identity.services.lifecycle import account_lifecycle
from tests.mocks.accounts import create_account


class TestMarkVerified:
    def test_dual_channel_account_needs_both(self):
        account = create_account()

        after_email = account_lifecycle.mark_verified(account.id, "email")
        assert after_email.status == AccountStatus.PENDING
        assert after_email.email_verified
        assert after_email.missing_channels() == ["phone"]

        after_phone = account_lifecycle.mark_verified(account.id, "phone")
        assert after_phone.status == AccountStatus.ACTIVE
        assert after_phone.missing_channels() == []

    @pytest.mark.parametrize(
        "email, phone, channel",
        [("rahim@gmail.com", None, "email"), (None, "+8801712345678", "phone")],
    )
    def test_single_channel_account_activates_immediately(self, email, phone, channel):
        account = create_account(email=email, phone=phone)
        updated = account_lifecycle.mark_verified(account.id, channel)
        assert updated.status == AccountStatus.ACTIVE

    def test_order_does_not_matter(self):
        account = create_account()
        account_lifecycle.mark_verified(account.id, "phone")
        updated = account_lifecycle.mark_verified(account.id, "email")
        assert updated.status == AccountStatus.ACTIVE

    def test_verifying_a_suspended_account_keeps_it_suspended(self):
        account = create_account(status=AccountStatus.SUSPENDED)
        updated = account_lifecycle.mark_verified(account.id, "email")
        assert updated.status == AccountStatus.SUSPENDED

    def test_unknown_account(self):
        result = account_lifecycle.mark_verified(9999, "email")
        assert isinstance(result, ServiceError)
        assert result.code == ErrorCode.ACCOUNT_NOT_FOUND

    def test_unknown_channel_is_a_programming_error(self):
        account = create_account()
        with pytest.raises(ValueError):
            account_lifecycle.mark_verified(account.id, "fax")


class TestTransitions:
    def test_suspend_and_reinstate(self):
        account = create_account(
            status=AccountStatus.ACTIVE, email_verified=True, phone_verified=True
        )
        assert account_lifecycle.suspend(account.id).status == AccountStatus.SUSPENDED
        assert account_lifecycle.reinstate(account.id).status == AccountStatus.ACTIVE

    def test_pending_account_cannot_be_suspended(self):
        account = create_account()
        result = account_lifecycle.suspend(account.id)
        assert isinstance(result, ServiceError)
        assert result.code == ErrorCode.INVALID_TRANSITION
        assert result.status_code == 409

    def test_active_account_cannot_be_reinstated(self):
        account = create_account(status=AccountStatus.ACTIVE)
        result = account_lifecycle.reinstate(account.id)
        assert result.code == ErrorCode.INVALID_TRANSITION


class TestLoginGate:
    def test_active_passes(self):
        account = create_account(status=AccountStatus.ACTIVE)
        assert account_lifecycle.login_gate(account) is None

    def test_pending_names_missing_channels(self):
        account = create_account(email_verified=True)
        result = account_lifecycle.login_gate(account)
        assert result.code == ErrorCode.ACCOUNT_NOT_VERIFIED
        assert result.to_detail()["missing_channels"] == ["phone"]
        assert result.status_code == 403

    def test_suspended(self):
        account = create_account(status=AccountStatus.SUSPENDED)
        assert account_lifecycle.login_gate(account).code == ErrorCode.ACCOUNT_SUSPENDED
