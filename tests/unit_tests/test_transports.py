"""Tests for the email and SMS transports' failure mapping and logging."""

import json
import logging
from datetime import datetime, timedelta, timezone
from http.client import IncompleteRead, RemoteDisconnected

import pytest

from identity.config import Settings
from identity.services import email as email_module
from identity.services import sms as sms_module
from identity.services.email import (
    TEMPLATE_VERIFY_EMAIL,
    ConsoleEmailTransport,
    EmailSendError,
    GmailTransport,
)
from identity.services.sms import SmsSendError, TwilioSmsTransport

TOKEN = "f" * 64


def _raising(error: Exception):
    def fake_urlopen(request, timeout=None):
        raise error

    return fake_urlopen


def _gmail(tmp_path, token_content: str) -> GmailTransport:
    token_file = tmp_path / "token.json"
    token_file.write_text(token_content, encoding="utf-8")
    return GmailTransport(
        Settings(email_sender="noreply@shop.example", gmail_token_file=str(token_file))
    )


def _fresh_token() -> str:
    expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    return json.dumps({"token": "access", "expiry": expiry.isoformat()})


class TestTwilioSmsTransport:
    @pytest.mark.parametrize(
        "error",
        [
            RemoteDisconnected("Remote end closed connection"),
            ConnectionResetError("connection reset by peer"),
            TimeoutError("timed out"),
        ],
    )
    def test_network_errors_become_send_errors(self, monkeypatch, error):
        monkeypatch.setattr(sms_module, "urlopen", _raising(error))
        transport = TwilioSmsTransport(
            Settings(
                twilio_account_sid="AC123",
                twilio_auth_token="secret",
                twilio_phone_number="+15005550006",
            )
        )

        with pytest.raises(SmsSendError):
            transport.send("+8801712345678", "Your verification code is 123456.")

    def test_unconfigured_transport_refuses_to_send(self):
        transport = TwilioSmsTransport(Settings(twilio_account_sid=""))
        with pytest.raises(SmsSendError):
            transport.send("+8801712345678", "hello")


class TestGmailTransport:
    @pytest.mark.parametrize(
        "error",
        [RemoteDisconnected("Remote end closed connection"), IncompleteRead(b"")],
    )
    def test_network_errors_become_send_errors(self, tmp_path, monkeypatch, error):
        monkeypatch.setattr(email_module, "urlopen", _raising(error))
        transport = _gmail(tmp_path, _fresh_token())

        with pytest.raises(EmailSendError):
            transport.send("a@x.com", TEMPLATE_VERIFY_EMAIL, {"link": "https://x/verify"})

    def test_corrupt_token_file_becomes_send_error(self, tmp_path):
        transport = _gmail(tmp_path, "{not json")

        with pytest.raises(EmailSendError):
            transport.send("a@x.com", TEMPLATE_VERIFY_EMAIL, {"link": "https://x/verify"})


def test_console_email_keeps_the_link_out_of_the_log(caplog):
    with caplog.at_level(logging.INFO, logger="identity.services.email"):
        ConsoleEmailTransport().send(
            "a@x.com",
            TEMPLATE_VERIFY_EMAIL,
            {"name": "Rahim", "link": f"http://localhost:3000/verify-email?token={TOKEN}"},
        )

    assert "a@x.com" in caplog.text
    assert TOKEN not in caplog.text
