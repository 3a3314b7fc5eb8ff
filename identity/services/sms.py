from __future__ import annotations

import base64
import logging
from http.client import HTTPException
from typing import Protocol
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from identity.config import Settings, settings

LOGGER = logging.getLogger(__name__)

TWILIO_MESSAGES_ENDPOINT = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"


class SmsSendError(RuntimeError):
    pass


class SmsTransport(Protocol):
    def send(self, phone: str, message: str) -> None:
        ...


def build_otp_message(code: str, ttl_seconds: int) -> str:
    minutes = max(1, ttl_seconds // 60)
    return (
        f"Your verification code is {code}."
        f" It expires in {minutes} minute(s). Do not share it with anyone."
    )


class ConsoleSmsTransport:
    def send(self, phone: str, message: str) -> None:
        # The code itself stays out of the log.
        LOGGER.info("SMS (console) to=%s length=%s", phone, len(message))


class TwilioSmsTransport:
    def __init__(self, config: Settings) -> None:
        self._account_sid = config.twilio_account_sid
        self._auth_token = config.twilio_auth_token
        self._from_phone = config.twilio_phone_number
        self._timeout = config.dispatch_timeout_seconds

    def send(self, phone: str, message: str) -> None:
        if not self._account_sid or not self._auth_token or not self._from_phone:
            raise SmsSendError("Twilio is not configured")
        endpoint = TWILIO_MESSAGES_ENDPOINT.format(sid=self._account_sid)
        payload = urlencode(
            {"To": phone, "From": self._from_phone, "Body": message}
        ).encode("utf-8")
        credentials = base64.b64encode(
            f"{self._account_sid}:{self._auth_token}".encode("utf-8")
        ).decode("ascii")
        request = Request(
            endpoint,
            data=payload,
            headers={
                "Authorization": f"Basic {credentials}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Twilio API error to=%s response=%s", phone, error_body)
            raise SmsSendError("Failed to send SMS") from exc
        except (OSError, HTTPException) as exc:
            raise SmsSendError("Failed to reach Twilio API") from exc


def build_sms_transport(config: Settings = settings) -> SmsTransport:
    if config.sms_transport == "twilio":
        return TwilioSmsTransport(config)
    return ConsoleSmsTransport()


sms_transport = build_sms_transport()
