"""In-memory transports that capture outgoing email and SMS instead of sending them."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlparse

from identity.services.email import EmailSendError
from identity.services.sms import SmsSendError

_CODE = re.compile(r"\b(\d{6})\b")


@dataclass
class SentEmail:
    to: str
    template_id: str
    variables: dict[str, Any]

    @property
    def token(self) -> str:
        query = parse_qs(urlparse(self.variables["link"]).query)
        return query["token"][0]


@dataclass
class SentSms:
    phone: str
    message: str

    @property
    def code(self) -> str:
        match = _CODE.search(self.message)
        assert match, f"no code in message: {self.message!r}"
        return match.group(1)


class FakeEmailTransport:
    def __init__(self) -> None:
        self.sent: list[SentEmail] = []
        self.fail = False
        self.error: Exception | None = None

    def send(self, to: str, template_id: str, variables: dict[str, Any]) -> None:
        if self.fail:
            raise EmailSendError("simulated email outage")
        if self.error is not None:
            raise self.error
        self.sent.append(SentEmail(to=to, template_id=template_id, variables=dict(variables)))

    def last(self, to: str | None = None) -> SentEmail:
        matches = [mail for mail in self.sent if to is None or mail.to == to]
        assert matches, f"no email sent to {to}"
        return matches[-1]


class FakeSmsTransport:
    def __init__(self) -> None:
        self.sent: list[SentSms] = []
        self.fail = False
        self.error: Exception | None = None

    def send(self, phone: str, message: str) -> None:
        if self.fail:
            raise SmsSendError("simulated SMS outage")
        if self.error is not None:
            raise self.error
        self.sent.append(SentSms(phone=phone, message=message))

    def last_code(self, phone: str | None = None) -> str:
        matches = [sms for sms in self.sent if phone is None or sms.phone == phone]
        assert matches, f"no SMS sent to {phone}"
        return matches[-1].code
