from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timedelta, timezone
from http.client import HTTPException
from pathlib import Path
from typing import Any, Optional, Protocol
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from identity.config import Settings, settings

LOGGER = logging.getLogger(__name__)

GMAIL_SEND_ENDPOINT = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
GMAIL_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"

TEMPLATE_VERIFY_EMAIL = "verify_email"
TEMPLATE_RESET_PASSWORD = "reset_password"


class EmailSendError(RuntimeError):
    pass


class EmailTransport(Protocol):
    def send(self, to: str, template_id: str, variables: dict[str, Any]) -> None:
        ...


def render_template(template_id: str, variables: dict[str, Any]) -> tuple[str, str]:
    name = variables.get("name") or "there"
    link = variables.get("link", "")
    hours = variables.get("expires_in_hours", 24)
    if template_id == TEMPLATE_VERIFY_EMAIL:
        return (
            "Verify your email address",
            f"Hi {name},\n\n"
            f"Confirm your email address by opening the link below:\n{link}\n\n"
            f"The link expires in {hours} hour(s).\n"
            "If you did not create an account, you can ignore this email.",
        )
    if template_id == TEMPLATE_RESET_PASSWORD:
        return (
            "Reset your password",
            f"Hi {name},\n\n"
            f"Choose a new password by opening the link below:\n{link}\n\n"
            f"The link expires in {hours} hour(s).\n"
            "If you did not ask for a reset, you can ignore this email.",
        )
    raise EmailSendError(f"Unknown email template: {template_id}")


class ConsoleEmailTransport:
    """Development transport: the message is logged instead of delivered."""

    def send(self, to: str, template_id: str, variables: dict[str, Any]) -> None:
        subject, _ = render_template(template_id, variables)
        # Links carry live tokens and stay out of the log.
        LOGGER.info(
            "Email (console) to=%s template=%s subject=%s",
            to,
            template_id,
            subject,
        )


class GmailTransport:
    def __init__(self, config: Settings) -> None:
        self._sender = config.email_sender
        self._timeout = config.dispatch_timeout_seconds
        self._token_path = _resolve_path(config.gmail_token_file, "token.json")
        self._credentials_path = _resolve_path(
            config.gmail_credentials_file, "credentials.json"
        )

    def send(self, to: str, template_id: str, variables: dict[str, Any]) -> None:
        if not self._sender:
            raise EmailSendError("Email sender is not configured")
        subject, body = render_template(template_id, variables)
        payload = json.dumps(
            {"raw": _encode_message(self._sender, to, subject, body)}
        ).encode("utf-8")
        request = Request(
            GMAIL_SEND_ENDPOINT,
            data=payload,
            headers={
                "Authorization": f"Bearer {self._access_token()}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail API error template=%s: %s", template_id, error_body)
            raise EmailSendError("Failed to send email") from exc
        except (OSError, HTTPException) as exc:
            # URLError, timeouts and dropped connections all land here.
            raise EmailSendError("Failed to reach Gmail API") from exc

    def _access_token(self) -> str:
        token_data = _load_json(self._token_path)
        token = token_data.get("token")
        expiry = _parse_expiry(token_data.get("expiry"))
        if token and expiry and expiry > datetime.now(timezone.utc) + timedelta(minutes=1):
            return token

        refresh_token = token_data.get("refresh_token")
        if not refresh_token:
            raise EmailSendError("Gmail refresh token is missing")
        client_id, client_secret = self._client_details(token_data)
        request = Request(
            token_data.get("token_uri") or GMAIL_TOKEN_ENDPOINT,
            data=urlencode(
                {
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                }
            ).encode("utf-8"),
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout) as response:
                data = json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail token refresh error: %s", error_body)
            raise EmailSendError("Failed to refresh Gmail token") from exc
        except (OSError, HTTPException, ValueError) as exc:
            raise EmailSendError("Failed to reach Gmail token endpoint") from exc

        access_token = data.get("access_token")
        if not access_token:
            raise EmailSendError("Gmail token refresh did not return an access token")
        token_data["token"] = access_token
        token_data["expiry"] = (
            datetime.now(timezone.utc) + timedelta(seconds=int(data.get("expires_in", 3600)))
        ).isoformat()
        try:
            self._token_path.write_text(json.dumps(token_data), encoding="utf-8")
        except OSError as exc:
            # The fresh token is still usable for this send.
            LOGGER.warning("Could not persist refreshed Gmail token: %s", exc)
        return access_token

    def _client_details(self, token_data: dict[str, Any]) -> tuple[str, str]:
        client_id = token_data.get("client_id")
        client_secret = token_data.get("client_secret")
        if client_id and client_secret:
            return client_id, client_secret
        credentials = _load_json(self._credentials_path)
        installed = credentials.get("installed", {})
        client_id = installed.get("client_id") or credentials.get("client_id")
        client_secret = installed.get("client_secret") or credentials.get("client_secret")
        if not client_id or not client_secret:
            raise EmailSendError("Gmail client credentials are missing")
        return client_id, client_secret


def _encode_message(sender: str, recipient: str, subject: str, body: str) -> str:
    message = "\r\n".join(
        [
            f"From: {sender}",
            f"To: {recipient}",
            f"Subject: {subject}",
            "MIME-Version: 1.0",
            "Content-Type: text/plain; charset=utf-8",
            "",
            body,
        ]
    )
    # Gmail API expects base64url-encoded RFC 2822 content.
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode("ascii")


def _resolve_path(configured: str, default_name: str) -> Path:
    if configured:
        return Path(configured)
    return Path(__file__).resolve().parents[2] / "credentials" / default_name


def _parse_expiry(raw_value: Optional[str]) -> Optional[datetime]:
    if not raw_value:
        return None
    try:
        return datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise EmailSendError(f"Missing Gmail file: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except (OSError, ValueError) as exc:
        raise EmailSendError(f"Unreadable Gmail file: {path}") from exc


def build_email_transport(config: Settings = settings) -> EmailTransport:
    if config.email_transport == "gmail":
        return GmailTransport(config)
    return ConsoleEmailTransport()


email_transport = build_email_transport()
