from dataclasses import dataclass
from datetime import timedelta

import jwt

from identity.config import settings
from identity.database import utcnow

ACCESS = "access"
REFRESH = "refresh"


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class TokenClaims:
    account_id: int
    session_id: str
    kind: str


def create_access_token(account_id: int, session_id: str) -> str:
    return _encode(
        account_id,
        session_id,
        ACCESS,
        timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(account_id: int, session_id: str) -> str:
    return _encode(
        account_id,
        session_id,
        REFRESH,
        timedelta(days=settings.refresh_token_expire_days),
    )


def decode_access_token(token: str) -> TokenClaims:
    return _decode(token, ACCESS)


def decode_refresh_token(token: str) -> TokenClaims:
    return _decode(token, REFRESH)


def _encode(account_id: int, session_id: str, kind: str, lifetime: timedelta) -> str:
    if not settings.jwt_secret:
        raise TokenError("JWT secret is not configured")
    now = utcnow()
    payload = {
        "sub": str(account_id),
        "sid": session_id,
        "type": kind,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _decode(token: str, expected_kind: str) -> TokenClaims:
    if not token:
        raise TokenError("Token is missing")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid token") from exc
    if payload.get("type") != expected_kind:
        raise TokenError("Invalid token type")
    session_id = payload.get("sid")
    if not session_id:
        raise TokenError("Token is missing session id")
    try:
        account_id = int(payload.get("sub"))
    except (TypeError, ValueError) as exc:
        raise TokenError("Invalid token subject") from exc
    return TokenClaims(account_id=account_id, session_id=session_id, kind=expected_kind)
