import re
from dataclasses import dataclass

from email_validator import EmailNotValidError, validate_email

from identity.errors import ErrorCode, ServiceError

# Bangladesh mobile operators keyed by the local three-digit prefix.
MOBILE_OPERATORS = {
    "013": "Grameenphone",
    "014": "Banglalink",
    "015": "Teletalk",
    "016": "Airtel",
    "017": "Grameenphone",
    "018": "Robi",
    "019": "Banglalink",
}

DISPOSABLE_EMAIL_DOMAINS = frozenset(
    {
        "10minutemail.com",
        "tempmail.org",
        "temp-mail.org",
        "guerrillamail.com",
        "mailinator.com",
        "yopmail.com",
        "throwaway.email",
        "trashmail.com",
        "sharklasers.com",
        "getnada.com",
        "dispostable.com",
        "maildrop.cc",
    }
)

_LOCAL_MOBILE = re.compile(r"^01[3-9]\d{8}$")


@dataclass(frozen=True)
class PhoneNumber:
    canonical: str
    local: str
    operator: str


def normalize_phone(raw: str | None) -> PhoneNumber | ServiceError:
    """Accept 01XXXXXXXXX, 8801XXXXXXXXX or +8801XXXXXXXXX; separators are ignored."""
    cleaned = re.sub(r"[\s\-().]", "", raw or "")
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
        if not cleaned.startswith("880"):
            return _invalid_phone()
    if not cleaned.isdigit():
        return _invalid_phone()
    if cleaned.startswith("880"):
        local = cleaned[2:]
    else:
        local = cleaned
    if not _LOCAL_MOBILE.match(local):
        return _invalid_phone()
    return PhoneNumber(
        canonical=f"+88{local}",
        local=local,
        operator=MOBILE_OPERATORS[local[:3]],
    )


def _invalid_phone() -> ServiceError:
    return ServiceError(
        ErrorCode.INVALID_PHONE_FORMAT,
        "Phone must be a Bangladesh mobile number (013-019, e.g. 01712345678)",
        field="phone",
    )


def normalize_email(raw: str | None) -> str | ServiceError:
    candidate = (raw or "").strip()
    try:
        validated = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        return ServiceError(
            ErrorCode.INVALID_EMAIL_FORMAT,
            "Email address is not valid",
            field="email",
        )
    email = validated.normalized.lower()
    if is_disposable_email(email):
        return ServiceError(
            ErrorCode.DISPOSABLE_EMAIL_REJECTED,
            "Disposable email addresses are not accepted",
            field="email",
        )
    return email


def is_disposable_email(email: str) -> bool:
    _, _, domain = email.rpartition("@")
    return domain.lower() in DISPOSABLE_EMAIL_DOMAINS


def looks_like_email(identifier: str) -> bool:
    return "@" in identifier
