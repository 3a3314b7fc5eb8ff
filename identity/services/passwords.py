"""Password policy: strength scoring, argon2id hashing and reuse history."""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from identity.config import PasswordPolicy, password_policy
from identity.database import use_session, utcnow
from identity.errors import ErrorCode, ServiceError
from identity.models.password_history import PasswordHistoryEntry

LOGGER = logging.getLogger(__name__)

STRENGTH_LEVELS = ("weak", "fair", "good", "strong")

COMMON_PASSWORDS = frozenset(
    {
        "123456", "1234567", "12345678", "123456789", "1234567890", "111111",
        "000000", "654321", "121212", "112233", "password", "passw0rd",
        "password1", "password123", "qwerty", "qwerty123", "qwertyuiop",
        "asdfgh", "asdfghjkl", "zxcvbnm", "1q2w3e4r", "abc123", "abcd1234",
        "iloveyou", "letmein", "welcome", "welcome1", "admin", "admin123",
        "monkey", "dragon", "football", "baseball", "sunshine", "princess",
        "shadow", "master", "superman", "trustno1", "whatever", "freedom",
        "secret", "starwars", "login", "changeme", "default", "access",
        "bangladesh", "dhaka", "chittagong", "sylhet", "taka", "bdt",
        "shopping", "ecommerce",
    }
)

_LEET = str.maketrans({"0": "o", "1": "i", "3": "e", "4": "a", "5": "s", "7": "t", "@": "a", "$": "s"})
_SYMBOL = re.compile(r"[^A-Za-z0-9]")
CHARACTER_CLASSES = (
    ("lowercase letter", re.compile(r"[a-z]")),
    ("uppercase letter", re.compile(r"[A-Z]")),
    ("number", re.compile(r"\d")),
    ("special character", _SYMBOL),
)


@dataclass(frozen=True)
class PasswordAssessment:
    score: int
    strength: str
    violations: list[str] = field(default_factory=list)

    def to_details(self) -> dict:
        return {
            "score": self.score,
            "strength": self.strength,
            "violations": list(self.violations),
        }


def _has_sequence(value: str) -> bool:
    lowered = value.lower()
    for index in range(len(lowered) - 2):
        first, second, third = (ord(char) for char in lowered[index : index + 3])
        if second == first + 1 and third == second + 1:
            return True
        if second == first - 1 and third == second - 1:
            return True
    return False


def _has_repeat(value: str) -> bool:
    return any(
        value[index] == value[index + 1] == value[index + 2]
        for index in range(len(value) - 2)
    )


def _is_common(value: str) -> bool:
    lowered = value.lower()
    if lowered in COMMON_PASSWORDS:
        return True
    letters_only = _SYMBOL.sub("", lowered.translate(_LEET))
    stripped = letters_only.rstrip("0123456789")
    return letters_only in COMMON_PASSWORDS or stripped in COMMON_PASSWORDS


def _classify(score: int) -> str:
    if score >= 5:
        return "strong"
    if score == 4:
        return "good"
    if score == 3:
        return "fair"
    return "weak"


class PasswordService:
    def __init__(self, policy: PasswordPolicy) -> None:
        self._policy = policy
        self._hasher = PasswordHasher(
            time_cost=policy.hash_time_cost,
            memory_cost=policy.hash_memory_cost,
            parallelism=policy.hash_parallelism,
            hash_len=32,
            salt_len=16,
            type=Type.ID,
        )

    @property
    def policy(self) -> PasswordPolicy:
        return self._policy

    def evaluate(self, password: str, personal: Iterable[str] = ()) -> PasswordAssessment:
        violations: list[str] = []
        length = len(password)
        if length < self._policy.min_length:
            violations.append(
                f"Password must be at least {self._policy.min_length} characters long"
            )
        if length > self._policy.max_length:
            violations.append(
                f"Password must not exceed {self._policy.max_length} characters"
            )

        if length >= 16:
            score = 3
        elif length >= 12:
            score = 2
        elif length >= self._policy.min_length:
            score = 1
        else:
            score = 0

        classes = {label: pattern.search(password) for label, pattern in CHARACTER_CLASSES}
        present = sum(1 for match in classes.values() if match)
        score += max(0, present - 1)
        for label, match in classes.items():
            if not match:
                violations.append(f"Password should contain at least one {label}")

        if _has_sequence(password):
            score -= 1
            violations.append('Password contains sequential characters (e.g. "abc", "123")')
        if _has_repeat(password):
            score -= 1
            violations.append('Password contains repeated characters (e.g. "aaa")')

        lowered = password.lower()
        for fragment in personal:
            token = (fragment or "").strip().lower()
            if len(token) >= 3 and token in lowered:
                score -= 1
                violations.append("Password must not contain your name or email")
                break

        if _is_common(password):
            score = 0
            violations.append("Password is too common")

        if length < self._policy.min_length or length > self._policy.max_length:
            score = min(score, 1)

        score = max(0, score)
        return PasswordAssessment(score=score, strength=_classify(score), violations=violations)

    def check_strength(
        self, password: str, personal: Iterable[str] = ()
    ) -> PasswordAssessment | ServiceError:
        assessment = self.evaluate(password, personal)
        minimum = STRENGTH_LEVELS.index(self._policy.min_strength)
        if STRENGTH_LEVELS.index(assessment.strength) < minimum:
            return ServiceError(
                ErrorCode.WEAK_PASSWORD,
                "Password is too weak",
                field="password",
                details=assessment.to_details(),
            )
        return assessment

    def hash_password(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        if not password or not password_hash:
            return False
        try:
            return self._hasher.verify(password_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True

    def check_history(
        self, account_id: int, new_password: str, session: Session | None = None
    ) -> ServiceError | None:
        stmt = (
            select(PasswordHistoryEntry.password_hash)
            .where(PasswordHistoryEntry.account_id == account_id)
            .order_by(PasswordHistoryEntry.created_at.desc(), PasswordHistoryEntry.id.desc())
        )
        if self._policy.history_depth:
            stmt = stmt.limit(self._policy.history_depth)
        with use_session(session) as scoped:
            hashes = scoped.execute(stmt).scalars().all()
        for previous in hashes:
            if self.verify_password(new_password, previous):
                LOGGER.warning("Password reuse rejected account_id=%s", account_id)
                return ServiceError(
                    ErrorCode.PASSWORD_ALREADY_USED,
                    "This password has been used before, choose a new one",
                    field="password",
                )
        return None

    def record(
        self, account_id: int, password_hash: str, session: Session | None = None
    ) -> None:
        with use_session(session) as scoped:
            scoped.add(
                PasswordHistoryEntry(
                    account_id=account_id,
                    password_hash=password_hash,
                    created_at=utcnow(),
                )
            )
            scoped.flush()

    def discard_history(self, account_id: int, session: Session | None = None) -> None:
        """Only used when a registration is rolled back."""
        with use_session(session) as scoped:
            scoped.execute(
                delete(PasswordHistoryEntry).where(
                    PasswordHistoryEntry.account_id == account_id
                )
            )


password_service = PasswordService(password_policy())
