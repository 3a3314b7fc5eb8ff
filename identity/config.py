import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_optional_int(name: str) -> int | None:
    raw_value = os.getenv(name, "").strip()
    if not raw_value:
        return None
    return int(raw_value)


@dataclass(frozen=True)
class Settings:
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_algorithm: str = os.getenv("ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15")
    )
    refresh_token_expire_days: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "30"))

    otp_length: int = int(os.getenv("OTP_LENGTH", "6"))
    otp_ttl_seconds: int = int(os.getenv("OTP_TTL_SECONDS", "300"))
    otp_max_attempts: int = int(os.getenv("OTP_MAX_ATTEMPTS", "3"))
    otp_send_limit: int = int(os.getenv("OTP_SEND_LIMIT", "3"))
    otp_send_window_seconds: int = int(os.getenv("OTP_SEND_WINDOW_SECONDS", "3600"))
    otp_resend_cooldown_seconds: int = int(
        os.getenv("OTP_RESEND_COOLDOWN_SECONDS", "120")
    )
    otp_debug: bool = _env_bool("OTP_DEBUG", False)

    email_token_ttl_seconds: int = int(os.getenv("EMAIL_TOKEN_TTL_SECONDS", "86400"))
    reset_token_ttl_seconds: int = int(os.getenv("RESET_TOKEN_TTL_SECONDS", "3600"))
    email_resend_limit: int = int(os.getenv("EMAIL_RESEND_LIMIT", "1"))
    email_resend_window_seconds: int = int(
        os.getenv("EMAIL_RESEND_WINDOW_SECONDS", "300")
    )
    password_reset_limit: int = int(os.getenv("PASSWORD_RESET_LIMIT", "3"))
    password_reset_window_seconds: int = int(
        os.getenv("PASSWORD_RESET_WINDOW_SECONDS", "3600")
    )
    login_max_attempts: int = int(os.getenv("LOGIN_MAX_ATTEMPTS", "5"))
    login_attempt_window_seconds: int = int(
        os.getenv("LOGIN_ATTEMPT_WINDOW_SECONDS", "900")
    )
    login_lockout_seconds: int = int(os.getenv("LOGIN_LOCKOUT_SECONDS", "1800"))

    password_min_length: int = int(os.getenv("PASSWORD_MIN_LENGTH", "8"))
    password_max_length: int = int(os.getenv("PASSWORD_MAX_LENGTH", "128"))
    password_min_strength: str = os.getenv("PASSWORD_MIN_STRENGTH", "good").lower()
    password_history_depth: int | None = _env_optional_int("PASSWORD_HISTORY_DEPTH")
    password_hash_time_cost: int = int(os.getenv("PASSWORD_HASH_TIME_COST", "3"))
    password_hash_memory_cost: int = int(
        os.getenv("PASSWORD_HASH_MEMORY_COST", "65536")
    )
    password_hash_parallelism: int = int(os.getenv("PASSWORD_HASH_PARALLELISM", "4"))

    dispatch_timeout_seconds: float = float(os.getenv("DISPATCH_TIMEOUT_SECONDS", "10"))
    frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
    cors_origins: str = os.getenv("CORS_ORIGINS", "http://localhost:3000")

    email_transport: str = os.getenv("EMAIL_TRANSPORT", "console").lower()
    email_sender: str = (
        os.getenv("EMAIL_SENDER")
        or os.getenv("GMAIL_SENDER")
        or os.getenv("FROM_EMAIL", "")
    )
    gmail_token_file: str = os.getenv("GMAIL_TOKEN_FILE", "")
    gmail_credentials_file: str = os.getenv(
        "GMAIL_CREDENTIALS_FILE", os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", "")
    )

    sms_transport: str = os.getenv("SMS_TRANSPORT", "console").lower()
    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    twilio_phone_number: str = os.getenv(
        "TWILIO_PHONE_NUMBER", os.getenv("PHONE_NUMBER", "")
    )


settings = Settings()


@dataclass(frozen=True)
class RateLimitPolicy:
    action: str
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class OtpPolicy:
    code_length: int
    ttl_seconds: int
    max_attempts: int
    send_limit: RateLimitPolicy
    resend_cooldown: RateLimitPolicy


@dataclass(frozen=True)
class TokenPolicy:
    verify_ttl_seconds: int
    reset_ttl_seconds: int
    resend_limit: RateLimitPolicy
    reset_request_limit: RateLimitPolicy


@dataclass(frozen=True)
class LoginPolicy:
    failure_limit: RateLimitPolicy
    lockout: RateLimitPolicy


@dataclass(frozen=True)
class PasswordPolicy:
    min_length: int
    max_length: int
    min_strength: str
    history_depth: int | None
    hash_time_cost: int
    hash_memory_cost: int
    hash_parallelism: int


def otp_policy(source: Settings = settings) -> OtpPolicy:
    return OtpPolicy(
        code_length=source.otp_length,
        ttl_seconds=source.otp_ttl_seconds,
        max_attempts=source.otp_max_attempts,
        send_limit=RateLimitPolicy(
            "otp_send", source.otp_send_limit, source.otp_send_window_seconds
        ),
        resend_cooldown=RateLimitPolicy(
            "otp_resend", 1, source.otp_resend_cooldown_seconds
        ),
    )


def token_policy(source: Settings = settings) -> TokenPolicy:
    return TokenPolicy(
        verify_ttl_seconds=source.email_token_ttl_seconds,
        reset_ttl_seconds=source.reset_token_ttl_seconds,
        resend_limit=RateLimitPolicy(
            "email_resend",
            source.email_resend_limit,
            source.email_resend_window_seconds,
        ),
        reset_request_limit=RateLimitPolicy(
            "password_reset",
            source.password_reset_limit,
            source.password_reset_window_seconds,
        ),
    )


def login_policy(source: Settings = settings) -> LoginPolicy:
    return LoginPolicy(
        failure_limit=RateLimitPolicy(
            "login_attempt",
            source.login_max_attempts,
            source.login_attempt_window_seconds,
        ),
        lockout=RateLimitPolicy("login_lockout", 1, source.login_lockout_seconds),
    )


def password_policy(source: Settings = settings) -> PasswordPolicy:
    return PasswordPolicy(
        min_length=source.password_min_length,
        max_length=source.password_max_length,
        min_strength=source.password_min_strength,
        history_depth=source.password_history_depth,
        hash_time_cost=source.password_hash_time_cost,
        hash_memory_cost=source.password_hash_memory_cost,
        hash_parallelism=source.password_hash_parallelism,
    )
