import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, String

from identity.database import Base


class AccountStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class AccountEntry(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(16), nullable=True, unique=True)
    password_hash = Column(String(255), nullable=False)
    status = Column(
        Enum(AccountStatus, name="account_status", native_enum=False, length=16),
        nullable=False,
        default=AccountStatus.PENDING,
    )
    email_provided = Column(Boolean, nullable=False, default=False)
    phone_provided = Column(Boolean, nullable=False, default=False)
    email_verified = Column(Boolean, nullable=False, default=False)
    phone_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    def missing_channels(self) -> list[str]:
        missing = []
        if self.email_provided and not self.email_verified:
            missing.append("email")
        if self.phone_provided and not self.phone_verified:
            missing.append("phone")
        return missing
