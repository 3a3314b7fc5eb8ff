from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String

from identity.database import Base


class PhoneOtpEntry(Base):
    __tablename__ = "phone_otps"

    id = Column(Integer, primary_key=True)
    phone = Column(String(16), nullable=False)
    otp = Column(String(10), nullable=False)
    account_id = Column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True
    )
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_phone_otps_phone", "phone"),
        Index("ix_phone_otps_expires_at", "expires_at"),
    )
