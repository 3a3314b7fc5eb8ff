from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String

from identity.database import Base

PURPOSE_VERIFY_EMAIL = "verify_email"
PURPOSE_RESET_PASSWORD = "reset_password"


class EmailTokenEntry(Base):
    __tablename__ = "email_verification_tokens"

    id = Column(Integer, primary_key=True)
    token = Column(String(64), nullable=False, unique=True)
    account_id = Column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    purpose = Column(String(32), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_email_tokens_account_purpose", "account_id", "purpose"),
        Index("ix_email_tokens_expires_at", "expires_at"),
    )
