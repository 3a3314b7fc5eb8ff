from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from identity.database import Base


class PasswordHistoryEntry(Base):
    __tablename__ = "password_history"

    id = Column(Integer, primary_key=True)
    account_id = Column(
        Integer,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
