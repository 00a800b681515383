from sqlalchemy import Column, DateTime, Index, Integer, String

from gatekeeper.database import Base


class BlacklistEntry(Base):
    __tablename__ = "otp_blacklist"

    id = Column(Integer, primary_key=True)
    contact_value = Column(String(255), nullable=False)
    contact_type = Column(String(16), nullable=False)
    reason = Column(String(32), nullable=False)
    note = Column(String(255), nullable=True)
    blacklisted_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_blacklist_contact_expires", "contact_value", "contact_type", "expires_at"),
        Index("ix_blacklist_blacklisted_at", "blacklisted_at"),
    )
