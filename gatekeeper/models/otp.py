from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from gatekeeper.database import Base


class OtpEntry(Base):
    __tablename__ = "otp_codes"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    contact_value = Column(String(255), nullable=False)
    contact_type = Column(String(16), nullable=False)
    code = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    is_used = Column(Boolean, nullable=False, default=False)
    resend_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_otp_contact_created", "contact_value", "contact_type", "created_at"),
        Index("ix_otp_expires_at", "expires_at"),
    )
