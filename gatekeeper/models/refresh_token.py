from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from gatekeeper.database import Base


class RefreshTokenEntry(Base):
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True)
    token = Column(String(128), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    device_info = Column(String(255), nullable=True)
