from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from gatekeeper.database import Base


class UserEntry(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(20), nullable=True, unique=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class UserProfileEntry(Base):
    """Profile row owned by the profile service; only read here."""

    __tablename__ = "user_profiles"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    full_name = Column(String(255), nullable=True)
    onboarding_completed = Column(Boolean, nullable=False, default=False)
