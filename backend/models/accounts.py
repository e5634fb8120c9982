# backend/models/accounts.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, CheckConstraint, func
from sqlalchemy.orm import relationship
from database import Base
import enum


# Roles an account can hold
class Role(str, enum.Enum):
    ADMIN = "admin"
    MEMBER = "member"


# Represents a login account, optionally linked to exactly one member profile
class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=True, index=True)
    name = Column(String, nullable=False)

    # Credentials; system_generated stays set until the owner picks their own password
    password_hash = Column(String, nullable=False)
    salt = Column(String, nullable=False)
    system_generated = Column(Boolean, nullable=False, default=False)
    role = Column(String, CheckConstraint("role IN ('admin', 'member')"), nullable=False, default=Role.MEMBER.value)

    # One-way flags
    first_login = Column(Boolean, nullable=False, default=True)
    username_changed = Column(Boolean, nullable=False, default=False)

    # Brute-force protection
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime, nullable=True)

    last_login = Column(DateTime, nullable=True)
    password_last_changed = Column(DateTime, server_default=func.now())

    member_id = Column(Integer, ForeignKey("members.id"), nullable=True, index=True)
    settings_json = Column(JSON, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    member = relationship("Member", lazy="joined", uselist=False)

    @property
    def is_admin(self) -> bool:
        return (self.role or "").lower() == Role.ADMIN.value
