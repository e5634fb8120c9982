from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, func
from database import Base
import enum


# Kinds of authentication-relevant events
class SecurityEventType(str, enum.Enum):
    LOGIN = "login"
    FAILED_LOGIN = "failed_login"
    ACCOUNT_LOCKED = "account_locked"
    PASSWORD_CHANGE = "password_change"
    PASSWORD_RESET = "password_reset"
    PASSWORD_RESET_REQUEST = "password_reset_request"
    USERNAME_CHANGE = "username_change"
    SETTINGS_UPDATE = "settings_update"
    PROFILE_UPDATE = "profile_update"
    ACCOUNT_CREATED = "account_created"
    MEMBER_DELETED = "member_deleted"
    CASCADE_DELETE = "cascade_delete"
    UNAUTHORIZED = "unauthorized"


# Immutable audit record of an authentication-relevant action
class SecurityEvent(Base):
    __tablename__ = "security_events"

    id = Column(Integer, primary_key=True, index=True)

    # Event timestamp and core details
    created_at = Column(DateTime, server_default=func.now(), index=True)
    # Plain column, not a foreign key: events outlive the accounts they mention
    account_id = Column(Integer, nullable=True, index=True)
    event_type = Column(String(40), nullable=False, index=True)
    success = Column(Boolean, nullable=False, default=True)

    # Client metadata
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(256), nullable=True)

    detail = Column(String, nullable=True)
    # JSON container for structured context
    meta = Column(JSON, nullable=True)
