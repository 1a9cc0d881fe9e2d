from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Enum, Index, JSON
from datetime import datetime, timezone
from .db import Base
from sqlalchemy.orm import relationship
import uuid


def utcnow() -> datetime:
    """Naive UTC timestamp, as stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_stamp() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_name = Column(String(256))
    normalized_user_name = Column(String(256), unique=True, index=True)
    email = Column(String(256))
    normalized_email = Column(String(256), index=True)
    email_confirmed = Column(Boolean, default=False, nullable=False)
    password_hash = Column(String, nullable=True)
    security_stamp = Column(String(36), default=new_stamp, nullable=False)
    # Rotated on logout; only refresh tokens carry it
    refresh_stamp = Column(String(36), default=new_stamp, nullable=False)
    concurrency_stamp = Column(String(36), nullable=False)
    phone_number = Column(String, nullable=True)
    phone_number_confirmed = Column(Boolean, default=False, nullable=False)
    two_factor_enabled = Column(Boolean, default=False, nullable=False)
    lockout_end = Column(DateTime, nullable=True)
    lockout_enabled = Column(Boolean, default=True, nullable=False)
    access_failed_count = Column(Integer, default=0, nullable=False)

    roles = relationship("Role", secondary="user_roles", back_populates="users")
    claims = relationship("UserClaim", back_populates="user", cascade="all, delete-orphan")
    tokens = relationship("UserToken", back_populates="user", cascade="all, delete-orphan")

    # Every flush writes a fresh stamp; a stale row raises StaleDataError
    __mapper_args__ = {
        "version_id_col": concurrency_stamp,
        "version_id_generator": lambda version: str(uuid.uuid4()),
    }


class Role(Base):
    __tablename__ = "roles"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(256))
    normalized_name = Column(String(256), unique=True, index=True)
    concurrency_stamp = Column(String(36), default=new_stamp, nullable=False)

    users = relationship("User", secondary="user_roles", back_populates="roles")


class UserRole(Base):
    __tablename__ = "user_roles"
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class UserClaim(Base):
    __tablename__ = "user_claims"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    claim_type = Column(String, nullable=False)
    claim_value = Column(String, nullable=True)

    user = relationship("User", back_populates="claims")


class UserToken(Base):
    """Per-user secrets such as the authenticator key and recovery codes."""
    __tablename__ = "user_tokens"
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    login_provider = Column(String(128), primary_key=True)
    name = Column(String(128), primary_key=True)
    value = Column(String, nullable=True)

    user = relationship("User", back_populates="tokens")


AUTH_EVENT_TYPES = (
    "register",
    "login_success",
    "login_failure",
    "refresh",
    "logout",
    "email_confirmed",
    "password_reset",
    "2fa_enabled",
    "2fa_disabled",
)


class AuthEvent(Base):
    __tablename__ = "auth_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    username = Column(String, nullable=False)
    event_type = Column(Enum(*AUTH_EVENT_TYPES, name="auth_event_type"), nullable=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    event_metadata = Column(JSON, nullable=True)

    __table_args__ = (
        Index('ix_auth_events_user_id', 'user_id'),
        Index('ix_auth_events_timestamp', 'timestamp'),
        Index('ix_auth_events_event_type', 'event_type'),
        Index('ix_auth_events_user_id_timestamp', 'user_id', 'timestamp'),
    )

