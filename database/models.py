"""
Database models for the campus issue reporting system.
"""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text,
    ForeignKey, JSON, Index, UniqueConstraint, TypeDecorator
)
from sqlalchemy.orm import declarative_base, relationship
import enum

Base = declarative_base()


# ============================================================================
# Custom Type Decorator for Enum Values
# ============================================================================

class EnumValue(TypeDecorator):
    """Type decorator to ensure enum values (not names) are stored."""
    impl = String
    cache_ok = True

    def __init__(self, enum_class, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_class = enum_class

    def process_bind_param(self, value, dialect):
        """Convert enum to its value when writing to database."""
        if value is None:
            return None
        if isinstance(value, enum.Enum):
            return value.value
        return value

    def process_result_value(self, value, dialect):
        """Convert database value back to enum when reading."""
        if value is None:
            return None
        if isinstance(value, str):
            try:
                return self.enum_class(value)
            except ValueError:
                return value
        return value


# ============================================================================
# Enums - Must be defined before models that use them
# ============================================================================

class RoleName(str, enum.Enum):
    """Roles that can be stored in user_roles."""
    STUDENT = "student"
    OFFICIAL = "official"
    STAFF = "staff"


class AccessRequestStatus(str, enum.Enum):
    """Official access request lifecycle."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReportCategory(str, enum.Enum):
    """Top-level issue categories."""
    INFRASTRUCTURE = "infrastructure"
    PERSONAL = "personal"
    SECURITY = "security"


class ReportStatus(str, enum.Enum):
    """Report lifecycle status."""
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


# Sub-categories allowed under each category
REPORT_SUB_CATEGORIES = {
    ReportCategory.INFRASTRUCTURE: (
        "drainage", "food_hygiene", "trash", "electrical", "water", "classroom", "others",
    ),
    ReportCategory.PERSONAL: ("harassment", "bullying"),
    ReportCategory.SECURITY: ("theft", "lost_item"),
}


# ============================================================================
# Models
# ============================================================================

class User(Base):
    """Identity with credentials. Display data lives in Profile."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)  # Stored lowercased
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    is_locked = Column(Boolean, default=False, nullable=False)
    locked_until = Column(DateTime, nullable=True)
    last_login = Column(DateTime, nullable=True)
    password_changed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    profile = relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    roles = relationship(
        "RoleAssignment", back_populates="user", cascade="all, delete-orphan",
        foreign_keys="RoleAssignment.user_id",
    )
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship("Session", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_user_active', 'is_active'),
    )


class Profile(Base):
    """Public profile, 1:1 with User. Created at sign-up."""
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    register_no = Column(String(20), unique=True, nullable=True)  # Students only, uppercased
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="profile")

    __table_args__ = (
        Index('idx_profile_register_no', 'register_no'),
        Index('idx_profile_email', 'email'),
    )


class RoleAssignment(Base):
    """
    Role granted to a user. A user may hold several rows; the role resolver
    decides which one is authoritative (official > staff > student).
    """
    __tablename__ = "user_roles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(EnumValue(RoleName, 20), nullable=False)
    granted_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="roles", foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint('user_id', 'role', name='uq_user_roles_user_role'),
        Index('idx_user_roles_user', 'user_id'),
    )


class AccessRequest(Base):
    """Request from a user to be granted the official role."""
    __tablename__ = "access_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(EnumValue(AccessRequestStatus, 20), default=AccessRequestStatus.PENDING, nullable=False)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_access_request_user', 'user_id'),
        Index('idx_access_request_status', 'status'),
        Index('idx_access_request_created', 'created_at'),
    )


class Report(Base):
    """Campus issue report."""
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    # Owner is always recorded, even for anonymous reports; it is only exposed to the owner
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    category = Column(EnumValue(ReportCategory, 30), nullable=False)
    sub_category = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    image_key = Column(String(500), nullable=True)  # Object-store key of the captured photo
    landmark = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    status = Column(EnumValue(ReportStatus, 20), default=ReportStatus.PENDING, nullable=False)
    is_anonymous = Column(Boolean, default=False, nullable=False)
    time_of_incident = Column(DateTime, nullable=True)  # Security reports only
    official_response = Column(Text, nullable=True)
    completion_image_key = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    owner = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index('idx_report_owner', 'user_id'),
        Index('idx_report_status', 'status'),
        Index('idx_report_category', 'category'),
        Index('idx_report_created', 'created_at'),
    )

    @property
    def hides_submitter(self) -> bool:
        """Anonymous personal reports never reveal who submitted them."""
        return bool(self.is_anonymous) and self.category == ReportCategory.PERSONAL


class PasswordResetCode(Base):
    """One-time code emailed for password reset."""
    __tablename__ = "password_reset_codes"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False)  # Stored lowercased
    code = Column(String(6), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_reset_code_email', 'email'),
        Index('idx_reset_code_expires', 'expires_at'),
    )


class RefreshToken(Base):
    """Refresh token model for JWT refresh."""
    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=True)
    token_hash = Column(String(255), unique=True, index=True, nullable=False)  # Hashed token
    device_info = Column(String(255), nullable=True)
    ip_address = Column(String(45), nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_used_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="refresh_tokens")

    __table_args__ = (
        Index('idx_refresh_user', 'user_id'),
    )


class Session(Base):
    """Server-side session referenced by the sid claim of access tokens."""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    session_key = Column(String(255), unique=True, nullable=False)  # Encrypted session key
    session_hash = Column(String(255), unique=True, index=True, nullable=False)
    device_info = Column(String(255), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    last_activity = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index('idx_session_user', 'user_id'),
    )


class AuditLog(Base):
    """Audit log for security and compliance."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False)  # e.g., "report_create", "access_request_review"
    resource_type = Column(String(50), nullable=True)  # e.g., "report", "access_request", "user"
    resource_id = Column(String(100), nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    user_agent = Column(String(500), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('idx_audit_user', 'user_id'),
        Index('idx_audit_action', 'action'),
    )
