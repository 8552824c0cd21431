# backend/opsdb/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from opsdb.database import Base
from opsdb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class UserRole(str, enum.Enum):
    """Portal roles that matter to the accreditation core."""

    ADMIN = "ADMIN"
    ACCREDITATION_APPROVER = "ACCREDITATION_APPROVER"
    ACCREDITATION_ADDER = "ACCREDITATION_ADDER"
    EMPLOYEE = "EMPLOYEE"


# ---------------------------------------------------------------------------
# TENANT
# ---------------------------------------------------------------------------


class Tenant(Base):
    """
    Organisation using the portal.

    Every project, record, scan and audit event is scoped to a tenant.
    """

    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    code = Column(String(32), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    users = relationship("User", back_populates="tenant", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Tenant {self.code} {self.name}>"


# ---------------------------------------------------------------------------
# USER
# ---------------------------------------------------------------------------


class User(Base):
    """
    Portal user as supplied by the identity provider.

    The accreditation core only reads `id`, `tenant_id`, `role` and the
    active/superuser flags to stamp creators, approvers and revokers.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
        Index("idx_users_role_active", "role", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)

    role = Column(
        Enum(UserRole, name="user_role_enum", native_enum=False),
        nullable=False,
        default=UserRole.EMPLOYEE,
        index=True,
    )

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_superuser = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    tenant = relationship("Tenant", back_populates="users")

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
