# backend/opsdb/apps/accreditation/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import relationship

from opsdb.database import Base
from opsdb.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class AccreditationStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVOKED = "REVOKED"
    ISSUED = "ISSUED"


class IdentificationType(str, enum.Enum):
    QID = "qid"
    PASSPORT = "passport"


class AccessPhase(str, enum.Enum):
    """The three access windows, in chronological order."""

    BUMP_IN = "bump_in"
    LIVE = "live"
    BUMP_OUT = "bump_out"


PHASE_LABELS = {
    AccessPhase.BUMP_IN: "Bump-In",
    AccessPhase.LIVE: "Live",
    AccessPhase.BUMP_OUT: "Bump-Out",
}

# (flag, start, end) column names per phase on Accreditation.
PHASE_FIELDS = {
    AccessPhase.BUMP_IN: ("has_bump_in_access", "bump_in_start", "bump_in_end"),
    AccessPhase.LIVE: ("has_live_access", "live_start", "live_end"),
    AccessPhase.BUMP_OUT: ("has_bump_out_access", "bump_out_start", "bump_out_end"),
}

# The six project boundaries in the order they must increase.
PROJECT_DATE_FIELDS = (
    "bump_in_start",
    "bump_in_end",
    "live_start",
    "live_end",
    "bump_out_start",
    "bump_out_end",
)

ACTIVE_STATUSES = (AccreditationStatus.APPROVED, AccreditationStatus.ISSUED)


# ---------------------------------------------------------------------------
# PROJECT
# ---------------------------------------------------------------------------


class AccreditationProject(Base):
    """
    An event for which people are accredited.

    Carries the six phase boundaries every record's access windows must
    fall within, and the access-group labels records may use. Projects are
    deactivated, never deleted.
    """

    __tablename__ = "accreditation_projects"
    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_accreditation_projects_tenant_code"),
        Index("ix_accreditation_projects_tenant_active", "tenant_id", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    code = Column(String(20), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)

    bump_in_start = Column(DateTime(timezone=True), nullable=False)
    bump_in_end = Column(DateTime(timezone=True), nullable=False)
    live_start = Column(DateTime(timezone=True), nullable=False)
    live_end = Column(DateTime(timezone=True), nullable=False)
    bump_out_start = Column(DateTime(timezone=True), nullable=False)
    bump_out_end = Column(DateTime(timezone=True), nullable=False)

    access_groups = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)

    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    accreditations = relationship("Accreditation", back_populates="project", lazy="noload")

    def __repr__(self) -> str:
        return f"<AccreditationProject {self.code} {self.name}>"


# ---------------------------------------------------------------------------
# ACCREDITATION
# ---------------------------------------------------------------------------


class Accreditation(Base):
    """
    One person's access credential for a project.

    `status` is owned by the workflow registry; nothing writes it except the
    transition effects in services.py. The verification token is set on
    approval and kept after revocation.
    """

    __tablename__ = "accreditations"
    __table_args__ = (
        Index("ix_accreditations_tenant_status", "tenant_id", "status"),
        Index("ix_accreditations_project_status", "project_id", "status"),
        # One live record per identity document per project. Rejected
        # records do not count so a corrected record can be created.
        Index(
            "uq_accreditations_project_qid_active",
            "project_id",
            "qid_number",
            unique=True,
            postgresql_where=text("qid_number IS NOT NULL AND status != 'REJECTED'"),
            sqlite_where=text("qid_number IS NOT NULL AND status != 'REJECTED'"),
        ),
        Index(
            "uq_accreditations_project_passport_active",
            "project_id",
            "passport_number",
            unique=True,
            postgresql_where=text("passport_number IS NOT NULL AND status != 'REJECTED'"),
            sqlite_where=text("passport_number IS NOT NULL AND status != 'REJECTED'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(
        String(36),
        ForeignKey("accreditation_projects.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    accreditation_number = Column(String(32), nullable=False, unique=True, index=True)

    first_name = Column(String(128), nullable=False)
    last_name = Column(String(128), nullable=False)
    organization = Column(String(255), nullable=False)
    job_title = Column(String(255), nullable=False)
    access_group = Column(String(128), nullable=False)
    profile_photo_url = Column(String(1024), nullable=True)

    identification_type = Column(
        SAEnum(IdentificationType, name="identification_type_enum", native_enum=False),
        nullable=False,
    )
    qid_number = Column(String(11), nullable=True)
    qid_expiry = Column(DateTime(timezone=True), nullable=True)
    passport_number = Column(String(12), nullable=True)
    passport_country = Column(String(64), nullable=True)
    passport_expiry = Column(DateTime(timezone=True), nullable=True)
    hayya_visa_number = Column(String(64), nullable=True)
    hayya_visa_expiry = Column(DateTime(timezone=True), nullable=True)

    has_bump_in_access = Column(Boolean, nullable=False, default=False)
    bump_in_start = Column(DateTime(timezone=True), nullable=True)
    bump_in_end = Column(DateTime(timezone=True), nullable=True)
    has_live_access = Column(Boolean, nullable=False, default=False)
    live_start = Column(DateTime(timezone=True), nullable=True)
    live_end = Column(DateTime(timezone=True), nullable=True)
    has_bump_out_access = Column(Boolean, nullable=False, default=False)
    bump_out_start = Column(DateTime(timezone=True), nullable=True)
    bump_out_end = Column(DateTime(timezone=True), nullable=True)

    status = Column(
        SAEnum(AccreditationStatus, name="accreditation_status_enum", native_enum=False),
        nullable=False,
        default=AccreditationStatus.DRAFT,
        index=True,
    )
    verification_token = Column(String(64), nullable=True, unique=True)

    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revocation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    project = relationship("AccreditationProject", back_populates="accreditations")
    history = relationship(
        "AccreditationHistory",
        back_populates="accreditation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AccreditationHistory.created_at",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Accreditation {self.accreditation_number} ({self.status})>"


# ---------------------------------------------------------------------------
# HISTORY (append-only)
# ---------------------------------------------------------------------------


class HistoryAction(str, enum.Enum):
    CREATED = "CREATED"
    SUBMITTED = "SUBMITTED"
    UPDATED = "UPDATED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RETURNED_TO_DRAFT = "RETURNED_TO_DRAFT"
    REVOKED = "REVOKED"


class AccreditationHistory(Base):
    """One row per transition. Rows are inserted once and never changed."""

    __tablename__ = "accreditation_history"
    __table_args__ = (
        Index("ix_accreditation_history_record_time", "accreditation_id", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    accreditation_id = Column(
        String(36),
        ForeignKey("accreditations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action = Column(
        SAEnum(HistoryAction, name="accreditation_history_action_enum", native_enum=False),
        nullable=False,
    )
    old_status = Column(
        SAEnum(AccreditationStatus, name="accreditation_status_enum", native_enum=False),
        nullable=True,
    )
    new_status = Column(
        SAEnum(AccreditationStatus, name="accreditation_status_enum", native_enum=False),
        nullable=False,
    )
    notes = Column(Text, nullable=True)
    changes = Column(JSON, nullable=True)
    performed_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    accreditation = relationship("Accreditation", back_populates="history")

    def __repr__(self) -> str:
        return f"<AccreditationHistory {self.action} {self.old_status}->{self.new_status}>"


class HistoryImmutableError(Exception):
    pass


@event.listens_for(AccreditationHistory, "before_update")
def _refuse_history_update(mapper, connection, target):
    raise HistoryImmutableError("Accreditation history entries cannot be modified")


@event.listens_for(AccreditationHistory, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise HistoryImmutableError("Accreditation history entries cannot be deleted")


# ---------------------------------------------------------------------------
# SCAN LOG
# ---------------------------------------------------------------------------


class AccreditationScan(Base):
    """
    One row per verification attempt, valid or not. Unknown tokens are
    logged too, with no accreditation attached.
    """

    __tablename__ = "accreditation_scans"
    __table_args__ = (
        Index("ix_accreditation_scans_tenant_time", "tenant_id", "scanned_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    accreditation_id = Column(
        String(36),
        ForeignKey("accreditations.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    token = Column(String(128), nullable=False)
    was_valid = Column(Boolean, nullable=False)
    valid_phases = Column(JSON, nullable=False, default=list)
    reason = Column(String(32), nullable=True)
    scanned_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    scanned_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    device = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<AccreditationScan token={self.token[:8]} valid={self.was_valid}>"
