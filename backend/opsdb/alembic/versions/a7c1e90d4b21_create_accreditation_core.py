"""create tenants, users, audit log and accreditation tables

Revision ID: a7c1e90d4b21
Revises:
Create Date: 2026-10-12 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a7c1e90d4b21"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enums are stored as VARCHAR (native_enum=False) holding the member names.
USER_ROLES = ("ADMIN", "ACCREDITATION_APPROVER", "ACCREDITATION_ADDER", "EMPLOYEE")
STATUSES = ("DRAFT", "PENDING", "APPROVED", "REJECTED", "REVOKED", "ISSUED")
ID_TYPES = ("QID", "PASSPORT")
HISTORY_ACTIONS = (
    "CREATED",
    "SUBMITTED",
    "UPDATED",
    "APPROVED",
    "REJECTED",
    "RETURNED_TO_DRAFT",
    "REVOKED",
)

ACTIVE_QID = "qid_number IS NOT NULL AND status != 'REJECTED'"
ACTIVE_PASSPORT = "passport_number IS NOT NULL AND status != 'REJECTED'"


def _enum(values: Sequence[str], name: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=False)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _user_fk(column: str) -> sa.Column:
    return sa.Column(
        column,
        sa.String(length=36),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_tenants_code", "tenants", ["code"], unique=True)
    op.create_index("ix_tenants_is_active", "tenants", ["is_active"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(length=36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", _enum(USER_ROLES, "user_role_enum"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_superuser", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_is_active", "users", ["is_active"])
    op.create_index("ix_users_is_superuser", "users", ["is_superuser"])
    op.create_index("idx_users_role_active", "users", ["role", "is_active"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(length=36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        _user_fk("actor_user_id"),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("correlation_id", sa.String(length=64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    for column in ("id", "tenant_id", "entity_type", "entity_id", "action", "actor_user_id", "occurred_at", "correlation_id"):
        op.create_index(f"ix_audit_events_{column}", "audit_events", [column])
    op.create_index("ix_audit_events_tenant_entity", "audit_events", ["tenant_id", "entity_type", "entity_id"])
    op.create_index("ix_audit_events_tenant_action", "audit_events", ["tenant_id", "action"])
    op.create_index(
        "ix_audit_events_tenant_time_desc",
        "audit_events",
        ["tenant_id", sa.text("occurred_at DESC")],
    )

    op.create_table(
        "accreditation_projects",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(length=36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("bump_in_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("bump_in_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("live_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("live_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("bump_out_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("bump_out_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("access_groups", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _user_fk("created_by_id"),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_accreditation_projects_tenant_code"),
    )
    op.create_index("ix_accreditation_projects_tenant_id", "accreditation_projects", ["tenant_id"])
    op.create_index(
        "ix_accreditation_projects_tenant_active",
        "accreditation_projects",
        ["tenant_id", "is_active"],
    )

    op.create_table(
        "accreditations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(length=36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "project_id",
            sa.String(length=36),
            sa.ForeignKey("accreditation_projects.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("accreditation_number", sa.String(length=32), nullable=False),
        sa.Column("first_name", sa.String(length=128), nullable=False),
        sa.Column("last_name", sa.String(length=128), nullable=False),
        sa.Column("organization", sa.String(length=255), nullable=False),
        sa.Column("job_title", sa.String(length=255), nullable=False),
        sa.Column("access_group", sa.String(length=128), nullable=False),
        sa.Column("profile_photo_url", sa.String(length=1024), nullable=True),
        sa.Column("identification_type", _enum(ID_TYPES, "identification_type_enum"), nullable=False),
        sa.Column("qid_number", sa.String(length=11), nullable=True),
        sa.Column("qid_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("passport_number", sa.String(length=12), nullable=True),
        sa.Column("passport_country", sa.String(length=64), nullable=True),
        sa.Column("passport_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hayya_visa_number", sa.String(length=64), nullable=True),
        sa.Column("hayya_visa_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_bump_in_access", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("bump_in_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bump_in_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_live_access", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("live_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("live_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_bump_out_access", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("bump_out_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bump_out_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status",
            _enum(STATUSES, "accreditation_status_enum"),
            nullable=False,
            server_default="DRAFT",
        ),
        sa.Column("verification_token", sa.String(length=64), nullable=True),
        _user_fk("created_by_id"),
        _user_fk("approved_by_id"),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        _user_fk("rejected_by_id"),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        _user_fk("revoked_by_id"),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revocation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("verification_token", name="uq_accreditations_verification_token"),
    )
    op.create_index("ix_accreditations_tenant_id", "accreditations", ["tenant_id"])
    op.create_index("ix_accreditations_project_id", "accreditations", ["project_id"])
    op.create_index("ix_accreditations_status", "accreditations", ["status"])
    op.create_index(
        "ix_accreditations_accreditation_number",
        "accreditations",
        ["accreditation_number"],
        unique=True,
    )
    op.create_index("ix_accreditations_tenant_status", "accreditations", ["tenant_id", "status"])
    op.create_index("ix_accreditations_project_status", "accreditations", ["project_id", "status"])
    op.create_index(
        "uq_accreditations_project_qid_active",
        "accreditations",
        ["project_id", "qid_number"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_QID),
        sqlite_where=sa.text(ACTIVE_QID),
    )
    op.create_index(
        "uq_accreditations_project_passport_active",
        "accreditations",
        ["project_id", "passport_number"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_PASSPORT),
        sqlite_where=sa.text(ACTIVE_PASSPORT),
    )

    op.create_table(
        "accreditation_history",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "accreditation_id",
            sa.String(length=36),
            sa.ForeignKey("accreditations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", _enum(HISTORY_ACTIONS, "accreditation_history_action_enum"), nullable=False),
        sa.Column("old_status", _enum(STATUSES, "accreditation_status_enum"), nullable=True),
        sa.Column("new_status", _enum(STATUSES, "accreditation_status_enum"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        _user_fk("performed_by_id"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_accreditation_history_accreditation_id", "accreditation_history", ["accreditation_id"])
    op.create_index(
        "ix_accreditation_history_record_time",
        "accreditation_history",
        ["accreditation_id", "created_at"],
    )

    op.create_table(
        "accreditation_scans",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.String(length=36),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "accreditation_id",
            sa.String(length=36),
            sa.ForeignKey("accreditations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("was_valid", sa.Boolean(), nullable=False),
        sa.Column("valid_phases", sa.JSON(), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=True),
        _user_fk("scanned_by_id"),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("device", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_accreditation_scans_tenant_id", "accreditation_scans", ["tenant_id"])
    op.create_index("ix_accreditation_scans_accreditation_id", "accreditation_scans", ["accreditation_id"])
    op.create_index("ix_accreditation_scans_scanned_at", "accreditation_scans", ["scanned_at"])
    op.create_index("ix_accreditation_scans_tenant_time", "accreditation_scans", ["tenant_id", "scanned_at"])


def downgrade() -> None:
    op.drop_table("accreditation_scans")
    op.drop_table("accreditation_history")
    op.drop_index("uq_accreditations_project_passport_active", table_name="accreditations")
    op.drop_index("uq_accreditations_project_qid_active", table_name="accreditations")
    op.drop_table("accreditations")
    op.drop_table("accreditation_projects")
    op.drop_table("audit_events")
    op.drop_table("users")
    op.drop_table("tenants")
