# backend/opsdb/apps/accreditation/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from opsdb.utils.dates import to_local_datetime

from .models import AccreditationStatus, HistoryAction, IdentificationType

# Dates are read in the portal's local timezone, both from requests and
# from rows (SQLite hands back naive local wall time).
LocalDateTime = Annotated[datetime, BeforeValidator(to_local_datetime)]
OptionalLocalDateTime = Annotated[Optional[datetime], BeforeValidator(to_local_datetime)]


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    name: str
    code: str
    description: Optional[str] = None
    location: Optional[str] = None
    bump_in_start: OptionalLocalDateTime = None
    bump_in_end: OptionalLocalDateTime = None
    live_start: OptionalLocalDateTime = None
    live_end: OptionalLocalDateTime = None
    bump_out_start: OptionalLocalDateTime = None
    bump_out_end: OptionalLocalDateTime = None
    access_groups: List[str] = Field(default_factory=list)
    is_active: bool = True


class ProjectUpdate(BaseModel):
    """Name and code are fixed at creation and cannot be changed."""

    description: Optional[str] = None
    location: Optional[str] = None
    bump_in_start: OptionalLocalDateTime = None
    bump_in_end: OptionalLocalDateTime = None
    live_start: OptionalLocalDateTime = None
    live_end: OptionalLocalDateTime = None
    bump_out_start: OptionalLocalDateTime = None
    bump_out_end: OptionalLocalDateTime = None
    access_groups: Optional[List[str]] = None
    is_active: Optional[bool] = None


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    code: str
    description: Optional[str] = None
    location: Optional[str] = None
    bump_in_start: LocalDateTime
    bump_in_end: LocalDateTime
    live_start: LocalDateTime
    live_end: LocalDateTime
    bump_out_start: LocalDateTime
    bump_out_end: LocalDateTime
    access_groups: List[str]
    is_active: bool
    created_by_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ProjectStats(BaseModel):
    project_id: str
    total: int
    by_status: Dict[str, int]
    total_scans: int
    valid_scans: int
    invalid_scans: int


# ---------------------------------------------------------------------------
# Accreditations
# ---------------------------------------------------------------------------


class AccreditationFields(BaseModel):
    # Requiredness is conditional (identification type, phase toggles) and
    # enforced by validation.validate_record so every failure is reported.
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    organization: Optional[str] = None
    job_title: Optional[str] = None
    access_group: Optional[str] = None
    profile_photo_url: Optional[str] = None

    identification_type: Optional[IdentificationType] = None
    qid_number: Optional[str] = None
    qid_expiry: OptionalLocalDateTime = None
    passport_number: Optional[str] = None
    passport_country: Optional[str] = None
    passport_expiry: OptionalLocalDateTime = None
    hayya_visa_number: Optional[str] = None
    hayya_visa_expiry: OptionalLocalDateTime = None

    has_bump_in_access: bool = False
    bump_in_start: OptionalLocalDateTime = None
    bump_in_end: OptionalLocalDateTime = None
    has_live_access: bool = False
    live_start: OptionalLocalDateTime = None
    live_end: OptionalLocalDateTime = None
    has_bump_out_access: bool = False
    bump_out_start: OptionalLocalDateTime = None
    bump_out_end: OptionalLocalDateTime = None


class AccreditationCreate(AccreditationFields):
    project_id: str


class AccreditationUpdate(AccreditationFields):
    """Only the fields that are sent are changed (exclude_unset)."""

    has_bump_in_access: Optional[bool] = None
    has_live_access: Optional[bool] = None
    has_bump_out_access: Optional[bool] = None


class AccreditationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    accreditation_number: str
    status: AccreditationStatus

    first_name: str
    last_name: str
    organization: str
    job_title: str
    access_group: str
    profile_photo_url: Optional[str] = None

    identification_type: IdentificationType
    qid_number: Optional[str] = None
    qid_expiry: OptionalLocalDateTime = None
    passport_number: Optional[str] = None
    passport_country: Optional[str] = None
    passport_expiry: OptionalLocalDateTime = None
    hayya_visa_number: Optional[str] = None
    hayya_visa_expiry: OptionalLocalDateTime = None

    has_bump_in_access: bool
    bump_in_start: OptionalLocalDateTime = None
    bump_in_end: OptionalLocalDateTime = None
    has_live_access: bool
    live_start: OptionalLocalDateTime = None
    live_end: OptionalLocalDateTime = None
    has_bump_out_access: bool
    bump_out_start: OptionalLocalDateTime = None
    bump_out_end: OptionalLocalDateTime = None

    created_by_id: Optional[str] = None
    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by_id: Optional[str] = None
    rejected_at: Optional[datetime] = None
    revoked_by_id: Optional[str] = None
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TransitionNotes(BaseModel):
    notes: Optional[str] = None


class RevokeRequest(BaseModel):
    reason: Optional[str] = None


class HistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    accreditation_id: str
    action: HistoryAction
    old_status: Optional[AccreditationStatus] = None
    new_status: AccreditationStatus
    notes: Optional[str] = None
    changes: Optional[dict] = None
    performed_by_id: Optional[str] = None
    created_at: datetime


class CredentialRead(BaseModel):
    accreditation_id: str
    accreditation_number: str
    status: AccreditationStatus
    verification_token: str
    verification_url: str


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class VerifiedAccreditation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    organization: str
    access_group: str = Field(alias="accessGroup")
    active_phase: Optional[str] = Field(default=None, alias="activePhase")
    active_phases: List[str] = Field(default_factory=list, alias="activePhases")
    accreditation_number: str = Field(alias="accreditationNumber")


class VerificationResult(BaseModel):
    valid: bool
    accreditation: Optional[VerifiedAccreditation] = None
    reason: Optional[str] = None


class ScanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    accreditation_id: Optional[str] = None
    token: str
    was_valid: bool
    valid_phases: List[str]
    reason: Optional[str] = None
    scanned_by_id: Optional[str] = None
    scanned_at: datetime
    device: Optional[str] = None
    ip_address: Optional[str] = None
