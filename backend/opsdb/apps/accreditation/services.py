# backend/opsdb/apps/accreditation/services.py
"""
Accreditation use cases.

Services validate, mutate and flush; routers commit. Every status change
goes through opsdb.apps.workflow.apply_transition so the legal moves live
in one table (workflow/registry.py). The effect callbacks below write the
status, the stamps and the history row together in the caller's
transaction.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from opsdb.apps.audit import services as audit_services
from opsdb.apps.workflow import TransitionError, apply_transition
from opsdb.utils.dates import to_local_datetime, utcnow

from . import models, numbering, schemas, validation
from .errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

VERIFY_BASE_URL = os.getenv("VERIFY_BASE_URL", "http://localhost:3000").rstrip("/")

ENTITY_TYPE = "accreditation"
PROJECT_ENTITY_TYPE = "accreditation_project"

# Fields on the record the guards and the activity log need.
SNAPSHOT_FIELDS = (
    "tenant_id",
    "accreditation_number",
    "identification_type",
    "qid_expiry",
    "passport_expiry",
    "hayya_visa_expiry",
    "has_bump_in_access",
    "bump_in_end",
    "has_live_access",
    "live_end",
    "has_bump_out_access",
    "bump_out_end",
)

EDITABLE_FIELDS = tuple(schemas.AccreditationFields.model_fields)
PHASE_FLAGS = tuple(flag for flag, _start, _end in models.PHASE_FIELDS.values())


def _status_value(accreditation: models.Accreditation) -> str:
    return models.AccreditationStatus(accreditation.status).value


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_local_datetime(value).isoformat()
    return getattr(value, "value", value)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def get_project(db: Session, *, tenant_id: str, project_id: str) -> models.AccreditationProject:
    project = (
        db.query(models.AccreditationProject)
        .filter(
            models.AccreditationProject.tenant_id == tenant_id,
            models.AccreditationProject.id == project_id,
        )
        .first()
    )
    if project is None:
        raise NotFoundError("Accreditation project not found", [{"field": "project_id", "reason": "not found"}])
    return project


def list_projects(
    db: Session,
    *,
    tenant_id: str,
    is_active: Optional[bool] = None,
) -> List[models.AccreditationProject]:
    query = db.query(models.AccreditationProject).filter(models.AccreditationProject.tenant_id == tenant_id)
    if is_active is not None:
        query = query.filter(models.AccreditationProject.is_active.is_(is_active))
    return query.order_by(models.AccreditationProject.bump_in_start.desc()).all()


def _project_code_taken(db: Session, *, tenant_id: str, code: str) -> bool:
    return (
        db.query(models.AccreditationProject.id)
        .filter(
            models.AccreditationProject.tenant_id == tenant_id,
            models.AccreditationProject.code == code,
        )
        .first()
        is not None
    )


def create_project(
    db: Session,
    *,
    tenant_id: str,
    data: schemas.ProjectCreate,
    actor_user_id: Optional[str],
) -> models.AccreditationProject:
    cleaned = validation.validate_project(data.model_dump())
    code_conflict = ConflictError(
        f"A project with code {cleaned['code']} already exists",
        detail=[{"field": "code", "reason": "already in use"}],
    )
    if _project_code_taken(db, tenant_id=tenant_id, code=cleaned["code"]):
        raise code_conflict

    project = models.AccreditationProject(tenant_id=tenant_id, created_by_id=actor_user_id, **cleaned)
    try:
        with db.begin_nested():
            db.add(project)
            db.flush()
    except IntegrityError as exc:
        # A concurrent create won the unique (tenant, code) constraint.
        if not _project_code_taken(db, tenant_id=tenant_id, code=cleaned["code"]):
            raise
        raise code_conflict from exc

    audit_services.log_event(
        db,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        entity_type=PROJECT_ENTITY_TYPE,
        entity_id=project.id,
        action="ACCREDITATION_PROJECT_CREATED",
        after={"code": project.code, "name": project.name},
    )
    return project


def update_project(
    db: Session,
    *,
    tenant_id: str,
    project_id: str,
    data: schemas.ProjectUpdate,
    actor_user_id: Optional[str],
) -> models.AccreditationProject:
    project = get_project(db, tenant_id=tenant_id, project_id=project_id)
    changes = data.model_dump(exclude_unset=True)

    merged: Dict[str, Any] = {
        field: changes.get(field) or getattr(project, field) for field in models.PROJECT_DATE_FIELDS
    }
    if "access_groups" in changes:
        merged["access_groups"] = changes["access_groups"]
    cleaned = validation.validate_project(merged, partial=True)

    for field in models.PROJECT_DATE_FIELDS:
        if field in changes:
            setattr(project, field, cleaned[field])
    if "access_groups" in changes:
        project.access_groups = cleaned["access_groups"]
    for field in ("description", "location"):
        if field in changes:
            setattr(project, field, changes[field])
    if changes.get("is_active") is not None:
        project.is_active = changes["is_active"]
    db.flush()

    audit_services.log_event(
        db,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        entity_type=PROJECT_ENTITY_TYPE,
        entity_id=project.id,
        action="ACCREDITATION_PROJECT_UPDATED",
        after={key: _jsonable(value) for key, value in changes.items() if key != "access_groups"},
    )
    return project


def project_stats(db: Session, *, tenant_id: str, project_id: str) -> schemas.ProjectStats:
    project = get_project(db, tenant_id=tenant_id, project_id=project_id)

    by_status = {status.value: 0 for status in models.AccreditationStatus}
    rows = (
        db.query(models.Accreditation.status, func.count(models.Accreditation.id))
        .filter(models.Accreditation.project_id == project.id)
        .group_by(models.Accreditation.status)
        .all()
    )
    for status, count in rows:
        by_status[models.AccreditationStatus(status).value] = count

    scans = (
        db.query(models.AccreditationScan.was_valid, func.count(models.AccreditationScan.id))
        .join(models.Accreditation, models.AccreditationScan.accreditation_id == models.Accreditation.id)
        .filter(models.Accreditation.project_id == project.id)
        .group_by(models.AccreditationScan.was_valid)
        .all()
    )
    valid_scans = sum(count for was_valid, count in scans if was_valid)
    invalid_scans = sum(count for was_valid, count in scans if not was_valid)

    return schemas.ProjectStats(
        project_id=project.id,
        total=sum(by_status.values()),
        by_status=by_status,
        total_scans=valid_scans + invalid_scans,
        valid_scans=valid_scans,
        invalid_scans=invalid_scans,
    )


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def get_accreditation(
    db: Session,
    *,
    tenant_id: str,
    accreditation_id: str,
    for_update: bool = False,
) -> models.Accreditation:
    """
    Load one record of the tenant.

    With `for_update` the row is locked until the transaction ends and the
    loaded state replaces whatever the session already held, so a status
    check made afterwards sees the committed status.
    """
    query = db.query(models.Accreditation).filter(
        models.Accreditation.tenant_id == tenant_id,
        models.Accreditation.id == accreditation_id,
    )
    if for_update:
        query = query.populate_existing().with_for_update()
    accreditation = query.first()
    if accreditation is None:
        raise NotFoundError("Accreditation not found", [{"field": "id", "reason": "not found"}])
    return accreditation


def _add_history(
    db: Session,
    accreditation: models.Accreditation,
    *,
    action: models.HistoryAction,
    old_status: Optional[models.AccreditationStatus],
    new_status: models.AccreditationStatus,
    actor_user_id: Optional[str],
    notes: Optional[str] = None,
    changes: Optional[dict] = None,
) -> models.AccreditationHistory:
    entry = models.AccreditationHistory(
        accreditation_id=accreditation.id,
        action=action,
        old_status=old_status,
        new_status=new_status,
        notes=notes,
        changes=changes,
        performed_by_id=actor_user_id,
    )
    db.add(entry)
    return entry


def _raise_identity_conflict(
    db: Session,
    project: models.AccreditationProject,
    record: Dict[str, Any],
    exclude_id: Optional[str] = None,
) -> None:
    existing = validation.find_duplicate(db, project_id=project.id, record=record, exclude_id=exclude_id)
    if existing is not None:
        raise validation.duplicate_conflict(existing, record, project)


def create_accreditation(
    db: Session,
    *,
    tenant_id: str,
    data: schemas.AccreditationCreate,
    actor_user_id: Optional[str],
    now: Optional[datetime] = None,
) -> models.Accreditation:
    """
    Create a DRAFT accreditation.

    Field rules, project fit, document expiry and the duplicate check all run
    before anything is written. A duplicate that slips past the check is
    caught by the partial unique indexes and reported the same way.
    """
    project = get_project(db, tenant_id=tenant_id, project_id=data.project_id)
    record = validation.validate_record(data.model_dump(exclude={"project_id"}))
    validation.validate_against_project(record, project)
    validation.check_identity_expiry(record, now or utcnow())
    validation.ensure_no_duplicate(db, project, record)

    def build(number: str) -> models.Accreditation:
        return models.Accreditation(
            tenant_id=tenant_id,
            project_id=project.id,
            accreditation_number=number,
            status=models.AccreditationStatus.DRAFT,
            created_by_id=actor_user_id,
            **record,
        )

    try:
        accreditation = numbering.insert_with_number(db, build)
    except IntegrityError:
        _raise_identity_conflict(db, project, record)
        logger.error(
            "Unexpected integrity error creating accreditation",
            exc_info=True,
            extra={"tenant_id": tenant_id, "project_id": project.id},
        )
        raise

    _add_history(
        db,
        accreditation,
        action=models.HistoryAction.CREATED,
        old_status=None,
        new_status=models.AccreditationStatus.DRAFT,
        actor_user_id=actor_user_id,
    )
    db.flush()

    audit_services.log_event(
        db,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        entity_type=ENTITY_TYPE,
        entity_id=accreditation.id,
        action="ACCREDITATION_CREATED",
        after={"accreditation_number": accreditation.accreditation_number, "status": "DRAFT"},
        metadata={"project_id": project.id},
    )
    return accreditation


def _snapshot(accreditation: models.Accreditation) -> Dict[str, Any]:
    snapshot = {field: getattr(accreditation, field) for field in SNAPSHOT_FIELDS}
    snapshot["identification_type"] = _jsonable(snapshot["identification_type"])
    snapshot["status"] = _status_value(accreditation)
    return snapshot


def _run_transition(
    db: Session,
    accreditation: models.Accreditation,
    *,
    event: str,
    actor_user_id: Optional[str],
    effect: Callable[[str], None],
    after: Optional[Dict[str, Any]] = None,
) -> models.Accreditation:
    from_state = _status_value(accreditation)
    before_obj = _snapshot(accreditation)
    after_obj = dict(before_obj)
    after_obj.update(after or {})

    try:
        apply_transition(
            db,
            actor_user_id=actor_user_id,
            entity_type=ENTITY_TYPE,
            entity_id=accreditation.id,
            from_state=from_state,
            event=event,
            before_obj=before_obj,
            after_obj=after_obj,
            effect=effect,
        )
    except TransitionError as exc:
        if exc.code == "invalid_transition":
            raise InvalidTransitionError(from_state, event) from exc
        raise ValidationError(f"Cannot {event} accreditation", exc.detail) from exc

    db.flush()
    return accreditation


def submit_accreditation(
    db: Session,
    *,
    tenant_id: str,
    accreditation_id: str,
    actor_user_id: Optional[str],
    notes: Optional[str] = None,
) -> models.Accreditation:
    accreditation = get_accreditation(
        db, tenant_id=tenant_id, accreditation_id=accreditation_id, for_update=True
    )

    def effect(to_state: str) -> None:
        old_status = accreditation.status
        accreditation.status = models.AccreditationStatus(to_state)
        _add_history(
            db,
            accreditation,
            action=models.HistoryAction.SUBMITTED,
            old_status=old_status,
            new_status=accreditation.status,
            actor_user_id=actor_user_id,
            notes=notes,
        )

    return _run_transition(db, accreditation, event="submit", actor_user_id=actor_user_id, effect=effect)


def approve_accreditation(
    db: Session,
    *,
    tenant_id: str,
    accreditation_id: str,
    actor_user_id: Optional[str],
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.Accreditation:
    """
    PENDING -> APPROVED.

    Identity documents are re-checked against `now`, not the creation time.
    The token is generated before anything changes, so exhausting the token
    attempts leaves the record PENDING and tokenless.
    """
    accreditation = get_accreditation(
        db, tenant_id=tenant_id, accreditation_id=accreditation_id, for_update=True
    )
    checked_at = now or utcnow()

    def effect(to_state: str) -> None:
        token = numbering.generate_unique_token(db)
        old_status = accreditation.status
        accreditation.verification_token = token
        accreditation.status = models.AccreditationStatus(to_state)
        accreditation.approved_by_id = actor_user_id
        accreditation.approved_at = utcnow()
        _add_history(
            db,
            accreditation,
            action=models.HistoryAction.APPROVED,
            old_status=old_status,
            new_status=accreditation.status,
            actor_user_id=actor_user_id,
            notes=notes,
        )

    return _run_transition(
        db,
        accreditation,
        event="approve",
        actor_user_id=actor_user_id,
        effect=effect,
        after={"checked_at": checked_at},
    )


def reject_accreditation(
    db: Session,
    *,
    tenant_id: str,
    accreditation_id: str,
    actor_user_id: Optional[str],
    notes: Optional[str],
) -> models.Accreditation:
    accreditation = get_accreditation(
        db, tenant_id=tenant_id, accreditation_id=accreditation_id, for_update=True
    )

    def effect(to_state: str) -> None:
        old_status = accreditation.status
        accreditation.status = models.AccreditationStatus(to_state)
        accreditation.rejected_by_id = actor_user_id
        accreditation.rejected_at = utcnow()
        _add_history(
            db,
            accreditation,
            action=models.HistoryAction.REJECTED,
            old_status=old_status,
            new_status=accreditation.status,
            actor_user_id=actor_user_id,
            notes=notes.strip(),
        )

    return _run_transition(
        db,
        accreditation,
        event="reject",
        actor_user_id=actor_user_id,
        effect=effect,
        after={"notes": notes},
    )


def return_to_draft(
    db: Session,
    *,
    tenant_id: str,
    accreditation_id: str,
    actor_user_id: Optional[str],
    notes: Optional[str] = None,
) -> models.Accreditation:
    accreditation = get_accreditation(
        db, tenant_id=tenant_id, accreditation_id=accreditation_id, for_update=True
    )

    def effect(to_state: str) -> None:
        old_status = accreditation.status
        accreditation.status = models.AccreditationStatus(to_state)
        accreditation.approved_by_id = None
        accreditation.approved_at = None
        _add_history(
            db,
            accreditation,
            action=models.HistoryAction.RETURNED_TO_DRAFT,
            old_status=old_status,
            new_status=accreditation.status,
            actor_user_id=actor_user_id,
            notes=notes,
        )

    return _run_transition(db, accreditation, event="return_to_draft", actor_user_id=actor_user_id, effect=effect)


def revoke_accreditation(
    db: Session,
    *,
    tenant_id: str,
    accreditation_id: str,
    actor_user_id: Optional[str],
    reason: Optional[str],
) -> models.Accreditation:
    """APPROVED -> REVOKED. The token stays stored; verification reports it revoked."""
    accreditation = get_accreditation(
        db, tenant_id=tenant_id, accreditation_id=accreditation_id, for_update=True
    )

    def effect(to_state: str) -> None:
        old_status = accreditation.status
        accreditation.status = models.AccreditationStatus(to_state)
        accreditation.revoked_by_id = actor_user_id
        accreditation.revoked_at = utcnow()
        accreditation.revocation_reason = reason.strip()
        _add_history(
            db,
            accreditation,
            action=models.HistoryAction.REVOKED,
            old_status=old_status,
            new_status=accreditation.status,
            actor_user_id=actor_user_id,
            notes=accreditation.revocation_reason,
        )

    return _run_transition(
        db,
        accreditation,
        event="revoke",
        actor_user_id=actor_user_id,
        effect=effect,
        after={"revocation_reason": reason},
    )


def update_accreditation(
    db: Session,
    *,
    tenant_id: str,
    accreditation_id: str,
    data: schemas.AccreditationUpdate,
    actor_user_id: Optional[str],
    now: Optional[datetime] = None,
) -> models.Accreditation:
    """
    Edit a DRAFT or PENDING record.

    The sent fields are merged onto the stored record and the whole result
    is validated again, including the duplicate check (excluding this
    record) and document expiry.
    """
    accreditation = get_accreditation(
        db, tenant_id=tenant_id, accreditation_id=accreditation_id, for_update=True
    )
    project = get_project(db, tenant_id=tenant_id, project_id=accreditation.project_id)
    sent = {
        key: value
        for key, value in data.model_dump(exclude_unset=True).items()
        if not (key in PHASE_FLAGS and value is None)
    }

    def effect(to_state: str) -> None:
        current = {field: getattr(accreditation, field) for field in EDITABLE_FIELDS}
        merged = dict(current)
        merged.update(sent)

        record = validation.validate_record(merged)
        validation.validate_against_project(record, project, creating=False)
        validation.check_identity_expiry(record, now or utcnow())
        validation.ensure_no_duplicate(db, project, record, exclude_id=accreditation.id)

        changes = {}
        for field in EDITABLE_FIELDS:
            old, new = _jsonable(current[field]), _jsonable(record[field])
            if old != new:
                changes[field] = {"old": old, "new": new}
                setattr(accreditation, field, record[field])

        try:
            with db.begin_nested():
                db.flush()
        except IntegrityError:
            _raise_identity_conflict(db, project, record, exclude_id=accreditation.id)
            raise

        _add_history(
            db,
            accreditation,
            action=models.HistoryAction.UPDATED,
            old_status=accreditation.status,
            new_status=accreditation.status,
            actor_user_id=actor_user_id,
            changes=changes,
        )

    return _run_transition(db, accreditation, event="edit", actor_user_id=actor_user_id, effect=effect)


def list_history(
    db: Session,
    *,
    tenant_id: str,
    accreditation_id: str,
) -> List[models.AccreditationHistory]:
    accreditation = get_accreditation(db, tenant_id=tenant_id, accreditation_id=accreditation_id)
    return (
        db.query(models.AccreditationHistory)
        .filter(models.AccreditationHistory.accreditation_id == accreditation.id)
        .order_by(models.AccreditationHistory.created_at.desc(), models.AccreditationHistory.id.desc())
        .all()
    )


def get_credential(db: Session, *, tenant_id: str, accreditation_id: str) -> schemas.CredentialRead:
    """Number, token and verification URL for the QR code of an approved record."""
    accreditation = get_accreditation(db, tenant_id=tenant_id, accreditation_id=accreditation_id)
    if accreditation.status not in models.ACTIVE_STATUSES or not accreditation.verification_token:
        raise ValidationError(
            "Credential is only available for approved accreditations",
            [{"field": "status", "reason": f"status is {_status_value(accreditation)}"}],
        )
    return schemas.CredentialRead(
        accreditation_id=accreditation.id,
        accreditation_number=accreditation.accreditation_number,
        status=accreditation.status,
        verification_token=accreditation.verification_token,
        verification_url=f"{VERIFY_BASE_URL}/verify/{accreditation.verification_token}",
    )


def list_scans(
    db: Session,
    *,
    tenant_id: str,
    project_id: Optional[str] = None,
    accreditation_id: Optional[str] = None,
    was_valid: Optional[bool] = None,
    limit: int = 200,
) -> List[models.AccreditationScan]:
    query = db.query(models.AccreditationScan).filter(models.AccreditationScan.tenant_id == tenant_id)
    if project_id:
        query = query.join(
            models.Accreditation,
            models.AccreditationScan.accreditation_id == models.Accreditation.id,
        ).filter(models.Accreditation.project_id == project_id)
    if accreditation_id:
        query = query.filter(models.AccreditationScan.accreditation_id == accreditation_id)
    if was_valid is not None:
        query = query.filter(models.AccreditationScan.was_valid.is_(was_valid))
    return (
        query.order_by(models.AccreditationScan.scanned_at.desc(), models.AccreditationScan.id.desc())
        .limit(limit)
        .all()
    )
