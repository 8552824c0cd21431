"""
Accreditation validation rules.

- validate_project: six phase boundaries strictly increasing, code/name,
  access groups.
- validate_record: identification-type conditional fields, per-phase
  windows, at least one phase, no overlap between adjacent enabled phases.
- validate_against_project: access group and phase windows checked against
  the owning project.
- identity_expiry_failures / check_identity_expiry: documents not expired
  and not expiring before the last access day.
- ensure_no_duplicate: one non-rejected record per identity document per
  project.

All date inputs go through opsdb.utils.dates.to_local_datetime so every
comparison happens in the portal's local timezone. Functions that return
failures use the workflow guard shape: [{"field": ..., "reason": ...}].
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from opsdb.utils.dates import to_local_datetime

from . import models
from .errors import ConflictError, ValidationError

QID_PATTERN = re.compile(r"[0-9]{11}")
PASSPORT_PATTERN = re.compile(r"[A-Za-z0-9]{6,12}")
PROJECT_CODE_MAX_LENGTH = 20

SEQUENTIAL_PHASES_MESSAGE = "Phase dates must be sequential: Bump-In → Live → Bump-Out"
NO_PHASE_MESSAGE = "At least one access phase must be selected"

IDENTITY_FIELDS = ("first_name", "last_name", "organization", "job_title", "access_group")
QID_FIELDS = ("qid_number", "qid_expiry")
PASSPORT_FIELDS = (
    "passport_number",
    "passport_country",
    "passport_expiry",
    "hayya_visa_number",
    "hayya_visa_expiry",
)
DATE_FIELDS = (
    "qid_expiry",
    "passport_expiry",
    "hayya_visa_expiry",
    "bump_in_start",
    "bump_in_end",
    "live_start",
    "live_end",
    "bump_out_start",
    "bump_out_end",
)

Failures = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _parse_date(field: str, value: Any, failures: Failures) -> Optional[datetime]:
    try:
        return to_local_datetime(value)
    except ValueError:
        failures.append({"field": field, "reason": "Invalid date format"})
        return None


def _label(phase: models.AccessPhase) -> str:
    return models.PHASE_LABELS[phase]


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def validate_project(data: Dict[str, Any], *, partial: bool = False) -> Dict[str, Any]:
    """
    Validate a project payload and return it with dates normalized.

    With `partial=True` name and code are not checked (they cannot change
    after creation) and access groups are only checked when supplied. The
    six dates are always required: callers merge a partial update onto the
    stored project before validating.
    """
    failures: Failures = []
    cleaned = dict(data)

    if not partial:
        name = _clean_text(data.get("name"))
        code = _clean_text(data.get("code"))
        if not name:
            failures.append({"field": "name", "reason": "Project name is required"})
        if not code:
            failures.append({"field": "code", "reason": "Project code is required"})
        elif len(code) > PROJECT_CODE_MAX_LENGTH:
            failures.append(
                {"field": "code", "reason": f"Project code must be at most {PROJECT_CODE_MAX_LENGTH} characters"}
            )
        cleaned["name"] = name
        cleaned["code"] = code

    if not partial or "access_groups" in data:
        groups = [g.strip() for g in (data.get("access_groups") or []) if g and str(g).strip()]
        if not groups:
            failures.append({"field": "access_groups", "reason": "At least one access group is required"})
        cleaned["access_groups"] = list(dict.fromkeys(groups))

    dates: List[Optional[datetime]] = []
    for field in models.PROJECT_DATE_FIELDS:
        value = _parse_date(field, data.get(field), failures)
        if value is None and not any(f["field"] == field for f in failures):
            failures.append({"field": field, "reason": "Date is required"})
        cleaned[field] = value
        dates.append(value)

    if all(value is not None for value in dates):
        for earlier, later in zip(dates, dates[1:]):
            if not earlier < later:
                failures.append({"field": "phases", "reason": SEQUENTIAL_PHASES_MESSAGE})
                break

    if failures:
        raise ValidationError("Invalid accreditation project", failures)
    return cleaned


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def validate_record(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a full candidate record and return the normalized record.

    Every failure is collected; one ValidationError lists all of them.
    The identification branch not selected is nulled out, as are the dates
    of disabled phases.
    """
    failures: Failures = []
    record = dict(data)

    for field in IDENTITY_FIELDS:
        record[field] = _clean_text(data.get(field))
        if not record[field]:
            failures.append({"field": field, "reason": "This field is required"})
    record["profile_photo_url"] = _clean_text(data.get("profile_photo_url"))

    for field in DATE_FIELDS:
        record[field] = _parse_date(field, data.get(field), failures)

    id_type = _enum_value(data.get("identification_type"))
    if id_type == models.IdentificationType.QID.value:
        record["identification_type"] = models.IdentificationType.QID
        qid_number = _clean_text(data.get("qid_number"))
        if not qid_number or record["qid_expiry"] is None:
            failures.append(
                {"field": "qid_number", "reason": "QID Number and Expiry Date are required when using QID"}
            )
        if qid_number and not QID_PATTERN.fullmatch(qid_number):
            failures.append({"field": "qid_number", "reason": "QID must be exactly 11 digits"})
        record["qid_number"] = qid_number
        for field in PASSPORT_FIELDS:
            record[field] = None
    elif id_type == models.IdentificationType.PASSPORT.value:
        record["identification_type"] = models.IdentificationType.PASSPORT
        for field in ("passport_number", "passport_country", "hayya_visa_number"):
            record[field] = _clean_text(data.get(field))
        if any(record[field] is None for field in PASSPORT_FIELDS):
            failures.append(
                {
                    "field": "passport_number",
                    "reason": "Passport Number, Country, Expiry, Hayya Visa Number, and Hayya Expiry "
                    "are required when using Passport",
                }
            )
        passport_number = record["passport_number"]
        if passport_number and not PASSPORT_PATTERN.fullmatch(passport_number):
            failures.append(
                {"field": "passport_number", "reason": "Passport number must be 6-12 letters and numbers"}
            )
        for field in QID_FIELDS:
            record[field] = None
    else:
        failures.append({"field": "identification_type", "reason": "Identification type must be qid or passport"})

    enabled: Dict[models.AccessPhase, bool] = {}
    for phase, (flag, start_field, end_field) in models.PHASE_FIELDS.items():
        is_enabled = bool(data.get(flag))
        record[flag] = is_enabled
        enabled[phase] = is_enabled
        if not is_enabled:
            record[start_field] = None
            record[end_field] = None
            continue
        start, end = record[start_field], record[end_field]
        if start is None or end is None or not start < end:
            failures.append(
                {
                    "field": start_field,
                    "reason": f"Valid {_label(phase)} start and end dates are required "
                    f"when {_label(phase)} access is enabled",
                }
            )

    if not any(enabled.values()):
        failures.append({"field": "phases", "reason": NO_PHASE_MESSAGE})

    failures.extend(_overlap_failures(record, enabled))

    if failures:
        raise ValidationError("Invalid accreditation", failures)
    return record


def _overlap_failures(record: Dict[str, Any], enabled: Dict[models.AccessPhase, bool]) -> Failures:
    # Equal boundaries (earlier end == later start) are allowed.
    bump_in, live, bump_out = models.AccessPhase.BUMP_IN, models.AccessPhase.LIVE, models.AccessPhase.BUMP_OUT
    pairs = [(bump_in, live), (live, bump_out)]
    if not enabled[live]:
        pairs.append((bump_in, bump_out))

    failures: Failures = []
    for earlier, later in pairs:
        if not (enabled[earlier] and enabled[later]):
            continue
        earlier_end = record[models.PHASE_FIELDS[earlier][2]]
        later_start = record[models.PHASE_FIELDS[later][1]]
        if earlier_end is None or later_start is None:
            continue
        if earlier_end > later_start:
            failures.append(
                {
                    "field": models.PHASE_FIELDS[earlier][2],
                    "reason": f"{_label(earlier)} end date must not overlap with {_label(later)} start date",
                }
            )
    return failures


def validate_against_project(
    record: Dict[str, Any],
    project: models.AccreditationProject,
    *,
    creating: bool = True,
) -> None:
    """Check a normalized record against its project's groups and phase windows (inclusive)."""
    failures: Failures = []

    if creating and not project.is_active:
        failures.append({"field": "project_id", "reason": "Project is not accepting new accreditations"})

    if record.get("access_group") not in (project.access_groups or []):
        failures.append({"field": "access_group", "reason": "Invalid access group for this project"})

    for phase, (flag, start_field, end_field) in models.PHASE_FIELDS.items():
        if not record.get(flag):
            continue
        start, end = record.get(start_field), record.get(end_field)
        window_start = to_local_datetime(getattr(project, start_field))
        window_end = to_local_datetime(getattr(project, end_field))
        if start < window_start or end > window_end:
            failures.append(
                {
                    "field": start_field,
                    "reason": f"{_label(phase)} dates must be within project {_label(phase)} phase",
                }
            )

    if failures:
        raise ValidationError("Accreditation does not fit the project", failures)


# ---------------------------------------------------------------------------
# Duplicate & expiry guard
# ---------------------------------------------------------------------------


def last_access_end(record: Any) -> Optional[datetime]:
    """Latest end among the enabled phases."""
    ends = [
        to_local_datetime(_get_value(record, end_field))
        for flag, _start_field, end_field in models.PHASE_FIELDS.values()
        if _get_value(record, flag)
    ]
    ends = [end for end in ends if end is not None]
    return max(ends) if ends else None


def _document_failures(field: str, label: str, expiry: Any, now: datetime, last_end: Optional[datetime]) -> Failures:
    expiry = to_local_datetime(expiry)
    if expiry is None:
        return []
    if expiry < now:
        return [{"field": field, "reason": f"{label} has already expired"}]
    if last_end is not None and expiry < last_end:
        return [{"field": field, "reason": f"{label} expiry date must be after the last access end date"}]
    return []


def identity_expiry_failures(record: Any, now: datetime) -> Failures:
    """
    Expiry checks for the record's identity documents at `now`.

    QID: one document. Passport: the passport and the Hayya visa are each
    checked on their own.
    """
    now = to_local_datetime(now)
    last_end = last_access_end(record)
    id_type = _enum_value(_get_value(record, "identification_type"))

    if id_type == models.IdentificationType.QID.value:
        return _document_failures("qid_expiry", "QID", _get_value(record, "qid_expiry"), now, last_end)
    if id_type == models.IdentificationType.PASSPORT.value:
        return _document_failures(
            "passport_expiry", "Passport", _get_value(record, "passport_expiry"), now, last_end
        ) + _document_failures(
            "hayya_visa_expiry", "Hayya Visa", _get_value(record, "hayya_visa_expiry"), now, last_end
        )
    return []


def check_identity_expiry(record: Any, now: datetime) -> None:
    failures = identity_expiry_failures(record, now)
    if failures:
        raise ValidationError("Identification documents are not valid", failures)


def find_duplicate(
    db: Session,
    *,
    project_id: str,
    record: Dict[str, Any],
    exclude_id: Optional[str] = None,
) -> Optional[models.Accreditation]:
    """Non-rejected record in the same project sharing the identity document number."""
    query = db.query(models.Accreditation).filter(
        models.Accreditation.project_id == project_id,
        models.Accreditation.status != models.AccreditationStatus.REJECTED,
    )
    id_type = _enum_value(record.get("identification_type"))
    if id_type == models.IdentificationType.QID.value:
        query = query.filter(models.Accreditation.qid_number == record.get("qid_number"))
    elif id_type == models.IdentificationType.PASSPORT.value:
        query = query.filter(models.Accreditation.passport_number == record.get("passport_number"))
    else:
        return None
    if exclude_id:
        query = query.filter(models.Accreditation.id != exclude_id)
    return query.order_by(models.Accreditation.created_at.asc()).first()


def duplicate_conflict(
    existing: models.Accreditation,
    record: Dict[str, Any],
    project: models.AccreditationProject,
) -> ConflictError:
    if _enum_value(record.get("identification_type")) == models.IdentificationType.QID.value:
        id_label, id_number = "QID", record.get("qid_number")
    else:
        id_label, id_number = "passport", record.get("passport_number")
    status = _enum_value(existing.status)
    return ConflictError(
        f'An accreditation already exists for {id_label} {id_number} in project "{project.name}" '
        f"with status {status}. Edit the existing record ({existing.accreditation_number}) "
        "instead of creating a duplicate.",
        existing_number=existing.accreditation_number,
        existing_status=status,
    )


def ensure_no_duplicate(
    db: Session,
    project: models.AccreditationProject,
    record: Dict[str, Any],
    *,
    exclude_id: Optional[str] = None,
) -> None:
    existing = find_duplicate(db, project_id=project.id, record=record, exclude_id=exclude_id)
    if existing is not None:
        raise duplicate_conflict(existing, record, project)
