# backend/opsdb/apps/accreditation/verification.py
"""
Scan-time verification of a presented token.

Validity is re-derived on every scan from the record's current status and
its enabled phase windows, compared by local calendar day. Every attempt
is written to the scan log, including unknown tokens.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from opsdb.utils.dates import local_date, local_now, to_local_datetime

from . import models, schemas

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "NOT_FOUND"
REASON_REVOKED = "REVOKED"
REASON_REJECTED = "REJECTED"
REASON_NOT_APPROVED = "NOT_APPROVED"
REASON_NOT_VALID_TODAY = "NOT_VALID_TODAY"

TOKEN_MAX_LENGTH = 128


def active_phases(accreditation: models.Accreditation, today: date) -> List[models.AccessPhase]:
    """Enabled phases whose [start day, end day] contains `today`."""
    phases = []
    for phase, (flag, start_field, end_field) in models.PHASE_FIELDS.items():
        if not getattr(accreditation, flag):
            continue
        start = local_date(getattr(accreditation, start_field))
        end = local_date(getattr(accreditation, end_field))
        if start is None or end is None:
            continue
        if start <= today <= end:
            phases.append(phase)
    return phases


def _status_reason(status: models.AccreditationStatus) -> Optional[str]:
    if status in models.ACTIVE_STATUSES:
        return None
    if status == models.AccreditationStatus.REVOKED:
        return REASON_REVOKED
    if status == models.AccreditationStatus.REJECTED:
        return REASON_REJECTED
    return REASON_NOT_APPROVED


def verify_token(
    db: Session,
    *,
    tenant_id: str,
    token: str,
    scanned_by_id: Optional[str] = None,
    device: Optional[str] = None,
    ip_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> schemas.VerificationResult:
    token = (token or "").strip()[:TOKEN_MAX_LENGTH]
    today = to_local_datetime(now).date() if now is not None else local_now().date()

    accreditation = None
    if token:
        accreditation = (
            db.query(models.Accreditation)
            .filter(
                models.Accreditation.tenant_id == tenant_id,
                models.Accreditation.verification_token == token,
            )
            .first()
        )

    phases: List[models.AccessPhase] = []
    if accreditation is None:
        reason = REASON_NOT_FOUND
    else:
        reason = _status_reason(models.AccreditationStatus(accreditation.status))
        if reason is None:
            phases = active_phases(accreditation, today)
            if not phases:
                reason = REASON_NOT_VALID_TODAY

    valid = reason is None
    scan = models.AccreditationScan(
        tenant_id=tenant_id,
        accreditation_id=accreditation.id if accreditation is not None else None,
        token=token,
        was_valid=valid,
        valid_phases=[phase.value for phase in phases],
        reason=reason,
        scanned_by_id=scanned_by_id,
        device=device,
        ip_address=ip_address,
    )
    db.add(scan)
    db.flush()

    logger.info(
        "Accreditation scan",
        extra={
            "tenant_id": tenant_id,
            "accreditation_id": scan.accreditation_id,
            "was_valid": valid,
            "reason": reason,
        },
    )

    if accreditation is None:
        return schemas.VerificationResult(valid=False, reason=reason)

    labels = [models.PHASE_LABELS[phase] for phase in phases]
    details = schemas.VerifiedAccreditation(
        name=accreditation.full_name,
        organization=accreditation.organization,
        access_group=accreditation.access_group,
        active_phase=labels[0] if labels else None,
        active_phases=labels,
        accreditation_number=accreditation.accreditation_number,
    )
    return schemas.VerificationResult(valid=valid, accreditation=details, reason=reason)
