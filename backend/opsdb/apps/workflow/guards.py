from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def guard_reject_notes(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if _is_blank(_get_value(after_obj, "notes")):
        return [{"field": "notes", "reason": "Notes are required when rejecting an accreditation"}]
    return []


def guard_revoke_reason(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if _is_blank(_get_value(after_obj, "revocation_reason")):
        return [{"field": "revocation_reason", "reason": "A reason is required when revoking an accreditation"}]
    return []


def guard_identity_documents_current(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    """Identity documents must still be valid at the moment of the transition."""
    from opsdb.apps.accreditation.validation import identity_expiry_failures
    from opsdb.utils.dates import utcnow

    checked_at = _get_value(after_obj, "checked_at")
    if not isinstance(checked_at, datetime):
        checked_at = utcnow()
    return identity_expiry_failures(after_obj, checked_at)
