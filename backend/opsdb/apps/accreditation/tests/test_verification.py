from __future__ import annotations

from datetime import datetime, time, timezone

import pytest

from opsdb.apps.accreditation import models, services, verification
from opsdb.utils.dates import LOCAL_TZ


def _at(day_value, hour=12, minute=0):
    return datetime.combine(day_value, time(hour, minute), tzinfo=LOCAL_TZ)


def _scans(db_session):
    return db_session.query(models.AccreditationScan).order_by(models.AccreditationScan.scanned_at).all()


def test_approved_record_is_valid_inside_its_window(db_session, tenant, approved_record, approver_user, days):
    result = verification.verify_token(
        db_session,
        tenant_id=tenant.id,
        token=approved_record.verification_token,
        scanned_by_id=approver_user.id,
        device="GateScanner/1.0",
        now=_at(days(0)),
    )
    db_session.commit()

    assert result.valid is True
    assert result.reason is None
    payload = result.model_dump(by_alias=True)["accreditation"]
    assert payload["name"] == "Amina Haddad"
    assert payload["accessGroup"] == "Media"
    assert payload["activePhase"] == "Bump-In"
    assert payload["accreditationNumber"] == approved_record.accreditation_number

    scans = _scans(db_session)
    assert len(scans) == 1
    assert scans[0].was_valid is True
    assert scans[0].valid_phases == ["bump_in"]
    assert scans[0].accreditation_id == approved_record.id
    assert scans[0].device == "GateScanner/1.0"


def test_last_day_is_valid_until_local_midnight(db_session, tenant, approved_record, days):
    # Bump-In access ends on day 1; the whole local day counts.
    late = verification.verify_token(
        db_session, tenant_id=tenant.id, token=approved_record.verification_token, now=_at(days(1), 23, 59)
    )
    assert late.valid is True

    # 21:00 UTC on day 1 is already 00:00 on day 2 in Doha.
    utc_evening = datetime.combine(days(1), time(21, 0), tzinfo=timezone.utc)
    after = verification.verify_token(
        db_session, tenant_id=tenant.id, token=approved_record.verification_token, now=utc_evening
    )
    assert after.valid is False
    assert after.reason == verification.REASON_NOT_VALID_TODAY
    assert after.accreditation.active_phase is None


def test_before_window_is_not_valid_today(db_session, tenant, approved_record, days):
    result = verification.verify_token(
        db_session, tenant_id=tenant.id, token=approved_record.verification_token, now=_at(days(-1))
    )
    assert result.valid is False
    assert result.reason == verification.REASON_NOT_VALID_TODAY


def test_unknown_token_is_logged(db_session, tenant, approver_user):
    result = verification.verify_token(
        db_session, tenant_id=tenant.id, token="does-not-exist", scanned_by_id=approver_user.id
    )
    db_session.commit()

    assert result.valid is False
    assert result.reason == verification.REASON_NOT_FOUND
    assert result.accreditation is None

    scans = _scans(db_session)
    assert len(scans) == 1
    assert scans[0].accreditation_id is None
    assert scans[0].reason == "NOT_FOUND"
    assert scans[0].was_valid is False


def test_token_from_another_tenant_is_not_found(db_session, approved_record, days):
    result = verification.verify_token(
        db_session, tenant_id="another-tenant", token=approved_record.verification_token, now=_at(days(0))
    )
    assert result.reason == verification.REASON_NOT_FOUND


def test_revoked_token_is_invalid_even_though_stored(db_session, tenant, approved_record, approver_user, days):
    token = approved_record.verification_token
    services.revoke_accreditation(
        db_session,
        tenant_id=tenant.id,
        accreditation_id=approved_record.id,
        actor_user_id=approver_user.id,
        reason="Badge shared with another person",
    )
    db_session.commit()

    result = verification.verify_token(db_session, tenant_id=tenant.id, token=token, now=_at(days(0)))
    assert result.valid is False
    assert result.reason == verification.REASON_REVOKED
    assert result.accreditation.accreditation_number == approved_record.accreditation_number


@pytest.mark.parametrize(
    "status, reason",
    [
        (models.AccreditationStatus.APPROVED, None),
        (models.AccreditationStatus.ISSUED, None),
        (models.AccreditationStatus.REVOKED, "REVOKED"),
        (models.AccreditationStatus.REJECTED, "REJECTED"),
        (models.AccreditationStatus.PENDING, "NOT_APPROVED"),
        (models.AccreditationStatus.DRAFT, "NOT_APPROVED"),
    ],
)
def test_status_reasons(status, reason):
    assert verification._status_reason(status) == reason


def test_scan_write_failure_is_not_swallowed(db_session, monkeypatch, tenant, approved_record):
    def broken_flush(*args, **kwargs):
        raise RuntimeError("scan log unavailable")

    monkeypatch.setattr(db_session, "flush", broken_flush)

    with pytest.raises(RuntimeError):
        verification.verify_token(db_session, tenant_id=tenant.id, token=approved_record.verification_token)


def test_scans_feed_project_stats_and_scan_list(db_session, tenant, project, approved_record, days):
    verification.verify_token(
        db_session, tenant_id=tenant.id, token=approved_record.verification_token, now=_at(days(0))
    )
    verification.verify_token(
        db_session, tenant_id=tenant.id, token=approved_record.verification_token, now=_at(days(5))
    )
    verification.verify_token(db_session, tenant_id=tenant.id, token="unknown")
    db_session.commit()

    stats = services.project_stats(db_session, tenant_id=tenant.id, project_id=project.id)
    assert stats.total_scans == 2
    assert stats.valid_scans == 1
    assert stats.invalid_scans == 1

    assert len(services.list_scans(db_session, tenant_id=tenant.id)) == 3
    assert len(services.list_scans(db_session, tenant_id=tenant.id, project_id=project.id)) == 2
    assert len(services.list_scans(db_session, tenant_id=tenant.id, was_valid=False)) == 2
