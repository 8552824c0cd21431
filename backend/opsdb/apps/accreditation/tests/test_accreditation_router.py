from __future__ import annotations

import pytest
from fastapi import HTTPException, Response
from starlette.requests import Request

from opsdb.apps.accounts.models import UserRole
from opsdb.apps.accreditation import models, numbering, router, schemas
from opsdb.security import require_roles


def _make_request(client_host: str = "10.1.1.7") -> Request:
    return Request(
        {
            "type": "http",
            "headers": [(b"user-agent", b"GateScanner/2.1")],
            "client": (client_host, 5050),
            "method": "GET",
            "path": "/accreditation/verify/token",
        }
    )


def test_create_project_and_duplicate_code(db_session, admin_user, days):
    payload = schemas.ProjectCreate(
        name="Corniche Marathon",
        code="CM-2030",
        bump_in_start=days(0),
        bump_in_end=days(1),
        live_start=days(2),
        live_end=days(3),
        bump_out_start=days(4),
        bump_out_end=days(5),
        access_groups=["Runner", "Staff"],
    )
    project = router.create_project(payload=payload, db=db_session, current_user=admin_user)
    assert project.code == "CM-2030"
    assert schemas.ProjectRead.model_validate(project).access_groups == ["Runner", "Staff"]

    with pytest.raises(HTTPException) as excinfo:
        router.create_project(payload=payload, db=db_session, current_user=admin_user)
    assert excinfo.value.status_code == 409


def test_invalid_record_returns_field_errors(db_session, adder_user, record_payload):
    with pytest.raises(HTTPException) as excinfo:
        router.create_accreditation(
            payload=record_payload(qid_number="1234567890", first_name=""),
            db=db_session,
            current_user=adder_user,
        )
    assert excinfo.value.status_code == 400
    detail = excinfo.value.detail
    assert detail["code"] == "validation_error"
    assert {item["field"] for item in detail["errors"]} == {"first_name", "qid_number"}


def test_duplicate_record_returns_conflict_with_existing_number(db_session, adder_user, record_payload):
    first = router.create_accreditation(payload=record_payload(), db=db_session, current_user=adder_user)
    router.submit_accreditation(accreditation_id=first.id, payload=None, db=db_session, current_user=adder_user)

    with pytest.raises(HTTPException) as excinfo:
        router.create_accreditation(payload=record_payload(), db=db_session, current_user=adder_user)

    assert excinfo.value.status_code == 409
    assert excinfo.value.detail["existing"] == {
        "accreditation_number": first.accreditation_number,
        "status": "PENDING",
    }


def test_invalid_transition_names_status_and_action(db_session, adder_user, record_payload):
    record = router.create_accreditation(payload=record_payload(), db=db_session, current_user=adder_user)
    router.submit_accreditation(accreditation_id=record.id, payload=None, db=db_session, current_user=adder_user)

    with pytest.raises(HTTPException) as excinfo:
        router.submit_accreditation(accreditation_id=record.id, payload=None, db=db_session, current_user=adder_user)

    assert excinfo.value.status_code == 400
    assert excinfo.value.detail["current_status"] == "PENDING"
    assert excinfo.value.detail["action"] == "submit"


def test_approve_then_fetch_credential_and_history(db_session, adder_user, approver_user, record_payload):
    record = router.create_accreditation(payload=record_payload(), db=db_session, current_user=adder_user)
    router.submit_accreditation(accreditation_id=record.id, payload=None, db=db_session, current_user=adder_user)
    approved = router.approve_accreditation(
        accreditation_id=record.id,
        payload=schemas.TransitionNotes(notes="Checked against QID"),
        db=db_session,
        current_user=approver_user,
    )
    assert approved.status == models.AccreditationStatus.APPROVED

    credential = router.get_credential(accreditation_id=record.id, db=db_session, current_user=adder_user)
    assert credential.verification_token == approved.verification_token

    history = router.list_history(accreditation_id=record.id, db=db_session, current_user=adder_user)
    assert [models.HistoryAction(entry.action).value for entry in history] == ["APPROVED", "SUBMITTED", "CREATED"]
    assert history[0].notes == "Checked against QID"


def test_unknown_record_is_404(db_session, adder_user):
    with pytest.raises(HTTPException) as excinfo:
        router.get_accreditation(accreditation_id="missing", db=db_session, current_user=adder_user)
    assert excinfo.value.status_code == 404


def test_number_exhaustion_is_a_generic_500(db_session, monkeypatch, adder_user, record_payload):
    router.create_accreditation(payload=record_payload(), db=db_session, current_user=adder_user)
    monkeypatch.setattr(numbering, "_backoff", lambda: None)
    monkeypatch.setattr(numbering, "current_max", lambda db, prefix: 0)

    with pytest.raises(HTTPException) as excinfo:
        router.create_accreditation(
            payload=record_payload(qid_number="12345678902"), db=db_session, current_user=adder_user
        )

    assert excinfo.value.status_code == 500
    assert "generation" not in str(excinfo.value.detail).lower()
    assert db_session.query(models.Accreditation).count() == 1


def test_verify_endpoint_sends_no_cache_headers_and_logs_scan(db_session, approved_record, approver_user):
    response = Response()
    result = router.verify_accreditation(
        token=approved_record.verification_token,
        response=response,
        request=_make_request(),
        db=db_session,
        current_user=approver_user,
    )

    # The project runs a month from now, so today is outside every window.
    assert result.valid is False
    assert result.reason == "NOT_VALID_TODAY"
    assert response.headers["cache-control"].startswith("no-store")
    assert response.headers["pragma"] == "no-cache"

    scans = router.list_scans(
        project_id=None,
        accreditation_id=approved_record.id,
        was_valid=None,
        limit=10,
        db=db_session,
        current_user=approver_user,
    )
    assert len(scans) == 1
    assert scans[0].ip_address == "10.1.1.7"
    assert scans[0].device == "GateScanner/2.1"


def test_role_gates(admin_user, adder_user, approver_user):
    approvers_only = require_roles(UserRole.ADMIN, UserRole.ACCREDITATION_APPROVER)
    assert approvers_only(current_user=approver_user) is approver_user
    assert approvers_only(current_user=admin_user) is admin_user

    with pytest.raises(HTTPException) as excinfo:
        approvers_only(current_user=adder_user)
    assert excinfo.value.status_code == 403

    adder_user.is_superuser = True
    assert approvers_only(current_user=adder_user) is adder_user


def test_list_projects_filters_inactive(db_session, project, admin_user):
    router.update_project(
        project_id=project.id,
        payload=schemas.ProjectUpdate(is_active=False),
        db=db_session,
        current_user=admin_user,
    )

    assert router.list_projects(is_active=None, db=db_session, current_user=admin_user) == [project]
    assert router.list_projects(is_active=True, db=db_session, current_user=admin_user) == []
    assert router.get_project(project_id=project.id, db=db_session, current_user=admin_user).is_active is False
