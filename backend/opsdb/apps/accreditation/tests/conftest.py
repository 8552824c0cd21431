from __future__ import annotations

from datetime import date, timedelta

import pytest

from opsdb.apps.accounts import models as account_models
from opsdb.apps.accreditation import schemas, services
from opsdb.utils.dates import local_now

# Project windows start a month out so creation-time expiry checks pass.
BASE_DAY = local_now().date() + timedelta(days=30)


def day(offset: int) -> date:
    return BASE_DAY + timedelta(days=offset)


@pytest.fixture()
def days():
    """`days(n)` is the date n days after the project's first Bump-In day."""
    return day


@pytest.fixture()
def tenant(db_session):
    tenant = account_models.Tenant(code="TEN-ACC", name="Accreditation Tenant")
    db_session.add(tenant)
    db_session.commit()
    return tenant


def _user(db_session, tenant, email, role, **extra):
    user = account_models.User(tenant_id=tenant.id, email=email, full_name=email.split("@")[0], role=role, **extra)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def admin_user(db_session, tenant):
    return _user(db_session, tenant, "admin@example.com", account_models.UserRole.ADMIN)


@pytest.fixture()
def adder_user(db_session, tenant):
    return _user(db_session, tenant, "adder@example.com", account_models.UserRole.ACCREDITATION_ADDER)


@pytest.fixture()
def approver_user(db_session, tenant):
    return _user(db_session, tenant, "approver@example.com", account_models.UserRole.ACCREDITATION_APPROVER)


@pytest.fixture()
def project(db_session, tenant, admin_user):
    """Bump-In days 0-2, Live days 3-6, Bump-Out days 7-9."""
    project = services.create_project(
        db_session,
        tenant_id=tenant.id,
        data=schemas.ProjectCreate(
            name="Qatar Summer Expo",
            code="QSE-2030",
            bump_in_start=day(0),
            bump_in_end=day(2),
            live_start=day(3),
            live_end=day(6),
            bump_out_start=day(7),
            bump_out_end=day(9),
            access_groups=["VIP", "Media", "Crew"],
        ),
        actor_user_id=admin_user.id,
    )
    db_session.commit()
    return project


@pytest.fixture()
def record_payload(project):
    """Factory for a valid QID record with Bump-In access on days 0-1."""

    def build(**overrides) -> schemas.AccreditationCreate:
        data = {
            "project_id": project.id,
            "first_name": "Amina",
            "last_name": "Haddad",
            "organization": "Expo Media",
            "job_title": "Camera Operator",
            "access_group": "Media",
            "identification_type": "qid",
            "qid_number": "12345678901",
            "qid_expiry": day(365),
            "has_bump_in_access": True,
            "bump_in_start": day(0),
            "bump_in_end": day(1),
        }
        data.update(overrides)
        return schemas.AccreditationCreate(**data)

    return build


@pytest.fixture()
def create_record(db_session, tenant, adder_user, record_payload):
    """Factory that creates and commits a DRAFT record."""

    def create(**overrides):
        accreditation = services.create_accreditation(
            db_session,
            tenant_id=tenant.id,
            data=record_payload(**overrides),
            actor_user_id=adder_user.id,
        )
        db_session.commit()
        return accreditation

    return create


@pytest.fixture()
def approved_record(db_session, tenant, adder_user, approver_user, create_record):
    accreditation = create_record()
    services.submit_accreditation(
        db_session, tenant_id=tenant.id, accreditation_id=accreditation.id, actor_user_id=adder_user.id
    )
    services.approve_accreditation(
        db_session, tenant_id=tenant.id, accreditation_id=accreditation.id, actor_user_id=approver_user.id
    )
    db_session.commit()
    return accreditation
