from __future__ import annotations

from datetime import timedelta

from opsdb.database import WriteSessionLocal
from opsdb.apps.accounts import models as account_models
from opsdb.apps.accreditation import models as accreditation_models
from opsdb.apps.accreditation import schemas as accreditation_schemas
from opsdb.apps.accreditation import services as accreditation_services
from opsdb.security import create_access_token
from opsdb.utils.dates import local_now

DEMO_USERS = (
    ("admin@demo-events.example", "Demo Admin", account_models.UserRole.ADMIN),
    ("approver@demo-events.example", "Demo Approver", account_models.UserRole.ACCREDITATION_APPROVER),
    ("adder@demo-events.example", "Demo Adder", account_models.UserRole.ACCREDITATION_ADDER),
    ("gate@demo-events.example", "Gate Officer", account_models.UserRole.EMPLOYEE),
)


def _get_or_create_tenant(db) -> account_models.Tenant:
    tenant = db.query(account_models.Tenant).filter(account_models.Tenant.code == "DEMO").first()
    if tenant:
        return tenant
    tenant = account_models.Tenant(code="DEMO", name="Demo Events")
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


def _get_or_create_user(db, tenant, email, full_name, role) -> account_models.User:
    user = (
        db.query(account_models.User)
        .filter(account_models.User.tenant_id == tenant.id, account_models.User.email == email)
        .first()
    )
    if user:
        return user
    user = account_models.User(tenant_id=tenant.id, email=email, full_name=full_name, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _get_or_create_project(db, tenant, admin) -> accreditation_models.AccreditationProject:
    project = (
        db.query(accreditation_models.AccreditationProject)
        .filter(
            accreditation_models.AccreditationProject.tenant_id == tenant.id,
            accreditation_models.AccreditationProject.code == "DEMO-EXPO",
        )
        .first()
    )
    if project:
        return project
    today = local_now().date()
    project = accreditation_services.create_project(
        db,
        tenant_id=tenant.id,
        data=accreditation_schemas.ProjectCreate(
            name="Demo Expo",
            code="DEMO-EXPO",
            location="Doha Exhibition Centre",
            bump_in_start=today,
            bump_in_end=today + timedelta(days=2),
            live_start=today + timedelta(days=3),
            live_end=today + timedelta(days=6),
            bump_out_start=today + timedelta(days=7),
            bump_out_end=today + timedelta(days=8),
            access_groups=["VIP", "Media", "Crew"],
        ),
        actor_user_id=admin.id,
    )
    db.commit()
    return project


def _seed_records(db, tenant, project, adder, approver) -> None:
    existing = (
        db.query(accreditation_models.Accreditation)
        .filter(accreditation_models.Accreditation.project_id == project.id)
        .count()
    )
    if existing:
        return
    today = local_now().date()
    people = (
        ("Amina", "Haddad", "Media", "30000000001"),
        ("Omar", "Saleh", "Crew", "30000000002"),
        ("Layla", "Nasser", "VIP", "30000000003"),
    )
    for index, (first, last, group, qid) in enumerate(people):
        accreditation = accreditation_services.create_accreditation(
            db,
            tenant_id=tenant.id,
            data=accreditation_schemas.AccreditationCreate(
                project_id=project.id,
                first_name=first,
                last_name=last,
                organization="Demo Events",
                job_title="Staff",
                access_group=group,
                identification_type="qid",
                qid_number=qid,
                qid_expiry=today + timedelta(days=365),
                has_bump_in_access=True,
                bump_in_start=today,
                bump_in_end=today + timedelta(days=2),
                has_live_access=True,
                live_start=today + timedelta(days=3),
                live_end=today + timedelta(days=6),
            ),
            actor_user_id=adder.id,
        )
        if index < 2:
            accreditation_services.submit_accreditation(
                db, tenant_id=tenant.id, accreditation_id=accreditation.id, actor_user_id=adder.id
            )
        if index == 0:
            accreditation_services.approve_accreditation(
                db, tenant_id=tenant.id, accreditation_id=accreditation.id, actor_user_id=approver.id
            )
        db.commit()
        print(f"  {accreditation.accreditation_number} {first} {last}: {accreditation.status.value}")


def run() -> None:
    db = WriteSessionLocal()
    try:
        tenant = _get_or_create_tenant(db)
        users = {role: _get_or_create_user(db, tenant, email, name, role) for email, name, role in DEMO_USERS}
        admin = users[account_models.UserRole.ADMIN]
        project = _get_or_create_project(db, tenant, admin)
        print(f"Project {project.code} ({project.id})")
        _seed_records(
            db,
            tenant,
            project,
            users[account_models.UserRole.ACCREDITATION_ADDER],
            users[account_models.UserRole.ACCREDITATION_APPROVER],
        )

        print("Bearer tokens (valid for 12 hours):")
        for role, user in users.items():
            token = create_access_token(
                data={"sub": user.id, "tenant_id": tenant.id},
                expires_delta=timedelta(hours=12),
            )
            print(f"  {role.value}: {token}")
    finally:
        db.close()


if __name__ == "__main__":
    run()
