from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from opsdb.apps.accounts import models as account_models
from opsdb.apps.accreditation import models, numbering, schemas, services
from opsdb.apps.accreditation.errors import GenerationExhaustedError
from opsdb.apps.audit import models as audit_models
from opsdb.database import Base, enable_sqlite_savepoints


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
    monkeypatch.setattr(numbering, "_backoff", lambda: None)


def _qid(index: int) -> str:
    return f"{30000000000 + index:011d}"


def test_format_and_parse():
    assert numbering.format_number("ACC", 7) == "ACC-0007"
    assert numbering.format_number("ACC", 12345) == "ACC-12345"
    assert numbering.parse_number("ACC", "ACC-0042") == 42
    assert numbering.parse_number("ACC", "VIP-0042") is None
    assert numbering.parse_number("ACC", "ACC-00X2") is None


def test_next_number_orders_by_length_then_value(db_session, create_record):
    first = create_record(qid_number=_qid(1))
    second = create_record(qid_number=_qid(2))
    first.accreditation_number = "ACC-9999"
    second.accreditation_number = "ACC-10000"
    db_session.commit()

    assert numbering.current_max(db_session, "ACC") == 10000
    assert numbering.next_accreditation_number(db_session) == "ACC-10001"


def test_prefixes_are_counted_separately(db_session, create_record):
    create_record(qid_number=_qid(1))
    assert numbering.next_accreditation_number(db_session, "VIP") == "VIP-0001"


def test_collision_is_retried_with_fresh_read(db_session, monkeypatch, create_record):
    create_record(qid_number=_qid(1))
    real_current_max = numbering.current_max
    reads = []

    def stale_then_fresh(db, prefix):
        reads.append(prefix)
        if len(reads) == 1:
            return 0
        return real_current_max(db, prefix)

    monkeypatch.setattr(numbering, "current_max", stale_then_fresh)

    accreditation = create_record(qid_number=_qid(2))
    assert accreditation.accreditation_number == "ACC-0002"
    assert len(reads) == 2


def test_insert_attempts_are_bounded(db_session, monkeypatch, create_record):
    create_record(qid_number=_qid(1))
    calls = []

    def always_stale(db, prefix):
        calls.append(prefix)
        return 0

    monkeypatch.setattr(numbering, "current_max", always_stale)

    with pytest.raises(GenerationExhaustedError):
        create_record(qid_number=_qid(2))
    assert len(calls) == numbering.MAX_INSERT_ATTEMPTS

    db_session.rollback()
    assert db_session.query(models.Accreditation).count() == 1


def test_hundred_interleaved_creations_get_unique_sequential_numbers(db_session, monkeypatch, create_record):
    """
    Ten waves of ten creators. Every creator in a wave reads the maximum
    before any of them has inserted, so all but the first collide once.
    """
    real_current_max = numbering.current_max
    state = {"wave_max": 0, "first_read": True}

    def interleaved(db, prefix):
        if state["first_read"]:
            state["first_read"] = False
            return state["wave_max"]
        return real_current_max(db, prefix)

    monkeypatch.setattr(numbering, "current_max", interleaved)

    numbers = []
    for wave in range(10):
        state["wave_max"] = real_current_max(db_session, "ACC")
        for creator in range(10):
            state["first_read"] = True
            accreditation = create_record(qid_number=_qid(wave * 10 + creator))
            numbers.append(accreditation.accreditation_number)

    assert len(set(numbers)) == 100
    assert sorted(numbering.parse_number("ACC", n) for n in numbers) == list(range(1, 101))


def test_threaded_creations_on_shared_database_get_unique_numbers(tmp_path, days):
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'numbering.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    enable_sqlite_savepoints(engine, immediate=True)
    Base.metadata.create_all(
        bind=engine,
        tables=[
            account_models.Tenant.__table__,
            account_models.User.__table__,
            audit_models.AuditEvent.__table__,
            models.AccreditationProject.__table__,
            models.Accreditation.__table__,
            models.AccreditationHistory.__table__,
        ],
    )
    SessionFactory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    with SessionFactory() as session:
        tenant = account_models.Tenant(code="TEN-THR", name="Threaded Tenant")
        session.add(tenant)
        session.flush()
        adder = account_models.User(
            tenant_id=tenant.id,
            email="threaded@example.com",
            full_name="threaded",
            role=account_models.UserRole.ACCREDITATION_ADDER,
        )
        session.add(adder)
        project = services.create_project(
            session,
            tenant_id=tenant.id,
            data=schemas.ProjectCreate(
                name="Threaded Expo",
                code="THR-2030",
                bump_in_start=days(0),
                bump_in_end=days(2),
                live_start=days(3),
                live_end=days(6),
                bump_out_start=days(7),
                bump_out_end=days(9),
                access_groups=["Crew"],
            ),
            actor_user_id=None,
        )
        session.commit()
        tenant_id, adder_id, project_id = tenant.id, adder.id, project.id

    def create(index):
        with SessionFactory() as session:
            accreditation = services.create_accreditation(
                session,
                tenant_id=tenant_id,
                data=schemas.AccreditationCreate(
                    project_id=project_id,
                    first_name="Crew",
                    last_name=f"Member {index}",
                    organization="Stage Works",
                    job_title="Rigger",
                    access_group="Crew",
                    identification_type="qid",
                    qid_number=_qid(index),
                    qid_expiry=days(365),
                    has_bump_in_access=True,
                    bump_in_start=days(0),
                    bump_in_end=days(1),
                ),
                actor_user_id=adder_id,
            )
            session.commit()
            return accreditation.accreditation_number

    try:
        with ThreadPoolExecutor(max_workers=8) as pool:
            numbers = list(pool.map(create, range(100)))

        assert len(set(numbers)) == 100
        assert sorted(numbering.parse_number("ACC", n) for n in numbers) == list(range(1, 101))
        with SessionFactory() as session:
            assert session.query(models.Accreditation).count() == 100
            assert session.query(models.AccreditationHistory).count() == 100
    finally:
        engine.dispose()


def test_token_exhaustion_aborts_approval(
    db_session, monkeypatch, tenant, approved_record, create_record, adder_user, approver_user
):
    pending = create_record(qid_number=_qid(5))
    services.submit_accreditation(
        db_session, tenant_id=tenant.id, accreditation_id=pending.id, actor_user_id=adder_user.id
    )
    db_session.commit()

    monkeypatch.setattr(numbering, "generate_verification_token", lambda: approved_record.verification_token)

    with pytest.raises(GenerationExhaustedError):
        services.approve_accreditation(
            db_session, tenant_id=tenant.id, accreditation_id=pending.id, actor_user_id=approver_user.id
        )

    assert pending.status == models.AccreditationStatus.PENDING
    assert pending.verification_token is None
    assert pending.approved_by_id is None


def test_generated_tokens_are_unique_hex(db_session):
    tokens = {numbering.generate_unique_token(db_session) for _ in range(20)}
    assert len(tokens) == 20
    assert all(len(token) == 32 and int(token, 16) >= 0 for token in tokens)
