from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.setdefault("PORTAL_LOCAL_TZ", "Asia/Qatar")

from opsdb.database import Base, enable_sqlite_savepoints  # noqa: E402
from opsdb.apps.accounts import models as account_models  # noqa: E402
from opsdb.apps.audit import models as audit_models  # noqa: E402
from opsdb.apps.accreditation import models as accreditation_models  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(
        bind=engine,
        tables=[
            account_models.Tenant.__table__,
            account_models.User.__table__,
            audit_models.AuditEvent.__table__,
            accreditation_models.AccreditationProject.__table__,
            accreditation_models.Accreditation.__table__,
            accreditation_models.AccreditationHistory.__table__,
            accreditation_models.AccreditationScan.__table__,
        ],
    )
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
