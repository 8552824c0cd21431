# backend/opsdb/alembic/env.py

from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context

# ---------------------------------------------------------------------------
# PYTHONPATH SETUP
# ---------------------------------------------------------------------------
# __file__  = backend/opsdb/alembic/env.py
# BASE_DIR  = backend/
# package   = opsdb
# ---------------------------------------------------------------------------

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

from opsdb.database import Base, write_engine  # noqa: E402

# Import model modules so all tables are registered on Base.metadata.
from opsdb.apps.accounts import models as accounts_models  # noqa: F401, E402
from opsdb.apps.audit import models as audit_models  # noqa: F401, E402
from opsdb.apps.accreditation import models as accreditation_models  # noqa: F401, E402

target_metadata = Base.metadata


# ---------------------------------------------------------------------------
# URL RESOLUTION (offline safety)
# ---------------------------------------------------------------------------


def _is_placeholder_url(url: str) -> bool:
    u = (url or "").strip()
    return not u or u.startswith("driver://")


def _resolve_offline_url() -> str:
    """
    Offline mode needs a URL to render SQL.
    Prefer sqlalchemy.url unless it is the placeholder, then fall back to env vars.
    """
    url = (config.get_main_option("sqlalchemy.url") or "").strip()

    if _is_placeholder_url(url):
        url = (os.getenv("DATABASE_WRITE_URL") or os.getenv("DATABASE_URL") or "").strip()

    if not url:
        raise RuntimeError(
            "No database URL found.\n"
            "Set sqlalchemy.url in alembic.ini OR set DATABASE_WRITE_URL / DATABASE_URL."
        )

    config.set_main_option("sqlalchemy.url", url)
    return url


# ---------------------------------------------------------------------------
# OFFLINE MIGRATIONS
# ---------------------------------------------------------------------------


def run_migrations_offline() -> None:
    """Render SQL without connecting to the database."""
    url = _resolve_offline_url()

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()


# ---------------------------------------------------------------------------
# ONLINE MIGRATIONS
# ---------------------------------------------------------------------------


def run_migrations_online() -> None:
    """Run against the same write_engine the application uses."""
    with write_engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


# ---------------------------------------------------------------------------
# ENTRYPOINT
# ---------------------------------------------------------------------------

if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
