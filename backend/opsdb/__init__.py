# backend/opsdb/__init__.py
"""
Import ORM models from each app so that:

- Alembic and Base.metadata.create_all() see all tables.
- The package exposes a clear surface.

The actual model classes are kept in opsdb/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models            # tenants / users
from .apps.audit import models as audit_models                  # activity log
from .apps.accreditation import models as accreditation_models  # projects / records / history / scans

__all__ = [
    "accounts_models",
    "audit_models",
    "accreditation_models",
]
