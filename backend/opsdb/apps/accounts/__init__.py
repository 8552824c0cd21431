# backend/opsdb/apps/accounts/__init__.py
"""
Accounts app

Responsible for:
- Tenant definitions (multi-tenant scoping for every other app)
- User accounts and roles as supplied by the identity provider

Other apps (accreditation, audit) depend on these models for
"who did this" stamps and role checks.
"""

from . import models  # noqa: F401

__all__ = ["models"]
