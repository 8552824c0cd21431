from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from opsdb.security import require_roles
from opsdb.apps.accounts.models import User, UserRole
from opsdb.database import get_read_db

from . import schemas, services


router = APIRouter(
    prefix="/audit",
    tags=["audit"],
)


@router.get("/", response_model=List[schemas.AuditEventRead])
def list_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_read_db),
    current_user: User = Depends(require_roles(UserRole.ADMIN)),
):
    return services.list_audit_events(
        db,
        tenant_id=current_user.tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        start=start,
        end=end,
        limit=limit,
    )
