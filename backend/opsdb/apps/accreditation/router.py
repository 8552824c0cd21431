# backend/opsdb/apps/accreditation/router.py

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from opsdb.database import get_db
from opsdb.security import get_current_active_user, require_roles
from opsdb.apps.accounts.models import User, UserRole

from . import schemas, services, verification
from .errors import AccreditationError, GenerationExhaustedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accreditation", tags=["accreditation"])

ADMINS = (UserRole.ADMIN,)
APPROVERS = (UserRole.ADMIN, UserRole.ACCREDITATION_APPROVER)
EDITORS = (UserRole.ADMIN, UserRole.ACCREDITATION_APPROVER, UserRole.ACCREDITATION_ADDER)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


@contextmanager
def _domain_errors(db: Session, **context) -> Iterator[None]:
    """Roll back and turn domain errors into HTTP errors."""
    try:
        yield
    except GenerationExhaustedError as exc:
        db.rollback()
        logger.error(
            "Accreditation identifier generation exhausted",
            exc_info=True,
            extra={"error_code": exc.code, **context},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="The request could not be completed. Please try again.",
        ) from exc
    except AccreditationError as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict()) from exc


def _client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None or request.client is None:
        return None
    return request.client.host


# --------------------------------------------------------------------------
# PROJECTS
# --------------------------------------------------------------------------


@router.post(
    "/projects",
    response_model=schemas.ProjectRead,
    status_code=status.HTTP_201_CREATED,
)
def create_project(
    payload: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*ADMINS)),
):
    with _domain_errors(db, tenant_id=current_user.tenant_id):
        project = services.create_project(
            db,
            tenant_id=current_user.tenant_id,
            data=payload,
            actor_user_id=current_user.id,
        )
    db.commit()
    db.refresh(project)
    return project


@router.get("/projects", response_model=List[schemas.ProjectRead])
def list_projects(
    is_active: Optional[bool] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*EDITORS)),
):
    return services.list_projects(db, tenant_id=current_user.tenant_id, is_active=is_active)


@router.get("/projects/{project_id}", response_model=schemas.ProjectRead)
def get_project(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*EDITORS)),
):
    with _domain_errors(db):
        return services.get_project(db, tenant_id=current_user.tenant_id, project_id=project_id)


@router.patch("/projects/{project_id}", response_model=schemas.ProjectRead)
def update_project(
    project_id: str,
    payload: schemas.ProjectUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*ADMINS)),
):
    with _domain_errors(db, project_id=project_id):
        project = services.update_project(
            db,
            tenant_id=current_user.tenant_id,
            project_id=project_id,
            data=payload,
            actor_user_id=current_user.id,
        )
    db.commit()
    db.refresh(project)
    return project


@router.get("/projects/{project_id}/stats", response_model=schemas.ProjectStats)
def get_project_stats(
    project_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*EDITORS)),
):
    with _domain_errors(db):
        return services.project_stats(db, tenant_id=current_user.tenant_id, project_id=project_id)


# --------------------------------------------------------------------------
# RECORDS
# --------------------------------------------------------------------------


@router.post(
    "/records",
    response_model=schemas.AccreditationRead,
    status_code=status.HTTP_201_CREATED,
)
def create_accreditation(
    payload: schemas.AccreditationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*EDITORS)),
):
    with _domain_errors(db, tenant_id=current_user.tenant_id, project_id=payload.project_id):
        accreditation = services.create_accreditation(
            db,
            tenant_id=current_user.tenant_id,
            data=payload,
            actor_user_id=current_user.id,
        )
    db.commit()
    db.refresh(accreditation)
    return accreditation


@router.get("/records/{accreditation_id}", response_model=schemas.AccreditationRead)
def get_accreditation(
    accreditation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*EDITORS)),
):
    with _domain_errors(db):
        return services.get_accreditation(
            db, tenant_id=current_user.tenant_id, accreditation_id=accreditation_id
        )


@router.patch("/records/{accreditation_id}", response_model=schemas.AccreditationRead)
def update_accreditation(
    accreditation_id: str,
    payload: schemas.AccreditationUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*EDITORS)),
):
    with _domain_errors(db, accreditation_id=accreditation_id):
        accreditation = services.update_accreditation(
            db,
            tenant_id=current_user.tenant_id,
            accreditation_id=accreditation_id,
            data=payload,
            actor_user_id=current_user.id,
        )
    db.commit()
    db.refresh(accreditation)
    return accreditation


@router.post("/records/{accreditation_id}/submit", response_model=schemas.AccreditationRead)
def submit_accreditation(
    accreditation_id: str,
    payload: Optional[schemas.TransitionNotes] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*EDITORS)),
):
    with _domain_errors(db, accreditation_id=accreditation_id):
        accreditation = services.submit_accreditation(
            db,
            tenant_id=current_user.tenant_id,
            accreditation_id=accreditation_id,
            actor_user_id=current_user.id,
            notes=payload.notes if payload else None,
        )
    db.commit()
    db.refresh(accreditation)
    return accreditation


@router.post("/records/{accreditation_id}/approve", response_model=schemas.AccreditationRead)
def approve_accreditation(
    accreditation_id: str,
    payload: Optional[schemas.TransitionNotes] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*APPROVERS)),
):
    with _domain_errors(db, accreditation_id=accreditation_id):
        accreditation = services.approve_accreditation(
            db,
            tenant_id=current_user.tenant_id,
            accreditation_id=accreditation_id,
            actor_user_id=current_user.id,
            notes=payload.notes if payload else None,
        )
    db.commit()
    db.refresh(accreditation)
    return accreditation


@router.post("/records/{accreditation_id}/reject", response_model=schemas.AccreditationRead)
def reject_accreditation(
    accreditation_id: str,
    payload: schemas.TransitionNotes,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*APPROVERS)),
):
    with _domain_errors(db, accreditation_id=accreditation_id):
        accreditation = services.reject_accreditation(
            db,
            tenant_id=current_user.tenant_id,
            accreditation_id=accreditation_id,
            actor_user_id=current_user.id,
            notes=payload.notes,
        )
    db.commit()
    db.refresh(accreditation)
    return accreditation


@router.post("/records/{accreditation_id}/return-to-draft", response_model=schemas.AccreditationRead)
def return_to_draft(
    accreditation_id: str,
    payload: Optional[schemas.TransitionNotes] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*APPROVERS)),
):
    with _domain_errors(db, accreditation_id=accreditation_id):
        accreditation = services.return_to_draft(
            db,
            tenant_id=current_user.tenant_id,
            accreditation_id=accreditation_id,
            actor_user_id=current_user.id,
            notes=payload.notes if payload else None,
        )
    db.commit()
    db.refresh(accreditation)
    return accreditation


@router.post("/records/{accreditation_id}/revoke", response_model=schemas.AccreditationRead)
def revoke_accreditation(
    accreditation_id: str,
    payload: schemas.RevokeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*APPROVERS)),
):
    with _domain_errors(db, accreditation_id=accreditation_id):
        accreditation = services.revoke_accreditation(
            db,
            tenant_id=current_user.tenant_id,
            accreditation_id=accreditation_id,
            actor_user_id=current_user.id,
            reason=payload.reason,
        )
    db.commit()
    db.refresh(accreditation)
    return accreditation


@router.get("/records/{accreditation_id}/history", response_model=List[schemas.HistoryRead])
def list_history(
    accreditation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*EDITORS)),
):
    with _domain_errors(db):
        return services.list_history(db, tenant_id=current_user.tenant_id, accreditation_id=accreditation_id)


@router.get("/records/{accreditation_id}/credential", response_model=schemas.CredentialRead)
def get_credential(
    accreditation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*EDITORS)),
):
    with _domain_errors(db):
        return services.get_credential(db, tenant_id=current_user.tenant_id, accreditation_id=accreditation_id)


# --------------------------------------------------------------------------
# VERIFICATION / SCANS
# --------------------------------------------------------------------------


@router.get(
    "/verify/{token}",
    response_model=schemas.VerificationResult,
    response_model_exclude_none=True,
)
def verify_accreditation(
    token: str,
    response: Response,
    request: Request = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """
    Gate scan. Always answers 200 with `valid` and, when invalid, a `reason`;
    the attempt is recorded in the scan log either way.
    """
    result = verification.verify_token(
        db,
        tenant_id=current_user.tenant_id,
        token=token,
        scanned_by_id=current_user.id,
        device=request.headers.get("user-agent") if request is not None else None,
        ip_address=_client_ip(request),
    )
    db.commit()
    response.headers.update(NO_CACHE_HEADERS)
    return result


@router.get("/scans", response_model=List[schemas.ScanRead])
def list_scans(
    project_id: Optional[str] = None,
    accreditation_id: Optional[str] = None,
    was_valid: Optional[bool] = None,
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(*ADMINS)),
):
    return services.list_scans(
        db,
        tenant_id=current_user.tenant_id,
        project_id=project_id,
        accreditation_id=accreditation_id,
        was_valid=was_valid,
        limit=limit,
    )
