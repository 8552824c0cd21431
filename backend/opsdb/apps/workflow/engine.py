from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from opsdb.apps.accounts import models as account_models
from opsdb.apps.audit import services as audit_services

from .registry import WORKFLOWS


@dataclass
class TransitionError(Exception):
    code: str
    detail: List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _audit_payload(obj: Any) -> Dict[str, Any]:
    # Only scalar fields go to the activity log; datetimes as ISO strings.
    if not isinstance(obj, dict):
        return {}
    payload: Dict[str, Any] = {}
    for key, value in obj.items():
        if key == "tenant_id":
            continue
        if isinstance(value, datetime):
            payload[key] = value.isoformat()
        elif value is None or isinstance(value, (str, int, float, bool)):
            payload[key] = value
    return payload


def _extract_tenant_id(db: Session, actor_user_id: Optional[str], before_obj: Any, after_obj: Any) -> Optional[str]:
    for obj in (after_obj, before_obj):
        tenant_id = _get_value(obj, "tenant_id")
        if tenant_id:
            return tenant_id

    if actor_user_id:
        user = db.query(account_models.User).filter(account_models.User.id == actor_user_id).first()
        if user:
            return user.tenant_id
    return None


def resolve_transition(
    db: Session,
    *,
    entity_type: str,
    from_state: str,
    event: str,
    before_obj: Any,
    after_obj: Any,
) -> str:
    """
    Look up `event` for `from_state` in the registry and run its guards.

    Returns the target state. Raises TransitionError with code
    "invalid_transition" when the event is not legal from `from_state`, or
    "missing_requirements" when a guard fails.
    """
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "entity_type", "reason": f"No workflow registered for {entity_type}"}],
        )

    allowed = workflow.get("transitions", {}).get(from_state, {})
    rule: Optional[Tuple[str, list]] = allowed.get(event)
    if rule is None:
        raise TransitionError(
            code="invalid_transition",
            detail=[
                {
                    "field": "status",
                    "reason": f"Cannot {event} from status {from_state}",
                    "current_status": from_state,
                    "action": event,
                }
            ],
        )

    to_state, guards = rule
    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                db,
                before_obj=before_obj,
                after_obj=after_obj,
                from_state=from_state,
                to_state=to_state,
            )
        )

    if failures:
        raise TransitionError(code="missing_requirements", detail=failures)
    return to_state


def apply_transition(
    db: Session,
    *,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    from_state: str,
    event: str,
    before_obj: Any,
    after_obj: Any,
    effect: Optional[Callable[[str], None]] = None,
    correlation_id: Optional[str] = None,
    critical: bool = False,
) -> str:
    """
    Validate and apply one registered transition.

    `effect(to_state)` performs the entity mutation (status, stamps, history
    row) inside the caller's transaction; it runs only after every guard has
    passed. The activity log entry is appended last, best effort unless
    `critical`.
    """
    to_state = resolve_transition(
        db,
        entity_type=entity_type,
        from_state=from_state,
        event=event,
        before_obj=before_obj,
        after_obj=after_obj,
    )

    if effect is not None:
        effect(to_state)

    before_payload = _audit_payload(before_obj)
    before_payload["status"] = from_state
    after_payload = _audit_payload(after_obj)
    after_payload["status"] = to_state

    tenant_id = _extract_tenant_id(db, actor_user_id, before_obj, after_obj)
    if not tenant_id:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "tenant_id", "reason": "Unable to resolve tenant for transition"}],
        )

    audit_services.log_event(
        db,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=event,
        before=before_payload,
        after=after_payload,
        correlation_id=correlation_id,
        metadata={"workflow": entity_type},
        critical=critical,
    )
    return to_state
