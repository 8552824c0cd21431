"""
Domain errors raised by the accreditation services.

Each carries the HTTP status the router should answer with, a stable
machine-readable `code` and a field-level `detail` list.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class AccreditationError(Exception):
    status_code = 400
    code = "accreditation_error"

    def __init__(self, message: str, detail: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or []

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "errors": self.detail}


class ValidationError(AccreditationError):
    status_code = 400
    code = "validation_error"


class ConflictError(AccreditationError):
    status_code = 409
    code = "conflict"

    def __init__(
        self,
        message: str,
        *,
        existing_number: Optional[str] = None,
        existing_status: Optional[str] = None,
        detail: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message, detail)
        self.existing_number = existing_number
        self.existing_status = existing_status

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.existing_number:
            payload["existing"] = {
                "accreditation_number": self.existing_number,
                "status": self.existing_status,
            }
        return payload


class NotFoundError(AccreditationError):
    status_code = 404
    code = "not_found"


class InvalidTransitionError(AccreditationError):
    status_code = 400
    code = "invalid_transition"

    def __init__(self, current_status: str, action: str):
        super().__init__(f"Cannot {action} an accreditation in status {current_status}")
        self.current_status = current_status
        self.action = action

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["current_status"] = self.current_status
        payload["action"] = self.action
        return payload


class GenerationExhaustedError(AccreditationError):
    status_code = 500
    code = "generation_exhausted"
