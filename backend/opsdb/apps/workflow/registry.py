from __future__ import annotations

from .guards import (
    guard_identity_documents_current,
    guard_reject_notes,
    guard_revoke_reason,
)

# entity_type -> from_state -> event -> (to_state, guards)
WORKFLOWS = {
    "accreditation": {
        "transitions": {
            "DRAFT": {
                "submit": ("PENDING", []),
                "edit": ("DRAFT", []),
            },
            "PENDING": {
                "approve": ("APPROVED", [guard_identity_documents_current]),
                "reject": ("REJECTED", [guard_reject_notes]),
                "return_to_draft": ("DRAFT", []),
                "edit": ("PENDING", []),
            },
            "APPROVED": {
                "revoke": ("REVOKED", [guard_revoke_reason]),
            },
            "REJECTED": {},
            "REVOKED": {},
            "ISSUED": {},
        }
    },
}
