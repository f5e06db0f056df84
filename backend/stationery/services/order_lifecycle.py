# Overview: Order status rules shared by the tracker, the admin board and the routes.

"""
Stationery Order Lifecycle

================================================================================
STATE MACHINE:
    pending -> exported -> submitted -> approved
                                     -> rejected

    pending:   Order created from the cart, ready for PDF export
    exported:  PDF exported, waiting for a signed copy to be uploaded
    submitted: Signed PDF uploaded, waiting for an administrator
    approved:  TERMINAL
    rejected:  TERMINAL (admin comment explains why)

RULES:
1. Statuses only move forward along the path above
2. approved and rejected are terminal; nothing leaves them
3. A realtime push or REST result may skip intermediate statuses
   (pending -> approved) because earlier pushes can be lost or reordered,
   but it may never move an order backwards
================================================================================
"""

from __future__ import annotations

from typing import Literal


PENDING = "pending"
EXPORTED = "exported"
SUBMITTED = "submitted"
APPROVED = "approved"
REJECTED = "rejected"

VALID_STATUSES = {PENDING, EXPORTED, SUBMITTED, APPROVED, REJECTED}
TERMINAL_STATUSES = {APPROVED, REJECTED}
OrderStatus = Literal["pending", "exported", "submitted", "approved", "rejected"]

STATUS_ORDINALS = {
    PENDING: 0,
    EXPORTED: 1,
    SUBMITTED: 2,
    APPROVED: 3,
    REJECTED: 3,
}

ALLOWED_TRANSITIONS = {
    PENDING: {EXPORTED},
    EXPORTED: {SUBMITTED},
    SUBMITTED: {APPROVED, REJECTED},
    APPROVED: set(),
    REJECTED: set(),
}

STATUS_METADATA = {
    PENDING: {
        "label": "Order Created",
        "progress": 25,
        "description": "Your order has been created and is ready for PDF export",
        "next_action": "Export PDF",
    },
    EXPORTED: {
        "label": "PDF Exported",
        "progress": 50,
        "description": "PDF has been exported. Please get it signed and upload back",
        "next_action": "Upload Signed PDF",
    },
    SUBMITTED: {
        "label": "Submitted for Approval",
        "progress": 75,
        "description": "Signed PDF uploaded. Waiting for admin approval",
        "next_action": "Waiting for Admin",
    },
    APPROVED: {
        "label": "Approved",
        "progress": 100,
        "description": "Your order has been approved and will be processed",
        "next_action": "Completed",
    },
    REJECTED: {
        "label": "Rejected",
        "progress": 100,
        "description": "Your order has been rejected. Please check admin comments",
        "next_action": "Review Comments",
    },
}


class LifecycleError(ValueError):
    """
    Raised when a status value or transition violates the lifecycle rules.

    This is a domain error, not a technical error.
    """
    pass


def normalize_status(status) -> str:
    """Lower-case and strip a backend status string (the enum serializes by name)."""
    if status is None:
        raise LifecycleError("Order status is missing")
    return str(status).strip().lower()


def validate_status(status: str) -> None:
    """
    Raises:
        LifecycleError: If status is not in VALID_STATUSES
    """
    if status not in VALID_STATUSES:
        raise LifecycleError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def is_terminal(status: str) -> bool:
    validate_status(status)
    return status in TERMINAL_STATUSES


def ordinal(status: str) -> int:
    validate_status(status)
    return STATUS_ORDINALS[status]


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check a single direct step of the state machine.

    Valid transitions:
    - pending -> exported
    - exported -> submitted
    - submitted -> approved | rejected
    """
    validate_status(from_status)
    validate_status(to_status)
    return to_status in ALLOWED_TRANSITIONS[from_status]


def is_reachable(from_status: str, to_status: str) -> bool:
    """
    True when `to_status` lies strictly later than `from_status` on some path.

    Examples:
    - pending -> approved: True (intermediate pushes were missed)
    - submitted -> exported: False (regression)
    - approved -> rejected: False (terminal)
    - exported -> exported: False (duplicate)
    """
    validate_status(from_status)
    validate_status(to_status)

    frontier = set(ALLOWED_TRANSITIONS[from_status])
    seen: set[str] = set()
    while frontier:
        status = frontier.pop()
        if status == to_status:
            return True
        if status in seen:
            continue
        seen.add(status)
        frontier |= ALLOWED_TRANSITIONS[status]
    return False


def available_actions(status: str) -> dict:
    """
    Derived "can perform next action" flags consumed by the UI.

    Only one action is ever offered: export in pending, upload in exported,
    approve/reject in submitted, nothing once terminal.
    """
    validate_status(status)
    return {
        "can_export": status == PENDING,
        "can_upload_signed": status == EXPORTED,
        "can_review": status == SUBMITTED,
        "is_terminal": status in TERMINAL_STATUSES,
    }


def describe(status: str) -> dict:
    validate_status(status)
    return {"code": status, **STATUS_METADATA[status]}
