# Overview: Table-driven status transitions for purchase and sales documents.

"""
Document lifecycle helper.

Each engine declares its state machine as a dict mapping
(current_status, event) -> next_status. Anything not in the table is an
illegal transition and surfaces as a conflict; no engine chains if/else
checks over statuses.
"""

from __future__ import annotations

from ..errors import ConflictError, ValidationError


class LifecycleError(ConflictError):
    """
    Raised when an invalid lifecycle transition is attempted.

    This is a domain error, not a technical error. It indicates
    that the user attempted an operation that violates business rules.
    """
    pass


def next_status(transitions: dict, current: str, event: str, *, entity: str) -> str:
    try:
        return transitions[(current, event)]
    except KeyError:
        raise LifecycleError(
            f"Cannot {event} {entity} in status '{current}'",
            details={"status": current, "event": event},
        )


def event_for_status(status_events: dict, target: str, *, entity: str) -> str:
    """Map a requested target status (PATCH .../status) to the event that reaches it."""
    if target not in status_events:
        raise ValidationError(
            f"Status '{target}' cannot be requested for a {entity}. "
            f"Must be one of: {', '.join(sorted(status_events))}"
        )
    return status_events[target]
