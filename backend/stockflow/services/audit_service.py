# Overview: Append-only activity log of operator actions.

from __future__ import annotations

from typing import Any

from flask import has_request_context, request

from ..extensions import db
from ..models import ActivityLog
from ..models.documents import ACTIVITY_ACTIONS, ACTIVITY_RESOURCES

"""
Activity log invariants

- Append-only: no update or delete path exists.
- Entries are written inside the same DB transaction as the change they record.
- No business logic here; callers decide what is worth recording.
"""

MAX_DESCRIPTION_LENGTH = 200


def record_activity(
    *,
    actor_user_id: int | None,
    action: str,
    resource: str,
    resource_id: Any = None,
    description: str,
    before: dict | None = None,
    after: dict | None = None,
) -> ActivityLog:
    """
    Append one activity entry. Client IP and user agent are taken from the
    current request when there is one (CLI jobs have none).
    """
    if action not in ACTIVITY_ACTIONS:
        raise ValueError(f"Unknown activity action '{action}'")
    if resource not in ACTIVITY_RESOURCES:
        raise ValueError(f"Unknown activity resource '{resource}'")

    changes = None
    if before is not None or after is not None:
        changes = {"before": before, "after": after}

    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = (request.headers.get("User-Agent") or "")[:255] or None

    entry = ActivityLog(
        user_id=actor_user_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        description=description[:MAX_DESCRIPTION_LENGTH],
        changes=changes,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def list_activity(
    *,
    user_id: int | None = None,
    action: str | None = None,
    resource: str | None = None,
    resource_id: Any = None,
    from_date=None,
    to_date=None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[ActivityLog], int]:
    query = db.session.query(ActivityLog)
    if user_id:
        query = query.filter(ActivityLog.user_id == user_id)
    if action:
        query = query.filter(ActivityLog.action == action)
    if resource:
        query = query.filter(ActivityLog.resource == resource)
    if resource_id is not None:
        query = query.filter(ActivityLog.resource_id == str(resource_id))
    if from_date:
        query = query.filter(ActivityLog.occurred_at >= from_date)
    if to_date:
        query = query.filter(ActivityLog.occurred_at <= to_date)

    total = query.count()

    if offset < 0:
        offset = 0
    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    rows = query.order_by(ActivityLog.id.desc()).offset(offset).limit(limit).all()
    return rows, total
