from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z, utcnow


ACTIVITY_ACTIONS = {
    "create", "read", "update", "delete", "login", "logout",
    "export", "import", "approve", "reject", "cancel",
}
ACTIVITY_RESOURCES = {
    "user", "product", "category", "supplier", "customer", "purchase",
    "sale", "inventory", "stock_movement", "location", "settings",
}


class DocumentSequence(db.Model):
    """
    Monotonic counter per document type (INVOICE, PURCHASE_ORDER).

    next_number is the number the next allocation will hand out.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_document_sequences_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)


class ActivityLog(db.Model):
    """
    Append-only record of operator actions.

    Rows are written in the same transaction as the change they describe,
    so a rolled-back operation leaves no activity behind.
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("ix_activity_logs_resource", "resource", "resource_id"),
        db.Index("ix_activity_logs_user_time", "user_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    action = db.Column(db.String(16), nullable=False)
    resource = db.Column(db.String(32), nullable=False)
    resource_id = db.Column(db.String(64), nullable=True)
    description = db.Column(db.String(200), nullable=False)
    changes = db.Column(db.JSON, nullable=True)

    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "description": self.description,
            "changes": self.changes,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "occurred_at": to_utc_z(self.occurred_at),
        }
