from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z, utcnow
from stockflow.validation import cents_to_money


MOVEMENT_TYPE_IN = "in"
MOVEMENT_TYPE_OUT = "out"
MOVEMENT_TYPE_TRANSFER = "transfer"
MOVEMENT_TYPE_ADJUSTMENT = "adjustment"
MOVEMENT_TYPES = {MOVEMENT_TYPE_IN, MOVEMENT_TYPE_OUT, MOVEMENT_TYPE_TRANSFER, MOVEMENT_TYPE_ADJUSTMENT}

MOVEMENT_REASONS = {
    "purchase",
    "sale",
    "return",
    "damage",
    "loss",
    "theft",
    "transfer",
    "adjustment",
    "opening_stock",
    "manufacturing",
}

SOURCE_TYPES = {"purchase", "sale", "transfer", "adjustment"}


class StockMovement(db.Model):
    """
    One immutable stock ledger entry.

    The autoincrement primary key is the ledger sequence number:
    sqlite_autoincrement guarantees ids are never reused, so append order
    equals sequence order even when two entries share a timestamp.

    Shape rules (enforced by stock_ledger_service.append_movement):
    - in:         location_to only
    - out:        location_from only
    - transfer:   both legs, distinct
    - adjustment: exactly one leg (to = increase, from = decrease)
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_stock_movements_quantity_positive"),
        db.Index("ix_stock_movements_product_id_seq", "product_id", "id"),
        db.Index("ix_stock_movements_source", "source_type", "source_id"),
        db.Index("ix_stock_movements_type_reason", "type", "reason"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    location_from_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)
    location_to_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    # What caused the movement (purchase / sale / transfer / adjustment)
    source_type = db.Column(db.String(16), nullable=True)
    source_id = db.Column(db.Integer, nullable=True)
    source_number = db.Column(db.String(64), nullable=True)

    # Product aggregate before / after this entry
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    notes = db.Column(db.String(200), nullable=True)

    # Soft-hide only; hidden entries still count towards stock
    is_hidden = db.Column(db.Boolean, nullable=False, default=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")
    location_from = db.relationship("Location", foreign_keys=[location_from_id])
    location_to = db.relationship("Location", foreign_keys=[location_to_id])

    @property
    def sequence(self) -> int:
        return self.id

    @property
    def movement_number(self) -> str | None:
        if self.id is None:
            return None
        return f"MOV-{self.id:06d}"

    def __repr__(self) -> str:
        return (
            f"<StockMovement seq={self.id} product_id={self.product_id} "
            f"type={self.type} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "movement_number": self.movement_number,
            "product_id": self.product_id,
            "type": self.type,
            "reason": self.reason,
            "quantity": self.quantity,
            "location_from_id": self.location_from_id,
            "location_to_id": self.location_to_id,
            "source": {
                "type": self.source_type,
                "id": self.source_id,
                "number": self.source_number,
            } if self.source_type else None,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "unit_cost": cents_to_money(self.unit_cost_cents),
            "total_cost": cents_to_money(self.total_cost_cents),
            "operator_id": self.operator_id,
            "notes": self.notes,
            "is_hidden": self.is_hidden,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class StockLevel(db.Model):
    """
    Per-location stock index row: (product, location) -> on-hand.

    Derived from the ledger and written only in the ledger append transaction.
    Rebuildable at any time with stock_index_service.rebuild_stock_index().
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_stock_levels_product_location"),
        db.Index("ix_stock_levels_location", "location_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product")
    location = db.relationship("Location")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class Transfer(db.Model):
    """Single-product move between two locations; owns exactly one transfer ledger entry."""
    __tablename__ = "transfers"
    __table_args__ = (
        db.CheckConstraint("from_location_id <> to_location_id", name="ck_transfers_distinct_locations"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.String(200), nullable=True)

    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)
    operator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    movement = db.relationship("StockMovement", foreign_keys=[movement_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "from_location_id": self.from_location_id,
            "to_location_id": self.to_location_id,
            "quantity": self.quantity,
            "notes": self.notes,
            "movement_id": self.movement_id,
            "operator_id": self.operator_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
