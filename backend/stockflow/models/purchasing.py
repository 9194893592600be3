from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z, utcnow
from stockflow.validation import cents_to_money


PURCHASE_STATUSES = {
    "draft",
    "pending",
    "approved",
    "ordered",
    "partially_received",
    "received",
    "cancelled",
}
PURCHASE_PAYMENT_STATUSES = {"unpaid", "partially_paid", "paid"}
PAYMENT_METHODS = {"cash", "check", "bank_transfer", "credit_card", "other"}


class Purchase(db.Model):
    """
    Purchase order.

    Totals are derived from the items on every create/update and never
    accepted from clients. received_qty on each item only moves through
    purchase_service.receive_purchase, which appends the matching ledger entry.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.Index("ix_purchases_supplier_status", "supplier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # Assigned when the order is placed
    purchase_order_number = db.Column(db.String(32), nullable=True, unique=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    status = db.Column(db.String(24), nullable=False, default="draft", index=True)

    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")
    payment_method = db.Column(db.String(16), nullable=True)
    payment_terms = db.Column(db.String(16), nullable=False, default="net_30")
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    shipping_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_total_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)

    order_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expected_date = db.Column(db.DateTime(timezone=True), nullable=True)
    received_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Per-purchase override of inventory.default_receiving_location_id
    receiving_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier")
    items = db.relationship(
        "PurchaseItem",
        backref="purchase",
        cascade="all, delete-orphan",
        order_by="PurchaseItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_number": self.purchase_order_number,
            "supplier_id": self.supplier_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_terms": self.payment_terms,
            "amount_paid": cents_to_money(self.amount_paid_cents),
            "shipping_cost": cents_to_money(self.shipping_cost_cents),
            "subtotal": cents_to_money(self.subtotal_cents),
            "discount_total": cents_to_money(self.discount_total_cents),
            "tax_total": cents_to_money(self.tax_total_cents),
            "grand_total": cents_to_money(self.grand_total_cents),
            "order_date": to_utc_z(self.order_date),
            "expected_date": to_utc_z(self.expected_date),
            "received_date": to_utc_z(self.received_date),
            "receiving_location_id": self.receiving_location_id,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "items": [item.to_dict() for item in self.items],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("ordered_qty >= 1", name="ck_purchase_items_ordered_positive"),
        db.CheckConstraint(
            "received_qty >= 0 AND received_qty <= ordered_qty",
            name="ck_purchase_items_received_range",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    ordered_qty = db.Column(db.Integer, nullable=False)
    received_qty = db.Column(db.Integer, nullable=False, default=0)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    @property
    def remaining_qty(self) -> int:
        return self.ordered_qty - self.received_qty

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "ordered_qty": self.ordered_qty,
            "received_qty": self.received_qty,
            "remaining_qty": self.remaining_qty,
            "unit_price": cents_to_money(self.unit_price_cents),
            "discount": cents_to_money(self.discount_cents),
            "tax": cents_to_money(self.tax_cents),
            "line_total": cents_to_money(self.line_total_cents),
        }
