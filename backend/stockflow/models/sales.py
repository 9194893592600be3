from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z, utcnow
from stockflow.validation import cents_to_money


SALE_STATUSES = {"draft", "confirmed", "shipped", "delivered", "cancelled", "returned"}
SALE_PAYMENT_STATUSES = {"unpaid", "partially_paid", "paid", "overdue"}

# Sales whose unpaid portion is owed by the customer
OPEN_SALE_STATUSES = {"confirmed", "shipped", "delivered"}


class Sale(db.Model):
    """
    Sales order.

    LIFECYCLE (sales_service.SALE_TRANSITIONS):
        draft -> confirmed -> shipped -> delivered
        draft | confirmed | shipped -> cancelled
        shipped | delivered -> returned

    Stock leaves on confirm and comes back on cancel/return. The customer's
    current_balance carries grand_total - amount_paid while the sale is open.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_customer_status", "customer_id", "status"),
        db.Index("ix_sales_payment_due", "payment_status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # Assigned on confirm
    invoice_number = db.Column(db.String(32), nullable=True, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")
    payment_method = db.Column(db.String(16), nullable=True)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    shipping_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_total_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Per-sale override of inventory.default_shipping_location_id
    shipping_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    # Lets confirm go through a credit limit breach
    credit_override = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    sales_person_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("sales", lazy="dynamic"))
    items = db.relationship(
        "SaleItem",
        backref="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def unpaid_cents(self) -> int:
        return self.grand_total_cents - self.amount_paid_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "amount_paid": cents_to_money(self.amount_paid_cents),
            "amount_due": cents_to_money(self.unpaid_cents),
            "shipping_cost": cents_to_money(self.shipping_cost_cents),
            "subtotal": cents_to_money(self.subtotal_cents),
            "discount_total": cents_to_money(self.discount_total_cents),
            "tax_total": cents_to_money(self.tax_total_cents),
            "grand_total": cents_to_money(self.grand_total_cents),
            "sale_date": to_utc_z(self.sale_date),
            "due_date": to_utc_z(self.due_date),
            "shipping_location_id": self.shipping_location_id,
            "credit_override": self.credit_override,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "sales_person_id": self.sales_person_id,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "closed_at": to_utc_z(self.closed_at),
            "items": [item.to_dict() for item in self.items],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SaleItem(db.Model):
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": cents_to_money(self.unit_price_cents),
            "discount": cents_to_money(self.discount_cents),
            "tax": cents_to_money(self.tax_cents),
            "line_total": cents_to_money(self.line_total_cents),
        }
