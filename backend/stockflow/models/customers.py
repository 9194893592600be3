from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z
from stockflow.validation import bps_to_percent, cents_to_money


# Payment terms -> due date offset in days
PAYMENT_TERMS_DAYS = {
    "cash": 0,
    "net_15": 15,
    "net_30": 30,
    "net_45": 45,
    "net_60": 60,
}

CUSTOMER_GROUPS = {"regular", "vip", "wholesale", "retail"}


class Customer(db.Model):
    """
    Customer with its credit ledger fields.

    current_balance_cents = sum of (grand_total - amount_paid) over the
    customer's confirmed/shipped/delivered sales. Only sales_service and
    credit_service move it, always under a row lock on the customer.
    credit_limit_cents == 0 means no limit.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_group_active", "customer_group", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    payment_terms = db.Column(db.String(16), nullable=False, default="cash")
    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    customer_group = db.Column(db.String(16), nullable=False, default="regular")

    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    last_order_date = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_credit_cents(self) -> int | None:
        if not self.credit_limit_cents:
            return None
        return self.credit_limit_cents - self.current_balance_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "payment_terms": self.payment_terms,
            "credit_limit": cents_to_money(self.credit_limit_cents),
            "current_balance": cents_to_money(self.current_balance_cents),
            "available_credit": cents_to_money(self.available_credit_cents),
            "discount_percentage": bps_to_percent(self.discount_bps),
            "customer_group": self.customer_group,
            "total_orders": self.total_orders,
            "total_sales_amount": cents_to_money(self.total_sales_cents),
            "last_order_date": to_utc_z(self.last_order_date),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
