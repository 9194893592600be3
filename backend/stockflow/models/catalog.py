from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z
from stockflow.validation import bps_to_percent, cents_to_money


PRODUCT_UNITS = {"pcs", "kg", "gm", "ltr", "ml", "mtr", "cm", "box", "pack", "dozen", "pair", "set"}

LOCATION_TYPES = {"warehouse", "store", "outlet", "factory", "office"}

STOCK_STATUS_IN_STOCK = "in_stock"
STOCK_STATUS_LOW_STOCK = "low_stock"
STOCK_STATUS_OUT_OF_STOCK = "out_of_stock"


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.String(500), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True)
    contact_person = db.Column(db.String(100), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    payment_terms = db.Column(db.String(16), nullable=False, default="net_30")

    # Maintained by the purchase engine when orders are placed / cancelled
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_purchase_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "payment_terms": self.payment_terms,
            "total_orders": self.total_orders,
            "total_purchase_amount": cents_to_money(self.total_purchase_cents),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Location(db.Model):
    """
    Physical place that holds stock.

    current_utilization is never stored: it is the sum of the stock index rows
    for this location (see stock_index_service.location_utilization).
    """
    __tablename__ = "locations"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    # Upper-case alnum + hyphen, normalized by catalog_service
    code = db.Column(db.String(10), nullable=False, unique=True)
    type = db.Column(db.String(16), nullable=False, default="warehouse")
    address = db.Column(db.String(255), nullable=True)
    capacity = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Location id={self.id} code={self.code!r}>"

    def to_dict(self, utilization: int | None = None) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "type": self.type,
            "address": self.address,
            "capacity": self.capacity,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
        if utilization is not None:
            data["current_utilization"] = utilization
            data["utilization_percentage"] = (
                round(utilization * 100 / self.capacity, 2) if self.capacity else None
            )
        return data


class Product(db.Model):
    """
    Product master data.

    STOCK FIELDS:
    - current_stock is the product aggregate: the sum of its stock_levels rows.
      It is written only by stock_ledger_service in the same transaction as the
      ledger entry that changes it. Never accept it from clients.
    - stock_status is derived from current_stock and minimum_stock.

    version_id doubles as the optimistic lock for concurrent stock updates.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_active", "category_id", "is_active"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    brand = db.Column(db.String(100), nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="pcs")

    # Authoritative storage in cents; the API speaks 2-decimal amounts
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    minimum_stock = db.Column(db.Integer, nullable=False, default=10)
    current_stock = db.Column(db.Integer, nullable=False, default=0)

    is_perishable = db.Column(db.Boolean, nullable=False, default=False)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} current_stock={self.current_stock}>"

    @property
    def stock_status(self) -> str:
        if self.current_stock <= 0:
            return STOCK_STATUS_OUT_OF_STOCK
        if self.current_stock <= self.minimum_stock:
            return STOCK_STATUS_LOW_STOCK
        return STOCK_STATUS_IN_STOCK

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "brand": self.brand,
            "unit": self.unit,
            "cost_price": cents_to_money(self.cost_price_cents),
            "selling_price": cents_to_money(self.selling_price_cents),
            "tax_rate": bps_to_percent(self.tax_rate_bps),
            "minimum_stock": self.minimum_stock,
            "current_stock": self.current_stock,
            "stock_status": self.stock_status,
            "is_perishable": self.is_perishable,
            "expiry_date": to_utc_z(self.expiry_date),
            "category_id": self.category_id,
            "supplier_id": self.supplier_id,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
