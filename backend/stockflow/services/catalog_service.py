# backend/stockflow/services/catalog_service.py
"""
Reference data: products, categories, suppliers, locations.

Stock never passes through here. current_stock and the stock index are
written only by the ledger, so the product policy does not expose them, and
deleting anything the ledger or an order still points at is refused with
DependencyBlockedError (deactivate instead).
"""
from __future__ import annotations

import re

from ..extensions import db
from ..models import Category, Location, Product, Purchase, PurchaseItem, SaleItem, StockLevel, StockMovement, Supplier
from ..models.catalog import LOCATION_TYPES, PRODUCT_UNITS, STOCK_STATUS_LOW_STOCK, STOCK_STATUS_OUT_OF_STOCK
from ..models.customers import PAYMENT_TERMS_DAYS
from ..errors import DependencyBlockedError, NotFoundError, ValidationError
from ..validation import ModelValidationPolicy, validate_payload
from . import audit_service, settings_service
from .concurrency import flush_unique, run_with_retry
from .numbering_service import DOCUMENT_PRODUCT_SKU, next_document_number
from .stock_index_service import location_utilization


SKU_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
LOCATION_CODE_PATTERN = re.compile(r"^[A-Z0-9-]+$")


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "barcode", "name", "description", "brand", "unit",
        "cost_price", "selling_price", "tax_rate", "minimum_stock",
        "is_perishable", "expiry_date", "category_id", "supplier_id", "is_active",
    },
    required_on_create={"name"},
    money_fields={"cost_price": "cost_price_cents", "selling_price": "selling_price_cents"},
    percent_fields={"tax_rate": "tax_rate_bps"},
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "is_active"},
    required_on_create={"name"},
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "code", "contact_person", "email", "phone", "payment_terms", "is_active"},
    required_on_create={"name"},
)

LOCATION_POLICY = ModelValidationPolicy(
    writable_fields={"name", "code", "type", "address", "capacity", "is_active"},
    required_on_create={"name", "code"},
)


def _apply(entity, patch: dict) -> None:
    for k, v in patch.items():
        setattr(entity, k, v)


def _require(model, entity_id: int, label: str):
    entity = db.session.get(model, entity_id)
    if entity is None:
        raise NotFoundError(f"{label} {entity_id} not found")
    return entity


# =============================================================================
# Products
# =============================================================================

def _enforce_product_rules(patch: dict) -> None:
    if "sku" in patch:
        sku = patch["sku"]
        if not sku or not SKU_PATTERN.match(sku):
            raise ValidationError("sku may contain only letters, digits, hyphen and underscore")
        patch["sku"] = sku.upper()
    if patch.get("barcode") == "":
        patch["barcode"] = None
    if "unit" in patch and patch["unit"] not in PRODUCT_UNITS:
        raise ValidationError(f"Invalid unit '{patch['unit']}'. Must be one of: {', '.join(sorted(PRODUCT_UNITS))}")
    if "minimum_stock" in patch and patch["minimum_stock"] < 0:
        raise ValidationError("minimum_stock must be >= 0")
    if patch.get("category_id") is not None:
        _require(Category, patch["category_id"], "Category")
    if patch.get("supplier_id") is not None:
        _require(Supplier, patch["supplier_id"], "Supplier")


def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    supplier_id: int | None = None,
    is_active: bool | None = None,
    low_stock: bool = False,
):
    query = db.session.query(Product)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            db.or_(Product.name.ilike(pattern), Product.sku.ilike(pattern), Product.barcode.ilike(pattern))
        )
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if supplier_id is not None:
        query = query.filter(Product.supplier_id == supplier_id)
    if is_active is not None:
        query = query.filter(Product.is_active.is_(is_active))
    if low_stock:
        query = query.filter(Product.current_stock <= Product.minimum_stock)
    return query.order_by(Product.name.asc(), Product.id.asc())


def stock_alerts(kind: str) -> dict:
    """
    Active products that need restocking.

    kind "low_stock" lists products at or below minimum_stock (most urgent
    first); "out_of_stock" lists those with nothing on hand. Both lists stay
    empty while the inventory.low_stock_alert setting is off.
    """
    if kind not in (STOCK_STATUS_LOW_STOCK, STOCK_STATUS_OUT_OF_STOCK):
        raise ValidationError(f"Unknown stock alert '{kind}'")

    if not settings_service.get_setting(settings_service.KEY_LOW_STOCK_ALERT):
        return {"alert": kind, "enabled": False, "items": [], "count": 0}

    query = db.session.query(Product).filter(Product.is_active.is_(True))
    if kind == STOCK_STATUS_OUT_OF_STOCK:
        query = query.filter(Product.current_stock <= 0).order_by(Product.name.asc(), Product.id.asc())
    else:
        query = query.filter(Product.current_stock <= Product.minimum_stock).order_by(
            Product.current_stock.asc(), Product.name.asc()
        )

    products = query.all()
    return {
        "alert": kind,
        "enabled": True,
        "items": [p.to_dict() for p in products],
        "count": len(products),
    }


def get_product(product_id: int) -> Product:
    return _require(Product, product_id, "Product")


def create_product(*, payload: dict, operator_id: int | None = None) -> Product:
    """
    Create a product. When no sku is given one is generated from the
    inventory.sku_prefix setting, e.g. "SKU-000007".
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    _enforce_product_rules(patch)

    def _op():
        product = Product()
        _apply(product, patch)
        if not product.sku:
            prefix = settings_service.get_setting(settings_service.KEY_SKU_PREFIX)
            product.sku = next_document_number(document_type=DOCUMENT_PRODUCT_SKU, prefix=prefix)
        db.session.add(product)
        flush_unique("A product with this sku or barcode already exists", {"sku": product.sku})

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="create",
            resource="product",
            resource_id=product.id,
            description=f"Created product {product.sku}",
            after=product.to_dict(),
        )
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(*, product_id: int, payload: dict, operator_id: int | None = None) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    _enforce_product_rules(patch)
    if "sku" in patch and not patch["sku"]:
        raise ValidationError("sku cannot be blank")

    def _op():
        product = get_product(product_id)
        before = product.to_dict()
        _apply(product, patch)
        flush_unique("A product with this sku or barcode already exists", {"product_id": product_id})

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="update",
            resource="product",
            resource_id=product.id,
            description=f"Updated product {product.sku}",
            before=before,
            after=product.to_dict(),
        )
        db.session.commit()
        return product

    return run_with_retry(_op)


def delete_product(*, product_id: int, operator_id: int | None = None) -> None:
    def _op():
        product = get_product(product_id)
        blockers = {
            "movements": db.session.query(StockMovement.id).filter_by(product_id=product.id).count(),
            "purchase_items": db.session.query(PurchaseItem.id).filter_by(product_id=product.id).count(),
            "sale_items": db.session.query(SaleItem.id).filter_by(product_id=product.id).count(),
        }
        blockers = {k: v for k, v in blockers.items() if v}
        if blockers:
            raise DependencyBlockedError(
                f"Product {product.sku} has history and cannot be deleted; deactivate it instead",
                details=blockers,
            )

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="delete",
            resource="product",
            resource_id=product.id,
            description=f"Deleted product {product.sku}",
            before=product.to_dict(),
        )
        db.session.query(StockLevel).filter_by(product_id=product.id).delete()
        db.session.delete(product)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# Categories
# =============================================================================

def list_categories(*, is_active: bool | None = None):
    query = db.session.query(Category)
    if is_active is not None:
        query = query.filter(Category.is_active.is_(is_active))
    return query.order_by(Category.name.asc())


def create_category(*, payload: dict, operator_id: int | None = None) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)

    def _op():
        category = Category()
        _apply(category, patch)
        db.session.add(category)
        flush_unique(f"Category '{patch['name']}' already exists")
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="create",
            resource="category",
            resource_id=category.id,
            description=f"Created category {category.name}",
            after=category.to_dict(),
        )
        db.session.commit()
        return category

    return run_with_retry(_op)


def update_category(*, category_id: int, payload: dict, operator_id: int | None = None) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)

    def _op():
        category = _require(Category, category_id, "Category")
        before = category.to_dict()
        _apply(category, patch)
        flush_unique("Category name already exists")
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="update",
            resource="category",
            resource_id=category.id,
            description=f"Updated category {category.name}",
            before=before,
            after=category.to_dict(),
        )
        db.session.commit()
        return category

    return run_with_retry(_op)


def delete_category(*, category_id: int, operator_id: int | None = None) -> None:
    def _op():
        category = _require(Category, category_id, "Category")
        count = db.session.query(Product.id).filter_by(category_id=category.id).count()
        if count:
            raise DependencyBlockedError(
                f"Category {category.name} still has {count} product(s)",
                details={"products": count},
            )
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="delete",
            resource="category",
            resource_id=category.id,
            description=f"Deleted category {category.name}",
            before=category.to_dict(),
        )
        db.session.delete(category)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# Suppliers
# =============================================================================

def _enforce_supplier_rules(patch: dict) -> None:
    if patch.get("code"):
        patch["code"] = patch["code"].upper()
    elif "code" in patch:
        patch["code"] = None
    if "payment_terms" in patch and patch["payment_terms"] not in PAYMENT_TERMS_DAYS:
        raise ValidationError(
            f"Invalid payment_terms '{patch['payment_terms']}'. Must be one of: {', '.join(PAYMENT_TERMS_DAYS)}"
        )


def list_suppliers(*, search: str | None = None, is_active: bool | None = None):
    query = db.session.query(Supplier)
    if search:
        pattern = f"%{search}%"
        query = query.filter(db.or_(Supplier.name.ilike(pattern), Supplier.code.ilike(pattern)))
    if is_active is not None:
        query = query.filter(Supplier.is_active.is_(is_active))
    return query.order_by(Supplier.name.asc(), Supplier.id.asc())


def get_supplier(supplier_id: int) -> Supplier:
    return _require(Supplier, supplier_id, "Supplier")


def create_supplier(*, payload: dict, operator_id: int | None = None) -> Supplier:
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=False)
    _enforce_supplier_rules(patch)

    def _op():
        supplier = Supplier()
        _apply(supplier, patch)
        db.session.add(supplier)
        flush_unique("A supplier with this code already exists", {"code": patch.get("code")})
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="create",
            resource="supplier",
            resource_id=supplier.id,
            description=f"Created supplier {supplier.name}",
            after=supplier.to_dict(),
        )
        db.session.commit()
        return supplier

    return run_with_retry(_op)


def update_supplier(*, supplier_id: int, payload: dict, operator_id: int | None = None) -> Supplier:
    patch = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY, partial=True)
    _enforce_supplier_rules(patch)

    def _op():
        supplier = get_supplier(supplier_id)
        before = supplier.to_dict()
        _apply(supplier, patch)
        flush_unique("A supplier with this code already exists", {"code": patch.get("code")})
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="update",
            resource="supplier",
            resource_id=supplier.id,
            description=f"Updated supplier {supplier.name}",
            before=before,
            after=supplier.to_dict(),
        )
        db.session.commit()
        return supplier

    return run_with_retry(_op)


def delete_supplier(*, supplier_id: int, operator_id: int | None = None) -> None:
    def _op():
        supplier = get_supplier(supplier_id)
        blockers = {
            "products": db.session.query(Product.id).filter_by(supplier_id=supplier.id).count(),
            "purchases": db.session.query(Purchase.id).filter_by(supplier_id=supplier.id).count(),
        }
        blockers = {k: v for k, v in blockers.items() if v}
        if blockers:
            raise DependencyBlockedError(
                f"Supplier {supplier.name} is still referenced",
                details=blockers,
            )
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="delete",
            resource="supplier",
            resource_id=supplier.id,
            description=f"Deleted supplier {supplier.name}",
            before=supplier.to_dict(),
        )
        db.session.delete(supplier)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# Locations
# =============================================================================

def _enforce_location_rules(patch: dict) -> None:
    if "code" in patch:
        code = (patch["code"] or "").upper()
        if not LOCATION_CODE_PATTERN.match(code):
            raise ValidationError("code may contain only letters, digits and hyphens")
        patch["code"] = code
    if "type" in patch and patch["type"] not in LOCATION_TYPES:
        raise ValidationError(f"Invalid type '{patch['type']}'. Must be one of: {', '.join(sorted(LOCATION_TYPES))}")
    if patch.get("capacity") is not None and patch["capacity"] < 0:
        raise ValidationError("capacity must be >= 0")


def list_locations(*, is_active: bool | None = None, type: str | None = None) -> list[dict]:
    query = db.session.query(Location)
    if is_active is not None:
        query = query.filter(Location.is_active.is_(is_active))
    if type:
        query = query.filter(Location.type == type)
    return [loc.to_dict(location_utilization(loc.id)) for loc in query.order_by(Location.code.asc())]


def get_location(location_id: int) -> Location:
    return _require(Location, location_id, "Location")


def create_location(*, payload: dict, operator_id: int | None = None) -> Location:
    patch = validate_payload(model=Location, payload=payload, policy=LOCATION_POLICY, partial=False)
    _enforce_location_rules(patch)

    def _op():
        location = Location()
        _apply(location, patch)
        db.session.add(location)
        flush_unique(f"Location code {patch['code']} already exists", {"code": patch["code"]})
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="create",
            resource="location",
            resource_id=location.id,
            description=f"Created location {location.code}",
            after=location.to_dict(),
        )
        db.session.commit()
        return location

    return run_with_retry(_op)


def update_location(*, location_id: int, payload: dict, operator_id: int | None = None) -> Location:
    """
    Update a location. Lowering capacity below what is already stored is
    refused; deactivation is allowed with stock on hand (it only blocks
    new inbound entries).
    """
    patch = validate_payload(model=Location, payload=payload, policy=LOCATION_POLICY, partial=True)
    _enforce_location_rules(patch)

    def _op():
        location = get_location(location_id)
        if patch.get("capacity") is not None:
            used = location_utilization(location.id)
            if patch["capacity"] < used:
                raise ValidationError(
                    f"capacity {patch['capacity']} is below current utilization {used}",
                    details={"current_utilization": used},
                )
        before = location.to_dict()
        _apply(location, patch)
        flush_unique("Location code already exists", {"code": patch.get("code")})
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="update",
            resource="location",
            resource_id=location.id,
            description=f"Updated location {location.code}",
            before=before,
            after=location.to_dict(),
        )
        db.session.commit()
        return location

    return run_with_retry(_op)


def delete_location(*, location_id: int, operator_id: int | None = None) -> None:
    def _op():
        location = get_location(location_id)
        blockers = {
            "stock_on_hand": location_utilization(location.id),
            "movements": (
                db.session.query(StockMovement.id)
                .filter(db.or_(
                    StockMovement.location_from_id == location.id,
                    StockMovement.location_to_id == location.id,
                ))
                .count()
            ),
        }
        blockers = {k: v for k, v in blockers.items() if v}
        if blockers:
            raise DependencyBlockedError(
                f"Location {location.code} holds stock or ledger history; deactivate it instead",
                details=blockers,
            )
        for key in (settings_service.KEY_DEFAULT_RECEIVING_LOCATION, settings_service.KEY_DEFAULT_SHIPPING_LOCATION):
            if settings_service.get_setting(key) == location.id:
                raise DependencyBlockedError(
                    f"Location {location.code} is the configured {key}",
                    details={"setting": key},
                )
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="delete",
            resource="location",
            resource_id=location.id,
            description=f"Deleted location {location.code}",
            before=location.to_dict(),
        )
        db.session.query(StockLevel).filter_by(location_id=location.id).delete()
        db.session.delete(location)
        db.session.commit()

    run_with_retry(_op)
