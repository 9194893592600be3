# backend/stockflow/services/purchase_service.py
"""
Purchase order engine.

LIFECYCLE (PURCHASE_TRANSITIONS):
    draft -> pending -> approved -> ordered -> partially_received -> received
    draft | pending | approved | ordered -> cancelled

- create/update recompute totals and never touch stock.
- ordering assigns the PO number and counts the order on the supplier.
- receiving appends one 'in'/'purchase' ledger entry per received line at
  the receiving location; received_qty never passes ordered_qty.
- once anything was received the purchase cannot be cancelled; only a
  negative adjustment movement can take the stock back out.
"""
from __future__ import annotations

from datetime import datetime

from stockflow.extensions import db
from stockflow.models import Location, Purchase, PurchaseItem, Supplier
from stockflow.models.customers import PAYMENT_TERMS_DAYS
from stockflow.models.purchasing import PURCHASE_STATUSES, PURCHASE_PAYMENT_STATUSES, PAYMENT_METHODS
from stockflow.errors import ValidationError, NotFoundError
from stockflow.validation import (
    parse_int,
    parse_money,
    parse_choice,
    parse_datetime,
    parse_optional_int,
)
from stockflow.time_utils import utcnow
from stockflow.services import audit_service, settings_service
from stockflow.services.concurrency import lock_for_update, lock_products, run_with_retry
from stockflow.services.lifecycle_service import next_status, event_for_status, LifecycleError
from stockflow.services.payment_service import apply_payment_status, rebase_payment
from stockflow.services.numbering_service import next_document_number, DOCUMENT_PURCHASE_ORDER
from stockflow.services.pricing_service import price_lines, document_totals
from stockflow.services.stock_ledger_service import post_movement


PURCHASE_STATUS_DRAFT = "draft"
PURCHASE_STATUS_PENDING = "pending"
PURCHASE_STATUS_APPROVED = "approved"
PURCHASE_STATUS_ORDERED = "ordered"
PURCHASE_STATUS_PARTIALLY_RECEIVED = "partially_received"
PURCHASE_STATUS_RECEIVED = "received"
PURCHASE_STATUS_CANCELLED = "cancelled"

EVENT_SUBMIT = "submit"
EVENT_APPROVE = "approve"
EVENT_ORDER = "order"
EVENT_RECEIVE_PARTIAL = "receive_partial"
EVENT_RECEIVE_FULL = "receive_full"
EVENT_CANCEL = "cancel"

PURCHASE_TRANSITIONS = {
    (PURCHASE_STATUS_DRAFT, EVENT_SUBMIT): PURCHASE_STATUS_PENDING,
    (PURCHASE_STATUS_PENDING, EVENT_APPROVE): PURCHASE_STATUS_APPROVED,
    (PURCHASE_STATUS_APPROVED, EVENT_ORDER): PURCHASE_STATUS_ORDERED,
    (PURCHASE_STATUS_ORDERED, EVENT_RECEIVE_PARTIAL): PURCHASE_STATUS_PARTIALLY_RECEIVED,
    (PURCHASE_STATUS_ORDERED, EVENT_RECEIVE_FULL): PURCHASE_STATUS_RECEIVED,
    (PURCHASE_STATUS_PARTIALLY_RECEIVED, EVENT_RECEIVE_PARTIAL): PURCHASE_STATUS_PARTIALLY_RECEIVED,
    (PURCHASE_STATUS_PARTIALLY_RECEIVED, EVENT_RECEIVE_FULL): PURCHASE_STATUS_RECEIVED,
    (PURCHASE_STATUS_DRAFT, EVENT_CANCEL): PURCHASE_STATUS_CANCELLED,
    (PURCHASE_STATUS_PENDING, EVENT_CANCEL): PURCHASE_STATUS_CANCELLED,
    (PURCHASE_STATUS_APPROVED, EVENT_CANCEL): PURCHASE_STATUS_CANCELLED,
    (PURCHASE_STATUS_ORDERED, EVENT_CANCEL): PURCHASE_STATUS_CANCELLED,
}

# Statuses a client may request through PATCH /purchases/<id>/status
STATUS_EVENTS = {
    PURCHASE_STATUS_PENDING: EVENT_SUBMIT,
    PURCHASE_STATUS_APPROVED: EVENT_APPROVE,
    PURCHASE_STATUS_ORDERED: EVENT_ORDER,
    PURCHASE_STATUS_CANCELLED: EVENT_CANCEL,
}

EDITABLE_STATUSES = {PURCHASE_STATUS_DRAFT, PURCHASE_STATUS_PENDING}


def _get_purchase_for_update(purchase_id: int) -> Purchase:
    purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
    if not purchase:
        raise NotFoundError(f"Purchase {purchase_id} not found")
    return purchase


def _active_supplier(supplier_id) -> Supplier:
    supplier_id = parse_int(supplier_id, "supplier_id")
    supplier = db.session.query(Supplier).filter_by(id=supplier_id).first()
    if not supplier:
        raise NotFoundError(f"Supplier {supplier_id} not found", details={"supplier_id": supplier_id})
    if not supplier.is_active:
        raise ValidationError(f"Supplier {supplier.name} is inactive")
    return supplier


def _check_location(location_id) -> int | None:
    location_id = parse_optional_int(location_id, "receiving_location_id")
    if location_id is not None and not db.session.query(Location.id).filter_by(id=location_id).first():
        raise NotFoundError(f"Location {location_id} not found", details={"location_id": location_id})
    return location_id


def _replace_items(purchase: Purchase, items, shipping_cost_cents: int) -> None:
    lines = price_lines(
        items,
        quantity_field="ordered_qty",
        default_price=lambda product: product.cost_price_cents,
    )
    purchase.items.clear()
    for line in lines:
        purchase.items.append(PurchaseItem(
            product_id=line.product.id,
            ordered_qty=line.quantity,
            received_qty=0,
            unit_price_cents=line.unit_price_cents,
            discount_cents=line.discount_cents,
            tax_cents=line.tax_cents,
            line_total_cents=line.line_total_cents,
        ))
    for field, value in document_totals(lines, shipping_cost_cents).items():
        setattr(purchase, field, value)


def create_purchase(
    *,
    supplier_id,
    items,
    operator_id: int | None = None,
    shipping_cost=0,
    payment_terms: str = "net_30",
    payment_method: str | None = None,
    order_date=None,
    expected_date=None,
    receiving_location_id=None,
    notes: str | None = None,
) -> Purchase:
    """Create a draft purchase order. No stock effect."""
    def _op():
        supplier = _active_supplier(supplier_id)
        purchase = Purchase(
            supplier_id=supplier.id,
            status=PURCHASE_STATUS_DRAFT,
            payment_status="unpaid",
            payment_terms=parse_choice(payment_terms, "payment_terms", PAYMENT_TERMS_DAYS),
            payment_method=(
                parse_choice(payment_method, "payment_method", PAYMENT_METHODS) if payment_method else None
            ),
            shipping_cost_cents=parse_money(shipping_cost or 0, "shipping_cost"),
            order_date=parse_datetime(order_date, "order_date") or utcnow(),
            expected_date=parse_datetime(expected_date, "expected_date"),
            receiving_location_id=_check_location(receiving_location_id),
            notes=notes,
            created_by_user_id=operator_id,
        )
        _replace_items(purchase, items, purchase.shipping_cost_cents)
        db.session.add(purchase)
        db.session.flush()

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="create",
            resource="purchase",
            resource_id=purchase.id,
            description=f"Created purchase for supplier {supplier.name}",
            after=purchase.to_dict(),
        )
        db.session.commit()
        return purchase

    return run_with_retry(_op)


UPDATABLE_FIELDS = {
    "supplier_id",
    "items",
    "shipping_cost",
    "payment_terms",
    "payment_method",
    "order_date",
    "expected_date",
    "receiving_location_id",
    "notes",
}


def update_purchase(*, purchase_id: int, changes: dict, operator_id: int | None = None) -> Purchase:
    """Edit a draft or pending purchase and recompute its totals."""
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    def _op():
        purchase = _get_purchase_for_update(purchase_id)
        if purchase.status not in EDITABLE_STATUSES:
            raise LifecycleError(
                f"Cannot edit purchase in status '{purchase.status}'",
                details={"status": purchase.status},
            )
        before = purchase.to_dict()

        if "supplier_id" in changes:
            purchase.supplier_id = _active_supplier(changes["supplier_id"]).id
        if "payment_terms" in changes:
            purchase.payment_terms = parse_choice(changes["payment_terms"], "payment_terms", PAYMENT_TERMS_DAYS)
        if "payment_method" in changes:
            method = changes["payment_method"]
            purchase.payment_method = parse_choice(method, "payment_method", PAYMENT_METHODS) if method else None
        if "order_date" in changes:
            purchase.order_date = parse_datetime(changes["order_date"], "order_date") or purchase.order_date
        if "expected_date" in changes:
            purchase.expected_date = parse_datetime(changes["expected_date"], "expected_date")
        if "receiving_location_id" in changes:
            purchase.receiving_location_id = _check_location(changes["receiving_location_id"])
        if "notes" in changes:
            purchase.notes = changes["notes"]
        if "shipping_cost" in changes:
            purchase.shipping_cost_cents = parse_money(changes["shipping_cost"] or 0, "shipping_cost")

        if "items" in changes:
            _replace_items(purchase, changes["items"], purchase.shipping_cost_cents)
        else:
            # Re-derive totals from the stored lines (shipping may have changed)
            purchase.grand_total_cents = (
                purchase.subtotal_cents
                - purchase.discount_total_cents
                + purchase.tax_total_cents
                + purchase.shipping_cost_cents
            )
        rebase_payment(purchase)
        db.session.flush()

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="update",
            resource="purchase",
            resource_id=purchase.id,
            description=f"Updated purchase {purchase.purchase_order_number or purchase.id}",
            before=before,
            after=purchase.to_dict(),
        )
        db.session.commit()
        return purchase

    return run_with_retry(_op)


def change_purchase_status(*, purchase_id: int, status: str, operator_id: int | None = None) -> Purchase:
    """
    Apply the transition that reaches `status` (pending, approved, ordered, cancelled).

    Receiving statuses are only reachable through receive_purchase.
    """
    event = event_for_status(STATUS_EVENTS, status, entity="purchase")

    def _op():
        purchase = _get_purchase_for_update(purchase_id)
        previous = purchase.status
        purchase.status = next_status(PURCHASE_TRANSITIONS, previous, event, entity="purchase")

        supplier = lock_for_update(db.session.query(Supplier).filter_by(id=purchase.supplier_id)).first()
        if event == EVENT_ORDER:
            if not purchase.purchase_order_number:
                purchase.purchase_order_number = next_document_number(document_type=DOCUMENT_PURCHASE_ORDER)
            supplier.total_orders += 1
            supplier.total_purchase_cents += purchase.grand_total_cents
        elif event == EVENT_CANCEL and previous == PURCHASE_STATUS_ORDERED:
            supplier.total_orders -= 1
            supplier.total_purchase_cents -= purchase.grand_total_cents

        audit_service.record_activity(
            actor_user_id=operator_id,
            action={EVENT_APPROVE: "approve", EVENT_CANCEL: "cancel"}.get(event, "update"),
            resource="purchase",
            resource_id=purchase.id,
            description=f"Purchase {purchase.purchase_order_number or purchase.id}: {previous} -> {purchase.status}",
            before={"status": previous},
            after={"status": purchase.status},
        )
        db.session.commit()
        return purchase

    return run_with_retry(_op)


def _receiving_location_id(purchase: Purchase) -> int:
    location_id = purchase.receiving_location_id
    if location_id is None:
        location_id = settings_service.get_setting(settings_service.KEY_DEFAULT_RECEIVING_LOCATION)
    if location_id is None:
        raise ValidationError(
            "No receiving location: set one on the purchase or configure "
            f"{settings_service.KEY_DEFAULT_RECEIVING_LOCATION}"
        )
    return location_id


def receive_purchase(*, purchase_id: int, items, operator_id: int | None = None) -> Purchase:
    """
    Receive quantities against purchase lines.

    items: [{"item_id": int, "quantity": int}, ...]. Lines not mentioned or
    with quantity 0 are left alone; at least one positive quantity is needed.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    requested: dict[int, int] = {}
    for index, entry in enumerate(items):
        if not isinstance(entry, dict):
            raise ValidationError(f"items[{index}] must be an object")
        item_id = parse_int(entry.get("item_id"), f"items[{index}].item_id")
        qty = parse_int(entry.get("quantity"), f"items[{index}].quantity", minimum=0)
        requested[item_id] = requested.get(item_id, 0) + qty
    if not any(requested.values()):
        raise ValidationError("At least one item must have a positive quantity")

    def _op():
        purchase = _get_purchase_for_update(purchase_id)
        # Status check first so a closed purchase reports the transition problem
        next_status(PURCHASE_TRANSITIONS, purchase.status, EVENT_RECEIVE_PARTIAL, entity="purchase")

        lines = {item.id: item for item in purchase.items}
        for item_id, qty in requested.items():
            line = lines.get(item_id)
            if line is None:
                raise NotFoundError(
                    f"Purchase item {item_id} not found on purchase {purchase.id}",
                    details={"item_id": item_id},
                )
            if qty > line.remaining_qty:
                raise ValidationError(
                    f"Cannot receive {qty} of item {item_id}: only {line.remaining_qty} outstanding",
                    details={"item_id": item_id, "remaining": line.remaining_qty, "requested": qty},
                )

        location_id = _receiving_location_id(purchase)
        products = lock_products(lines[item_id].product_id for item_id, qty in requested.items() if qty > 0)

        for item_id in sorted(requested):
            qty = requested[item_id]
            if qty == 0:
                continue
            line = lines[item_id]
            post_movement(
                product=products[line.product_id],
                movement_type="in",
                reason="purchase",
                quantity=qty,
                location_to_id=location_id,
                source_type="purchase",
                source_id=purchase.id,
                source_number=purchase.purchase_order_number,
                unit_cost_cents=line.unit_price_cents,
                operator_id=operator_id,
            )
            line.received_qty += qty

        previous = purchase.status
        fully_received = all(line.received_qty == line.ordered_qty for line in purchase.items)
        event = EVENT_RECEIVE_FULL if fully_received else EVENT_RECEIVE_PARTIAL
        purchase.status = next_status(PURCHASE_TRANSITIONS, previous, event, entity="purchase")
        if fully_received:
            purchase.received_date = utcnow()

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="update",
            resource="purchase",
            resource_id=purchase.id,
            description=(
                f"Received {sum(requested.values())} units on purchase "
                f"{purchase.purchase_order_number or purchase.id}"
            ),
            before={"status": previous},
            after={"status": purchase.status, "received": {str(k): v for k, v in requested.items() if v}},
        )
        db.session.commit()
        return purchase

    return run_with_retry(_op)


def update_purchase_payment(
    *,
    purchase_id: int,
    payment_status: str,
    payment_method: str | None = None,
    amount_paid=None,
    operator_id: int | None = None,
) -> Purchase:
    """Bookkeeping only; no stock effect."""
    parse_choice(payment_status, "payment_status", PURCHASE_PAYMENT_STATUSES)
    if payment_method:
        parse_choice(payment_method, "payment_method", PAYMENT_METHODS)

    def _op():
        purchase = _get_purchase_for_update(purchase_id)
        if purchase.status == PURCHASE_STATUS_CANCELLED:
            raise LifecycleError("Cannot record payment on a cancelled purchase")
        before = {"payment_status": purchase.payment_status, "amount_paid_cents": purchase.amount_paid_cents}

        apply_payment_status(purchase, payment_status, amount_paid)
        if payment_method:
            purchase.payment_method = payment_method

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="update",
            resource="purchase",
            resource_id=purchase.id,
            description=f"Purchase {purchase.purchase_order_number or purchase.id} payment: {payment_status}",
            before=before,
            after={"payment_status": purchase.payment_status, "amount_paid_cents": purchase.amount_paid_cents},
        )
        db.session.commit()
        return purchase

    return run_with_retry(_op)


def delete_purchase(*, purchase_id: int, operator_id: int | None = None) -> None:
    def _op():
        purchase = _get_purchase_for_update(purchase_id)
        if purchase.status != PURCHASE_STATUS_DRAFT:
            raise LifecycleError(
                f"Only draft purchases can be deleted (status '{purchase.status}')",
                details={"status": purchase.status},
            )
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="delete",
            resource="purchase",
            resource_id=purchase.id,
            description=f"Deleted draft purchase {purchase.id}",
            before=purchase.to_dict(),
        )
        db.session.delete(purchase)
        db.session.commit()

    return run_with_retry(_op)


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.query(Purchase).filter_by(id=purchase_id).first()
    if not purchase:
        raise NotFoundError(f"Purchase {purchase_id} not found")
    return purchase


def list_purchases(
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    payment_status: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
):
    query = db.session.query(Purchase)
    if status:
        query = query.filter(Purchase.status == parse_choice(status, "status", PURCHASE_STATUSES))
    if supplier_id is not None:
        query = query.filter(Purchase.supplier_id == supplier_id)
    if payment_status:
        query = query.filter(Purchase.payment_status == payment_status)
    if from_date:
        query = query.filter(Purchase.order_date >= from_date)
    if to_date:
        query = query.filter(Purchase.order_date <= to_date)
    return query.order_by(Purchase.id.desc())
