# Overview: Sales order engine; confirmation and cancellation post into the stock ledger.

"""
Sales order engine.

LIFECYCLE (SALE_TRANSITIONS):
    draft -> confirmed -> shipped -> delivered
    draft | confirmed | shipped -> cancelled
    shipped | delivered -> returned

- create/update (draft only) price the lines; no stock effect, no reservation.
- confirm locks the products (ascending id), checks stock on the summed
  quantity per product, checks the customer's credit, assigns the invoice
  number and due date, and appends one 'out'/'sale' entry per line.
- cancel (from confirmed/shipped) and return append one 'in'/'return' entry
  for every 'out' the sale posted, at the location it left from, and take
  the unpaid portion back off the customer's balance.

Lock order in every operation: sale row -> product rows -> customer row.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from ..extensions import db
from ..models import Customer, Location, Sale, SaleItem, User
from ..models.purchasing import PAYMENT_METHODS
from ..models.sales import SALE_STATUSES, SALE_PAYMENT_STATUSES, OPEN_SALE_STATUSES
from ..errors import (
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    CreditLimitExceededError,
)
from ..validation import (
    parse_bool,
    parse_choice,
    parse_datetime,
    parse_int,
    parse_money,
    parse_optional_int,
    cents_to_money,
)
from ..time_utils import utcnow
from . import audit_service, settings_service
from .concurrency import lock_for_update, lock_products, run_with_retry
from .credit_service import due_date_for
from .lifecycle_service import next_status, event_for_status, LifecycleError
from .numbering_service import next_document_number, DOCUMENT_INVOICE
from .payment_service import apply_payment_status, rebase_payment, PAYMENT_STATUS_OVERDUE, PAYMENT_STATUS_UNPAID
from .pricing_service import price_lines, document_totals
from .stock_ledger_service import post_movement, movements_for_source


SALE_STATUS_DRAFT = "draft"
SALE_STATUS_CONFIRMED = "confirmed"
SALE_STATUS_SHIPPED = "shipped"
SALE_STATUS_DELIVERED = "delivered"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUS_RETURNED = "returned"

EVENT_CONFIRM = "confirm"
EVENT_SHIP = "ship"
EVENT_DELIVER = "deliver"
EVENT_CANCEL = "cancel"
EVENT_RETURN = "return"

SALE_TRANSITIONS = {
    (SALE_STATUS_DRAFT, EVENT_CONFIRM): SALE_STATUS_CONFIRMED,
    (SALE_STATUS_CONFIRMED, EVENT_SHIP): SALE_STATUS_SHIPPED,
    (SALE_STATUS_SHIPPED, EVENT_DELIVER): SALE_STATUS_DELIVERED,
    (SALE_STATUS_DRAFT, EVENT_CANCEL): SALE_STATUS_CANCELLED,
    (SALE_STATUS_CONFIRMED, EVENT_CANCEL): SALE_STATUS_CANCELLED,
    (SALE_STATUS_SHIPPED, EVENT_CANCEL): SALE_STATUS_CANCELLED,
    (SALE_STATUS_SHIPPED, EVENT_RETURN): SALE_STATUS_RETURNED,
    (SALE_STATUS_DELIVERED, EVENT_RETURN): SALE_STATUS_RETURNED,
}

STATUS_EVENTS = {
    SALE_STATUS_CONFIRMED: EVENT_CONFIRM,
    SALE_STATUS_SHIPPED: EVENT_SHIP,
    SALE_STATUS_DELIVERED: EVENT_DELIVER,
    SALE_STATUS_CANCELLED: EVENT_CANCEL,
    SALE_STATUS_RETURNED: EVENT_RETURN,
}


def _get_sale_for_update(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def _lock_customer(customer_id: int) -> Customer:
    return lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()


def _active_customer(customer_id) -> Customer:
    customer_id = parse_int(customer_id, "customer_id")
    customer = db.session.query(Customer).filter_by(id=customer_id).first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    if not customer.is_active:
        raise ValidationError(f"Customer {customer.name} is inactive", details={"customer_id": customer.id})
    return customer


def _check_location(location_id) -> int | None:
    location_id = parse_optional_int(location_id, "shipping_location_id")
    if location_id is not None and not db.session.query(Location.id).filter_by(id=location_id).first():
        raise NotFoundError(f"Location {location_id} not found", details={"location_id": location_id})
    return location_id


def _check_user(user_id, field_name: str) -> int | None:
    user_id = parse_optional_int(user_id, field_name)
    if user_id is not None and not db.session.query(User.id).filter_by(id=user_id).first():
        raise NotFoundError(f"User {user_id} not found", details={field_name: user_id})
    return user_id


def _replace_items(sale: Sale, items) -> None:
    lines = price_lines(
        items,
        quantity_field="quantity",
        default_price=lambda product: product.selling_price_cents,
    )
    sale.items.clear()
    for line in lines:
        sale.items.append(SaleItem(
            product_id=line.product.id,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            discount_cents=line.discount_cents,
            tax_cents=line.tax_cents,
            line_total_cents=line.line_total_cents,
        ))
    for field, value in document_totals(lines, sale.shipping_cost_cents).items():
        setattr(sale, field, value)


def create_sale(
    *,
    customer_id,
    items,
    operator_id: int | None = None,
    shipping_cost=0,
    payment_method: str | None = None,
    sale_date=None,
    shipping_location_id=None,
    sales_person_id=None,
    credit_override=False,
    notes: str | None = None,
) -> Sale:
    """Create a draft sale. Customer must exist and be active; products must exist."""
    def _op():
        customer = _active_customer(customer_id)
        sale = Sale(
            customer_id=customer.id,
            status=SALE_STATUS_DRAFT,
            payment_status=PAYMENT_STATUS_UNPAID,
            payment_method=(
                parse_choice(payment_method, "payment_method", PAYMENT_METHODS) if payment_method else None
            ),
            shipping_cost_cents=parse_money(shipping_cost or 0, "shipping_cost"),
            sale_date=parse_datetime(sale_date, "sale_date") or utcnow(),
            shipping_location_id=_check_location(shipping_location_id),
            sales_person_id=_check_user(sales_person_id, "sales_person_id"),
            credit_override=parse_bool(credit_override, "credit_override"),
            notes=notes,
            created_by_user_id=operator_id,
        )
        _replace_items(sale, items)
        db.session.add(sale)
        db.session.flush()

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="create",
            resource="sale",
            resource_id=sale.id,
            description=f"Created sale for customer {customer.name}",
            after=sale.to_dict(),
        )
        db.session.commit()
        return sale

    return run_with_retry(_op)


UPDATABLE_FIELDS = {
    "customer_id",
    "items",
    "shipping_cost",
    "payment_method",
    "sale_date",
    "shipping_location_id",
    "sales_person_id",
    "credit_override",
    "notes",
}


def update_sale(*, sale_id: int, changes: dict, operator_id: int | None = None) -> Sale:
    """Edit a draft sale; totals are recomputed from the (possibly new) lines."""
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    def _op():
        sale = _get_sale_for_update(sale_id)
        if sale.status != SALE_STATUS_DRAFT:
            raise LifecycleError(
                f"Cannot edit sale in status '{sale.status}'",
                details={"status": sale.status},
            )
        before = sale.to_dict()

        if "customer_id" in changes:
            sale.customer_id = _active_customer(changes["customer_id"]).id
        if "payment_method" in changes:
            method = changes["payment_method"]
            sale.payment_method = parse_choice(method, "payment_method", PAYMENT_METHODS) if method else None
        if "sale_date" in changes:
            sale.sale_date = parse_datetime(changes["sale_date"], "sale_date") or sale.sale_date
        if "shipping_location_id" in changes:
            sale.shipping_location_id = _check_location(changes["shipping_location_id"])
        if "sales_person_id" in changes:
            sale.sales_person_id = _check_user(changes["sales_person_id"], "sales_person_id")
        if "credit_override" in changes:
            sale.credit_override = parse_bool(changes["credit_override"], "credit_override")
        if "notes" in changes:
            sale.notes = changes["notes"]
        if "shipping_cost" in changes:
            sale.shipping_cost_cents = parse_money(changes["shipping_cost"] or 0, "shipping_cost")

        if "items" in changes:
            _replace_items(sale, changes["items"])
        else:
            sale.grand_total_cents = (
                sale.subtotal_cents - sale.discount_total_cents + sale.tax_total_cents + sale.shipping_cost_cents
            )
        rebase_payment(sale)
        db.session.flush()

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="update",
            resource="sale",
            resource_id=sale.id,
            description=f"Updated draft sale {sale.id}",
            before=before,
            after=sale.to_dict(),
        )
        db.session.commit()
        return sale

    return run_with_retry(_op)


def _shipping_location_id(sale: Sale) -> int:
    location_id = sale.shipping_location_id
    if location_id is None:
        location_id = settings_service.get_setting(settings_service.KEY_DEFAULT_SHIPPING_LOCATION)
    if location_id is None:
        raise ValidationError(
            "No shipping location: set one on the sale or configure "
            f"{settings_service.KEY_DEFAULT_SHIPPING_LOCATION}"
        )
    return location_id


def _validate_stock(sale: Sale, products: dict) -> None:
    """
    Check product totals against the summed quantity per product, so two
    lines of the same product cannot each pass on their own.
    """
    if settings_service.negative_stock_allowed():
        return

    required: dict[int, int] = defaultdict(int)
    for item in sale.items:
        required[item.product_id] += item.quantity

    shortages = []
    for product_id, qty in sorted(required.items()):
        product = products[product_id]
        if product.current_stock < qty:
            shortages.append({
                "product_id": product_id,
                "sku": product.sku,
                "available": product.current_stock,
                "requested": qty,
            })
    if shortages:
        raise InsufficientStockError(
            "Insufficient stock to confirm sale",
            details={"shortages": shortages},
        )


def _confirm_locked(sale: Sale, *, operator_id: int | None, override_credit_limit: bool) -> None:
    products = lock_products(item.product_id for item in sale.items)
    missing = {item.product_id for item in sale.items} - set(products)
    if missing:
        raise NotFoundError(f"Product {min(missing)} not found", details={"product_id": min(missing)})
    if not sale.items:
        raise ValidationError("Cannot confirm a sale with no items")

    _validate_stock(sale, products)
    location_id = _shipping_location_id(sale)

    customer = _lock_customer(sale.customer_id)
    if not customer.is_active:
        raise ValidationError(f"Customer {customer.name} is inactive", details={"customer_id": customer.id})

    owed = sale.unpaid_cents
    new_balance = customer.current_balance_cents + owed
    if (
        owed > 0
        and customer.credit_limit_cents > 0
        and new_balance > customer.credit_limit_cents
        and not (override_credit_limit or sale.credit_override)
    ):
        raise CreditLimitExceededError(
            f"Confirming this sale would put {customer.name} over their credit limit",
            details={
                "customer_id": customer.id,
                "credit_limit": cents_to_money(customer.credit_limit_cents),
                "current_balance": cents_to_money(customer.current_balance_cents),
                "new_balance": cents_to_money(new_balance),
            },
        )

    sale.invoice_number = next_document_number(document_type=DOCUMENT_INVOICE)
    sale.due_date = due_date_for(sale.sale_date, customer.payment_terms)
    sale.confirmed_at = utcnow()
    if override_credit_limit:
        sale.credit_override = True

    for item in sale.items:
        post_movement(
            product=products[item.product_id],
            movement_type="out",
            reason="sale",
            quantity=item.quantity,
            location_from_id=location_id,
            source_type="sale",
            source_id=sale.id,
            source_number=sale.invoice_number,
            operator_id=operator_id,
        )

    customer.current_balance_cents = new_balance
    customer.total_orders += 1
    customer.total_sales_cents += sale.grand_total_cents
    customer.last_order_date = sale.sale_date


def _compensate_locked(sale: Sale, *, operator_id: int | None) -> None:
    """Put back every unit the sale took out and release the customer's debt."""
    posted = [m for m in movements_for_source("sale", sale.id) if m.type == "out" and m.reason == "sale"]
    products = lock_products(m.product_id for m in posted)

    for movement in posted:
        post_movement(
            product=products[movement.product_id],
            movement_type="in",
            reason="return",
            quantity=movement.quantity,
            location_to_id=movement.location_from_id,
            source_type="sale",
            source_id=sale.id,
            source_number=sale.invoice_number,
            unit_cost_cents=movement.unit_cost_cents,
            operator_id=operator_id,
            compensating=True,
        )

    customer = _lock_customer(sale.customer_id)
    customer.current_balance_cents -= sale.unpaid_cents
    customer.total_orders -= 1
    customer.total_sales_cents -= sale.grand_total_cents


def change_sale_status(
    *,
    sale_id: int,
    status: str,
    operator_id: int | None = None,
    override_credit_limit=False,
) -> Sale:
    """
    Apply the transition that reaches `status`.

    confirm posts stock out and charges the customer; cancel/return from a
    posted state compensates both; ship/deliver only move the status.
    """
    event = event_for_status(STATUS_EVENTS, status, entity="sale")
    override_credit_limit = parse_bool(override_credit_limit, "override_credit_limit")

    def _op():
        sale = _get_sale_for_update(sale_id)
        previous = sale.status
        target = next_status(SALE_TRANSITIONS, previous, event, entity="sale")

        if event == EVENT_CONFIRM:
            _confirm_locked(sale, operator_id=operator_id, override_credit_limit=override_credit_limit)
        elif event in (EVENT_CANCEL, EVENT_RETURN) and previous in OPEN_SALE_STATUSES:
            _compensate_locked(sale, operator_id=operator_id)

        sale.status = target
        if target in (SALE_STATUS_CANCELLED, SALE_STATUS_RETURNED):
            sale.closed_at = utcnow()

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="cancel" if event == EVENT_CANCEL else "update",
            resource="sale",
            resource_id=sale.id,
            description=f"Sale {sale.invoice_number or sale.id}: {previous} -> {target}",
            before={"status": previous},
            after={"status": target, "invoice_number": sale.invoice_number},
        )
        db.session.commit()
        return sale

    return run_with_retry(_op)


def update_sale_payment(
    *,
    sale_id: int,
    payment_status: str,
    payment_method: str | None = None,
    amount_paid=None,
    operator_id: int | None = None,
) -> Sale:
    """
    Record a payment status change.

    For open sales the customer's balance moves by the change in the paid
    amount (paying in full removes the whole unpaid portion; going back to
    unpaid adds it again). 'overdue' belongs to the overdue sweep.
    """
    parse_choice(payment_status, "payment_status", SALE_PAYMENT_STATUSES)
    if payment_status == PAYMENT_STATUS_OVERDUE:
        raise ValidationError("Payment status 'overdue' is set by the overdue sweep only")
    if payment_method:
        parse_choice(payment_method, "payment_method", PAYMENT_METHODS)

    def _op():
        sale = _get_sale_for_update(sale_id)
        before = {"payment_status": sale.payment_status, "amount_paid_cents": sale.amount_paid_cents}

        paid_delta = apply_payment_status(sale, payment_status, amount_paid)
        if payment_method:
            sale.payment_method = payment_method

        if sale.status in OPEN_SALE_STATUSES and paid_delta:
            customer = _lock_customer(sale.customer_id)
            customer.current_balance_cents -= paid_delta

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="update",
            resource="sale",
            resource_id=sale.id,
            description=f"Sale {sale.invoice_number or sale.id} payment: {payment_status}",
            before=before,
            after={"payment_status": sale.payment_status, "amount_paid_cents": sale.amount_paid_cents},
        )
        db.session.commit()
        return sale

    return run_with_retry(_op)


def delete_sale(*, sale_id: int, operator_id: int | None = None) -> None:
    def _op():
        sale = _get_sale_for_update(sale_id)
        if sale.status != SALE_STATUS_DRAFT:
            raise LifecycleError(
                f"Only draft sales can be deleted (status '{sale.status}')",
                details={"status": sale.status},
            )
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="delete",
            resource="sale",
            resource_id=sale.id,
            description=f"Deleted draft sale {sale.id}",
            before=sale.to_dict(),
        )
        db.session.delete(sale)
        db.session.commit()

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def list_sales(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    payment_status: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
):
    query = db.session.query(Sale)
    if status:
        query = query.filter(Sale.status == parse_choice(status, "status", SALE_STATUSES))
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if payment_status:
        query = query.filter(Sale.payment_status == parse_choice(payment_status, "payment_status", SALE_PAYMENT_STATUSES))
    if from_date:
        query = query.filter(Sale.sale_date >= from_date)
    if to_date:
        query = query.filter(Sale.sale_date <= to_date)
    return query.order_by(Sale.id.desc())
