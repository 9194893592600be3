# Overview: Customer master data; balance and order aggregates belong to the sales engine.

from __future__ import annotations

from ..extensions import db
from ..models import Customer, Sale
from ..models.customers import CUSTOMER_GROUPS, PAYMENT_TERMS_DAYS
from ..errors import DependencyBlockedError, NotFoundError, ValidationError
from ..validation import ModelValidationPolicy, validate_payload
from . import audit_service
from .concurrency import flush_unique, lock_for_update, run_with_retry
from .credit_service import GROUP_DEFAULT_DISCOUNT_BPS, discount_after_group_change


# current_balance, total_orders, total_sales_amount and last_order_date are
# not writable: the sales engine maintains them.
CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "email", "phone", "address", "payment_terms",
        "credit_limit", "discount_percentage", "customer_group", "is_active",
    },
    required_on_create={"name"},
    money_fields={"credit_limit": "credit_limit_cents"},
    percent_fields={"discount_percentage": "discount_bps"},
)


def _apply(customer: Customer, patch: dict) -> None:
    for k, v in patch.items():
        setattr(customer, k, v)


def _enforce_customer_rules(patch: dict) -> None:
    if "payment_terms" in patch and patch["payment_terms"] not in PAYMENT_TERMS_DAYS:
        raise ValidationError(
            f"Invalid payment_terms '{patch['payment_terms']}'. Must be one of: {', '.join(PAYMENT_TERMS_DAYS)}"
        )
    if "customer_group" in patch and patch["customer_group"] not in CUSTOMER_GROUPS:
        raise ValidationError(
            f"Invalid customer_group '{patch['customer_group']}'. Must be one of: {', '.join(sorted(CUSTOMER_GROUPS))}"
        )
    if "email" in patch:
        email = (patch["email"] or "").lower()
        if email and "@" not in email:
            raise ValidationError("email must be a valid email address")
        patch["email"] = email or None


def list_customers(
    *,
    search: str | None = None,
    customer_group: str | None = None,
    is_active: bool | None = None,
    with_balance: bool = False,
):
    query = db.session.query(Customer)
    if search:
        pattern = f"%{search}%"
        query = query.filter(db.or_(Customer.name.ilike(pattern), Customer.email.ilike(pattern)))
    if customer_group:
        query = query.filter(Customer.customer_group == customer_group)
    if is_active is not None:
        query = query.filter(Customer.is_active.is_(is_active))
    if with_balance:
        query = query.filter(Customer.current_balance_cents > 0)
    return query.order_by(Customer.name.asc(), Customer.id.asc())


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def create_customer(*, payload: dict, operator_id: int | None = None) -> Customer:
    """New customers start from their group's default discount unless one is given."""
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    _enforce_customer_rules(patch)

    def _op():
        customer = Customer()
        _apply(customer, patch)
        if "discount_bps" not in patch:
            customer.discount_bps = GROUP_DEFAULT_DISCOUNT_BPS[patch.get("customer_group", "regular")]
        db.session.add(customer)
        flush_unique("A customer with this email already exists", {"email": patch.get("email")})

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="create",
            resource="customer",
            resource_id=customer.id,
            description=f"Created customer {customer.name}",
            after=customer.to_dict(),
        )
        db.session.commit()
        return customer

    return run_with_retry(_op)


def update_customer(*, customer_id: int, payload: dict, operator_id: int | None = None) -> Customer:
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    _enforce_customer_rules(patch)

    def _op():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        before = customer.to_dict()

        changes = dict(patch)
        new_group = changes.get("customer_group")
        if new_group and new_group != customer.customer_group and "discount_bps" not in changes:
            changes["discount_bps"] = discount_after_group_change(customer, new_group)

        _apply(customer, changes)
        flush_unique("A customer with this email already exists", {"email": changes.get("email")})

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="update",
            resource="customer",
            resource_id=customer.id,
            description=f"Updated customer {customer.name}",
            before=before,
            after=customer.to_dict(),
        )
        db.session.commit()
        return customer

    return run_with_retry(_op)


def delete_customer(*, customer_id: int, operator_id: int | None = None) -> None:
    def _op():
        customer = get_customer(customer_id)
        count = db.session.query(Sale.id).filter_by(customer_id=customer.id).count()
        if count:
            raise DependencyBlockedError(
                f"Customer {customer.name} has {count} sale(s); deactivate instead",
                details={"sales": count},
            )
        audit_service.record_activity(
            actor_user_id=operator_id,
            action="delete",
            resource="customer",
            resource_id=customer.id,
            description=f"Deleted customer {customer.name}",
            before=customer.to_dict(),
        )
        db.session.delete(customer)
        db.session.commit()

    run_with_retry(_op)
