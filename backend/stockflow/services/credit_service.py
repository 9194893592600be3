# Overview: Customer credit ledger: balances, due dates and the overdue sweep.

"""
Customer Credit Ledger

current_balance_cents on a customer is the sum of (grand_total - amount_paid)
over its confirmed, shipped and delivered sales. sales_service moves it inside
the same transaction as the sale change; recompute_customer_balance derives
it from the sales table for verification.

OVERDUE: persisted, not read-derived. The sweep flips unpaid/partially_paid
open sales past their due date to 'overdue' under a row lock on each sale
and re-checks the predicate after locking, so a payment that lands first
wins and the sweep skips that sale. Users cannot set 'overdue' themselves;
recording a payment on an overdue sale replaces the status.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Sale
from ..models.customers import PAYMENT_TERMS_DAYS
from ..models.sales import OPEN_SALE_STATUSES
from ..errors import NotFoundError
from ..time_utils import utcnow
from ..validation import cents_to_money
from . import audit_service
from .concurrency import lock_for_update, run_with_retry
from .payment_service import PAYMENT_STATUS_OVERDUE, SWEEPABLE_PAYMENT_STATUSES


# Default discount per customer group, in basis points
GROUP_DEFAULT_DISCOUNT_BPS = {
    "regular": 0,
    "retail": 0,
    "vip": 500,
    "wholesale": 1000,
}


def due_date_for(sale_date: datetime, payment_terms: str) -> datetime:
    """Sale date plus the payment-terms offset (cash = same day)."""
    return sale_date + timedelta(days=PAYMENT_TERMS_DAYS[payment_terms])


def discount_after_group_change(customer: Customer, new_group: str) -> int:
    """
    Group changes only move the default: a discount still equal to the old
    group's default follows the new group, a hand-set discount stays.
    """
    old_default = GROUP_DEFAULT_DISCOUNT_BPS.get(customer.customer_group, 0)
    if customer.discount_bps == old_default:
        return GROUP_DEFAULT_DISCOUNT_BPS[new_group]
    return customer.discount_bps


def recompute_customer_balance(customer_id: int) -> int:
    """Balance derived from sales alone (cents)."""
    total = (
        db.session.query(func.coalesce(func.sum(Sale.grand_total_cents - Sale.amount_paid_cents), 0))
        .filter(Sale.customer_id == customer_id, Sale.status.in_(OPEN_SALE_STATUSES))
        .scalar()
    )
    return int(total)


def _overdue_predicate(now: datetime):
    return (
        Sale.payment_status.in_(SWEEPABLE_PAYMENT_STATUSES),
        Sale.status.in_(OPEN_SALE_STATUSES),
        Sale.due_date.isnot(None),
        Sale.due_date < now,
    )


def run_overdue_sweep(
    *,
    now: datetime | None = None,
    after_id: int = 0,
    batch_size: int | None = None,
    max_batches: int | None = None,
    operator_id: int | None = None,
) -> dict:
    """
    Promote past-due unpaid/partially_paid open sales to 'overdue'.

    Works in id-ordered batches, one transaction per batch, and reports the
    last processed id as `cursor`. Stopping early (max_batches) leaves a
    consistent state; calling again with after_id=cursor resumes. Running it
    twice is a no-op the second time.
    """
    now = now or utcnow()
    if batch_size is None:
        batch_size = current_app.config.get("OVERDUE_SWEEP_BATCH_SIZE", 200)

    cursor = after_id
    updated = 0
    batches = 0
    completed = False

    while True:
        if max_batches is not None and batches >= max_batches:
            break

        ids = [
            row[0]
            for row in db.session.query(Sale.id)
            .filter(*_overdue_predicate(now), Sale.id > cursor)
            .order_by(Sale.id)
            .limit(batch_size)
        ]
        if not ids:
            completed = True
            break

        def _op(batch_ids=ids):
            sales = lock_for_update(
                db.session.query(Sale).filter(Sale.id.in_(batch_ids), *_overdue_predicate(now)).order_by(Sale.id)
            ).all()
            for sale in sales:
                sale.payment_status = PAYMENT_STATUS_OVERDUE
            if sales:
                audit_service.record_activity(
                    actor_user_id=operator_id,
                    action="update",
                    resource="sale",
                    resource_id=None,
                    description=f"Overdue sweep marked {len(sales)} sale(s) overdue",
                    after={"sale_ids": [s.id for s in sales]},
                )
            db.session.commit()
            return len(sales)

        updated += run_with_retry(_op)
        cursor = ids[-1]
        batches += 1
        if len(ids) < batch_size:
            completed = True
            break

    return {
        "updated_count": updated,
        "cursor": cursor,
        "completed": completed,
        "overdue_by_customer": overdue_summary(),
    }


def overdue_summary(customer_id: int | None = None) -> list[dict]:
    """Per-customer count and amount still owed on overdue sales."""
    query = (
        db.session.query(
            Customer.id,
            Customer.name,
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.grand_total_cents - Sale.amount_paid_cents), 0),
        )
        .join(Sale, Sale.customer_id == Customer.id)
        .filter(Sale.payment_status == PAYMENT_STATUS_OVERDUE, Sale.status.in_(OPEN_SALE_STATUSES))
    )
    if customer_id is not None:
        query = query.filter(Customer.id == customer_id)

    return [
        {
            "customer_id": cid,
            "name": name,
            "overdue_count": count,
            "overdue_amount": cents_to_money(int(amount)),
        }
        for cid, name, count, amount in query.group_by(Customer.id, Customer.name).order_by(Customer.id)
    ]


def customer_credit(customer_id: int) -> dict:
    customer = db.session.query(Customer).filter_by(id=customer_id).first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found")

    overdue = overdue_summary(customer_id)
    return {
        "customer_id": customer.id,
        "payment_terms": customer.payment_terms,
        "credit_limit": cents_to_money(customer.credit_limit_cents),
        "current_balance": cents_to_money(customer.current_balance_cents),
        "available_credit": cents_to_money(customer.available_credit_cents),
        "overdue_count": overdue[0]["overdue_count"] if overdue else 0,
        "overdue_amount": overdue[0]["overdue_amount"] if overdue else 0.0,
        "derived_balance": cents_to_money(recompute_customer_balance(customer.id)),
    }
