"""
Customer credit ledger tests: due dates, overdue sweep, group discounts.
"""

from datetime import datetime, timedelta

import pytest

from stockflow.errors import ConflictError, DependencyBlockedError, ValidationError
from stockflow.services import credit_service, customer_service, sales_service
from stockflow.time_utils import utcnow

from conftest import stock_in


def _confirmed_sale(customer, product, quantity=1, **kwargs):
    sale = sales_service.create_sale(
        customer_id=customer.id,
        items=[{"product_id": product.id, "quantity": quantity}],
        **kwargs,
    )
    return sales_service.change_sale_status(sale_id=sale.id, status="confirmed")


@pytest.fixture
def stocked(db_session, widget, warehouse):
    stock_in(widget, warehouse, 100)


class TestDueDates:

    @pytest.mark.parametrize(
        "terms,days",
        [("cash", 0), ("net_15", 15), ("net_30", 30), ("net_45", 45), ("net_60", 60)],
    )
    def test_due_date_offsets(self, terms, days):
        sale_date = datetime(2026, 1, 31, 9, 30)
        assert credit_service.due_date_for(sale_date, terms) == sale_date + timedelta(days=days)

    def test_due_date_uses_sale_date_not_confirm_time(self, db_session, customer, widget, stocked):
        sale = _confirmed_sale(customer, widget, sale_date="2026-03-01T10:00:00Z")
        assert sale.due_date == datetime(2026, 3, 31, 10, 0)


# =============================================================================
# OVERDUE SWEEP
# =============================================================================


class TestOverdueSweep:

    def test_marks_past_due_open_sales(self, db_session, customer, widget, stocked):
        sale = _confirmed_sale(customer, widget)

        result = credit_service.run_overdue_sweep(now=utcnow() + timedelta(days=31))

        assert result["updated_count"] == 1
        assert result["completed"] is True
        assert sales_service.get_sale(sale.id).payment_status == "overdue"
        assert result["overdue_by_customer"] == [{
            "customer_id": customer.id,
            "name": customer.name,
            "overdue_count": 1,
            "overdue_amount": 25.0,
        }]

    def test_skips_sales_not_yet_due_paid_or_closed(self, db_session, customer, widget, stocked):
        not_due = _confirmed_sale(customer, widget)
        paid = _confirmed_sale(customer, widget)
        sales_service.update_sale_payment(sale_id=paid.id, payment_status="paid")
        cancelled = _confirmed_sale(customer, widget)
        sales_service.change_sale_status(sale_id=cancelled.id, status="cancelled")
        draft = sales_service.create_sale(customer_id=customer.id, items=[{"product_id": widget.id, "quantity": 1}])

        assert credit_service.run_overdue_sweep(now=utcnow() + timedelta(days=1))["updated_count"] == 0

        result = credit_service.run_overdue_sweep(now=utcnow() + timedelta(days=31))
        assert result["updated_count"] == 1
        assert sales_service.get_sale(not_due.id).payment_status == "overdue"
        assert sales_service.get_sale(paid.id).payment_status == "paid"
        assert sales_service.get_sale(cancelled.id).payment_status == "unpaid"
        assert sales_service.get_sale(draft.id).payment_status == "unpaid"

    def test_partially_paid_sales_are_swept(self, db_session, customer, widget, stocked):
        sale = _confirmed_sale(customer, widget, quantity=2)
        sales_service.update_sale_payment(sale_id=sale.id, payment_status="partially_paid", amount_paid="10.00")

        credit_service.run_overdue_sweep(now=utcnow() + timedelta(days=31))
        assert sales_service.get_sale(sale.id).payment_status == "overdue"

    def test_second_run_is_a_no_op(self, db_session, customer, widget, stocked):
        _confirmed_sale(customer, widget)
        later = utcnow() + timedelta(days=31)

        assert credit_service.run_overdue_sweep(now=later)["updated_count"] == 1
        assert credit_service.run_overdue_sweep(now=later)["updated_count"] == 0

    def test_resumes_from_cursor(self, db_session, customer, widget, stocked):
        sales = [_confirmed_sale(customer, widget) for _ in range(3)]
        later = utcnow() + timedelta(days=31)

        first = credit_service.run_overdue_sweep(now=later, batch_size=1, max_batches=1)
        assert first["updated_count"] == 1
        assert first["completed"] is False
        assert first["cursor"] == sales[0].id

        rest = credit_service.run_overdue_sweep(now=later, after_id=first["cursor"], batch_size=1)
        assert rest["updated_count"] == 2
        assert rest["completed"] is True
        assert {sales_service.get_sale(s.id).payment_status for s in sales} == {"overdue"}

    def test_payment_replaces_overdue(self, db_session, customer, widget, stocked):
        sale = _confirmed_sale(customer, widget)
        credit_service.run_overdue_sweep(now=utcnow() + timedelta(days=31))

        paid = sales_service.update_sale_payment(sale_id=sale.id, payment_status="paid")

        assert paid.payment_status == "paid"
        db_session.expire_all()
        assert customer_service.get_customer(customer.id).current_balance_cents == 0

    def test_sweep_does_not_change_balance(self, db_session, customer, widget, stocked):
        _confirmed_sale(customer, widget, quantity=3)
        credit_service.run_overdue_sweep(now=utcnow() + timedelta(days=31))

        db_session.expire_all()
        assert customer_service.get_customer(customer.id).current_balance_cents == 7500


# =============================================================================
# BALANCE
# =============================================================================


class TestCustomerBalance:

    def test_stored_balance_matches_derived(self, db_session, customer, widget, stocked):
        a = _confirmed_sale(customer, widget, quantity=2)
        b = _confirmed_sale(customer, widget, quantity=3)
        sales_service.update_sale_payment(sale_id=a.id, payment_status="partially_paid", amount_paid="20.00")
        sales_service.change_sale_status(sale_id=b.id, status="cancelled")
        _confirmed_sale(customer, widget, quantity=1)

        credit = credit_service.customer_credit(customer.id)

        assert credit["current_balance"] == credit["derived_balance"] == 55.0
        assert credit["available_credit"] == 945.0
        assert credit["overdue_count"] == 0

    def test_customer_with_sales_cannot_be_deleted(self, db_session, customer, widget, stocked):
        _confirmed_sale(customer, widget)
        with pytest.raises(DependencyBlockedError):
            customer_service.delete_customer(customer_id=customer.id)


# =============================================================================
# CUSTOMER MASTER DATA
# =============================================================================


class TestCustomerGroups:

    def test_new_customer_gets_group_default_discount(self, db_session):
        wholesale = customer_service.create_customer(payload={"name": "Bulk Co", "customer_group": "wholesale"})
        assert wholesale.discount_bps == 1000

    def test_explicit_discount_wins_on_create(self, db_session):
        vip = customer_service.create_customer(
            payload={"name": "Star", "customer_group": "vip", "discount_percentage": "12.5"}
        )
        assert vip.discount_bps == 1250

    def test_group_change_moves_default_discount(self, db_session):
        customer = customer_service.create_customer(payload={"name": "Bulk Co", "customer_group": "wholesale"})

        moved = customer_service.update_customer(customer_id=customer.id, payload={"customer_group": "vip"})
        assert moved.discount_bps == 500

    def test_group_change_keeps_hand_set_discount(self, db_session):
        customer = customer_service.create_customer(
            payload={"name": "Bulk Co", "customer_group": "wholesale", "discount_percentage": 7}
        )

        moved = customer_service.update_customer(customer_id=customer.id, payload={"customer_group": "regular"})
        assert moved.discount_bps == 700

    def test_email_normalized(self, db_session, customer):
        assert customer.email == "jane@example.com"

    def test_duplicate_email_conflict(self, db_session, customer):
        with pytest.raises(ConflictError):
            customer_service.create_customer(payload={"name": "Other Jane", "email": "jane@example.com"})

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "X", "payment_terms": "net_90"},
            {"name": "X", "customer_group": "platinum"},
            {"name": "X", "email": "not-an-email"},
            {"name": "X", "credit_limit": "-1"},
            {"name": "X", "discount_percentage": 101},
            {"name": "X", "current_balance": 0},
        ],
    )
    def test_rejects_invalid_payloads(self, db_session, payload):
        with pytest.raises(ValidationError):
            customer_service.create_customer(payload=payload)
