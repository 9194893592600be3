# Overview: Payment bookkeeping shared by purchases and sales.

"""
Payment status handling.

Purchases and sales carry payment_status plus amount_paid_cents; the unpaid
portion (grand_total - amount_paid) is what a customer owes on an open
sale. Payments never touch stock.
"""

from ..errors import ValidationError
from ..validation import parse_money


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_UNPAID = "unpaid"
PAYMENT_STATUS_PARTIAL = "partially_paid"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_OVERDUE = "overdue"

# Statuses the overdue sweep may promote
SWEEPABLE_PAYMENT_STATUSES = (PAYMENT_STATUS_UNPAID, PAYMENT_STATUS_PARTIAL)


def apply_payment_status(document, payment_status: str, amount_paid=None) -> int:
    """
    Set payment_status / amount_paid_cents on a purchase or sale.

    paid -> amount_paid = grand_total; unpaid -> 0; partially_paid needs an
    amount strictly between 0 and grand_total (the stored one is kept when
    omitted and still valid). Returns the change in amount_paid_cents.
    """
    previous_paid = document.amount_paid_cents
    if payment_status == PAYMENT_STATUS_PAID:
        paid = document.grand_total_cents
    elif payment_status == PAYMENT_STATUS_UNPAID:
        paid = 0
    elif payment_status == PAYMENT_STATUS_PARTIAL:
        paid = previous_paid if amount_paid is None else parse_money(amount_paid, "amount_paid")
        if not 0 < paid < document.grand_total_cents:
            raise ValidationError(
                "partially_paid needs amount_paid greater than 0 and less than grand_total",
                details={"grand_total": document.grand_total_cents / 100},
            )
    else:
        raise ValidationError(f"Payment status '{payment_status}' cannot be set directly")

    document.payment_status = payment_status
    document.amount_paid_cents = paid
    return paid - previous_paid


def rebase_payment(document) -> None:
    """
    Re-fit amount_paid_cents after a document's grand_total changed.

    A paid document stays fully paid at the new total. A partial payment
    that no longer fits strictly below the new total is refused; record the
    payment again once the lines are settled.
    """
    if document.payment_status == PAYMENT_STATUS_PAID:
        document.amount_paid_cents = document.grand_total_cents
    elif document.payment_status == PAYMENT_STATUS_PARTIAL:
        if not 0 < document.amount_paid_cents < document.grand_total_cents:
            raise ValidationError(
                "Edit leaves amount_paid at or above the new grand_total; update the payment first",
                details={
                    "amount_paid": document.amount_paid_cents / 100,
                    "grand_total": document.grand_total_cents / 100,
                },
            )
