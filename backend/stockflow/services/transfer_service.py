# backend/stockflow/services/transfer_service.py
"""
Inter-location stock transfer.

A transfer moves one product between two active locations in one step: a
single 'transfer' ledger entry carries both legs, so the source decrement and
the destination increment commit together or not at all. The product total
does not change.
"""
from __future__ import annotations

from stockflow.extensions import db
from stockflow.models import Location, Transfer
from stockflow.errors import ValidationError, NotFoundError
from stockflow.validation import parse_int
from stockflow.services import audit_service
from stockflow.services.concurrency import lock_products, run_with_retry
from stockflow.services.stock_ledger_service import post_movement


class TransferError(ValidationError):
    """Raised when transfer input is rejected (same location, inactive location)."""
    pass


def _active_location(location_id: int) -> Location:
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location:
        raise NotFoundError(f"Location {location_id} not found", details={"location_id": location_id})
    if not location.is_active:
        raise TransferError(
            f"Location {location.code} is inactive",
            details={"location_id": location.id},
        )
    return location


def transfer_stock(
    *,
    product_id,
    from_location_id,
    to_location_id,
    quantity,
    operator_id: int | None = None,
    notes: str | None = None,
) -> Transfer:
    """
    Move stock of one product from one location to another.

    Raises:
        TransferError: same location or inactive location
        NotFoundError: unknown product or location
        InsufficientStockError: source holds less than quantity
        CapacityExceededError: destination would overflow its capacity
    """
    product_id = parse_int(product_id, "product_id")
    from_location_id = parse_int(from_location_id, "from_location_id")
    to_location_id = parse_int(to_location_id, "to_location_id")
    qty = parse_int(quantity, "quantity", minimum=1)

    def _op():
        if from_location_id == to_location_id:
            raise TransferError("Cannot transfer to the same location")

        source = _active_location(from_location_id)
        destination = _active_location(to_location_id)

        product = lock_products([product_id]).get(product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

        transfer = Transfer(
            product_id=product.id,
            from_location_id=source.id,
            to_location_id=destination.id,
            quantity=qty,
            notes=notes,
            operator_id=operator_id,
        )
        db.session.add(transfer)
        db.session.flush()  # Get ID

        movement = post_movement(
            product=product,
            movement_type="transfer",
            reason="transfer",
            quantity=qty,
            location_from_id=source.id,
            location_to_id=destination.id,
            source_type="transfer",
            source_id=transfer.id,
            operator_id=operator_id,
            notes=notes,
        )
        transfer.movement_id = movement.id
        transfer.occurred_at = movement.occurred_at

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="create",
            resource="inventory",
            resource_id=transfer.id,
            description=f"Transferred {qty} {product.sku} from {source.code} to {destination.code}",
            after=transfer.to_dict(),
        )

        db.session.commit()
        return transfer

    return run_with_retry(_op)
