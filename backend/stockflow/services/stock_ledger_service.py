# Overview: Append-only stock ledger; every quantity change goes through here.

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Location, Product, StockMovement
from ..models.inventory import (
    MOVEMENT_TYPES,
    MOVEMENT_REASONS,
    MOVEMENT_TYPE_IN,
    MOVEMENT_TYPE_OUT,
    MOVEMENT_TYPE_TRANSFER,
    MOVEMENT_TYPE_ADJUSTMENT,
    SOURCE_TYPES,
)
from ..errors import (
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    CapacityExceededError,
)
from ..validation import parse_int, parse_optional_int, parse_choice, cents_to_money
from ..time_utils import period_key
from . import audit_service, settings_service, stock_index_service
from .concurrency import lock_for_update, lock_location, lock_products, run_with_retry

"""
Stock Ledger Invariants (authoritative)

- Every quantity change is one StockMovement row; rows are never updated
  (is_hidden aside) and never deleted.
- The primary key is the sequence number. Within one product, sequence order
  equals the order the deltas were applied, because appends for a product
  hold that product's row lock.
- The entry, its stock_levels deltas and the product aggregate are written in
  one transaction. Nothing outside this module writes stock_levels or
  products.current_stock (rebuild_stock_index aside).
- Outflows may not drive an index entry below zero unless
  inventory.negative_stock is enabled.
- Inflows may not push a location with a capacity past it.
"""

MAX_NOTES_LENGTH = 200
SUMMARY_BUCKETS = {"day", "week", "month"}
TOP_LIMIT = 10


def validate_movement_shape(
    movement_type: str,
    reason: str,
    quantity,
    location_from_id,
    location_to_id,
) -> int:
    """
    Check type/reason enums, quantity and which location legs are set.

    Returns the parsed quantity.
    """
    parse_choice(movement_type, "type", MOVEMENT_TYPES)
    parse_choice(reason, "reason", MOVEMENT_REASONS)
    qty = parse_int(quantity, "quantity", minimum=1)

    has_from = location_from_id is not None
    has_to = location_to_id is not None

    if movement_type == MOVEMENT_TYPE_IN and (has_from or not has_to):
        raise ValidationError("Movement of type 'in' needs location_to and no location_from")
    if movement_type == MOVEMENT_TYPE_OUT and (has_to or not has_from):
        raise ValidationError("Movement of type 'out' needs location_from and no location_to")
    if movement_type == MOVEMENT_TYPE_TRANSFER:
        if not (has_from and has_to):
            raise ValidationError("Movement of type 'transfer' needs both location_from and location_to")
        if location_from_id == location_to_id:
            raise ValidationError("Transfer source and destination must differ")
    if movement_type == MOVEMENT_TYPE_ADJUSTMENT and has_from == has_to:
        raise ValidationError("Movement of type 'adjustment' needs exactly one of location_from or location_to")

    return qty


def _load_location(location_id: int) -> Location:
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location:
        raise NotFoundError(f"Location {location_id} not found", details={"location_id": location_id})
    return location


def post_movement(
    *,
    product: Product,
    movement_type: str,
    reason: str,
    quantity: int,
    location_from_id: int | None = None,
    location_to_id: int | None = None,
    source_type: str | None = None,
    source_id: int | None = None,
    source_number: str | None = None,
    unit_cost_cents: int | None = None,
    operator_id: int | None = None,
    notes: str | None = None,
    allow_negative: bool | None = None,
    compensating: bool = False,
) -> StockMovement:
    """
    Append one ledger entry and apply it to the index and the product total.

    Caller must already hold the product row lock (lock_products) and owns
    the transaction: nothing is committed here.

    compensating=True is for entries that put back stock an earlier entry
    took out (sale cancel/return): the destination may be inactive or full.
    """
    qty = validate_movement_shape(movement_type, reason, quantity, location_from_id, location_to_id)

    if source_type is not None and source_type not in SOURCE_TYPES:
        raise ValidationError(f"Invalid source type '{source_type}'")
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"notes exceeds max length {MAX_NOTES_LENGTH}")
    if allow_negative is None:
        allow_negative = settings_service.negative_stock_allowed()

    location_from = _load_location(location_from_id) if location_from_id is not None else None
    location_to = _load_location(location_to_id) if location_to_id is not None else None

    if location_to is not None and not location_to.is_active and not compensating:
        raise ValidationError(
            f"Location {location_to.code} is inactive",
            details={"location_id": location_to.id},
        )

    from_level = None
    if location_from is not None:
        from_level = stock_index_service.get_level_for_update(product.id, location_from.id)
        if from_level.quantity - qty < 0 and not allow_negative:
            raise InsufficientStockError(
                f"Insufficient stock for {product.sku} at {location_from.code}. "
                f"On-hand: {from_level.quantity}, requested: {qty}",
                details={
                    "product_id": product.id,
                    "location_id": location_from.id,
                    "available": from_level.quantity,
                    "requested": qty,
                },
            )

    to_level = None
    if location_to is not None:
        if location_to.capacity is not None and not compensating:
            lock_location(location_to.id)
            utilization = stock_index_service.location_utilization(location_to.id)
            if utilization + qty > location_to.capacity:
                raise CapacityExceededError(
                    f"Location {location_to.code} would exceed its capacity of {location_to.capacity}",
                    details={
                        "location_id": location_to.id,
                        "capacity": location_to.capacity,
                        "current_utilization": utilization,
                        "requested": qty,
                    },
                )
        to_level = stock_index_service.get_level_for_update(product.id, location_to.id)

    if from_level is not None:
        from_level.quantity -= qty
    if to_level is not None:
        to_level.quantity += qty

    previous_stock = product.current_stock
    product.current_stock = previous_stock + stock_index_service.aggregate_delta(
        movement_type, qty, location_from_id, location_to_id
    )

    if unit_cost_cents is None:
        unit_cost_cents = product.cost_price_cents

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        reason=reason,
        quantity=qty,
        location_from_id=location_from_id,
        location_to_id=location_to_id,
        source_type=source_type,
        source_id=source_id,
        source_number=source_number,
        previous_stock=previous_stock,
        new_stock=product.current_stock,
        unit_cost_cents=unit_cost_cents,
        total_cost_cents=unit_cost_cents * qty,
        operator_id=operator_id,
        notes=notes,
    )
    db.session.add(movement)
    db.session.flush()  # assigns the sequence number
    return movement


def append_movement(
    *,
    product_id: int,
    movement_type: str,
    reason: str,
    quantity,
    location_from_id=None,
    location_to_id=None,
    operator_id: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    """
    Operator-entered ledger entry (opening stock, damage, manual adjustment...).

    One transaction: entry + index + product total + activity log.
    """
    product_id = parse_int(product_id, "product_id")
    location_from_id = parse_optional_int(location_from_id, "location_from_id")
    location_to_id = parse_optional_int(location_to_id, "location_to_id")

    def _op():
        products = lock_products([product_id])
        product = products.get(product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

        movement = post_movement(
            product=product,
            movement_type=movement_type,
            reason=reason,
            quantity=quantity,
            location_from_id=location_from_id,
            location_to_id=location_to_id,
            source_type=MOVEMENT_TYPE_ADJUSTMENT if movement_type == MOVEMENT_TYPE_ADJUSTMENT else None,
            operator_id=operator_id,
            notes=notes,
        )

        audit_service.record_activity(
            actor_user_id=operator_id,
            action="create",
            resource="stock_movement",
            resource_id=movement.id,
            description=(
                f"Stock {movement.type}/{movement.reason} of {movement.quantity} for {product.sku}"
            ),
            after=movement.to_dict(),
        )

        db.session.commit()
        return movement

    return run_with_retry(_op)


def hide_movement(*, movement_id: int, operator_id: int | None = None) -> StockMovement:
    """Soft-hide an entry from listings. Stock is untouched."""
    def _op():
        movement = lock_for_update(db.session.query(StockMovement).filter_by(id=movement_id)).first()
        if not movement:
            raise NotFoundError(f"Stock movement {movement_id} not found")
        if not movement.is_hidden:
            movement.is_hidden = True
            audit_service.record_activity(
                actor_user_id=operator_id,
                action="delete",
                resource="stock_movement",
                resource_id=movement.id,
                description=f"Hid stock movement {movement.movement_number}",
            )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def get_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if not movement:
        raise NotFoundError(f"Stock movement {movement_id} not found")
    return movement


def movements_for_source(source_type: str, source_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(source_type=source_type, source_id=source_id)
        .order_by(StockMovement.id)
        .all()
    )


# =============================================================================
# Reads
# =============================================================================

def list_movements(
    *,
    product_id: int | None = None,
    location_id: int | None = None,
    movement_type: str | None = None,
    reason: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    operator_id: int | None = None,
    source_type: str | None = None,
    source_id: int | None = None,
    before_sequence: int | None = None,
    include_hidden: bool = False,
):
    """
    Lazy query over the ledger, newest sequence first.

    Callers paginate (.limit/.offset) or iterate; nothing is loaded here.
    """
    query = db.session.query(StockMovement)

    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if location_id is not None:
        query = query.filter(
            or_(StockMovement.location_from_id == location_id, StockMovement.location_to_id == location_id)
        )
    if movement_type:
        parse_choice(movement_type, "type", MOVEMENT_TYPES)
        query = query.filter(StockMovement.type == movement_type)
    if reason:
        parse_choice(reason, "reason", MOVEMENT_REASONS)
        query = query.filter(StockMovement.reason == reason)
    if from_date:
        query = query.filter(StockMovement.occurred_at >= from_date)
    if to_date:
        query = query.filter(StockMovement.occurred_at <= to_date)
    if operator_id is not None:
        query = query.filter(StockMovement.operator_id == operator_id)
    if source_type:
        query = query.filter(StockMovement.source_type == source_type)
    if source_id is not None:
        query = query.filter(StockMovement.source_id == source_id)
    if before_sequence is not None:
        query = query.filter(StockMovement.id < before_sequence)
    if not include_hidden:
        query = query.filter(StockMovement.is_hidden.is_(False))

    return query.order_by(StockMovement.id.desc())


def _directions(movement_type: str, location_from_id, location_to_id) -> list[str]:
    if movement_type == MOVEMENT_TYPE_TRANSFER:
        return ["in", "out"]
    if movement_type == MOVEMENT_TYPE_IN:
        return ["in"]
    if movement_type == MOVEMENT_TYPE_OUT:
        return ["out"]
    return ["in"] if location_to_id is not None else ["out"]


def summarize_movements(
    *,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    bucket: str = "day",
    include_hidden: bool = True,
) -> dict:
    """
    Quantities in/out per reason per time bucket, plus totals per type and
    per reason and the most moved products and locations.
    """
    parse_choice(bucket, "bucket", SUMMARY_BUCKETS)

    def _scoped(query):
        if from_date:
            query = query.filter(StockMovement.occurred_at >= from_date)
        if to_date:
            query = query.filter(StockMovement.occurred_at <= to_date)
        if not include_hidden:
            query = query.filter(StockMovement.is_hidden.is_(False))
        return query

    buckets: dict[str, dict] = defaultdict(lambda: defaultdict(lambda: {"in": 0, "out": 0}))
    rows = _scoped(
        db.session.query(
            StockMovement.occurred_at,
            StockMovement.type,
            StockMovement.reason,
            StockMovement.quantity,
            StockMovement.location_from_id,
            StockMovement.location_to_id,
        )
    ).order_by(StockMovement.id)
    for occurred_at, mtype, reason, qty, from_id, to_id in rows:
        per_reason = buckets[period_key(occurred_at, bucket)][reason]
        for direction in _directions(mtype, from_id, to_id):
            per_reason[direction] += qty

    periods = []
    for period in sorted(buckets):
        reasons = {reason: dict(v) for reason, v in sorted(buckets[period].items())}
        periods.append({
            "period": period,
            "reasons": reasons,
            "total_in": sum(v["in"] for v in reasons.values()),
            "total_out": sum(v["out"] for v in reasons.values()),
        })

    def _grouped(column, label):
        q = _scoped(
            db.session.query(
                column,
                func.count(StockMovement.id),
                func.coalesce(func.sum(StockMovement.quantity), 0),
                func.coalesce(func.sum(StockMovement.total_cost_cents), 0),
            )
        ).group_by(column).order_by(column)
        return [
            {
                label: key,
                "count": count,
                "total_quantity": int(total_qty),
                "total_value": cents_to_money(int(total_value)),
            }
            for key, count, total_qty, total_value in q
        ]

    by_type = _grouped(StockMovement.type, "type")
    by_reason = _grouped(StockMovement.reason, "reason")

    top_products = [
        {"product_id": product_id, "sku": sku, "name": name, "count": count, "total_quantity": int(total_qty)}
        for product_id, sku, name, count, total_qty in _scoped(
            db.session.query(
                StockMovement.product_id,
                Product.sku,
                Product.name,
                func.count(StockMovement.id),
                func.sum(StockMovement.quantity),
            ).join(Product, Product.id == StockMovement.product_id)
        )
        .group_by(StockMovement.product_id, Product.sku, Product.name)
        .order_by(func.sum(StockMovement.quantity).desc(), StockMovement.product_id)
        .limit(TOP_LIMIT)
    ]

    location_totals: dict[int, dict] = defaultdict(lambda: {"count": 0, "total_quantity": 0})
    for column in (StockMovement.location_from_id, StockMovement.location_to_id):
        q = _scoped(
            db.session.query(column, func.count(StockMovement.id), func.sum(StockMovement.quantity))
        ).filter(column.isnot(None)).group_by(column)
        for location_id, count, total_qty in q:
            location_totals[location_id]["count"] += count
            location_totals[location_id]["total_quantity"] += int(total_qty)
    top_locations = sorted(
        ({"location_id": loc_id, **totals} for loc_id, totals in location_totals.items()),
        key=lambda row: (-row["total_quantity"], row["location_id"]),
    )[:TOP_LIMIT]

    return {
        "bucket": bucket,
        "periods": periods,
        "by_type": by_type,
        "by_reason": by_reason,
        "top_products": top_products,
        "top_locations": top_locations,
    }
