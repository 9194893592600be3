# Overview: Per-location stock index reads, maintenance and ledger replay.

from __future__ import annotations

from collections import defaultdict

from sqlalchemy import func

from ..extensions import db
from ..models import Location, Product, StockLevel, StockMovement
from ..models.inventory import (
    MOVEMENT_TYPE_IN,
    MOVEMENT_TYPE_OUT,
    MOVEMENT_TYPE_TRANSFER,
    MOVEMENT_TYPE_ADJUSTMENT,
)
from ..errors import NotFoundError
from ..validation import cents_to_money
from .concurrency import lock_for_update, run_with_retry

"""
Stock index invariants (authoritative)

- stock_levels(product, location).quantity == signed sum of the ledger
  entries touching that pair.
- products.current_stock == sum of the product's stock_levels rows.
- Both are written only by stock_ledger_service, in the same transaction as
  the ledger entry. The ledger is the system of record: replay_ledger()
  rebuilds both from scratch.
"""


def signed_legs(movement_type: str, quantity: int, location_from_id, location_to_id):
    """
    Index deltas of one ledger entry as [(location_id, delta), ...].

    in -> +q at to; out -> -q at from; transfer -> both;
    adjustment -> +q at to or -q at from, whichever leg is set.
    """
    legs = []
    if movement_type in (MOVEMENT_TYPE_OUT, MOVEMENT_TYPE_TRANSFER, MOVEMENT_TYPE_ADJUSTMENT):
        if location_from_id is not None:
            legs.append((location_from_id, -quantity))
    if movement_type in (MOVEMENT_TYPE_IN, MOVEMENT_TYPE_TRANSFER, MOVEMENT_TYPE_ADJUSTMENT):
        if location_to_id is not None:
            legs.append((location_to_id, quantity))
    return legs


def aggregate_delta(movement_type: str, quantity: int, location_from_id, location_to_id) -> int:
    """Net change of the product total; transfers net to zero."""
    return sum(delta for _, delta in signed_legs(movement_type, quantity, location_from_id, location_to_id))


# =============================================================================
# Reads
# =============================================================================

def stock_at(product_id: int, location_id: int) -> int:
    qty = (
        db.session.query(StockLevel.quantity)
        .filter_by(product_id=product_id, location_id=location_id)
        .scalar()
    )
    return qty or 0


def location_utilization(location_id: int) -> int:
    """Sum of on-hand quantities at a location."""
    return int(
        db.session.query(func.coalesce(func.sum(StockLevel.quantity), 0))
        .filter(StockLevel.location_id == location_id)
        .scalar()
    )


def location_stock(location_id: int, *, low_only: bool = False) -> dict:
    """
    Stock held at one location.

    Every index row at the location is listed (zero rows too, once a product
    has been there), each flagged is_low when quantity <= minimum_stock.
    """
    location = db.session.query(Location).filter_by(id=location_id).first()
    if not location:
        raise NotFoundError(f"Location {location_id} not found")

    rows = (
        db.session.query(StockLevel, Product)
        .join(Product, Product.id == StockLevel.product_id)
        .filter(StockLevel.location_id == location_id)
        .order_by(Product.name, Product.id)
        .all()
    )

    items = []
    total_value_cents = 0
    for level, product in rows:
        is_low = level.quantity <= product.minimum_stock
        if low_only and not is_low:
            continue
        value_cents = level.quantity * product.cost_price_cents
        total_value_cents += value_cents
        items.append({
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "unit": product.unit,
            "quantity": level.quantity,
            "minimum_stock": product.minimum_stock,
            "is_low": is_low,
            "value": cents_to_money(value_cents),
        })

    return {
        "location": location.to_dict(utilization=location_utilization(location_id)),
        "items": items,
        "total_items": len(items),
        "total_value": cents_to_money(total_value_cents),
    }


def product_by_location(product_id: int) -> dict:
    """Breakdown of one product's stock across locations."""
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    rows = (
        db.session.query(StockLevel, Location)
        .join(Location, Location.id == StockLevel.location_id)
        .filter(StockLevel.product_id == product_id)
        .order_by(Location.code)
        .all()
    )

    total = product.current_stock
    locations = []
    for level, location in rows:
        locations.append({
            "location_id": location.id,
            "code": location.code,
            "name": location.name,
            "type": location.type,
            "quantity": level.quantity,
            "percentage": round(level.quantity * 100 / total, 2) if total > 0 else 0,
            "value": cents_to_money(level.quantity * product.cost_price_cents),
        })

    return {
        "product": product.to_dict(),
        "total_stock": total,
        "locations": locations,
    }


# =============================================================================
# Writes (called only from stock_ledger_service with the product row locked)
# =============================================================================

def get_level_for_update(product_id: int, location_id: int) -> StockLevel:
    level = lock_for_update(
        db.session.query(StockLevel).filter_by(product_id=product_id, location_id=location_id)
    ).first()
    if level is None:
        level = StockLevel(product_id=product_id, location_id=location_id, quantity=0)
        db.session.add(level)
        db.session.flush()
    return level


# =============================================================================
# Replay / verification
# =============================================================================

def replay_ledger(*, up_to_sequence: int | None = None):
    """
    Recompute the index and product totals from the ledger alone.

    Returns (levels, totals) where levels maps (product_id, location_id) to
    quantity and totals maps product_id to quantity. Hidden entries count:
    hiding is presentation only.
    """
    levels: dict[tuple[int, int], int] = defaultdict(int)
    totals: dict[int, int] = defaultdict(int)

    query = db.session.query(
        StockMovement.product_id,
        StockMovement.type,
        StockMovement.quantity,
        StockMovement.location_from_id,
        StockMovement.location_to_id,
    )
    if up_to_sequence is not None:
        query = query.filter(StockMovement.id <= up_to_sequence)

    for product_id, mtype, qty, from_id, to_id in query.order_by(StockMovement.id).yield_per(1000):
        for location_id, delta in signed_legs(mtype, qty, from_id, to_id):
            levels[(product_id, location_id)] += delta
            totals[product_id] += delta

    return dict(levels), dict(totals)


def verify_stock_index() -> list[dict]:
    """
    Compare stored index rows and product totals with a full ledger replay.

    Returns one dict per discrepancy; an empty list means consistent.
    """
    levels, totals = replay_ledger()
    problems = []

    stored_levels = {
        (row.product_id, row.location_id): row.quantity
        for row in db.session.query(StockLevel).all()
    }
    for key in sorted(set(levels) | set(stored_levels)):
        expected = levels.get(key, 0)
        actual = stored_levels.get(key, 0)
        if expected != actual:
            problems.append({
                "kind": "stock_level",
                "product_id": key[0],
                "location_id": key[1],
                "expected": expected,
                "actual": actual,
            })

    for product_id, current_stock in db.session.query(Product.id, Product.current_stock).order_by(Product.id):
        expected = totals.get(product_id, 0)
        if expected != current_stock:
            problems.append({
                "kind": "product_total",
                "product_id": product_id,
                "expected": expected,
                "actual": current_stock,
            })

    return problems


def rebuild_stock_index() -> int:
    """
    Rewrite stock_levels and products.current_stock from a ledger replay.

    Locks every product row (ascending id) so no append can interleave.
    Returns the number of rows that changed.
    """
    def _op() -> int:
        products = lock_for_update(db.session.query(Product).order_by(Product.id)).all()
        levels, totals = replay_ledger()

        changed = 0
        existing = {(row.product_id, row.location_id): row for row in db.session.query(StockLevel).all()}
        for key in set(existing) | set(levels):
            expected = levels.get(key, 0)
            row = existing.get(key)
            if row is None:
                db.session.add(StockLevel(product_id=key[0], location_id=key[1], quantity=expected))
                changed += 1
            elif row.quantity != expected:
                row.quantity = expected
                changed += 1

        for product in products:
            expected = totals.get(product.id, 0)
            if product.current_stock != expected:
                product.current_stock = expected
                changed += 1

        db.session.commit()
        return changed

    return run_with_retry(_op)
