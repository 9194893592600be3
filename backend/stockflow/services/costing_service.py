# Overview: Inventory valuation from ledger unit costs (reporting only).

"""
Valuation replays one product's ledger in sequence order.

- in / adjustment-to entries add a cost layer at the entry's unit cost
- out / adjustment-from entries consume layers: oldest first (fifo),
  newest first (lifo), or at the running average (weighted_average)
- transfers move stock between locations and leave the layers alone

The costing method never changes what a movement records; it only decides
how the remaining quantity is valued.
"""

from __future__ import annotations

from collections import deque
from decimal import Decimal, ROUND_HALF_UP

from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_TYPE_TRANSFER
from ..errors import NotFoundError, ValidationError
from ..validation import cents_to_money
from . import settings_service
from .stock_index_service import aggregate_delta


def _consume(layers: deque, qty: int, *, newest_first: bool) -> int:
    """Take qty out of the layers; returns what the layers could not cover."""
    while qty > 0 and layers:
        layer = layers[-1] if newest_first else layers[0]
        take = min(qty, layer[0])
        layer[0] -= take
        qty -= take
        if layer[0] == 0:
            if newest_first:
                layers.pop()
            else:
                layers.popleft()
    return qty


def _layered_valuation(movements, *, newest_first: bool) -> tuple[int, int, list[dict]]:
    layers: deque = deque()
    on_hand = 0
    # Units sold below zero; the next inbound quantity settles them first
    shortfall = 0
    for m in movements:
        delta = aggregate_delta(m.type, m.quantity, m.location_from_id, m.location_to_id)
        on_hand += delta
        if delta > 0:
            settled = min(shortfall, delta)
            shortfall -= settled
            if delta > settled:
                layers.append([delta - settled, m.unit_cost_cents, m.id])
        elif delta < 0:
            shortfall += _consume(layers, -delta, newest_first=newest_first)

    value = sum(qty * cost for qty, cost, _ in layers)
    detail = [
        {"quantity": qty, "unit_cost": cents_to_money(cost), "sequence": seq}
        for qty, cost, seq in layers
    ]
    return on_hand, value, detail


def _average_valuation(movements) -> tuple[int, int, list[dict]]:
    on_hand = 0
    value = Decimal(0)
    for m in movements:
        delta = aggregate_delta(m.type, m.quantity, m.location_from_id, m.location_to_id)
        if delta > 0:
            settled = min(delta, max(-on_hand, 0))
            value += Decimal((delta - settled) * m.unit_cost_cents)
            on_hand += delta
        elif delta < 0:
            if on_hand > 0:
                average = value / on_hand
                value -= average * min(-delta, on_hand)
            on_hand += delta
            if on_hand <= 0:
                value = Decimal(0)
    return on_hand, int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP)), []


def product_valuation(product_id: int, *, method: str | None = None) -> dict:
    """
    Value a product's remaining stock.

    method defaults to the inventory.costing_method setting.
    """
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")

    method = method or settings_service.get_setting(settings_service.KEY_COSTING_METHOD)
    if method not in settings_service.COSTING_METHODS:
        raise ValidationError(
            f"Invalid costing method '{method}'. Must be one of: {', '.join(settings_service.COSTING_METHODS)}"
        )

    movements = (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product.id, StockMovement.type != MOVEMENT_TYPE_TRANSFER)
        .order_by(StockMovement.id.asc())
        .all()
    )

    if method == "weighted_average":
        on_hand, value, layers = _average_valuation(movements)
    else:
        on_hand, value, layers = _layered_valuation(movements, newest_first=(method == "lifo"))

    return {
        "product_id": product.id,
        "sku": product.sku,
        "method": method,
        "quantity_on_hand": on_hand,
        "total_value": cents_to_money(value),
        "average_unit_cost": cents_to_money(round(value / on_hand)) if on_hand > 0 else None,
        "layers": layers,
    }
