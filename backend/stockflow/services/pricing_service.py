# Overview: Line pricing and document totals shared by purchases and sales.

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ..extensions import db
from ..models import Product
from ..errors import ValidationError, NotFoundError
from ..validation import parse_int, parse_money, percent_of, MAX_MONEY_CENTS


@dataclass
class PricedLine:
    product: Product
    quantity: int
    unit_price_cents: int
    discount_cents: int
    tax_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents - self.discount_cents + self.tax_cents


def price_lines(
    items,
    *,
    quantity_field: str,
    default_price: Callable[[Product], int],
    require_active: bool = True,
) -> list[PricedLine]:
    """
    Validate raw item dicts and price them.

    Each item: {product_id, <quantity_field>, unit_price?, discount?, tax?}.
    unit_price defaults to default_price(product); tax defaults to the
    product's tax rate applied to the discounted line amount.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    product_ids = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_ids.append(parse_int(item.get("product_id"), f"items[{index}].product_id"))

    products = {
        p.id: p for p in db.session.query(Product).filter(Product.id.in_(set(product_ids))).all()
    }

    lines = []
    for index, (item, product_id) in enumerate(zip(items, product_ids)):
        product = products.get(product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
        if require_active and not product.is_active:
            raise ValidationError(f"Product {product.sku} is inactive", details={"product_id": product_id})

        quantity = parse_int(item.get(quantity_field), f"items[{index}].{quantity_field}", minimum=1)

        if item.get("unit_price") is None:
            unit_price_cents = default_price(product)
        else:
            unit_price_cents = parse_money(item["unit_price"], f"items[{index}].unit_price")

        gross = quantity * unit_price_cents
        discount_cents = 0
        if item.get("discount") is not None:
            discount_cents = parse_money(item["discount"], f"items[{index}].discount")
        if discount_cents > gross:
            raise ValidationError(f"items[{index}].discount cannot exceed the line amount")

        if item.get("tax") is None:
            tax_cents = percent_of(gross - discount_cents, product.tax_rate_bps)
        else:
            tax_cents = parse_money(item["tax"], f"items[{index}].tax")

        lines.append(PricedLine(
            product=product,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
        ))
    return lines


def document_totals(lines: list[PricedLine], shipping_cost_cents: int) -> dict:
    """grand_total = subtotal - discount_total + tax_total + shipping_cost."""
    subtotal = sum(line.quantity * line.unit_price_cents for line in lines)
    discount_total = sum(line.discount_cents for line in lines)
    tax_total = sum(line.tax_cents for line in lines)
    grand_total = subtotal - discount_total + tax_total + shipping_cost_cents
    if grand_total > MAX_MONEY_CENTS:
        raise ValidationError("Document total is too large")
    return {
        "subtotal_cents": subtotal,
        "discount_total_cents": discount_total,
        "tax_total_cents": tax_total,
        "grand_total_cents": grand_total,
    }
