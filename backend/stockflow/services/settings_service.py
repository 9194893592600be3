from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from ..extensions import db
from ..models import AppSetting, Location
from ..errors import ValidationError, NotFoundError
from . import audit_service


COSTING_METHODS = ("fifo", "lifo", "weighted_average")

KEY_COSTING_METHOD = "inventory.costing_method"
KEY_NEGATIVE_STOCK = "inventory.negative_stock"
KEY_LOW_STOCK_ALERT = "inventory.low_stock_alert"
KEY_DEFAULT_RECEIVING_LOCATION = "inventory.default_receiving_location_id"
KEY_DEFAULT_SHIPPING_LOCATION = "inventory.default_shipping_location_id"
KEY_SKU_PREFIX = "inventory.sku_prefix"


@dataclass(frozen=True)
class SettingDefinition:
    key: str
    value_type: str
    default: Any
    description: str
    validator: Callable[[Any], None] | None = None


def _validate_costing_method(value: Any) -> None:
    if value not in COSTING_METHODS:
        raise ValidationError(
            f"{KEY_COSTING_METHOD} must be one of: {', '.join(COSTING_METHODS)}"
        )


def _validate_location_ref(value: Any) -> None:
    if value is None:
        return
    location = db.session.query(Location).filter_by(id=value).first()
    if not location:
        raise NotFoundError(f"Location {value} not found")
    if not location.is_active:
        raise ValidationError(f"Location {location.code} is inactive")


def _validate_sku_prefix(value: Any) -> None:
    if not value or len(value) > 10 or not value.replace("-", "").isalnum():
        raise ValidationError(f"{KEY_SKU_PREFIX} must be 1-10 letters, digits or hyphens")


SETTINGS_CATALOG: dict[str, SettingDefinition] = {
    d.key: d
    for d in (
        SettingDefinition(
            KEY_COSTING_METHOD, "string", "fifo",
            "Cost method used by inventory valuation", _validate_costing_method,
        ),
        SettingDefinition(
            KEY_NEGATIVE_STOCK, "bool", False,
            "Allow stock index entries to go below zero",
        ),
        SettingDefinition(
            KEY_LOW_STOCK_ALERT, "bool", True,
            "Show the low-stock alert view",
        ),
        SettingDefinition(
            KEY_DEFAULT_RECEIVING_LOCATION, "location", None,
            "Location that purchase receipts post into", _validate_location_ref,
        ),
        SettingDefinition(
            KEY_DEFAULT_SHIPPING_LOCATION, "location", None,
            "Location that confirmed sales ship from", _validate_location_ref,
        ),
        SettingDefinition(
            KEY_SKU_PREFIX, "string", "SKU",
            "Prefix for generated SKUs", _validate_sku_prefix,
        ),
    )
}


def _coerce(definition: SettingDefinition, value: Any) -> Any:
    if definition.value_type == "bool":
        if not isinstance(value, bool):
            raise ValidationError(f"{definition.key} must be a boolean")
        return value
    if definition.value_type == "location":
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValidationError(f"{definition.key} must be a location id")
        try:
            return int(value)
        except ValueError:
            raise ValidationError(f"{definition.key} must be a location id")
    if not isinstance(value, str):
        raise ValidationError(f"{definition.key} must be a string")
    return value.strip()


def get_setting(key: str) -> Any:
    definition = SETTINGS_CATALOG.get(key)
    if not definition:
        raise NotFoundError(f"Unknown setting '{key}'")
    row = db.session.get(AppSetting, key)
    if row is None:
        return definition.default
    return row.value


def get_all_settings() -> dict[str, Any]:
    stored = {row.key: row.value for row in db.session.query(AppSetting).all()}
    return {
        key: stored.get(key, definition.default)
        for key, definition in sorted(SETTINGS_CATALOG.items())
    }


def negative_stock_allowed() -> bool:
    return bool(get_setting(KEY_NEGATIVE_STOCK))


def update_settings(*, values: dict, actor_user_id: int | None) -> dict[str, Any]:
    """
    Validate and store several settings at once; all-or-nothing.
    """
    if not isinstance(values, dict) or not values:
        raise ValidationError("Body must be an object of setting keys to values")

    cleaned = {}
    for key, raw in values.items():
        definition = SETTINGS_CATALOG.get(key)
        if not definition:
            raise ValidationError(f"Unknown setting '{key}'")
        value = _coerce(definition, raw)
        if definition.validator:
            definition.validator(value)
        cleaned[key] = value

    before = {}
    for key, value in cleaned.items():
        row = db.session.get(AppSetting, key)
        before[key] = row.value if row else SETTINGS_CATALOG[key].default
        if row is None:
            row = AppSetting(key=key)
            db.session.add(row)
        row.value = value
        row.updated_by_user_id = actor_user_id

    audit_service.record_activity(
        actor_user_id=actor_user_id,
        action="update",
        resource="settings",
        resource_id=None,
        description=f"Updated settings: {', '.join(sorted(cleaned))}",
        before=before,
        after=cleaned,
    )
    db.session.commit()
    return get_all_settings()
