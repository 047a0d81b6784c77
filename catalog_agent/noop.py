from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .utils import normalize_key, normalize_text

TRUTHY = {"1", "yes", "true", "si", "on", "y"}


@dataclass
class NoopResult:
    """Outcome of comparing desired changes with the catalog's current values."""
    noop: bool
    changes: Dict[str, Any]
    dropped: List[str] = field(default_factory=list)
    current: Dict[str, Any] = field(default_factory=dict)


def normalize_flag(value: Any) -> bool:
    """Boolean from the many encodings a catalog uses (True, 1, "yes", "on", ...)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return normalize_text(str(value or "")) in TRUTHY


def price_key(value: Any) -> str:
    try:
        return f"{float(str(value).strip() or 0):.2f}"
    except ValueError:
        return ""


def _category_set(value: Any) -> set:
    return {normalize_key(str(item)) for item in (value or []) if str(item).strip()}


def values_equal(key: str, desired: Any, current: Any) -> bool:
    """Type-aware equality used by the no-op filter."""
    if key == "regular_price":
        return current not in (None, "") and price_key(desired) == price_key(current)
    if key == "stock_quantity":
        try:
            return current is not None and int(desired) == int(current)
        except (TypeError, ValueError):
            return False
    if key == "manage_stock":
        return normalize_flag(desired) == normalize_flag(current)
    if key == "categories":
        return _category_set(desired) == _category_set(current)
    return str(desired or "").strip() == str(current or "").strip()


def filter_noop_changes(catalog, entity_id: int, changes: Dict[str, Any]) -> NoopResult:
    """Purpose: Drop changes that already match the catalog's current state.
    Inputs/Outputs: Inputs are the catalog store, product id and desired changes; output is
        NoopResult with the remaining changes, the dropped keys and the current values.
    Side Effects / State: None; reads the catalog through read_current_fields.
    Dependencies: values_equal; catalog.read_current_fields may raise ExternalError.
    Failure Modes: An unknown product leaves the changes untouched.
    If Removed: Users are asked to confirm changes that would not change anything.
    Testing Notes: Stock is a no-op only when manage_stock is already on and the quantity
        matches; prices compare at two decimals ("100" equals "100.00").
    """
    # Price and stock follow their own rules; everything else compares per key.
    filtered = dict(changes or {})
    current = catalog.read_current_fields(entity_id, list(filtered.keys()) + ["manage_stock", "stock_quantity"])
    if not current:
        return NoopResult(noop=not filtered, changes=filtered)
    dropped: List[str] = []

    if "regular_price" in filtered:
        if values_equal("regular_price", filtered["regular_price"], current.get("regular_price")):
            filtered.pop("regular_price")
            dropped.append("regular_price")
        else:
            filtered["regular_price"] = price_key(filtered["regular_price"])

    if "stock_quantity" in filtered or "manage_stock" in filtered:
        desired_manage = filtered.get("manage_stock")
        desired_qty = filtered.get("stock_quantity")
        if (
            desired_manage is not None
            and normalize_flag(desired_manage)
            and desired_qty is not None
            and normalize_flag(current.get("manage_stock"))
            and values_equal("stock_quantity", desired_qty, current.get("stock_quantity"))
        ):
            filtered.pop("manage_stock", None)
            filtered.pop("stock_quantity", None)
            dropped.extend(["manage_stock", "stock_quantity"])

    for key in list(filtered.keys()):
        if key in {"regular_price", "manage_stock", "stock_quantity"}:
            continue
        if key in current and values_equal(key, filtered[key], current.get(key)):
            filtered.pop(key)
            dropped.append(key)

    return NoopResult(noop=not filtered, changes=filtered, dropped=dropped, current=current)
