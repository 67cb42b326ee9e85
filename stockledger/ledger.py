"""Per-warehouse stock arithmetic.

Everything here is mechanical: functions take a stock mapping (warehouse code
to quantity) and return a new mapping. Business rejections such as
insufficient stock are decided by the workflows before these are called.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from stockledger.models import ItemCategory, ItemStatus

DEFAULT_WAREHOUSE_CODE = "VL1"
KEY_SEPARATOR = "::"

WAREHOUSE_LOCATION_CODES: dict[str, tuple[str, ...]] = {
    "Valenzuela": ("VL1", "VL2", "VL3", "VL4"),
    "Malabon": ("MB1",),
}

LOW_STOCK_THRESHOLDS: dict[str, int] = {
    ItemCategory.SPARE_PARTS: 15,
    ItemCategory.TOOLS: 15,
    ItemCategory.MISCELLANEOUS: 10,
}
DEFAULT_LOW_STOCK_THRESHOLD = 5


def _as_quantity(value) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return 0
    return 0


def low_stock_threshold(category: str | None) -> int:
    return LOW_STOCK_THRESHOLDS.get(category or "", DEFAULT_LOW_STOCK_THRESHOLD)


def compute_status(total_qty: int, category: str | None) -> str:
    """Derive availability from the total quantity and the category threshold."""

    if total_qty <= 0:
        return ItemStatus.OUT_OF_STOCK
    if total_qty <= low_stock_threshold(category):
        return ItemStatus.LOW_STOCK
    return ItemStatus.AVAILABLE


def total_of(stock) -> int:
    """Sum a stock mapping; a legacy scalar is its own total."""

    if stock is None:
        return 0
    if isinstance(stock, Mapping):
        return sum(_as_quantity(value) for value in stock.values())
    return _as_quantity(stock)


def normalize_stock(stock, default_code: str = DEFAULT_WAREHOUSE_CODE) -> dict[str, int]:
    """Return ``stock`` as a fresh mapping of warehouse code to quantity."""

    if stock is None:
        return {}
    if isinstance(stock, Mapping):
        return {str(code): _as_quantity(qty) for code, qty in stock.items()}
    return {default_code: _as_quantity(stock)}


def available_quantity(
    stock, warehouse_code: str | None = None, default_code: str = DEFAULT_WAREHOUSE_CODE
) -> int:
    """Units held in ``warehouse_code``, or in total when no code is given.

    A legacy scalar is read as ``{default_code: qty}``, the same bucket the
    write path moves it into.
    """

    if warehouse_code is None:
        return total_of(stock)
    return normalize_stock(stock, default_code).get(warehouse_code, 0)


def deduct_across_warehouses(stock_map: Mapping[str, int], amount: int) -> dict[str, int]:
    """Take ``amount`` from the fullest warehouses first.

    Warehouses with equal quantities keep their mapping order. Buckets never
    drop below zero; anything left over once every bucket is empty is ignored.
    """

    result = normalize_stock(stock_map)
    remaining = max(0, int(amount))
    ordered = sorted(result.items(), key=lambda entry: entry[1], reverse=True)
    for code, qty in ordered:
        if remaining <= 0:
            break
        take = min(max(qty, 0), remaining)
        result[code] = qty - take
        remaining -= take
    return result


def deduct_from_warehouse(stock_map: Mapping[str, int], code: str, amount: int) -> dict[str, int]:
    result = normalize_stock(stock_map)
    result[code] = max(0, result.get(code, 0) - max(0, int(amount)))
    return result


def add_to_warehouse(stock_map: Mapping[str, int], code: str, amount: int) -> dict[str, int]:
    result = normalize_stock(stock_map)
    result[code] = result.get(code, 0) + int(amount)
    return result


def warehouse_codes_for(locations: Iterable[str]) -> list[str]:
    codes: list[str] = []
    for location in locations or ():
        for code in WAREHOUSE_LOCATION_CODES.get(location, ()):
            if code not in codes:
                codes.append(code)
    return codes


def reservation_key(sku: str, warehouse_code: str | None = None) -> str:
    if warehouse_code:
        return f"{sku}{KEY_SEPARATOR}{warehouse_code}"
    return sku


def parse_reservation_key(key: str) -> tuple[str, str | None]:
    sku, _, warehouse_code = key.partition(KEY_SEPARATOR)
    return sku, warehouse_code or None
