"""Read-only aggregates for the reports page and dashboard tiles."""

from __future__ import annotations

from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from stockledger.errors import ValidationError
from stockledger.ledger import compute_status, normalize_stock, total_of
from stockledger.models import (
    InventoryItem,
    ItemCategory,
    ItemStatus,
    Order,
    OrderStatus,
    StockRequest,
    StockRequestStatus,
)
from stockledger.services.transactions import default_warehouse_code


def _histogram(statuses, rows) -> dict[str, int]:
    counts = OrderedDict((status, 0) for status in statuses)
    for status, count in rows:
        counts[status] = counts.get(status, 0) + int(count)
    return dict(counts)


def _order_summary(session: Session, start: date, end: date) -> dict[str, Any]:
    in_range = (Order.order_date >= start, Order.order_date <= end)
    count, amount = (
        session.query(func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
        .filter(*in_range)
        .one()
    )
    by_status = (
        session.query(Order.status, func.count(Order.id))
        .filter(*in_range)
        .group_by(Order.status)
        .all()
    )
    return {
        "count": int(count),
        "totalAmount": float(amount or 0),
        "byStatus": _histogram(OrderStatus.ALL_STATUSES, by_status),
    }


def _stock_request_summary(session: Session, start: date, end: date) -> dict[str, Any]:
    requests = (
        session.query(StockRequest)
        .filter(StockRequest.date >= start, StockRequest.date <= end)
        .all()
    )
    requested = 0
    delivered = 0
    statuses = []
    for request in requests:
        units = sum(line.qty for line in request.lines)
        requested += units
        if request.applied:
            delivered += units
        statuses.append((request.status, 1))
    return {
        "count": len(requests),
        "byStatus": _histogram(StockRequestStatus.ALL_STATUSES, statuses),
        "unitsRequested": requested,
        "unitsDelivered": delivered,
    }


def _inventory_snapshot(session: Session) -> dict[str, Any]:
    by_category = {
        category: {"skus": 0, "units": 0, "lowStock": 0, "outOfStock": 0}
        for category in ItemCategory.ALL
    }
    by_warehouse: dict[str, int] = {}
    units = 0
    low = 0
    out = 0
    valuation = Decimal("0.00")

    items = session.query(InventoryItem).all()
    for item in items:
        total = total_of(item.stock)
        status = compute_status(total, item.category)
        bucket = by_category.setdefault(
            item.category, {"skus": 0, "units": 0, "lowStock": 0, "outOfStock": 0}
        )
        bucket["skus"] += 1
        bucket["units"] += total
        if status == ItemStatus.LOW_STOCK:
            low += 1
            bucket["lowStock"] += 1
        elif status == ItemStatus.OUT_OF_STOCK:
            out += 1
            bucket["outOfStock"] += 1
        for code, qty in normalize_stock(item.stock, default_warehouse_code()).items():
            by_warehouse[code] = by_warehouse.get(code, 0) + qty
        units += total
        valuation += Decimal(item.unit_price or 0) * total

    return {
        "skuCount": len(items),
        "unitCount": units,
        "lowStockCount": low,
        "outOfStockCount": out,
        "byCategory": by_category,
        "byWarehouse": dict(sorted(by_warehouse.items())),
        "valuation": float(valuation.quantize(Decimal("0.01"))),
    }


def build_report(session: Session, start: date, end: date) -> dict[str, Any]:
    """Summarise orders and stock requests dated within ``start``..``end``.

    Both bounds are inclusive. The inventory section is a snapshot of the
    ledger at call time, not as of ``end``.
    """

    if start > end:
        raise ValidationError("Start date must be on or before end date.", field="start")
    return {
        "range": {"start": start.isoformat(), "end": end.isoformat()},
        "orders": _order_summary(session, start, end),
        "stockRequests": _stock_request_summary(session, start, end),
        "inventory": _inventory_snapshot(session),
    }


def dashboard_summary(session: Session) -> dict[str, Any]:
    items = session.query(InventoryItem).all()
    low_stock = sum(
        1
        for item in items
        if compute_status(total_of(item.stock), item.category) in ItemStatus.ALERT_STATES
    )
    incoming = (
        session.query(func.count(StockRequest.id))
        .filter(StockRequest.status.in_(StockRequestStatus.INCOMING_STATES))
        .scalar()
    )
    return {
        "itemCount": len(items),
        "lowStockCount": low_stock,
        "incomingShipments": int(incoming or 0),
    }
