"""Order reservation workflow.

Orders in a reserving status (Pending, Processing, Completed) hold their line
quantities out of the ledger. Creating, editing or deleting an order turns
the difference between what was reserved before and after into a delta map
keyed by ``SKU`` or ``SKU::WAREHOUSE`` and applies it to inventory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy.orm import Session

from stockledger.audit import AuditLogWriter
from stockledger.errors import InsufficientStockError, NotFoundError, ValidationError
from stockledger.ledger import (
    add_to_warehouse,
    available_quantity,
    compute_status,
    deduct_across_warehouses,
    deduct_from_warehouse,
    normalize_stock,
    parse_reservation_key,
    reservation_key,
    total_of,
)
from stockledger.models import (
    AuditAction,
    DeletionPolicy,
    InventoryItem,
    Order,
    OrderLine,
    OrderStatus,
)
from stockledger.services.transactions import default_warehouse_code, lock_items, unit_of_work
from stockledger.utils.parsing import (
    clean_text,
    parse_date,
    parse_money,
    parse_quantity,
    require_text,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineRequest:
    sku: str
    quantity: int
    name: str | None = None
    unit_price: Decimal | None = None
    warehouse_code: str | None = None

    @property
    def key(self) -> str:
        return reservation_key(self.sku, self.warehouse_code)


def _parse_status(value, *, default: str) -> str:
    status = clean_text(value) or default
    if status not in OrderStatus.ALL_STATUSES:
        raise ValidationError(
            f"Status must be one of: {', '.join(OrderStatus.ALL_STATUSES)}.", field="status"
        )
    return status


def _parse_lines(raw_items) -> list[LineRequest]:
    if not isinstance(raw_items, (list, tuple)) or not raw_items:
        raise ValidationError("Add at least one item to the order.", field="items")

    lines = []
    for index, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Item {index} is malformed.", field="items")
        unit_price = raw.get("unitPrice")
        lines.append(
            LineRequest(
                sku=require_text(raw.get("sku"), field="sku", label=f"Item {index} SKU"),
                quantity=parse_quantity(raw.get("quantity"), field="quantity", allow_zero=False),
                name=clean_text(raw.get("name")),
                unit_price=(
                    None
                    if unit_price is None or unit_price == ""
                    else parse_money(unit_price, field="unitPrice")
                ),
                warehouse_code=clean_text(raw.get("warehouseCode")),
            )
        )
    return lines


def required_quantities(lines: Iterable, *, reserving: bool = True) -> dict[str, int]:
    """Sum line quantities per reservation key; empty when nothing is reserved."""

    required: dict[str, int] = {}
    if not reserving:
        return required
    for line in lines:
        key = reservation_key(line.sku, line.warehouse_code)
        required[key] = required.get(key, 0) + int(line.quantity or 0)
    return required


class OrderReservationWorkflow:
    deletion_policy = DeletionPolicy.RESTORATIVE

    def __init__(self, session: Session, *, audit: AuditLogWriter | None = None, actor: str | None = None):
        self.session = session
        self.audit = audit or AuditLogWriter(session)
        self.actor = actor

    # -- queries -----------------------------------------------------------

    def list_orders(self, *, status: str | None = None) -> list[Order]:
        query = self.session.query(Order)
        if status:
            query = query.filter(Order.status == status)
        return query.order_by(Order.order_date.desc(), Order.id.desc()).all()

    def get_order(self, order_id: int) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    # -- ledger helpers ----------------------------------------------------

    def _note(self, text: str) -> str:
        return f"{text} (by {self.actor})" if self.actor else text

    def check_availability(
        self, required: Mapping[str, int], items: Mapping[str, InventoryItem]
    ) -> list[dict[str, Any]]:
        """Return every key whose need exceeds what the ledger holds."""

        shortfalls: list[dict[str, Any]] = []
        per_sku_need: dict[str, int] = {}
        for key, need in required.items():
            sku, warehouse_code = parse_reservation_key(key)
            per_sku_need[sku] = per_sku_need.get(sku, 0) + need
            item = items.get(sku)
            have = (
                available_quantity(item.stock, warehouse_code, default_warehouse_code())
                if item
                else 0
            )
            if have < need:
                shortfalls.append(
                    {"sku": sku, "warehouseCode": warehouse_code, "have": have, "need": need}
                )

        # Pinned and unpinned lines for one SKU share the same stock.
        reported = {entry["sku"] for entry in shortfalls}
        for sku, need in per_sku_need.items():
            if sku in reported:
                continue
            item = items.get(sku)
            have = total_of(item.stock) if item else 0
            if have < need:
                shortfalls.append({"sku": sku, "warehouseCode": None, "have": have, "need": need})
        return shortfalls

    def _restore_code(self, item: InventoryItem, stock_map: Mapping[str, int]) -> str:
        for code in item.warehouse_code or ():
            return code
        for code in stock_map:
            return code
        return default_warehouse_code()

    def apply_deltas(
        self,
        deltas: Mapping[str, int],
        items: Mapping[str, InventoryItem],
        *,
        note: str,
        order_id: str,
    ) -> None:
        """Apply signed changes (negative deducts) and log one row per SKU."""

        by_sku: dict[str, list[tuple[str | None, int]]] = {}
        for key, delta in deltas.items():
            if not delta:
                continue
            sku, warehouse_code = parse_reservation_key(key)
            by_sku.setdefault(sku, []).append((warehouse_code, delta))

        for sku, changes in by_sku.items():
            item = items.get(sku)
            if item is None:
                logger.warning("Order %s references missing SKU %s; ledger unchanged", order_id, sku)
                continue

            before = item.stock
            stock_map = normalize_stock(before, default_warehouse_code())
            # Restores, then pinned deductions, then greedy ones, so the greedy
            # pass cannot drain a warehouse a pinned line still needs.
            changes.sort(key=lambda change: (change[1] < 0, change[0] is None))
            for warehouse_code, delta in changes:
                if delta < 0:
                    if warehouse_code:
                        stock_map = deduct_from_warehouse(stock_map, warehouse_code, -delta)
                    else:
                        stock_map = deduct_across_warehouses(stock_map, -delta)
                else:
                    # Unpinned releases go to the home bucket, not their source.
                    target = warehouse_code or self._restore_code(item, stock_map)
                    stock_map = add_to_warehouse(stock_map, target, delta)

            item.stock = stock_map
            item.status = compute_status(total_of(stock_map), item.category)
            self.audit.record_stock_change(
                action=AuditAction.ORDER,
                item=item,
                before=before,
                after=stock_map,
                note=note,
                order_id=order_id,
            )
            logger.info(
                "Order %s moved %s units of %s",
                order_id,
                total_of(stock_map) - total_of(before),
                sku,
            )

    def _build_lines(
        self, requests: Iterable[LineRequest], items: Mapping[str, InventoryItem]
    ) -> tuple[list[OrderLine], Decimal]:
        lines = []
        total = Decimal("0.00")
        for position, request in enumerate(requests):
            item = items.get(request.sku)
            unit_price = request.unit_price
            if unit_price is None:
                unit_price = Decimal(item.unit_price or 0) if item else Decimal("0.00")
            subtotal = (unit_price * request.quantity).quantize(Decimal("0.01"))
            total += subtotal
            lines.append(
                OrderLine(
                    position=position,
                    sku=request.sku,
                    name=request.name or (item.name if item else None),
                    unit_price=unit_price,
                    quantity=request.quantity,
                    subtotal=subtotal,
                    warehouse_code=request.warehouse_code,
                )
            )
        return lines, total

    # -- lifecycle ---------------------------------------------------------

    def create_order(self, payload: Mapping[str, Any], *, today: date | None = None) -> Order:
        today = today or date.today()
        customer_name = require_text(
            payload.get("customerName"), field="customerName", label="Customer name"
        )
        order_date = parse_date(payload.get("orderDate"), field="orderDate", default=today)
        if order_date < today:
            raise ValidationError("Order date cannot be in the past.", field="orderDate")
        status = _parse_status(payload.get("status"), default=OrderStatus.PENDING)
        requests = _parse_lines(payload.get("items"))

        required = required_quantities(requests, reserving=status in OrderStatus.RESERVING_STATES)

        with unit_of_work(self.session):
            items = lock_items(self.session, [request.sku for request in requests])
            shortfalls = self.check_availability(required, items)
            if shortfalls:
                logger.warning("Rejected order for %s: %s", customer_name, shortfalls)
                raise InsufficientStockError(shortfalls)

            lines, total = self._build_lines(requests, items)
            order = Order(
                customer_name=customer_name,
                order_date=order_date,
                status=status,
                total_amount=total,
                lines=lines,
            )
            self.session.add(order)
            self.session.flush()

            order_ref = str(order.id)
            note = self._note(
                f"Order created ({order_ref}) - status {status} - (for {customer_name})"
            )
            if required:
                self.apply_deltas(
                    {key: -need for key, need in required.items()},
                    items,
                    note=note,
                    order_id=order_ref,
                )
            else:
                self.audit.record_meta(action=AuditAction.ORDER, note=note, order_id=order_ref)

        return order

    def update_order(self, order_id: int, payload: Mapping[str, Any]) -> Order:
        changes: dict[str, Any] = {}
        if "customerName" in payload:
            changes["customer_name"] = require_text(
                payload.get("customerName"), field="customerName", label="Customer name"
            )
        if "orderDate" in payload:
            changes["order_date"] = parse_date(payload.get("orderDate"), field="orderDate")
        new_status = None
        if "status" in payload:
            new_status = _parse_status(payload.get("status"), default=OrderStatus.PENDING)
        new_requests = _parse_lines(payload["items"]) if "items" in payload else None

        with unit_of_work(self.session):
            order = self.get_order(order_id)
            old_status = order.status
            new_status = new_status or old_status
            old_required = required_quantities(
                order.lines, reserving=old_status in OrderStatus.RESERVING_STATES
            )
            next_lines = new_requests if new_requests is not None else order.lines
            new_required = required_quantities(
                next_lines, reserving=new_status in OrderStatus.RESERVING_STATES
            )

            deltas: dict[str, int] = {}
            for key in list(dict.fromkeys([*old_required, *new_required])):
                delta = old_required.get(key, 0) - new_required.get(key, 0)
                if delta:
                    deltas[key] = delta

            skus = [parse_reservation_key(key)[0] for key in deltas]
            if new_requests is not None:
                skus.extend(request.sku for request in new_requests)
            items = lock_items(self.session, skus)

            to_deduct = {key: -delta for key, delta in deltas.items() if delta < 0}
            if to_deduct:
                shortfalls = self.check_availability(to_deduct, items)
                if shortfalls:
                    logger.warning("Rejected update of order %s: %s", order.id, shortfalls)
                    raise InsufficientStockError(shortfalls, message="Insufficient stock for update")

            for attribute, value in changes.items():
                setattr(order, attribute, value)
            order.status = new_status
            if new_requests is not None:
                lines, total = self._build_lines(new_requests, items)
                order.lines = lines
                order.total_amount = total

            order_ref = str(order.id)
            if deltas:
                self.apply_deltas(
                    deltas,
                    items,
                    note=self._note(
                        f"Order updated ({order_ref}) - status {old_status} → {new_status}"
                        f" - (for {order.customer_name})"
                    ),
                    order_id=order_ref,
                )
            elif old_status != new_status:
                self.audit.record_meta(
                    action=AuditAction.ORDER,
                    note=self._note(
                        f"Order status updated ({order_ref}) - status {old_status} → {new_status}"
                        f" - (for {order.customer_name})"
                    ),
                    order_id=order_ref,
                )

        return order

    def delete_order(self, order_id: int) -> None:
        with unit_of_work(self.session):
            order = self.get_order(order_id)
            order_ref = str(order.id)
            restore: dict[str, int] = {}
            if self.deletion_policy == DeletionPolicy.RESTORATIVE:
                restore = required_quantities(order.lines, reserving=order.is_reserving)

            note = self._note(
                f"Order deleted ({order_ref}) - inventory restored - (for {order.customer_name})"
            )
            if restore:
                items = lock_items(self.session, [parse_reservation_key(key)[0] for key in restore])
                self.apply_deltas(restore, items, note=note, order_id=order_ref)
            else:
                self.audit.record_meta(
                    action=AuditAction.ORDER,
                    note=self._note(
                        f"Order deleted ({order_ref}) - status {order.status}, nothing reserved"
                        f" - (for {order.customer_name})"
                    ),
                    order_id=order_ref,
                )
            self.session.delete(order)

        logger.info("Deleted order %s", order_ref)
