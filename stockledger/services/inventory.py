from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import or_
from sqlalchemy.orm import Session

from stockledger.audit import AuditLogWriter
from stockledger.errors import DuplicateItemError, NotFoundError, ValidationError
from stockledger.ledger import (
    compute_status,
    low_stock_threshold,
    normalize_stock,
    total_of,
    warehouse_codes_for,
)
from stockledger.models import AuditAction, InventoryItem, ItemCategory, ItemStatus
from stockledger.services.transactions import default_warehouse_code, unit_of_work
from stockledger.utils.parsing import (
    clean_text,
    parse_money,
    parse_quantity,
    parse_string_list,
    require_text,
)

logger = logging.getLogger(__name__)

_MISSING = object()


def serialize_item(item: InventoryItem) -> dict[str, Any]:
    """Item payload with status derived from the stock it holds right now."""

    payload = item.to_dict()
    payload["totalStock"] = total_of(item.stock)
    payload["status"] = compute_status(payload["totalStock"], item.category)
    return payload


def _parse_category(value) -> str:
    category = clean_text(value) or ItemCategory.MACHINERY
    if category not in ItemCategory.ALL:
        raise ValidationError(
            f"Category must be one of: {', '.join(ItemCategory.ALL)}.", field="category"
        )
    return category


def _parse_stock(value, codes: list[str]) -> dict[str, int]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        stock: dict[str, int] = {}
        for code, qty in value.items():
            label = clean_text(code)
            if label is None:
                raise ValidationError("Warehouse codes in stock cannot be blank.", field="stock")
            stock[label] = parse_quantity(qty, field="stock")
        return stock
    quantity = parse_quantity(value, field="stock")
    return {codes[0] if codes else default_warehouse_code(): quantity}


class InventoryService:
    """Create, edit and remove inventory items outside of order/request flows."""

    def __init__(self, session: Session, *, audit: AuditLogWriter | None = None, actor: str | None = None):
        self.session = session
        self.audit = audit or AuditLogWriter(session)
        self.actor = actor

    def _note(self, text: str) -> str:
        return f"{text} (by {self.actor})" if self.actor else text

    def _parse_payload(self, payload: Mapping[str, Any], *, partial: bool) -> dict[str, Any]:
        fields: dict[str, Any] = {}

        def provided(key: str) -> bool:
            return not partial or key in payload

        if provided("sku"):
            fields["sku"] = require_text(payload.get("sku"), field="sku", label="SKU")
        if provided("name"):
            fields["name"] = require_text(payload.get("name"), field="name", label="Item name")
        if provided("category"):
            fields["category"] = _parse_category(payload.get("category"))
        if provided("warehouseLoc"):
            fields["warehouse_loc"] = parse_string_list(
                payload.get("warehouseLoc"), field="warehouseLoc"
            )
        if provided("warehouseCode") and payload.get("warehouseCode") is not None:
            fields["warehouse_code"] = parse_string_list(
                payload.get("warehouseCode"), field="warehouseCode"
            )
        elif "warehouse_loc" in fields:
            fields["warehouse_code"] = warehouse_codes_for(fields["warehouse_loc"])
        if provided("unitPrice"):
            fields["unit_price"] = parse_money(
                payload.get("unitPrice"), field="unitPrice", default=Decimal("0.00")
            )
        if provided("note"):
            fields["note"] = clean_text(payload.get("note"))
        if "stock" in payload or not partial:
            fields["stock"] = payload.get("stock", _MISSING)
        return fields

    def _ensure_unique(self, sku: str, name: str, *, exclude_id: int | None = None) -> None:
        query = self.session.query(InventoryItem).filter(
            or_(InventoryItem.sku == sku, InventoryItem.name == name)
        )
        if exclude_id is not None:
            query = query.filter(InventoryItem.id != exclude_id)
        existing = query.first()
        if existing is None:
            return
        if existing.sku == sku:
            raise DuplicateItemError("sku", sku)
        raise DuplicateItemError("name", name)

    def list_items(
        self,
        *,
        search: str | None = None,
        category: str | None = None,
        warehouse_code: str | None = None,
    ) -> list[InventoryItem]:
        query = self.session.query(InventoryItem)
        text = clean_text(search)
        if text:
            pattern = f"%{text}%"
            query = query.filter(
                or_(InventoryItem.sku.ilike(pattern), InventoryItem.name.ilike(pattern))
            )
        if category:
            query = query.filter(InventoryItem.category == category)
        items = query.order_by(InventoryItem.sku).all()
        if warehouse_code:
            items = [item for item in items if warehouse_code in (item.warehouse_code or [])]
        return items

    def get_item(self, item_id: int) -> InventoryItem:
        item = self.session.get(InventoryItem, item_id)
        if item is None:
            raise NotFoundError("Item", item_id)
        return item

    def create_item(self, payload: Mapping[str, Any]) -> InventoryItem:
        fields = self._parse_payload(payload, partial=False)
        codes = list(fields.get("warehouse_code") or [])
        raw_stock = fields.pop("stock")
        stock = _parse_stock(None if raw_stock is _MISSING else raw_stock, codes)
        for code in stock:
            if code not in codes:
                codes.append(code)
        fields["warehouse_code"] = codes

        with unit_of_work(self.session):
            self._ensure_unique(fields["sku"], fields["name"])
            item = InventoryItem(
                **fields,
                stock=stock,
                status=compute_status(total_of(stock), fields["category"]),
            )
            self.session.add(item)
            self.session.flush()
            self.audit.record_stock_change(
                action=AuditAction.CREATE,
                item=item,
                before=None,
                after=stock,
                fallback_delta=total_of(stock),
                note=self._note(f"Item {item.sku} created with status {item.status}"),
            )

        logger.info("Created inventory item %s with %s units", item.sku, total_of(stock))
        return item

    def update_item(self, item_id: int, payload: Mapping[str, Any]) -> InventoryItem:
        fields = self._parse_payload(payload, partial=True)
        raw_stock = fields.pop("stock", _MISSING)

        with unit_of_work(self.session):
            item = self.get_item(item_id)
            self._ensure_unique(
                fields.get("sku", item.sku), fields.get("name", item.name), exclude_id=item.id
            )

            before = item.stock
            old_status = item.status
            for attribute, value in fields.items():
                setattr(item, attribute, value)

            codes = list(item.warehouse_code or [])
            if raw_stock is _MISSING:
                stock = normalize_stock(item.stock, default_warehouse_code())
            else:
                stock = _parse_stock(raw_stock, codes)
            for code in stock:
                if code not in codes:
                    codes.append(code)
            item.warehouse_code = codes
            item.stock = stock
            item.status = compute_status(total_of(stock), item.category)

            stock_changed = stock != normalize_stock(before, default_warehouse_code())
            if stock_changed or item.status != old_status:
                self.audit.record_stock_change(
                    action=AuditAction.UPDATE,
                    item=item,
                    before=before,
                    after=stock,
                    note=self._note(
                        f"Item {item.sku} updated - status {old_status} → {item.status}"
                    ),
                )

        logger.info("Updated inventory item %s", item.sku)
        return item

    def delete_item(self, item_id: int) -> None:
        with unit_of_work(self.session):
            item = self.get_item(item_id)
            sku = item.sku
            self.audit.record_stock_change(
                action=AuditAction.DELETE,
                item=item,
                before=item.stock,
                after=None,
                note=self._note(f"Item {sku} deleted"),
            )
            self.session.delete(item)

        logger.info("Deleted inventory item %s", sku)

    def low_stock_alerts(self) -> list[dict[str, Any]]:
        alerts = []
        for item in self.session.query(InventoryItem).order_by(InventoryItem.sku).all():
            payload = serialize_item(item)
            if payload["status"] not in ItemStatus.ALERT_STATES:
                continue
            payload["threshold"] = low_stock_threshold(item.category)
            payload["breakdown"] = normalize_stock(item.stock, default_warehouse_code())
            alerts.append(payload)
        # Out of stock first, then the smallest remaining totals.
        alerts.sort(
            key=lambda entry: (
                entry["status"] != ItemStatus.OUT_OF_STOCK,
                entry["totalStock"],
                entry["sku"],
            )
        )
        return alerts
