"""Stock request fulfillment: incoming deliveries from suppliers."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Mapping

from sqlalchemy import or_
from sqlalchemy.orm import Session

from stockledger.audit import AuditLogWriter
from stockledger.errors import NotFoundError, ValidationError
from stockledger.ledger import add_to_warehouse, compute_status, normalize_stock, total_of
from stockledger.models import (
    AuditAction,
    DeletionPolicy,
    RequestSequence,
    StockRequest,
    StockRequestLine,
    StockRequestStatus,
)
from stockledger.services.transactions import default_warehouse_code, lock_items, unit_of_work
from stockledger.utils.parsing import clean_text, parse_date, parse_quantity, require_text

logger = logging.getLogger(__name__)

REQUEST_ID_PREFIX = "SR"
OTHER_SUPPLIER = "Other"


def _parse_status(value, *, default: str) -> str:
    status = clean_text(value) or default
    if status not in StockRequestStatus.ALL_STATUSES:
        raise ValidationError(
            f"Status must be one of: {', '.join(StockRequestStatus.ALL_STATUSES)}.",
            field="status",
        )
    return status


def _parse_supplier(payload: Mapping[str, Any], default: str | None = None) -> str | None:
    if "supplier" not in payload:
        return default
    supplier = clean_text(payload.get("supplier"))
    if supplier == OTHER_SUPPLIER:
        return require_text(
            payload.get("supplierOther"), field="supplierOther", label="Supplier name"
        )
    return supplier


def _parse_lines(raw_items, warehouse: str) -> list[StockRequestLine]:
    if not isinstance(raw_items, (list, tuple)) or not raw_items:
        raise ValidationError("Add at least one item to the request.", field="items")

    lines = []
    for position, raw in enumerate(raw_items):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Item {position + 1} is malformed.", field="items")
        lines.append(
            StockRequestLine(
                position=position,
                sku=require_text(raw.get("sku"), field="sku", label=f"Item {position + 1} SKU"),
                name=clean_text(raw.get("name")),
                qty=parse_quantity(raw.get("qty"), field="qty", allow_zero=False),
                warehouse_code=warehouse,
            )
        )
    return lines


class StockRequestWorkflow:
    deletion_policy = DeletionPolicy.NON_RESTORATIVE

    def __init__(self, session: Session, *, audit: AuditLogWriter | None = None, actor: str | None = None):
        self.session = session
        self.audit = audit or AuditLogWriter(session)
        self.actor = actor

    def _note(self, text: str) -> str:
        return f"{text} (by {self.actor})" if self.actor else text

    def next_request_id(self, day: date) -> str:
        """Reserve the next ``SR<YYYYMMDD><NNN>`` number for ``day``.

        Must run inside the caller's transaction; the counter row stays locked
        until it commits.
        """

        prefix = f"{REQUEST_ID_PREFIX}{day:%Y%m%d}"
        sequence = (
            self.session.query(RequestSequence)
            .filter(RequestSequence.prefix == prefix)
            .with_for_update()
            .one_or_none()
        )
        if sequence is None:
            sequence = RequestSequence(prefix=prefix, last_value=0)
            self.session.add(sequence)

        while True:
            sequence.last_value += 1
            candidate = f"{prefix}{sequence.last_value:03d}"
            # Numbers issued before the counter existed are skipped.
            taken = (
                self.session.query(StockRequest.id)
                .filter(StockRequest.request_id == candidate)
                .first()
            )
            if taken is None:
                return candidate

    def list_requests(self, *, status: str | None = None, search: str | None = None) -> list[StockRequest]:
        query = self.session.query(StockRequest)
        if status:
            query = query.filter(StockRequest.status == status)
        text = clean_text(search)
        if text:
            pattern = f"%{text}%"
            query = query.filter(
                or_(
                    StockRequest.request_id.ilike(pattern),
                    StockRequest.supplier.ilike(pattern),
                    StockRequest.requester.ilike(pattern),
                )
            )
        return query.order_by(StockRequest.date.desc(), StockRequest.id.desc()).all()

    def get_request(self, identifier) -> StockRequest:
        """Look a request up by its ``SR...`` number or its numeric id."""

        request = None
        text = str(identifier).strip()
        if text.upper().startswith(REQUEST_ID_PREFIX):
            request = (
                self.session.query(StockRequest)
                .filter(StockRequest.request_id == text.upper())
                .one_or_none()
            )
        elif text.isdigit():
            request = self.session.get(StockRequest, int(text))
        if request is None:
            raise NotFoundError("Stock request", identifier)
        return request

    def _apply_delivery(self, request: StockRequest, now: datetime) -> None:
        items = lock_items(self.session, [line.sku for line in request.lines])
        note = self._note(f"Stock request {request.request_id} marked Delivered")

        for line in request.lines:
            item = items.get(line.sku)
            if item is None:
                logger.warning(
                    "Stock request %s delivers unknown SKU %s; line skipped",
                    request.request_id,
                    line.sku,
                )
                continue

            before = item.stock
            stock_map = add_to_warehouse(
                normalize_stock(before, default_warehouse_code()), line.warehouse_code, line.qty
            )
            codes = list(item.warehouse_code or [])
            if line.warehouse_code not in codes:
                codes.append(line.warehouse_code)
            item.warehouse_code = codes
            item.stock = stock_map
            item.status = compute_status(total_of(stock_map), item.category)
            self.audit.record_stock_change(
                action=AuditAction.STOCK_REQUEST,
                item=item,
                before=before,
                after=stock_map,
                note=note,
                stock_request_id=request.request_id,
            )

        request.applied = True
        request.delivered_at = now
        logger.info("Applied delivery of stock request %s", request.request_id)

    def create_request(self, payload: Mapping[str, Any], *, now: datetime | None = None) -> StockRequest:
        now = now or datetime.utcnow()
        requester = require_text(payload.get("requester"), field="requester", label="Requester")
        warehouse = require_text(payload.get("warehouse"), field="warehouse", label="Warehouse")
        status = _parse_status(payload.get("status"), default=StockRequestStatus.PENDING)
        request_date = parse_date(payload.get("date"), field="date", default=now.date())
        supplier = _parse_supplier(payload)
        lines = _parse_lines(payload.get("items"), warehouse)

        with unit_of_work(self.session):
            request = StockRequest(
                request_id=self.next_request_id(now.date()),
                date=request_date,
                supplier=supplier,
                requester=requester,
                warehouse=warehouse,
                status=status,
                note=clean_text(payload.get("note")),
                applied=False,
                lines=lines,
            )
            self.session.add(request)
            self.audit.record_meta(
                action=AuditAction.STOCK_REQUEST,
                note=self._note(
                    f"Stock request {request.request_id} created with status {status}"
                    f" (checked by {requester})"
                ),
                stock_request_id=request.request_id,
            )
            if status == StockRequestStatus.DELIVERED:
                self._apply_delivery(request, now)

        logger.info("Created stock request %s (%s)", request.request_id, status)
        return request

    def update_request(self, identifier, payload: Mapping[str, Any], *, now: datetime | None = None) -> StockRequest:
        now = now or datetime.utcnow()

        with unit_of_work(self.session):
            request = self.get_request(identifier)
            old_status = request.status
            new_status = _parse_status(payload.get("status"), default=old_status)

            if "requester" in payload:
                request.requester = require_text(
                    payload.get("requester"), field="requester", label="Requester"
                )
            if "date" in payload:
                request.date = parse_date(payload.get("date"), field="date", default=request.date)
            if "note" in payload:
                request.note = clean_text(payload.get("note"))
            request.supplier = _parse_supplier(payload, default=request.supplier)

            # Delivered quantities are already in the ledger; lines stay as delivered.
            if not request.applied:
                if "warehouse" in payload:
                    request.warehouse = require_text(
                        payload.get("warehouse"), field="warehouse", label="Warehouse"
                    )
                if "items" in payload:
                    request.lines = _parse_lines(payload.get("items"), request.warehouse)
                else:
                    for line in request.lines:
                        line.warehouse_code = request.warehouse
            elif "items" in payload or "warehouse" in payload:
                logger.info(
                    "Ignoring line changes to delivered stock request %s", request.request_id
                )

            request.status = new_status
            self.audit.record_meta(
                action=AuditAction.STOCK_REQUEST,
                note=self._note(
                    f"Stock request {request.request_id} updated: status {old_status} → {new_status}"
                ),
                stock_request_id=request.request_id,
            )
            if new_status == StockRequestStatus.DELIVERED and not request.applied:
                self._apply_delivery(request, now)

        return request

    def delete_request(self, identifier) -> None:
        with unit_of_work(self.session):
            request = self.get_request(identifier)
            request_id = request.request_id
            if self.deletion_policy == DeletionPolicy.NON_RESTORATIVE and request.applied:
                logger.info(
                    "Deleting delivered stock request %s; delivered stock stays in inventory",
                    request_id,
                )
            self.audit.record_meta(
                action=AuditAction.STOCK_REQUEST,
                note=self._note(f"Stock request {request_id} deleted"),
                stock_request_id=request_id,
            )
            self.session.delete(request)

        logger.info("Deleted stock request %s", request_id)
