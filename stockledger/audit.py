"""Append-only audit trail of stock-affecting events."""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Mapping

from sqlalchemy import or_
from sqlalchemy.orm import Session

from stockledger.ledger import total_of
from stockledger.models import AuditLogEntry, InventoryItem

logger = logging.getLogger(__name__)


def _trimmed(value: str | None, *, limit: int) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return value[:limit]


def _snapshot(stock):
    """Copy a stock value so later ledger changes cannot alter the record."""

    if isinstance(stock, Mapping):
        return dict(stock)
    return stock


class AuditLogWriter:
    """Writes one row per stock change, or one meta row per lifecycle event.

    Rows are added to the caller's session; they commit together with the
    ledger change they describe.
    """

    def __init__(self, session: Session):
        self.session = session

    def record_stock_change(
        self,
        *,
        action: str,
        item: InventoryItem,
        before,
        after,
        note: str,
        order_id: str | None = None,
        stock_request_id: str | None = None,
        fallback_delta: int | None = None,
    ) -> AuditLogEntry:
        if before is None:
            delta = fallback_delta
        else:
            delta = total_of(after) - total_of(before)

        entry = AuditLogEntry(
            action=action,
            sku=item.sku,
            name=item.name,
            stock_before=_snapshot(before),
            stock_after=_snapshot(after),
            delta=delta,
            note=_trimmed(note, limit=2000),
            order_id=order_id,
            stock_request_id=stock_request_id,
        )
        self.session.add(entry)
        return entry

    def record_meta(
        self,
        *,
        action: str,
        note: str,
        order_id: str | None = None,
        stock_request_id: str | None = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            action=action,
            note=_trimmed(note, limit=2000),
            order_id=order_id,
            stock_request_id=stock_request_id,
        )
        self.session.add(entry)
        return entry

    def search(
        self,
        *,
        query: str | None = None,
        action: str | None = None,
        page: int = 1,
        per_page: int = 25,
    ) -> dict[str, Any]:
        """Return a page of entries, newest first."""

        statement = self.session.query(AuditLogEntry)
        if action:
            statement = statement.filter(AuditLogEntry.action == action)

        text = (query or "").strip()
        if text:
            pattern = f"%{text}%"
            statement = statement.filter(
                or_(
                    AuditLogEntry.sku.ilike(pattern),
                    AuditLogEntry.name.ilike(pattern),
                    AuditLogEntry.order_id.ilike(pattern),
                    AuditLogEntry.stock_request_id.ilike(pattern),
                    AuditLogEntry.note.ilike(pattern),
                )
            )

        total = statement.count()
        page = max(page, 1)
        entries = (
            statement.order_by(AuditLogEntry.ts.desc(), AuditLogEntry.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return {
            "items": [entry.to_dict() for entry in entries],
            "page": page,
            "perPage": per_page,
            "total": total,
            "pages": math.ceil(total / per_page) if per_page else 0,
        }

    def history_for(self, sku: str) -> list[AuditLogEntry]:
        return (
            self.session.query(AuditLogEntry)
            .filter(AuditLogEntry.sku == sku)
            .order_by(AuditLogEntry.ts.asc(), AuditLogEntry.id.asc())
            .all()
        )

    def bulk_delete(self, ids: Iterable[int]) -> int:
        """Administrative pruning; the only way rows ever leave the log."""

        identifiers = {int(identifier) for identifier in ids}
        if not identifiers:
            return 0
        deleted = (
            self.session.query(AuditLogEntry)
            .filter(AuditLogEntry.id.in_(identifiers))
            .delete(synchronize_session=False)
        )
        logger.info("Pruned %s audit log entries", deleted)
        return deleted
