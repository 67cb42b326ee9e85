"""Transaction helpers shared by the inventory workflows."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockledger.errors import ConcurrentUpdateError
from stockledger.ledger import DEFAULT_WAREHOUSE_CODE
from stockledger.models import InventoryItem

logger = logging.getLogger(__name__)


def default_warehouse_code() -> str:
    if has_app_context():
        return current_app.config.get("DEFAULT_WAREHOUSE_CODE", DEFAULT_WAREHOUSE_CODE)
    return DEFAULT_WAREHOUSE_CODE


@contextmanager
def unit_of_work(session: Session) -> Iterator[Session]:
    """Commit everything done in the block at once, or nothing at all.

    A version mismatch on an inventory row means another request changed it
    after we read it; that surfaces as :class:`ConcurrentUpdateError`.
    """

    try:
        yield session
        session.commit()
    except StaleDataError as exc:
        session.rollback()
        logger.warning("Rejected stale inventory write: %s", exc)
        raise ConcurrentUpdateError() from exc
    except IntegrityError as exc:
        session.rollback()
        logger.warning("Rejected conflicting write: %s", exc.orig)
        raise ConcurrentUpdateError(
            "Another change was saved at the same time; resubmit the request."
        ) from exc
    except Exception:
        session.rollback()
        raise


def lock_items(session: Session, skus: Iterable[str]) -> dict[str, InventoryItem]:
    """Load inventory rows by SKU, locking them where the backend supports it."""

    wanted = sorted({sku for sku in skus if sku})
    if not wanted:
        return {}
    rows = (
        session.query(InventoryItem)
        .filter(InventoryItem.sku.in_(wanted))
        .order_by(InventoryItem.sku)
        .with_for_update()
        .all()
    )
    return {row.sku: row for row in rows}
