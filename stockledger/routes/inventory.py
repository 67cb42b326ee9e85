from flask import Blueprint, current_app, jsonify, request

from stockledger.extensions import db
from stockledger.security import current_actor, require_access
from stockledger.services.inventory import InventoryService, serialize_item

bp = Blueprint("inventory", __name__, url_prefix="/api")


def _service() -> InventoryService:
    return InventoryService(db.session, actor=current_actor())


@bp.get("/items")
@require_access("inventory")
def list_items():
    items = _service().list_items(
        search=request.args.get("search"),
        category=request.args.get("category"),
        warehouse_code=request.args.get("warehouseCode"),
    )
    return jsonify([serialize_item(item) for item in items])


@bp.get("/items/<int:item_id>")
@require_access("inventory")
def get_item(item_id: int):
    return jsonify(serialize_item(_service().get_item(item_id)))


@bp.post("/items")
@require_access("inventory", "edit")
def create_item():
    item = _service().create_item(request.get_json(silent=True) or {})
    return jsonify({"success": True, "item": serialize_item(item)}), 201


@bp.put("/items/<int:item_id>")
@require_access("inventory", "edit")
def update_item(item_id: int):
    item = _service().update_item(item_id, request.get_json(silent=True) or {})
    return jsonify({"success": True, "item": serialize_item(item)})


@bp.delete("/items/<int:item_id>")
@require_access("inventory", "delete")
def delete_item(item_id: int):
    _service().delete_item(item_id)
    return jsonify({"success": True})


@bp.get("/notifications/low-stock")
@require_access("inventory")
def low_stock_notifications():
    alerts = _service().low_stock_alerts()
    return jsonify(
        {
            "items": alerts,
            "count": len(alerts),
            "pollSeconds": current_app.config.get("LOW_STOCK_POLL_SECONDS", 30),
        }
    )
