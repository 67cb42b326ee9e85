from flask import Blueprint, jsonify, request

from stockledger.extensions import db
from stockledger.security import current_actor, require_access
from stockledger.services.orders import OrderReservationWorkflow

bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _workflow() -> OrderReservationWorkflow:
    return OrderReservationWorkflow(db.session, actor=current_actor())


@bp.get("")
@require_access("orders")
def list_orders():
    orders = _workflow().list_orders(status=request.args.get("status"))
    return jsonify([order.to_dict() for order in orders])


@bp.get("/<int:order_id>")
@require_access("orders")
def get_order(order_id: int):
    return jsonify(_workflow().get_order(order_id).to_dict())


@bp.post("")
@require_access("orders", "edit")
def create_order():
    order = _workflow().create_order(request.get_json(silent=True) or {})
    return jsonify({"success": True, "order": order.to_dict()}), 201


@bp.put("/<int:order_id>")
@require_access("orders", "edit")
def update_order(order_id: int):
    order = _workflow().update_order(order_id, request.get_json(silent=True) or {})
    return jsonify({"success": True, "order": order.to_dict()})


@bp.delete("/<int:order_id>")
@require_access("orders", "delete")
def delete_order(order_id: int):
    _workflow().delete_order(order_id)
    return jsonify({"success": True})
