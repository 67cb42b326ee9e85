from flask import Blueprint, jsonify, request

from stockledger.extensions import db
from stockledger.security import current_actor, require_access
from stockledger.services.stock_requests import StockRequestWorkflow

bp = Blueprint("stock_requests", __name__, url_prefix="/api/stockrequests")


def _workflow() -> StockRequestWorkflow:
    return StockRequestWorkflow(db.session, actor=current_actor())


@bp.get("")
@require_access("stockrequests")
def list_requests():
    requests = _workflow().list_requests(
        status=request.args.get("status"),
        search=request.args.get("search"),
    )
    return jsonify([stock_request.to_dict() for stock_request in requests])


@bp.get("/<identifier>")
@require_access("stockrequests")
def get_request(identifier: str):
    return jsonify(_workflow().get_request(identifier).to_dict())


@bp.post("")
@require_access("stockrequests", "edit")
def create_request():
    stock_request = _workflow().create_request(request.get_json(silent=True) or {})
    return (
        jsonify(
            {
                "success": True,
                "requestId": stock_request.request_id,
                "stockRequest": stock_request.to_dict(),
            }
        ),
        201,
    )


@bp.put("/<identifier>")
@require_access("stockrequests", "edit")
def update_request(identifier: str):
    stock_request = _workflow().update_request(identifier, request.get_json(silent=True) or {})
    return jsonify({"success": True, "stockRequest": stock_request.to_dict()})


@bp.delete("/<identifier>")
@require_access("stockrequests", "delete")
def delete_request(identifier: str):
    _workflow().delete_request(identifier)
    return jsonify({"success": True})
