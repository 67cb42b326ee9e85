from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from stockledger.errors import StockLedgerError
from stockledger.extensions import db

bp = Blueprint("errors", __name__)


@bp.app_errorhandler(StockLedgerError)
def handle_domain_error(error: StockLedgerError):
    db.session.rollback()
    current_app.logger.info(
        "Rejected %s %s: %s (%s)", request.method, request.path, error.message, error.code
    )
    return jsonify(error.to_dict()), error.status_code


@bp.app_errorhandler(HTTPException)
def handle_http_error(error: HTTPException):
    status_code = error.code or 500
    return (
        jsonify(
            {
                "success": False,
                "error": (error.name or "error").lower().replace(" ", "_"),
                "message": error.description or error.name,
            }
        ),
        status_code,
    )


@bp.app_errorhandler(Exception)
def handle_exception(error: Exception):
    db.session.rollback()
    current_app.logger.exception("Unhandled exception", exc_info=error)
    return (
        jsonify(
            {
                "success": False,
                "error": "internal_error",
                "message": "Internal Server Error",
            }
        ),
        500,
    )
