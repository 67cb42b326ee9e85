from datetime import date, timedelta

from flask import Blueprint, jsonify, request

from stockledger.extensions import db
from stockledger.security import require_access
from stockledger.services.reporting import build_report, dashboard_summary
from stockledger.utils.parsing import parse_date

bp = Blueprint("reports", __name__, url_prefix="/api")

DEFAULT_REPORT_DAYS = 30


@bp.get("/reports")
@require_access("reports")
def report():
    today = date.today()
    end = parse_date(request.args.get("end"), field="end", default=today)
    start = parse_date(
        request.args.get("start"),
        field="start",
        default=end - timedelta(days=DEFAULT_REPORT_DAYS - 1),
    )
    return jsonify(build_report(db.session, start, end))


@bp.get("/dashboard")
@require_access("dashboard")
def dashboard():
    return jsonify(dashboard_summary(db.session))
