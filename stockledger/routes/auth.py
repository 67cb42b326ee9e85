from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from stockledger.errors import ConflictError, ValidationError
from stockledger.extensions import db
from stockledger.models import Role, User
from stockledger.permissions import CORE_ROLES, modules_for
from stockledger.security import require_access
from stockledger.utils.parsing import parse_string_list, require_text

bp = Blueprint("auth", __name__, url_prefix="/auth")


def _credentials():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = request.form
    return (payload.get("username") or "").strip(), (payload.get("password") or "").strip()


def _user_payload(user: User) -> dict:
    payload = user.to_dict()
    payload["modules"] = modules_for(payload["roles"])
    return payload


@bp.route("/login", methods=["POST"])
def login():
    username, password = _credentials()
    user = User.query.filter_by(username=username).first()
    if user and user.check_password(password):
        login_user(user)
        current_app.logger.info("User %s logged in", user.username)
        return jsonify({"success": True, "user": _user_payload(user)})

    current_app.logger.warning("Failed login for %s", username or "<blank>")
    return (
        jsonify(
            {"success": False, "error": "invalid_credentials", "message": "Invalid credentials"}
        ),
        401,
    )


@bp.route("/logout", methods=["POST"])
@login_required
def logout():
    username = current_user.username
    logout_user()
    current_app.logger.info("User %s logged out", username)
    return jsonify({"success": True})


@bp.get("/me")
@login_required
def me():
    return jsonify({"success": True, "user": _user_payload(current_user)})


@bp.post("/users")
@require_access("users", "edit")
def create_user():
    payload = request.get_json(silent=True) or {}
    username = require_text(payload.get("username"), field="username", label="Username")
    password = require_text(payload.get("password"), field="password", label="Password")
    role_names = parse_string_list(payload.get("roles"), field="roles")
    unknown = [name for name in role_names if name not in CORE_ROLES]
    if unknown:
        raise ValidationError(f"Unknown roles: {', '.join(unknown)}.", field="roles")

    if User.query.filter_by(username=username).first() is not None:
        raise ConflictError("Username already exists.")

    user = User(username=username)
    user.set_password(password)
    user.roles = Role.query.filter(Role.name.in_(role_names)).all() if role_names else []
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("Created user %s with roles %s", username, role_names)
    return jsonify({"success": True, "user": _user_payload(user)}), 201
