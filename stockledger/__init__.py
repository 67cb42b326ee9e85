"""Inventory reservation and reconciliation service."""

from flask import Flask, jsonify
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from config import Config

from . import models  # ensure models are registered with SQLAlchemy
from .extensions import db, login_manager
from .permissions import ADMIN, CORE_ROLES
from .routes import (
    audit_logs,
    auth,
    errors,
    health,
    inventory,
    orders,
    reports,
    stock_requests,
)
from .utils.logging import configure_logging

BLUEPRINTS = (
    errors.bp,
    health.bp,
    auth.bp,
    inventory.bp,
    orders.bp,
    stock_requests.bp,
    audit_logs.bp,
    reports.bp,
)


def _seed_access(admin_username: str, admin_password: str) -> None:
    """Create the built-in roles and make sure the administrator can log in."""

    for attempt in range(3):
        try:
            roles = {role.name: role for role in models.Role.query.all()}
            for role_name, description in CORE_ROLES.items():
                role = roles.get(role_name)
                if role is None:
                    role = roles[role_name] = models.Role(name=role_name)
                    db.session.add(role)
                role.description = description

            if admin_username:
                admin = models.User.query.filter_by(username=admin_username).first()
                if admin is None:
                    admin = models.User(username=admin_username)
                    db.session.add(admin)
                if admin_password:
                    admin.set_password(admin_password)
                if roles[ADMIN] not in admin.roles:
                    admin.roles.append(roles[ADMIN])

            db.session.commit()
            return
        except IntegrityError:
            # Another worker seeded concurrently; re-read and try again.
            db.session.rollback()
            if attempt == 2:
                raise


def _use_shared_memory_engine(app: Flask) -> None:
    """An in-memory SQLite database must be one connection shared by all threads."""

    if not app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite:///:memory:"):
        return
    options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
    options.setdefault("connect_args", {}).setdefault("check_same_thread", False)
    options.setdefault("poolclass", StaticPool)


def _init_login(app: Flask) -> None:
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            return db.session.get(models.User, int(user_id))
        except (TypeError, ValueError):
            return None
        except OperationalError:
            app.logger.warning("Could not load user %s: database unavailable", user_id)
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        body = {"success": False, "error": "unauthorized", "message": "Log in to continue."}
        return jsonify(body), 401


def _prepare_database(app: Flask) -> None:
    """Create tables and seed accounts, recording whether the database is usable."""

    app.config["DATABASE_AVAILABLE"] = False
    app.config["DATABASE_ERROR"] = None

    with app.app_context():
        try:
            with db.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except OperationalError as exc:
            details = str(getattr(exc, "orig", exc)).strip()
            app.config["DATABASE_ERROR"] = (
                "Unable to connect to the configured database. Start the "
                "PostgreSQL service or update the DB_URL setting."
            )
            app.logger.error("Database unavailable during startup: %s", details or "no details")
            db.session.remove()
            db.engine.dispose()
            return

        try:
            db.create_all()
            _seed_access(app.config.get("ADMIN_USER"), app.config.get("ADMIN_PASSWORD"))
        except SQLAlchemyError:
            app.config["DATABASE_ERROR"] = "The database schema could not be initialized."
            app.logger.exception("Database initialization error")
            db.session.remove()
            return

    app.config["DATABASE_AVAILABLE"] = True


def create_app(config_override=None):
    app = Flask(__name__)

    # load configuration from environment variables
    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)

    configure_logging(app)
    _use_shared_memory_engine(app)
    db.init_app(app)
    _init_login(app)
    _prepare_database(app)

    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)

    return app
