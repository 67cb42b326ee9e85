import os
import sys

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Role, User
from stockledger.permissions import CORE_ROLES, modules_for, resolve_roles


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "ADMIN_PASSWORD": "change_me",
            "LOG_DIR": str(tmp_path),
        }
    )
    with app.app_context():
        db.create_all()
        db.session.expire_on_commit = False
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    client = app.test_client()
    client.post("/auth/login", json={"username": "superuser", "password": "change_me"})
    return client


def test_core_roles_and_superuser_are_seeded(app):
    assert {role.name for role in Role.query.all()} == set(CORE_ROLES)
    superuser = User.query.filter_by(username="superuser").one()
    assert superuser.has_role("admin")


def test_login_returns_user_and_modules(app):
    client = app.test_client()

    response = client.post("/auth/login", json={"username": "superuser", "password": "change_me"})

    assert response.status_code == 200
    user = response.get_json()["user"]
    assert user["username"] == "superuser"
    assert user["roles"] == ["admin"]
    assert "reports" in user["modules"]


def test_login_accepts_form_posts(app):
    response = app.test_client().post(
        "/auth/login", data={"username": "superuser", "password": "change_me"}
    )

    assert response.status_code == 200


def test_bad_password_is_rejected(app):
    response = app.test_client().post(
        "/auth/login", json={"username": "superuser", "password": "wrong"}
    )

    assert response.status_code == 401
    assert response.get_json()["error"] == "invalid_credentials"


def test_me_and_logout(client):
    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.get_json()["user"]["username"] == "superuser"

    assert client.post("/auth/logout").get_json() == {"success": True}


def test_admin_creates_users_with_roles(app, client):
    response = client.post(
        "/auth/users",
        json={"username": "purchaser", "password": "secret", "roles": ["purchasing"]},
    )

    assert response.status_code == 201
    assert response.get_json()["user"]["modules"] == ["dashboard", "inventory", "stockrequests"]

    duplicate = client.post(
        "/auth/users", json={"username": "purchaser", "password": "x", "roles": []}
    )
    assert duplicate.status_code == 409

    unknown = client.post(
        "/auth/users", json={"username": "ghost", "password": "x", "roles": ["wizard"]}
    )
    assert unknown.status_code == 400
    assert unknown.get_json()["field"] == "roles"

    purchaser = app.test_client()
    purchaser.post("/auth/login", json={"username": "purchaser", "password": "secret"})
    assert purchaser.get("/api/stockrequests").status_code == 200
    assert purchaser.get("/api/orders").status_code == 403
    assert purchaser.post("/auth/users", json={"username": "x", "password": "y"}).status_code == 403


@pytest.mark.parametrize(
    "roles, expected",
    [
        (["admin"], ["dashboard", "inventory", "orders", "stockrequests", "reports", "logs", "users"]),
        (["purchasing"], ["dashboard", "inventory", "stockrequests"]),
        (["sales"], ["dashboard", "inventory", "orders"]),
        (["staff"], ["inventory"]),
        (["manager"], ["dashboard", "inventory", "reports", "logs"]),
        ([], []),
    ],
)
def test_module_access_per_role(roles, expected):
    assert modules_for(roles) == expected


def test_action_roles_fall_back_to_view_roles():
    assert resolve_roles("stockrequests", "delete") == ("admin", "purchasing")
    assert resolve_roles("orders", "delete") == ("admin", "manager")
    assert resolve_roles("inventory", "edit") == ("admin", "purchasing", "sales", "staff")
    assert resolve_roles("unknown-module") == ("admin",)
    with pytest.raises(ValueError):
        resolve_roles("orders", "archive")
