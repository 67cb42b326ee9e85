import os
import sys

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockledger import create_app
from stockledger.audit import AuditLogWriter
from stockledger.extensions import db
from stockledger.ledger import total_of
from stockledger.models import AuditLogEntry, InventoryItem, Role, User
from stockledger.services.inventory import InventoryService
from stockledger.services.orders import OrderReservationWorkflow
from stockledger.services.stock_requests import StockRequestWorkflow


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "ADMIN_PASSWORD": "change_me",
            "LOG_DIR": str(tmp_path),
            "AUDIT_LOG_PAGE_SIZE": 2,
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


def _seed_history():
    inventory = InventoryService(db.session, actor="superuser")
    inventory.create_item({"sku": "RM-001", "name": "Roller Motor", "stock": {"VL1": 10}})
    inventory.create_item({"sku": "EL-100", "name": "Cable Reel", "stock": {"VL2": 4}})
    OrderReservationWorkflow(db.session).create_order(
        {"customerName": "Acme Builders", "items": [{"sku": "RM-001", "quantity": 3}]}
    )
    StockRequestWorkflow(db.session).create_request(
        {
            "requester": "Dana",
            "warehouse": "VL2",
            "status": "Delivered",
            "items": [{"sku": "EL-100", "qty": 6}],
        }
    )


def test_every_stock_row_delta_matches_snapshots(app):
    _seed_history()

    stock_rows = AuditLogEntry.query.filter(AuditLogEntry.sku.isnot(None)).all()
    assert len(stock_rows) == 4
    for row in stock_rows:
        if row.stock_before is None:
            assert row.delta == total_of(row.stock_after)
        else:
            assert row.delta == total_of(row.stock_after) - total_of(row.stock_before)


def test_history_for_sku_is_chronological(app):
    _seed_history()

    history = AuditLogWriter(db.session).history_for("RM-001")

    assert [(entry.action, entry.delta) for entry in history] == [("create", 10), ("order", -3)]
    # Replaying the deltas arrives at the current ledger total.
    assert sum(entry.delta for entry in history) == total_of(
        InventoryItem.query.filter_by(sku="RM-001").one().stock
    )


def test_sku_history_route_replays_to_current_total(client):
    _seed_history()

    body = client.get("/api/logs/history/RM-001").get_json()

    assert body["sku"] == "RM-001"
    assert [(entry["action"], entry["delta"]) for entry in body["items"]] == [
        ("create", 10),
        ("order", -3),
    ]
    assert all(entry["isMeta"] is False for entry in body["items"])
    assert body["netChange"] == total_of(InventoryItem.query.filter_by(sku="RM-001").one().stock)

    stock_request_rows = client.get("/api/logs?action=stockrequest").get_json()["items"]
    assert sorted(entry["isMeta"] for entry in stock_request_rows) == [False, True]


def test_log_listing_is_paginated_newest_first(client):
    _seed_history()

    first_page = client.get("/api/logs").get_json()

    assert first_page["perPage"] == 2
    assert first_page["total"] == 5
    assert first_page["pages"] == 3
    assert [entry["action"] for entry in first_page["items"]] == ["stockrequest", "stockrequest"]

    last_page = client.get("/api/logs?page=3").get_json()
    assert [entry["sku"] for entry in last_page["items"]] == ["RM-001"]
    assert last_page["items"][0]["action"] == "create"


def test_log_search_matches_sku_note_and_references(client):
    _seed_history()

    by_sku = client.get("/api/logs?q=el-100&perPage=50").get_json()
    assert {entry["sku"] for entry in by_sku["items"]} == {"EL-100"}
    assert by_sku["total"] == 2

    by_customer = client.get("/api/logs?q=Acme&perPage=50").get_json()
    assert [entry["action"] for entry in by_customer["items"]] == ["order"]

    by_action = client.get("/api/logs?action=create&perPage=50").get_json()
    assert by_action["total"] == 2


def test_bulk_delete_is_admin_only(app, client):
    _seed_history()
    ids = [entry.id for entry in AuditLogEntry.query.order_by(AuditLogEntry.id).limit(2)]

    response = client.post("/api/logs/bulk-delete", json={"ids": ids})

    assert response.status_code == 200
    assert response.get_json()["deleted"] == 2
    assert AuditLogEntry.query.count() == 3

    user = User(username="boss")
    user.set_password("secret")
    user.roles = [Role.query.filter_by(name="manager").one()]
    db.session.add(user)
    db.session.commit()
    manager = app.test_client()
    manager.post("/auth/login", json={"username": "boss", "password": "secret"})

    assert manager.get("/api/logs").status_code == 200
    denied = manager.post("/api/logs/bulk-delete", json={"ids": [1]})
    assert denied.status_code == 403
    assert AuditLogEntry.query.count() == 3


def test_bulk_delete_requires_ids(client):
    response = client.post("/api/logs/bulk-delete", json={"ids": []})

    assert response.status_code == 400
    assert response.get_json()["field"] == "ids"
