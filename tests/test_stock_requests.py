import os
import sys
from datetime import date, datetime

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockledger import create_app
from stockledger.errors import NotFoundError, ValidationError
from stockledger.extensions import db
from stockledger.models import (
    AuditLogEntry,
    InventoryItem,
    ItemStatus,
    RequestSequence,
    StockRequest,
    StockRequestStatus,
)
from stockledger.services.inventory import InventoryService
from stockledger.services.stock_requests import StockRequestWorkflow


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


@pytest.fixture
def motor(app):
    return InventoryService(db.session).create_item(
        {
            "sku": "RM-001",
            "name": "Roller Motor",
            "category": "Machinery",
            "stock": {"VL1": 10},
        }
    )


def _payload(status=StockRequestStatus.PENDING, **overrides):
    payload = {
        "supplier": "Metro Supply",
        "requester": "Dana",
        "warehouse": "VL1",
        "status": status,
        "items": [{"sku": "RM-001", "name": "Roller Motor", "qty": 5}],
    }
    payload.update(overrides)
    return payload


def _stock():
    return InventoryItem.query.filter_by(sku="RM-001").one().stock


def test_delivery_is_applied_exactly_once(client, motor):
    response = client.post("/api/stockrequests", json=_payload())
    assert response.status_code == 201
    request_id = response.get_json()["requestId"]
    assert _stock() == {"VL1": 10}

    first = client.put(f"/api/stockrequests/{request_id}", json={"status": "Delivered"})
    assert first.status_code == 200
    assert first.get_json()["stockRequest"]["applied"] is True
    assert _stock() == {"VL1": 15}

    second = client.put(f"/api/stockrequests/{request_id}", json={"status": "Delivered"})
    assert second.status_code == 200
    assert _stock() == {"VL1": 15}

    stock_rows = AuditLogEntry.query.filter(
        AuditLogEntry.stock_request_id == request_id, AuditLogEntry.sku.isnot(None)
    ).all()
    assert [(row.action, row.delta) for row in stock_rows] == [("stockrequest", 5)]
    meta_rows = AuditLogEntry.query.filter(
        AuditLogEntry.stock_request_id == request_id, AuditLogEntry.sku.is_(None)
    ).count()
    assert meta_rows == 3


def test_request_ids_are_sequential_per_day(app):
    workflow = StockRequestWorkflow(db.session)
    now = datetime(2024, 6, 11, 9, 30)

    first = workflow.create_request(_payload(), now=now)
    second = workflow.create_request(_payload(), now=now)
    next_day = workflow.create_request(_payload(), now=datetime(2024, 6, 12, 8, 0))

    assert first.request_id == "SR20240611001"
    assert second.request_id == "SR20240611002"
    assert next_day.request_id == "SR20240612001"
    assert db.session.get(RequestSequence, "SR20240611").last_value == 2


def test_request_ids_skip_numbers_already_in_use(app):
    db.session.add(
        StockRequest(
            request_id="SR20240611001",
            date=date(2024, 6, 11),
            requester="Legacy import",
            warehouse="VL1",
            status=StockRequestStatus.CANCELLED,
        )
    )
    db.session.commit()

    created = StockRequestWorkflow(db.session).create_request(
        _payload(), now=datetime(2024, 6, 11, 12, 0)
    )

    assert created.request_id == "SR20240611002"


def test_creating_as_delivered_applies_immediately(app, motor):
    now = datetime(2024, 6, 11, 9, 30)
    created = StockRequestWorkflow(db.session, actor="dana").create_request(
        _payload(status=StockRequestStatus.DELIVERED, warehouse="MB1"), now=now
    )

    assert created.applied is True
    assert created.delivered_at == now
    item = InventoryItem.query.one()
    assert item.stock == {"VL1": 10, "MB1": 5}
    assert item.warehouse_code == ["VL1", "MB1"]
    assert item.status == ItemStatus.AVAILABLE


def test_delivery_skips_unknown_skus(app, motor):
    workflow = StockRequestWorkflow(db.session)
    created = workflow.create_request(
        _payload(items=[{"sku": "RM-001", "qty": 2}, {"sku": "GHOST", "qty": 9}])
    )

    workflow.update_request(created.request_id, {"status": StockRequestStatus.DELIVERED})

    assert _stock() == {"VL1": 12}
    assert AuditLogEntry.query.filter_by(sku="GHOST").count() == 0


def test_other_supplier_uses_free_text_name(app):
    created = StockRequestWorkflow(db.session).create_request(
        _payload(supplier="Other", supplierOther="Corner Hardware")
    )

    assert created.supplier == "Corner Hardware"


def test_other_supplier_requires_a_name(app):
    with pytest.raises(ValidationError) as excinfo:
        StockRequestWorkflow(db.session).create_request(_payload(supplier="Other"))

    assert excinfo.value.field == "supplierOther"


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"requester": ""}, "requester"),
        ({"warehouse": None}, "warehouse"),
        ({"items": []}, "items"),
        ({"items": [{"sku": "RM-001", "qty": 0}]}, "qty"),
        ({"status": "Lost"}, "status"),
    ],
)
def test_malformed_requests_are_rejected(app, overrides, field):
    with pytest.raises(ValidationError) as excinfo:
        StockRequestWorkflow(db.session).create_request(_payload(**overrides))

    assert excinfo.value.field == field
    assert StockRequest.query.count() == 0


def test_lines_follow_request_warehouse(app):
    workflow = StockRequestWorkflow(db.session)
    created = workflow.create_request(_payload())

    updated = workflow.update_request(created.request_id, {"warehouse": "VL3"})

    assert [line.warehouse_code for line in updated.lines] == ["VL3"]


def test_editing_delivered_request_does_not_touch_stock(app, motor):
    workflow = StockRequestWorkflow(db.session)
    created = workflow.create_request(_payload(status=StockRequestStatus.DELIVERED))
    assert _stock() == {"VL1": 15}

    workflow.update_request(
        created.request_id,
        {"status": StockRequestStatus.CANCELLED, "items": [{"sku": "RM-001", "qty": 50}]},
    )

    assert _stock() == {"VL1": 15}
    reloaded = workflow.get_request(created.request_id)
    assert reloaded.status == StockRequestStatus.CANCELLED
    assert [line.qty for line in reloaded.lines] == [5]


def test_delete_keeps_delivered_stock(client, motor):
    created = client.post("/api/stockrequests", json=_payload(status="Delivered"))
    request_id = created.get_json()["requestId"]
    assert _stock() == {"VL1": 15}

    response = client.delete(f"/api/stockrequests/{request_id}")

    assert response.status_code == 200
    assert StockRequest.query.count() == 0
    assert _stock() == {"VL1": 15}
    last = AuditLogEntry.query.order_by(AuditLogEntry.id.desc()).first()
    assert last.stock_request_id == request_id
    assert last.note.startswith(f"Stock request {request_id} deleted")


def test_lookup_by_numeric_id_and_missing_request(app):
    workflow = StockRequestWorkflow(db.session)
    created = workflow.create_request(_payload())

    assert workflow.get_request(str(created.id)).request_id == created.request_id
    with pytest.raises(NotFoundError):
        workflow.get_request("SR19990101001")


def test_list_filters_by_status_and_search(client):
    client.post("/api/stockrequests", json=_payload())
    client.post("/api/stockrequests", json=_payload(status="In Transit", supplier="Harbor Parts"))

    in_transit = client.get("/api/stockrequests?status=In%20Transit").get_json()
    assert [entry["supplier"] for entry in in_transit] == ["Harbor Parts"]

    searched = client.get("/api/stockrequests?search=metro").get_json()
    assert [entry["supplier"] for entry in searched] == ["Metro Supply"]


def test_sales_role_cannot_open_stock_requests(app):
    from stockledger.models import Role, User

    user = User(username="seller")
    user.set_password("secret")
    user.roles = [Role.query.filter_by(name="sales").one()]
    db.session.add(user)
    db.session.commit()

    seller = app.test_client()
    seller.post("/auth/login", json={"username": "seller", "password": "secret"})

    assert seller.get("/api/stockrequests").status_code == 403
    assert seller.post("/api/stockrequests", json=_payload()).status_code == 403


def test_delivery_onto_scalar_stock_keeps_the_existing_units(app):
    db.session.add(
        InventoryItem(
            sku="RM-001",
            name="Roller Motor",
            category="Machinery",
            stock=10,
            status=ItemStatus.AVAILABLE,
        )
    )
    db.session.commit()

    request = StockRequestWorkflow(db.session).create_request(
        _payload(StockRequestStatus.DELIVERED, warehouse="VL2")
    )

    assert _stock() == {"VL1": 10, "VL2": 5}
    row = AuditLogEntry.query.filter_by(stock_request_id=request.request_id, sku="RM-001").one()
    assert row.stock_before == 10
    assert row.delta == 5
