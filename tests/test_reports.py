import os
import sys
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockledger import create_app
from stockledger.errors import ValidationError
from stockledger.extensions import db
from stockledger.models import Order, OrderLine, OrderStatus, Role, User
from stockledger.services.inventory import InventoryService
from stockledger.services.reporting import build_report, dashboard_summary
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


def _seed():
    inventory = InventoryService(db.session)
    inventory.create_item(
        {"sku": "RM-001", "name": "Roller Motor", "category": "Machinery",
         "stock": {"VL1": 8, "VL2": 4}, "unitPrice": "100.00"}
    )
    inventory.create_item(
        {"sku": "SP-010", "name": "Bearing", "category": "Spare Parts",
         "stock": {"VL1": 6}, "unitPrice": "2.50"}
    )
    inventory.create_item(
        {"sku": "TL-001", "name": "Wrench", "category": "Tools", "stock": {}, "unitPrice": "9.00"}
    )

    for order_date, status, amount in (
        (date(2024, 6, 1), OrderStatus.PENDING, "150.00"),
        (date(2024, 6, 15), OrderStatus.COMPLETED, "50.00"),
        (date(2024, 7, 2), OrderStatus.PENDING, "999.00"),
    ):
        db.session.add(
            Order(
                customer_name="Acme Builders",
                order_date=order_date,
                status=status,
                total_amount=Decimal(amount),
                lines=[
                    OrderLine(
                        sku="RM-001",
                        quantity=1,
                        unit_price=Decimal(amount),
                        subtotal=Decimal(amount),
                    )
                ],
            )
        )
    db.session.commit()

    workflow = StockRequestWorkflow(db.session)
    workflow.create_request(
        {"requester": "Dana", "warehouse": "VL1", "date": "2024-06-10", "status": "Delivered",
         "items": [{"sku": "SP-010", "qty": 4}]},
        now=datetime(2024, 6, 10, 8, 0),
    )
    workflow.create_request(
        {"requester": "Dana", "warehouse": "MB1", "date": "2024-06-20", "status": "In Transit",
         "items": [{"sku": "TL-001", "qty": 3}, {"sku": "SP-010", "qty": 2}]},
        now=datetime(2024, 6, 20, 8, 0),
    )


def test_report_aggregates_orders_requests_and_inventory(app):
    _seed()

    report = build_report(db.session, date(2024, 6, 1), date(2024, 6, 30))

    assert report["range"] == {"start": "2024-06-01", "end": "2024-06-30"}
    assert report["orders"] == {
        "count": 2,
        "totalAmount": 200.0,
        "byStatus": {"Pending": 1, "Processing": 0, "Completed": 1, "Cancelled": 0},
    }
    assert report["stockRequests"] == {
        "count": 2,
        "byStatus": {"Pending": 0, "In Transit": 1, "Delivered": 1, "Cancelled": 0},
        "unitsRequested": 9,
        "unitsDelivered": 4,
    }

    inventory = report["inventory"]
    assert inventory["skuCount"] == 3
    assert inventory["unitCount"] == 22
    assert inventory["lowStockCount"] == 1
    assert inventory["outOfStockCount"] == 1
    assert inventory["byWarehouse"] == {"VL1": 18, "VL2": 4}
    assert inventory["byCategory"]["Spare Parts"] == {
        "skus": 1, "units": 10, "lowStock": 1, "outOfStock": 0
    }
    assert inventory["byCategory"]["Electrical"]["skus"] == 0
    assert inventory["valuation"] == 1225.0


def test_report_range_is_inclusive(app):
    _seed()

    report = build_report(db.session, date(2024, 6, 15), date(2024, 6, 15))

    assert report["orders"]["count"] == 1
    assert report["orders"]["byStatus"]["Completed"] == 1


def test_report_rejects_inverted_range(app):
    with pytest.raises(ValidationError):
        build_report(db.session, date(2024, 7, 1), date(2024, 6, 1))


def test_dashboard_counts_alerts_and_incoming_shipments(app):
    _seed()

    summary = dashboard_summary(db.session)

    assert summary == {"itemCount": 3, "lowStockCount": 2, "incomingShipments": 1}


def test_report_endpoint_parses_dates(client):
    _seed()

    response = client.get("/api/reports?start=2024-06-01&end=2024-06-30")
    assert response.status_code == 200
    assert response.get_json()["orders"]["count"] == 2

    bad = client.get("/api/reports?start=June&end=2024-06-30")
    assert bad.status_code == 400
    assert bad.get_json()["field"] == "start"

    inverted = client.get("/api/reports?start=2024-07-01&end=2024-06-01")
    assert inverted.status_code == 400


def test_default_report_covers_last_thirty_days(client):
    response = client.get("/api/reports")

    body = response.get_json()
    end = date.today()
    assert body["range"] == {
        "start": (end - timedelta(days=29)).isoformat(),
        "end": end.isoformat(),
    }


def test_reports_are_limited_to_admin_and_manager(app):
    user = User(username="seller")
    user.set_password("secret")
    user.roles = [Role.query.filter_by(name="sales").one()]
    db.session.add(user)
    db.session.commit()

    seller = app.test_client()
    seller.post("/auth/login", json={"username": "seller", "password": "secret"})

    assert seller.get("/api/reports").status_code == 403
    assert seller.get("/api/dashboard").status_code == 200
