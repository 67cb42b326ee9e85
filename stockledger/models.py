from datetime import datetime
from decimal import Decimal

from flask_login import UserMixin
from sqlalchemy import inspect
from sqlalchemy.orm.exc import DetachedInstanceError
from werkzeug.security import check_password_hash, generate_password_hash

from stockledger.extensions import db


def _iso(value):
    return value.isoformat() if value is not None else None


def _money(value) -> float:
    return float(value) if value is not None else 0.0


class ItemCategory:
    MACHINERY = "Machinery"
    SPARE_PARTS = "Spare Parts"
    ELECTRICAL = "Electrical"
    TOOLS = "Tools"
    MISCELLANEOUS = "Miscellaneous"

    ALL = [MACHINERY, SPARE_PARTS, ELECTRICAL, TOOLS, MISCELLANEOUS]


class ItemStatus:
    AVAILABLE = "Available"
    LOW_STOCK = "Low Stock"
    OUT_OF_STOCK = "Out of Stock"

    ALERT_STATES = {LOW_STOCK, OUT_OF_STOCK}
    ALL = [AVAILABLE, LOW_STOCK, OUT_OF_STOCK]


class OrderStatus:
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    RESERVING_STATES = {PENDING, PROCESSING, COMPLETED}
    ALL_STATUSES = [PENDING, PROCESSING, COMPLETED, CANCELLED]


class StockRequestStatus:
    PENDING = "Pending"
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

    INCOMING_STATES = {PENDING, IN_TRANSIT}
    ALL_STATUSES = [PENDING, IN_TRANSIT, DELIVERED, CANCELLED]


class AuditAction:
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ORDER = "order"
    STOCK_REQUEST = "stockrequest"

    ALL = [CREATE, UPDATE, DELETE, ORDER, STOCK_REQUEST]


class DeletionPolicy:
    """What deleting a document does to the quantities it touched."""

    RESTORATIVE = "restorative"
    NON_RESTORATIVE = "non_restorative"


user_roles = db.Table(
    "user_roles",
    db.Column("user_id", db.Integer, db.ForeignKey("user.id"), primary_key=True),
    db.Column("role_id", db.Integer, db.ForeignKey("role.id"), primary_key=True),
)


class Role(db.Model):
    __tablename__ = "role"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)
    description = db.Column(db.String(255))

    users = db.relationship(
        "User",
        secondary=user_roles,
        back_populates="roles",
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Role {self.name}>"


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    roles = db.relationship(
        "Role",
        secondary=user_roles,
        back_populates="users",
        lazy="joined",
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def has_role(self, role_name: str) -> bool:
        return self.has_any_role((role_name,))

    def has_any_role(self, role_names) -> bool:
        if not role_names:
            return False

        try:
            role_name_set = {role.name for role in self.roles}
        except DetachedInstanceError:
            identity = inspect(self).identity
            if not identity:
                return False
            refreshed = db.session.get(User, identity[0])
            if refreshed is None:
                return False
            return refreshed.has_any_role(role_names)

        return any(name in role_name_set for name in role_names)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "roles": sorted(role.name for role in self.roles),
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<User {self.username}>"


class InventoryItem(db.Model):
    __tablename__ = "inventory_item"

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), unique=True, nullable=False)
    name = db.Column(db.String(255), unique=True, nullable=False)
    category = db.Column(db.String(64), nullable=False, default=ItemCategory.MACHINERY)
    warehouse_loc = db.Column(db.JSON, nullable=False, default=list)
    warehouse_code = db.Column(db.JSON, nullable=False, default=list)
    # Mapping of warehouse code to quantity. Rows imported from the old
    # single-bucket layout may still hold a bare integer until first touched.
    stock = db.Column(db.JSON, nullable=False, default=dict)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    status = db.Column(db.String(32), nullable=False, default=ItemStatus.OUT_OF_STOCK)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "warehouseLoc": list(self.warehouse_loc or []),
            "warehouseCode": list(self.warehouse_code or []),
            "stock": self.stock,
            "unitPrice": _money(self.unit_price),
            "status": self.status,
            "note": self.note or "",
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<InventoryItem {self.sku} status={self.status}>"


class Order(db.Model):
    __tablename__ = "customer_order"

    id = db.Column(db.Integer, primary_key=True)
    customer_name = db.Column(db.String(255), nullable=False)
    order_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(32), nullable=False, default=OrderStatus.PENDING)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.position",
    )

    @property
    def is_reserving(self) -> bool:
        return self.status in OrderStatus.RESERVING_STATES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customerName": self.customer_name,
            "orderDate": _iso(self.order_date),
            "status": self.status,
            "totalAmount": _money(self.total_amount),
            "items": [line.to_dict() for line in self.lines],
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Order {self.id} status={self.status}>"


class OrderLine(db.Model):
    __tablename__ = "order_line"

    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_order_line_quantity"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("customer_order.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=True)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    quantity = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    warehouse_code = db.Column(db.String(32), nullable=True)

    order = db.relationship("Order", back_populates="lines")

    def to_dict(self) -> dict:
        payload = {
            "sku": self.sku,
            "name": self.name,
            "unitPrice": _money(self.unit_price),
            "quantity": self.quantity,
            "subtotal": _money(self.subtotal),
        }
        if self.warehouse_code:
            payload["warehouseCode"] = self.warehouse_code
        return payload

    def __repr__(self):
        return f"<OrderLine order={self.order_id} sku={self.sku} qty={self.quantity}>"


class StockRequest(db.Model):
    __tablename__ = "stock_request"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.String(32), unique=True, nullable=False)
    date = db.Column(db.Date, nullable=False)
    supplier = db.Column(db.String(255), nullable=True)
    requester = db.Column(db.String(255), nullable=False)
    warehouse = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(32), nullable=False, default=StockRequestStatus.PENDING)
    note = db.Column(db.Text, nullable=True)
    applied = db.Column(db.Boolean, nullable=False, default=False)
    delivered_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    lines = db.relationship(
        "StockRequestLine",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="StockRequestLine.position",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "requestId": self.request_id,
            "date": _iso(self.date),
            "supplier": self.supplier,
            "requester": self.requester,
            "warehouse": self.warehouse,
            "status": self.status,
            "note": self.note or "",
            "applied": bool(self.applied),
            "deliveredAt": _iso(self.delivered_at),
            "items": [line.to_dict() for line in self.lines],
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<StockRequest {self.request_id} status={self.status}>"


class StockRequestLine(db.Model):
    __tablename__ = "stock_request_line"

    __table_args__ = (
        db.CheckConstraint("qty > 0", name="ck_stock_request_line_qty"),
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_request_id = db.Column(
        db.Integer, db.ForeignKey("stock_request.id"), nullable=False
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=True)
    qty = db.Column(db.Integer, nullable=False)
    warehouse_code = db.Column(db.String(32), nullable=False)

    request = db.relationship("StockRequest", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "sku": self.sku,
            "name": self.name,
            "qty": self.qty,
            "warehouseCode": self.warehouse_code,
        }


class RequestSequence(db.Model):
    """Per-prefix counter used to number stock requests."""

    __tablename__ = "request_sequence"

    prefix = db.Column(db.String(32), primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)


class AuditLogEntry(db.Model):
    __tablename__ = "audit_log"

    id = db.Column(db.Integer, primary_key=True)
    ts = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=True)
    stock_before = db.Column(db.JSON, nullable=True)
    stock_after = db.Column(db.JSON, nullable=True)
    delta = db.Column(db.Integer, nullable=True)
    note = db.Column(db.Text, nullable=True)
    order_id = db.Column(db.String(64), nullable=True, index=True)
    stock_request_id = db.Column(db.String(64), nullable=True, index=True)

    __table_args__ = (
        db.CheckConstraint(
            "(order_id IS NULL) OR (stock_request_id IS NULL)",
            name="ck_audit_log_single_reference",
        ),
    )

    @property
    def is_meta(self) -> bool:
        return self.sku is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ts": _iso(self.ts),
            "action": self.action,
            "sku": self.sku,
            "name": self.name,
            "stockBefore": self.stock_before,
            "stockAfter": self.stock_after,
            "delta": self.delta,
            "note": self.note,
            "orderId": self.order_id,
            "stockRequestId": self.stock_request_id,
            "isMeta": self.is_meta,
        }

    def __repr__(self):
        return f"<AuditLogEntry {self.action} sku={self.sku} delta={self.delta}>"
