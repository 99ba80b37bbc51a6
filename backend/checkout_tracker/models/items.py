from __future__ import annotations

from flask import current_app
from sqlalchemy import event

from ..extensions import db
from checkout_tracker.time_utils import to_utc_z


ITEM_STATUS_ACTIVE = "active"
ITEM_STATUS_INACTIVE = "inactive"
ITEM_STATUS_MAINTENANCE = "maintenance"
ITEM_STATUS_RETIRED = "retired"
ITEM_STATUS_LOST = "lost"
ITEM_STATUSES = (
    ITEM_STATUS_ACTIVE,
    ITEM_STATUS_INACTIVE,
    ITEM_STATUS_MAINTENANCE,
    ITEM_STATUS_RETIRED,
    ITEM_STATUS_LOST,
)

ITEM_UNITS = ("piece", "kg", "g", "liter", "ml", "meter", "cm", "box", "pack", "set", "pair", "other")


class Item(db.Model):
    """
    A trackable physical item and its quantity partition.

    QUANTITY INVARIANTS:
    - total_quantity, available_quantity, reserved_quantity are all >= 0
    - available_quantity + reserved_quantity <= total_quantity
    - available_quantity <= total_quantity (clamped on every ORM write)

    available/reserved are only moved by the checkout, return and approval
    services through conditional UPDATEs (see inventory_service). Catalog
    edits never write reserved_quantity.

    MULTI-TENANT: sku, barcode and qr_code are unique within an organization.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_items_org_sku"),
        db.UniqueConstraint("org_id", "barcode", name="uq_items_org_barcode"),
        db.UniqueConstraint("org_id", "qr_code", name="uq_items_org_qr_code"),
        db.CheckConstraint("total_quantity >= 0", name="ck_items_total_nonneg"),
        db.CheckConstraint("available_quantity >= 0", name="ck_items_available_nonneg"),
        db.CheckConstraint("reserved_quantity >= 0", name="ck_items_reserved_nonneg"),
        db.CheckConstraint(
            "available_quantity + reserved_quantity <= total_quantity",
            name="ck_items_partition",
        ),
        db.Index("ix_items_org_category", "org_id", "category", "subcategory"),
        db.Index("ix_items_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(1000), nullable=True)
    category = db.Column(db.String(50), nullable=False)
    subcategory = db.Column(db.String(50), nullable=True)

    # Optional identifiers (unique per org when present; NULLs never collide)
    sku = db.Column(db.String(50), nullable=True)
    barcode = db.Column(db.String(50), nullable=True)
    qr_code = db.Column(db.String(64), nullable=True)

    total_quantity = db.Column(db.Integer, nullable=False, default=0)
    available_quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)

    unit = db.Column(db.String(16), nullable=False, default="piece")
    cost_cents = db.Column(db.Integer, nullable=True)
    value_cents = db.Column(db.Integer, nullable=True)

    location_building = db.Column(db.String(50), nullable=True)
    location_floor = db.Column(db.String(20), nullable=True)
    location_room = db.Column(db.String(50), nullable=True)
    location_shelf = db.Column(db.String(50), nullable=True)
    location_position = db.Column(db.String(50), nullable=True)

    tags = db.Column(db.JSON, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ITEM_STATUS_ACTIVE, index=True)
    is_checkoutable = db.Column(db.Boolean, nullable=False, default=True, index=True)
    max_checkout_days = db.Column(db.Integer, nullable=False, default=7)
    requires_approval = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    last_modified_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    last_modified_by = db.relationship("User", foreign_keys=[last_modified_by_user_id])

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Item id={self.id} name={self.name!r} total={self.total_quantity} "
            f"available={self.available_quantity} reserved={self.reserved_quantity}>"
        )

    @property
    def is_available(self) -> bool:
        return (
            (self.available_quantity or 0) > 0
            and self.status == ITEM_STATUS_ACTIVE
            and bool(self.is_checkoutable)
        )

    @property
    def is_low_stock(self) -> bool:
        ratio = current_app.config.get("LOW_STOCK_RATIO", 0.1)
        return (self.available_quantity or 0) <= (self.total_quantity or 0) * ratio

    def clamp_quantities(self) -> None:
        """Keep available within what total leaves after reservations."""
        total = self.total_quantity or 0
        reserved = self.reserved_quantity or 0
        ceiling = max(total - reserved, 0)
        if (self.available_quantity or 0) > ceiling:
            self.available_quantity = ceiling

    def location_dict(self) -> dict:
        return {
            "building": self.location_building,
            "floor": self.location_floor,
            "room": self.location_room,
            "shelf": self.location_shelf,
            "position": self.location_position,
        }

    def summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "category": self.category,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "subcategory": self.subcategory,
            "sku": self.sku,
            "barcode": self.barcode,
            "qr_code": self.qr_code,
            "total_quantity": self.total_quantity,
            "available_quantity": self.available_quantity,
            "reserved_quantity": self.reserved_quantity,
            "unit": self.unit,
            "cost_cents": self.cost_cents,
            "value_cents": self.value_cents,
            "location": self.location_dict(),
            "tags": self.tags or [],
            "status": self.status,
            "is_checkoutable": self.is_checkoutable,
            "max_checkout_days": self.max_checkout_days,
            "requires_approval": self.requires_approval,
            "is_available": self.is_available,
            "is_low_stock": self.is_low_stock,
            "created_by_user_id": self.created_by_user_id,
            "last_modified_by_user_id": self.last_modified_by_user_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


@event.listens_for(Item, "before_insert")
@event.listens_for(Item, "before_update")
def _clamp_item_quantities(mapper, connection, target: Item) -> None:
    target.clamp_quantities()
