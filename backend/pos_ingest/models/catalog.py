from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import cents_to_amount
from ..quantities import ZERO, quantity_to_number
from pos_ingest.time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog item.

    SKU is the lookup key used by terminals. unit_cost_cents is the catalog
    cost: the reference price for the tolerance check and the COGS fallback
    when a product has no inventory batches.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    unit_cost_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    batch_tracked = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "unit_cost": cents_to_amount(self.unit_cost_cents),
            "is_active": self.is_active,
            "batch_tracked": self.batch_tracked,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockLevel(db.Model):
    """
    Aggregate stock-on-hand per product and location.

    Available quantity is on-hand minus reserved; the stock check sums it
    across every location of a product.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_code", name="uq_stock_levels_product_location"),
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_stock_levels_on_hand_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_code = db.Column(db.String(50), nullable=False, default="MAIN")

    quantity_on_hand = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    quantity_reserved = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stock_levels", lazy=True))

    @property
    def quantity_available(self) -> Decimal:
        return max(ZERO, (self.quantity_on_hand or ZERO) - (self.quantity_reserved or ZERO))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "location_code": self.location_code,
            "quantity_on_hand": quantity_to_number(self.quantity_on_hand),
            "quantity_reserved": quantity_to_number(self.quantity_reserved),
            "quantity_available": quantity_to_number(self.quantity_available),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryBatch(db.Model):
    """
    FIFO cost lot.

    Consumed oldest received_at first. quantity_remaining never goes below
    zero; a batch that reaches zero flips to status "consumed".
    """
    __tablename__ = "inventory_batches"
    __table_args__ = (
        db.UniqueConstraint("product_id", "batch_number", name="uq_inventory_batches_product_number"),
        db.CheckConstraint("quantity_remaining >= 0", name="ck_inventory_batches_remaining_nonneg"),
        db.Index("ix_inventory_batches_fifo", "product_id", "status", "received_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_number = db.Column(db.String(64), nullable=False)

    quantity_received = db.Column(db.Numeric(14, 3), nullable=False)
    quantity_remaining = db.Column(db.Numeric(14, 3), nullable=False)

    # NULL means "use the catalog cost"
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    status = db.Column(db.String(16), nullable=False, default="active", index=True)  # active, consumed

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "quantity_received": quantity_to_number(self.quantity_received),
            "quantity_remaining": quantity_to_number(self.quantity_remaining),
            "unit_cost": cents_to_amount(self.unit_cost_cents),
            "received_at": to_utc_z(self.received_at),
            "status": self.status,
        }


class InventoryTransaction(db.Model):
    """
    Append-only inventory movement log.

    One "issue" row per batch depletion (or one un-batched row when no
    batch could cover the quantity). quantity is negative for issues.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_inventory_transactions_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("inventory_batches.id"), nullable=True, index=True)

    transaction_type = db.Column(db.String(32), nullable=False, index=True)  # issue, receipt
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "transaction_type": self.transaction_type,
            "quantity": quantity_to_number(self.quantity),
            "unit_cost": cents_to_amount(self.unit_cost_cents),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "transaction_date": to_utc_z(self.transaction_date),
        }
