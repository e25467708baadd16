# Overview: Stock availability, FIFO batch depletion, batch receiving and restocking.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import case, func, update
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Product, StockLevel, InventoryBatch, InventoryTransaction
from ..money import extend_cents
from ..quantities import ZERO, quantity_to_number, to_quantity
from pos_ingest.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
"""
Inventory Invariants (authoritative)

- Quantities are Decimal with three places (Numeric(14, 3) columns).
- Batches are consumed strictly oldest received_at first (id breaks ties).
- Every quantity change is a compare-and-swap: the new value is computed
  in Decimal and written with UPDATE ... WHERE quantity = <value read>.
  No quantity arithmetic happens in SQL. An update that matches no row
  means another request got there first; it raises StaleDataError so the
  caller's unit of work is retried from scratch.
- quantity_remaining never goes negative. A batch that reaches zero is
  marked "consumed" in the same statement.
- Stock levels (per location on-hand) follow the same rule and floor at
  zero when a sale outruns recorded stock.
- Every depletion writes one "issue" InventoryTransaction, every receipt
  or restock one "receipt" row.
"""

BATCH_ACTIVE = "active"
BATCH_CONSUMED = "consumed"


class InventoryError(Exception):
    """Raised for inventory operation errors."""
    pass


@dataclass
class DepletionResult:
    product_id: int
    quantity: Decimal
    cogs_cents: int = 0
    batches_used: list[dict] = field(default_factory=list)
    unbatched_quantity: Decimal = ZERO

    @property
    def unit_cost_cents(self) -> int:
        """Average cost per unit of this depletion (half-up)."""
        if self.quantity <= 0:
            return 0
        return int((Decimal(self.cogs_cents) / self.quantity).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_available_quantity(product_id: int) -> Decimal:
    """Available stock summed over every location (on-hand minus reserved)."""
    available = db.session.query(
        func.coalesce(
            func.sum(
                case(
                    (StockLevel.quantity_on_hand > StockLevel.quantity_reserved,
                     StockLevel.quantity_on_hand - StockLevel.quantity_reserved),
                    else_=0,
                )
            ),
            0,
        )
    ).filter(StockLevel.product_id == product_id).scalar()
    return to_quantity(available or 0)


def _active_batches(product_id: int) -> list[InventoryBatch]:
    query = db.session.query(InventoryBatch).filter(
        InventoryBatch.product_id == product_id,
        InventoryBatch.status == BATCH_ACTIVE,
        InventoryBatch.quantity_remaining > 0,
    ).order_by(
        InventoryBatch.received_at.asc(),
        InventoryBatch.id.asc(),
    )
    return lock_for_update(query).all()


def _set_batch_remaining(batch: InventoryBatch, new_remaining: Decimal) -> None:
    old_remaining = batch.quantity_remaining
    status = BATCH_CONSUMED if new_remaining == 0 else BATCH_ACTIVE
    result = db.session.execute(
        update(InventoryBatch)
        .where(
            InventoryBatch.id == batch.id,
            InventoryBatch.quantity_remaining == old_remaining,
        )
        .values(quantity_remaining=new_remaining, status=status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleDataError(f"inventory batch {batch.id} changed during update")
    db.session.expire(batch, ["quantity_remaining", "status"])


def _set_on_hand(level: StockLevel, new_on_hand: Decimal) -> None:
    result = db.session.execute(
        update(StockLevel)
        .where(
            StockLevel.id == level.id,
            StockLevel.quantity_on_hand == level.quantity_on_hand,
        )
        .values(quantity_on_hand=new_on_hand)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StaleDataError(f"stock level {level.id} changed during update")
    db.session.expire(level, ["quantity_on_hand"])


def _get_or_create_level(product_id: int, location_code: str) -> StockLevel:
    level = lock_for_update(
        db.session.query(StockLevel).filter_by(product_id=product_id, location_code=location_code)
    ).first()
    if level is None:
        level = StockLevel(product_id=product_id, location_code=location_code, quantity_on_hand=ZERO, quantity_reserved=ZERO)
        db.session.add(level)
        db.session.flush()
    return level


def _log_issue(
    *,
    product_id: int,
    quantity: Decimal,
    unit_cost_cents: int,
    batch_id: int | None,
    reference_type: str,
    reference_id: int | None,
    note: str,
    transaction_date: datetime,
) -> InventoryTransaction:
    tx = InventoryTransaction(
        product_id=product_id,
        batch_id=batch_id,
        transaction_type="issue",
        quantity=-quantity,
        unit_cost_cents=unit_cost_cents,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=note,
        transaction_date=transaction_date,
    )
    db.session.add(tx)
    return tx


def reduce_stock_on_hand(product_id: int, quantity: Decimal) -> Decimal:
    """
    Decrement on-hand across the product's locations (lowest id first).

    Returns the quantity that could not be taken from any location (the
    stock record floors at zero).
    """
    remaining = quantity
    levels = lock_for_update(
        db.session.query(StockLevel)
        .filter(StockLevel.product_id == product_id, StockLevel.quantity_on_hand > 0)
        .order_by(StockLevel.id.asc())
    ).all()

    for level in levels:
        if remaining <= 0:
            break
        take = min(remaining, level.quantity_on_hand)
        _set_on_hand(level, level.quantity_on_hand - take)
        remaining -= take

    return remaining


def deplete_fifo(
    *,
    product: Product,
    quantity: Decimal,
    reference_type: str,
    reference_id: int | None,
    note: str,
    transaction_date: datetime | None = None,
) -> DepletionResult:
    """
    Issue quantity units of product, oldest batch first.

    COGS is quantity x batch unit cost per batch, to the nearest cent
    (catalog cost when the batch has none). Units no batch can cover (no
    batches at all, or all exhausted) are issued un-batched at catalog
    cost. Flushes, never commits.
    """
    quantity = to_quantity(quantity)
    if quantity <= 0:
        raise InventoryError("quantity must be > 0")

    when = transaction_date or utcnow()
    catalog_cost = product.unit_cost_cents or 0
    result = DepletionResult(product_id=product.id, quantity=quantity)
    remaining = quantity

    for batch in _active_batches(product.id):
        if remaining <= 0:
            break

        take = min(remaining, batch.quantity_remaining)
        unit_cost = batch.unit_cost_cents if batch.unit_cost_cents is not None else catalog_cost
        batch_number = batch.batch_number
        _set_batch_remaining(batch, batch.quantity_remaining - take)

        _log_issue(
            product_id=product.id,
            quantity=take,
            unit_cost_cents=unit_cost,
            batch_id=batch.id,
            reference_type=reference_type,
            reference_id=reference_id,
            note=note,
            transaction_date=when,
        )
        result.batches_used.append({
            "batch_id": batch.id,
            "batch_number": batch_number,
            "quantity": quantity_to_number(take),
            "unit_cost_cents": unit_cost,
        })
        result.cogs_cents += extend_cents(unit_cost, take)
        remaining -= take

    if remaining > 0:
        _log_issue(
            product_id=product.id,
            quantity=remaining,
            unit_cost_cents=catalog_cost,
            batch_id=None,
            reference_type=reference_type,
            reference_id=reference_id,
            note=f"{note} (no batch)",
            transaction_date=when,
        )
        result.cogs_cents += extend_cents(catalog_cost, remaining)
        result.unbatched_quantity = remaining

    reduce_stock_on_hand(product.id, quantity)
    db.session.flush()
    return result


@dataclass
class RestockResult:
    product_id: int
    quantity: Decimal
    batch_id: int | None
    unit_cost_cents: int

    @property
    def cost_cents(self) -> int:
        return extend_cents(self.unit_cost_cents, self.quantity)


def _restock_batch(product_id: int) -> InventoryBatch | None:
    """Newest active batch, else the newest batch of any status."""
    query = db.session.query(InventoryBatch).filter(InventoryBatch.product_id == product_id)
    order = (InventoryBatch.received_at.desc(), InventoryBatch.id.desc())
    batch = lock_for_update(query.filter(InventoryBatch.status == BATCH_ACTIVE).order_by(*order)).first()
    if batch is None:
        batch = lock_for_update(query.order_by(*order)).first()
    return batch


def restock(
    *,
    product: Product,
    quantity: Decimal,
    reference_type: str,
    reference_id: int | None,
    note: str,
    transaction_date: datetime | None = None,
    location_code: str = "MAIN",
) -> RestockResult:
    """
    Put returned units back on the shelf.

    The units go into the product's newest batch (reactivating it if it was
    consumed) and are valued at that batch's cost, or at catalog cost when
    there is no batch. Flushes, never commits.
    """
    quantity = to_quantity(quantity)
    if quantity <= 0:
        raise InventoryError("quantity must be > 0")

    catalog_cost = product.unit_cost_cents or 0
    batch = _restock_batch(product.id)
    unit_cost = catalog_cost
    if batch is not None:
        if batch.unit_cost_cents is not None:
            unit_cost = batch.unit_cost_cents
        _set_batch_remaining(batch, batch.quantity_remaining + quantity)

    level = _get_or_create_level(product.id, location_code)
    _set_on_hand(level, level.quantity_on_hand + quantity)

    db.session.add(InventoryTransaction(
        product_id=product.id,
        batch_id=batch.id if batch is not None else None,
        transaction_type="receipt",
        quantity=quantity,
        unit_cost_cents=unit_cost,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=note,
        transaction_date=transaction_date or utcnow(),
    ))
    db.session.flush()
    return RestockResult(
        product_id=product.id,
        quantity=quantity,
        batch_id=batch.id if batch is not None else None,
        unit_cost_cents=unit_cost,
    )


def set_stock_level(
    *,
    product_id: int,
    quantity_on_hand,
    quantity_reserved=0,
    location_code: str = "MAIN",
) -> StockLevel:
    quantity_on_hand = to_quantity(quantity_on_hand)
    quantity_reserved = to_quantity(quantity_reserved)
    if quantity_on_hand < 0 or quantity_reserved < 0:
        raise InventoryError("stock quantities must be >= 0")

    level = db.session.query(StockLevel).filter_by(
        product_id=product_id,
        location_code=location_code,
    ).first()
    if level is None:
        level = StockLevel(product_id=product_id, location_code=location_code)
        db.session.add(level)
    level.quantity_on_hand = quantity_on_hand
    level.quantity_reserved = quantity_reserved
    db.session.commit()
    return level


def receive_batch(
    *,
    product_id: int,
    batch_number: str,
    quantity,
    unit_cost_cents: int | None = None,
    received_at: datetime | None = None,
    location_code: str = "MAIN",
) -> InventoryBatch:
    """
    Record an inbound FIFO lot and add its quantity to on-hand stock.
    """
    quantity = to_quantity(quantity)
    if quantity <= 0:
        raise InventoryError("quantity must be > 0")
    if unit_cost_cents is not None and unit_cost_cents < 0:
        raise InventoryError("unit_cost_cents must be >= 0")

    def _op() -> InventoryBatch:
        product = db.session.query(Product).filter_by(id=product_id).first()
        if product is None:
            raise InventoryError("product not found")

        batch = InventoryBatch(
            product_id=product_id,
            batch_number=batch_number,
            quantity_received=quantity,
            quantity_remaining=quantity,
            unit_cost_cents=unit_cost_cents,
            received_at=received_at or utcnow(),
            status=BATCH_ACTIVE,
        )
        db.session.add(batch)
        db.session.flush()

        level = _get_or_create_level(product_id, location_code)
        _set_on_hand(level, level.quantity_on_hand + quantity)

        db.session.add(InventoryTransaction(
            product_id=product_id,
            batch_id=batch.id,
            transaction_type="receipt",
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            reference_type="inventory_batch",
            reference_id=batch.id,
            notes=f"Batch {batch_number} received",
            transaction_date=batch.received_at,
        ))

        db.session.commit()
        return batch

    return run_with_retry(_op)


def create_product(
    *,
    sku: str,
    name: str,
    unit_cost_cents: int | None = None,
    is_active: bool = True,
    batch_tracked: bool = False,
) -> Product:
    sku = (sku or "").strip()
    if not sku:
        raise InventoryError("sku is required")
    if unit_cost_cents is not None and unit_cost_cents < 0:
        raise InventoryError("unit_cost_cents must be >= 0")
    if db.session.query(Product).filter_by(sku=sku).first() is not None:
        raise InventoryError(f"product with sku {sku} already exists")

    product = Product(
        sku=sku,
        name=name,
        unit_cost_cents=unit_cost_cents,
        is_active=is_active,
        batch_tracked=batch_tracked,
    )
    db.session.add(product)
    db.session.commit()
    return product


def get_product_by_sku(sku: str) -> Product | None:
    return db.session.query(Product).filter_by(sku=sku).first()
