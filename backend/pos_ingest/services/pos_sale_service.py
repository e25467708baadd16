# Overview: Point-of-sale ingestion: one terminal transaction in, invoice + ledger + stock + payment out.

"""
POS Sale Ingestion Service

Turns one terminal transaction into an AR invoice, balanced GL postings,
FIFO inventory depletion and (when paid) a receipt with optional bank
deposit, or rejects it with every problem listed at once.

ORDER OF WORK (each step may reject):
1. Shape/bounds validation            -> InvalidPayloadError, nothing written
2. Idempotency lookup                 -> replay of the recorded outcome
3. Catalog + price tolerance checks   -> collected
4. Stock availability (configurable)  -> collected
   any collected error                -> "failed" audit row + SaleValidationError
5. Customer resolution (walk-in fallback, auto-created)
6. Credit limit (configurable)        -> CreditLimitExceededError, nothing written
7. Totals, invoice, GL, FIFO, COGS, receipt, bank deposit, audit row

ATOMICITY: step 7 is one database transaction. Every write is flushed and
committed together; an exception rolls all of it back. The unique
constraint on pos_sales.pos_transaction_id is the authoritative duplicate
guard: a request that loses the race to a concurrent duplicate rolls back
and replays the winner.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import CreditLimitExceededError, InvalidPayloadError, NotFoundError, SaleValidationError
from ..models import (
    CustomerInvoice,
    CustomerInvoiceLine,
    CustomerReceipt,
    PosSale,
    PosSaleItem,
    Product,
    ReceiptAllocation,
)
from ..models.invoices import derive_invoice_status
from ..models.pos import POS_SALE_COMPLETED, POS_SALE_FAILED
from ..money import apply_bps, cents_to_amount, extend_cents
from ..quantities import ZERO, quantity_to_number
from ..validation import SalePayload, ValidationError, parse_sale_payload
from pos_ingest.time_utils import to_utc_z, utc_day_bounds, utcnow
from .banking_service import get_bank_account, record_deposit
from .concurrency import run_with_retry
from .customer_service import ResolvedCustomer, get_outstanding_balance, resolve_customer
from .document_service import DOC_INVOICE, DOC_RECEIPT, next_document_number
from .inventory_service import deplete_fifo, get_available_quantity
from .ledger_service import (
    ACCOUNT_AR,
    ACCOUNT_CASH,
    ACCOUNT_COGS,
    ACCOUNT_INVENTORY,
    ACCOUNT_SALES_REVENUE,
    ACCOUNT_SALES_TAX_PAYABLE,
    credit,
    debit,
    post_journal,
)
from .settings_service import PosSettings, get_pos_settings


DUPLICATE_MESSAGE = "Transaction already processed"
VALIDATION_FAILED_MESSAGE = "Sale validation failed"


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    amount_paid_cents: int

    @property
    def applied_cents(self) -> int:
        """Portion of the payment that settles the invoice (capped at total)."""
        return min(self.amount_paid_cents, self.total_cents)

    @property
    def change_cents(self) -> int:
        return max(0, self.amount_paid_cents - self.total_cents)

    @property
    def balance_due_cents(self) -> int:
        return max(0, self.total_cents - self.amount_paid_cents)

    @property
    def invoice_status(self) -> str:
        return derive_invoice_status(self.amount_paid_cents, self.total_cents)


@dataclass(frozen=True)
class LineCalculation:
    sku: str
    product: Product
    quantity: Decimal
    unit_price_cents: int
    discount_cents: int
    tax_rate_bps: int
    subtotal_cents: int
    tax_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.subtotal_cents + self.tax_cents


@dataclass
class SaleResult:
    invoice_id: int
    invoice_number: str
    receipt_id: int | None
    receipt_number: str | None
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    amount_paid_cents: int
    change_cents: int
    balance_due_cents: int
    cogs_cents: int
    invoice_status: str
    processed_at: datetime
    duplicate: bool = False
    ledger_entry_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        body = {
            "success": True,
            "erp_invoice_number": self.invoice_number,
            "invoice_id": self.invoice_id,
            "receipt_number": self.receipt_number,
            "receipt_id": self.receipt_id,
            "subtotal": cents_to_amount(self.subtotal_cents),
            "tax_amount": cents_to_amount(self.tax_cents),
            "total_amount": cents_to_amount(self.total_cents),
            "amount_paid": cents_to_amount(self.amount_paid_cents),
            "change_due": cents_to_amount(self.change_cents),
            "balance_due": cents_to_amount(self.balance_due_cents),
            "invoice_status": self.invoice_status,
            "inventory_updated": True,
            "gl_posted": True,
            "cogs_amount": cents_to_amount(self.cogs_cents),
            "timestamp": to_utc_z(self.processed_at),
        }
        if self.duplicate:
            body["message"] = DUPLICATE_MESSAGE
        return body


# =============================================================================
# PURE CALCULATIONS
# =============================================================================

def calculate_line(item, product: Product) -> LineCalculation:
    """lineSubtotal = price*qty - discount; lineTax = lineSubtotal * rate (both to the nearest cent)."""
    subtotal = extend_cents(item.unit_price_cents, item.quantity) - item.discount_cents
    return LineCalculation(
        sku=item.sku,
        product=product,
        quantity=item.quantity,
        unit_price_cents=item.unit_price_cents,
        discount_cents=item.discount_cents,
        tax_rate_bps=item.tax_rate_bps,
        subtotal_cents=subtotal,
        tax_cents=apply_bps(subtotal, item.tax_rate_bps),
    )


def calculate_totals(lines: list[LineCalculation], amount_paid_cents: int) -> SaleTotals:
    subtotal = sum(line.subtotal_cents for line in lines)
    tax = sum(line.tax_cents for line in lines)
    return SaleTotals(
        subtotal_cents=subtotal,
        tax_cents=tax,
        total_cents=subtotal + tax,
        amount_paid_cents=amount_paid_cents,
    )


def price_deviation_exceeds(price_cents: int, catalog_cost_cents: int, tolerance_percent: Decimal) -> bool:
    """
    |price - cost| / cost * 100 > tolerance, in exact arithmetic.

    A price exactly on the boundary is accepted.
    """
    if not catalog_cost_cents:
        return False
    return abs(price_cents - catalog_cost_cents) * 100 > tolerance_percent * catalog_cost_cents


def _price_mismatch_message(price_cents: int, cost_cents: int) -> str:
    diff_pct = Decimal(abs(price_cents - cost_cents) * 100) / Decimal(cost_cents)
    return (
        f"Price mismatch: expected {cents_to_amount(cost_cents)}, "
        f"received {cents_to_amount(price_cents)} ({diff_pct:.1f}% difference)"
    )


# =============================================================================
# VALIDATION AGAINST MASTER DATA
# =============================================================================

def _load_products(skus: list[str]) -> dict[str, Product]:
    products = db.session.query(Product).filter(Product.sku.in_(skus)).all()
    return {p.sku: p for p in products}


def collect_validation_errors(
    sale: SalePayload,
    products: dict[str, Product],
    settings: PosSettings,
) -> list[dict]:
    """
    Every catalog, price, stock and bank-account problem in the sale.

    Catalog/price errors are reported per line; stock errors once per SKU,
    comparing the SKU's total requested quantity with its available stock.
    """
    errors: list[dict] = []

    for item in sale.items:
        product = products.get(item.sku)
        if product is None:
            errors.append({"sku": item.sku, "error": "Product not found"})
            continue
        if not product.is_active:
            errors.append({"sku": item.sku, "error": "Product is inactive"})
            continue
        if price_deviation_exceeds(item.unit_price_cents, product.unit_cost_cents or 0, settings.price_tolerance_percent):
            errors.append({
                "sku": item.sku,
                "error": _price_mismatch_message(item.unit_price_cents, product.unit_cost_cents),
            })

    if settings.require_stock:
        requested: dict[str, Decimal] = {}
        for item in sale.items:
            if item.sku in products:
                requested[item.sku] = requested.get(item.sku, ZERO) + item.quantity

        for sku, quantity in requested.items():
            available = get_available_quantity(products[sku].id)
            if available < quantity:
                errors.append({
                    "sku": sku,
                    "error": (
                        f"Insufficient stock (available: {quantity_to_number(available)}, "
                        f"requested: {quantity_to_number(quantity)})"
                    ),
                })

    if sale.bank_account_id is not None:
        account = get_bank_account(sale.bank_account_id)
        if account is None or not account.is_active:
            errors.append({"sku": None, "error": f"Bank account not found: {sale.bank_account_id}"})

    return errors


def check_credit_limit(resolved: ResolvedCustomer, totals: SaleTotals, settings: PosSettings) -> None:
    """
    Reject when the unpaid part of this sale exceeds the remaining credit.

    Skipped when disabled, for the walk-in customer, and for customers
    without a credit limit.
    """
    if not settings.validate_credit_limit:
        return
    if resolved.is_walk_in or resolved.credit_limit_cents <= 0:
        return

    outstanding = get_outstanding_balance(resolved.customer.id)
    available = resolved.credit_limit_cents - outstanding
    requiring_credit = totals.balance_due_cents

    if requiring_credit > available:
        details = {
            "customer_code": resolved.customer_code,
            "credit_limit": cents_to_amount(resolved.credit_limit_cents),
            "outstanding_balance": cents_to_amount(outstanding),
            "sale_total": cents_to_amount(totals.total_cents),
            "amount_paid": cents_to_amount(totals.amount_paid_cents),
            "available_credit": cents_to_amount(available),
        }
        current_app.logger.warning("Credit limit exceeded: %s", details)
        raise CreditLimitExceededError("Customer credit limit exceeded", details=details)


# =============================================================================
# IDEMPOTENT REPLAY
# =============================================================================

def find_existing_sale(transaction_id: str) -> PosSale | None:
    return db.session.query(PosSale).filter_by(pos_transaction_id=transaction_id).first()


def replay(existing: PosSale) -> SaleResult:
    """Return exactly what the first attempt returned."""
    if existing.status == POS_SALE_FAILED:
        raise SaleValidationError(VALIDATION_FAILED_MESSAGE, details=existing.error_details or [])

    return SaleResult(
        invoice_id=existing.invoice_id,
        invoice_number=existing.invoice.invoice_number if existing.invoice else None,
        receipt_id=existing.receipt_id,
        receipt_number=existing.receipt.receipt_number if existing.receipt else None,
        subtotal_cents=existing.subtotal_cents,
        tax_cents=existing.tax_cents,
        total_cents=existing.total_cents,
        amount_paid_cents=existing.amount_paid_cents,
        change_cents=existing.change_given_cents,
        balance_due_cents=existing.balance_due_cents,
        cogs_cents=existing.cogs_cents,
        invoice_status=derive_invoice_status(existing.amount_paid_cents, existing.total_cents),
        processed_at=existing.processed_at or existing.created_at,
        duplicate=True,
    )


def _replay_after_conflict(transaction_id: str, exc: IntegrityError) -> SaleResult:
    db.session.rollback()
    existing = find_existing_sale(transaction_id)
    if existing is None:
        raise exc
    current_app.logger.info("Concurrent duplicate transaction resolved by replay: %s", transaction_id)
    return replay(existing)


def _record_failed_attempt(sale: SalePayload, errors: list[dict]) -> PosSale:
    row = PosSale(
        pos_terminal_id=sale.pos_terminal_id,
        pos_transaction_id=sale.transaction_id,
        transaction_datetime=sale.transaction_datetime or utcnow(),
        subtotal_cents=0,
        tax_cents=0,
        total_cents=0,
        amount_paid_cents=sale.amount_paid_cents,
        payment_method=sale.payment_method,
        status=POS_SALE_FAILED,
        error_message=json.dumps(errors),
        error_details=errors,
        raw_payload=sale.raw,
        processed_at=utcnow(),
    )
    db.session.add(row)
    db.session.commit()
    return row


# =============================================================================
# WRITE PATH
# =============================================================================

def _create_invoice(
    sale: SalePayload,
    resolved: ResolvedCustomer,
    lines: list[LineCalculation],
    totals: SaleTotals,
    settings: PosSettings,
    transaction_dt: datetime,
) -> CustomerInvoice:
    sale_date = transaction_dt.date()
    invoice = CustomerInvoice(
        invoice_number=next_document_number(document_type=DOC_INVOICE, period=sale_date.year),
        customer_id=resolved.customer.id,
        invoice_date=sale_date,
        due_date=sale_date,  # POS sales are due immediately
        subtotal_cents=totals.subtotal_cents,
        tax_cents=totals.tax_cents,
        total_cents=totals.total_cents,
        amount_paid_cents=totals.applied_cents,
        currency=settings.default_currency,
        payment_terms=0,
        notes=sale.notes or f"POS Sale - Terminal: {sale.pos_terminal_id}",
    )
    db.session.add(invoice)
    db.session.flush()

    for number, line in enumerate(lines, start=1):
        db.session.add(CustomerInvoiceLine(
            invoice_id=invoice.id,
            line_number=number,
            product_id=line.product.id,
            description=line.sku,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            discount_cents=line.discount_cents,
            tax_rate_bps=line.tax_rate_bps,
            line_total_cents=line.line_total_cents,
        ))
    db.session.flush()
    return invoice


def _post_sale_journal(invoice: CustomerInvoice, totals: SaleTotals) -> list:
    number = invoice.invoice_number
    return post_journal(
        journal_ref=number,
        entry_date=invoice.invoice_date,
        reference_type="customer_invoice",
        reference_id=invoice.id,
        lines=[
            credit(ACCOUNT_SALES_REVENUE, totals.subtotal_cents, f"POS Sale {number}"),
            credit(ACCOUNT_SALES_TAX_PAYABLE, totals.tax_cents, f"Tax on POS Sale {number}"),
            debit(ACCOUNT_CASH, totals.applied_cents, f"Payment received - {number}"),
            debit(ACCOUNT_AR, totals.balance_due_cents, f"AR Balance - {number}"),
        ],
    )


def _post_cogs_journal(invoice: CustomerInvoice, cogs_cents: int) -> list:
    number = invoice.invoice_number
    return post_journal(
        journal_ref=f"{number}/COGS",
        entry_date=invoice.invoice_date,
        reference_type="customer_invoice",
        reference_id=invoice.id,
        lines=[
            debit(ACCOUNT_COGS, cogs_cents, f"COGS - {number}"),
            credit(ACCOUNT_INVENTORY, cogs_cents, f"Inventory reduction - {number}"),
        ],
    )


def _create_receipt(
    sale: SalePayload,
    resolved: ResolvedCustomer,
    invoice: CustomerInvoice,
    totals: SaleTotals,
) -> CustomerReceipt:
    receipt = CustomerReceipt(
        receipt_number=next_document_number(document_type=DOC_RECEIPT, period=invoice.invoice_date.year),
        customer_id=resolved.customer.id,
        receipt_date=invoice.invoice_date,
        amount_cents=totals.applied_cents,
        payment_method=sale.payment_method,
        bank_account_id=sale.bank_account_id,
        reference_number=sale.transaction_id,
        status="allocated",
        notes=f"POS Receipt - {invoice.invoice_number}",
    )
    db.session.add(receipt)
    db.session.flush()

    db.session.add(ReceiptAllocation(
        receipt_id=receipt.id,
        invoice_id=invoice.id,
        amount_cents=totals.applied_cents,
    ))

    if sale.bank_account_id is not None:
        record_deposit(
            bank_account_id=sale.bank_account_id,
            amount_cents=totals.applied_cents,
            transaction_date=invoice.invoice_date,
            payee_payer=sale.customer_code or resolved.customer.company_name,
            description=f"POS Sale {invoice.invoice_number}",
            reference_number=receipt.receipt_number,
            source_type="customer_receipt",
            source_id=receipt.id,
        )

    db.session.flush()
    return receipt


def _write_sale(
    sale: SalePayload,
    resolved: ResolvedCustomer,
    lines: list[LineCalculation],
    totals: SaleTotals,
    settings: PosSettings,
) -> SaleResult:
    transaction_dt = sale.transaction_datetime or utcnow()

    invoice = _create_invoice(sale, resolved, lines, totals, settings, transaction_dt)
    ledger_entries = _post_sale_journal(invoice, totals)

    cogs_cents = 0
    depletions = []
    for line in lines:
        depletion = deplete_fifo(
            product=line.product,
            quantity=line.quantity,
            reference_type="pos_sale",
            reference_id=invoice.id,
            note=f"POS Sale {invoice.invoice_number}",
            transaction_date=transaction_dt,
        )
        if depletion.cogs_cents == 0:
            current_app.logger.warning(
                "Zero cost basis for SKU %s on %s (no batch cost and no catalog cost)",
                line.sku,
                invoice.invoice_number,
            )
        cogs_cents += depletion.cogs_cents
        depletions.append(depletion)

    if cogs_cents > 0:
        ledger_entries += _post_cogs_journal(invoice, cogs_cents)

    receipt = None
    if totals.applied_cents > 0:
        receipt = _create_receipt(sale, resolved, invoice, totals)

    processed_at = utcnow()
    log = PosSale(
        pos_terminal_id=sale.pos_terminal_id,
        pos_transaction_id=sale.transaction_id,
        transaction_datetime=transaction_dt,
        customer_id=resolved.customer.id,
        invoice_id=invoice.id,
        receipt_id=receipt.id if receipt else None,
        bank_account_id=sale.bank_account_id,
        subtotal_cents=totals.subtotal_cents,
        tax_cents=totals.tax_cents,
        total_cents=totals.total_cents,
        amount_paid_cents=totals.amount_paid_cents,
        change_given_cents=totals.change_cents,
        balance_due_cents=totals.balance_due_cents,
        cogs_cents=cogs_cents,
        payment_method=sale.payment_method,
        status=POS_SALE_COMPLETED,
        raw_payload=sale.raw,
        processed_at=processed_at,
    )
    db.session.add(log)
    db.session.flush()

    for line, depletion in zip(lines, depletions):
        db.session.add(PosSaleItem(
            pos_sale_id=log.id,
            product_id=line.product.id,
            sku=line.sku,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            discount_cents=line.discount_cents,
            tax_rate_bps=line.tax_rate_bps,
            line_total_cents=line.line_total_cents,
            cost_at_sale_cents=depletion.unit_cost_cents,
            batches_used=depletion.batches_used,
        ))

    db.session.commit()

    return SaleResult(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        receipt_id=receipt.id if receipt else None,
        receipt_number=receipt.receipt_number if receipt else None,
        subtotal_cents=totals.subtotal_cents,
        tax_cents=totals.tax_cents,
        total_cents=totals.total_cents,
        amount_paid_cents=totals.amount_paid_cents,
        change_cents=totals.change_cents,
        balance_due_cents=totals.balance_due_cents,
        cogs_cents=cogs_cents,
        invoice_status=totals.invoice_status,
        processed_at=processed_at,
        ledger_entry_ids=[entry.id for entry in ledger_entries],
    )


# =============================================================================
# ENTRY POINT
# =============================================================================

def process_sale(payload) -> SaleResult:
    """
    Process one POS sale payload end to end.

    Returns a SaleResult (duplicate=True for a replay).

    Raises:
        InvalidPayloadError: malformed shape or out-of-bounds field
        SaleValidationError: catalog/stock problems (details lists all of them)
        CreditLimitExceededError: unpaid portion exceeds available credit
    """
    try:
        sale = parse_sale_payload(payload)
    except ValidationError as exc:
        raise InvalidPayloadError(str(exc))

    current_app.logger.debug("POS sale payload %s: %s", sale.transaction_id, sale.raw)

    def _op() -> SaleResult:
        existing = find_existing_sale(sale.transaction_id)
        if existing is not None:
            current_app.logger.info("Duplicate transaction detected: %s", sale.transaction_id)
            return replay(existing)

        settings = get_pos_settings()
        products = _load_products([item.sku for item in sale.items])

        errors = collect_validation_errors(sale, products, settings)
        if errors:
            current_app.logger.info(
                "POS sale %s from terminal %s rejected: %d validation error(s)",
                sale.transaction_id,
                sale.pos_terminal_id,
                len(errors),
            )
            try:
                _record_failed_attempt(sale, errors)
            except IntegrityError as exc:
                return _replay_after_conflict(sale.transaction_id, exc)
            raise SaleValidationError(VALIDATION_FAILED_MESSAGE, details=errors)

        resolved = resolve_customer(sale.customer_code, settings.walk_in_customer_code)

        lines = [calculate_line(item, products[item.sku]) for item in sale.items]
        totals = calculate_totals(lines, sale.amount_paid_cents)

        check_credit_limit(resolved, totals, settings)

        try:
            result = _write_sale(sale, resolved, lines, totals, settings)
        except IntegrityError as exc:
            return _replay_after_conflict(sale.transaction_id, exc)

        current_app.logger.info(
            "POS sale %s completed: invoice %s total %s",
            sale.transaction_id,
            result.invoice_number,
            cents_to_amount(result.total_cents),
        )
        return result

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# SALE LOG QUERIES
# =============================================================================

def list_sales(*, status: str | None = None, terminal: str | None = None, limit: int = 50) -> list[PosSale]:
    """Recent audit rows, newest first."""
    query = db.session.query(PosSale)
    if status:
        query = query.filter(PosSale.status == status)
    if terminal:
        query = query.filter(PosSale.pos_terminal_id == terminal)
    return query.order_by(PosSale.id.desc()).limit(limit).all()


def get_sale_by_transaction_id(transaction_id: str) -> PosSale:
    sale = find_existing_sale(transaction_id)
    if sale is None:
        raise NotFoundError(f"POS transaction not found: {transaction_id}")
    return sale


def get_sales_stats(now: datetime | None = None) -> dict:
    """
    Today's (UTC) activity: completed sale count and revenue, failed
    attempts and the average completed sale value.
    """
    now = now or utcnow()
    start, end = utc_day_bounds(now)

    completed_count, revenue_cents = db.session.query(
        func.count(PosSale.id),
        func.coalesce(func.sum(PosSale.total_cents), 0),
    ).filter(
        PosSale.status == POS_SALE_COMPLETED,
        PosSale.processed_at >= start,
        PosSale.processed_at < end,
    ).one()

    failed_count = db.session.query(func.count(PosSale.id)).filter(
        PosSale.status == POS_SALE_FAILED,
        PosSale.processed_at >= start,
        PosSale.processed_at < end,
    ).scalar()

    revenue_cents = int(revenue_cents or 0)
    average_cents = (
        int((Decimal(revenue_cents) / completed_count).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        if completed_count else 0
    )

    return {
        "date": now.date().isoformat(),
        "sales_today": int(completed_count or 0),
        "revenue_today": cents_to_amount(revenue_cents),
        "failed_today": int(failed_count or 0),
        "average_sale_value": cents_to_amount(average_cents),
    }
