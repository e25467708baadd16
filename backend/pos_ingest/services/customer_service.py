# Overview: Customer resolution, outstanding balances and the POS customer directory.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, CustomerInvoice
from ..money import cents_to_amount


WALK_IN_COMPANY_NAME = "Walk-In Customer"


@dataclass(frozen=True)
class ResolvedCustomer:
    customer: Customer
    is_walk_in: bool

    @property
    def customer_code(self) -> str:
        return self.customer.customer_code

    @property
    def credit_limit_cents(self) -> int:
        return self.customer.credit_limit_cents or 0


def _open_invoice_filter():
    return (
        CustomerInvoice.is_cancelled.is_(False),
        CustomerInvoice.amount_paid_cents < CustomerInvoice.total_cents,
    )


def get_outstanding_balance(customer_id: int) -> int:
    """SUM(total - paid) over the customer's non-paid, non-cancelled invoices."""
    balance = db.session.query(
        func.coalesce(func.sum(CustomerInvoice.total_cents - CustomerInvoice.amount_paid_cents), 0)
    ).filter(
        CustomerInvoice.customer_id == customer_id,
        *_open_invoice_filter(),
    ).scalar()
    return int(balance or 0)


def get_outstanding_balances(customer_ids: list[int]) -> dict[int, int]:
    if not customer_ids:
        return {}
    rows = db.session.query(
        CustomerInvoice.customer_id,
        func.sum(CustomerInvoice.total_cents - CustomerInvoice.amount_paid_cents),
    ).filter(
        CustomerInvoice.customer_id.in_(customer_ids),
        *_open_invoice_filter(),
    ).group_by(CustomerInvoice.customer_id).all()
    return {customer_id: int(total or 0) for customer_id, total in rows}


def get_or_create_walk_in(walk_in_code: str) -> Customer:
    """
    Fetch the synthetic walk-in customer, creating it on first use.

    Creation runs in a savepoint; losing a creation race to a concurrent
    request falls back to the row the other request inserted.
    """
    customer = db.session.query(Customer).filter_by(customer_code=walk_in_code).first()
    if customer is not None:
        return customer

    try:
        with db.session.begin_nested():
            customer = Customer(
                customer_code=walk_in_code,
                company_name=WALK_IN_COMPANY_NAME,
                status="active",
                credit_limit_cents=0,
            )
            db.session.add(customer)
        return customer
    except IntegrityError:
        customer = db.session.query(Customer).filter_by(customer_code=walk_in_code).first()
        if customer is None:
            raise
        return customer


def resolve_customer(customer_code: str | None, walk_in_code: str) -> ResolvedCustomer:
    """
    Look up the sale's customer; unknown or missing codes use the walk-in customer.
    """
    if customer_code:
        customer = db.session.query(Customer).filter_by(customer_code=customer_code).first()
        if customer is not None:
            return ResolvedCustomer(customer=customer, is_walk_in=customer.customer_code == walk_in_code)

    return ResolvedCustomer(customer=get_or_create_walk_in(walk_in_code), is_walk_in=True)


def create_customer(
    *,
    customer_code: str,
    company_name: str,
    credit_limit_cents: int = 0,
    payment_terms: int | None = None,
    contact_person: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    status: str = "active",
) -> Customer:
    if credit_limit_cents < 0:
        raise ValueError("credit_limit_cents must be >= 0")
    customer = Customer(
        customer_code=customer_code,
        company_name=company_name,
        credit_limit_cents=credit_limit_cents,
        payment_terms=payment_terms,
        contact_person=contact_person,
        email=email,
        phone=phone,
        status=status,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def list_customers_with_balance(
    *,
    search: str | None = None,
    code: str | None = None,
    active_only: bool = True,
) -> list[dict]:
    """
    Customer directory for terminals, with live outstanding balance and
    available credit (never negative).
    """
    query = db.session.query(Customer)
    if active_only:
        query = query.filter(Customer.status == "active")
    if code:
        query = query.filter(Customer.customer_code == code)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Customer.company_name.ilike(pattern),
            Customer.customer_code.ilike(pattern),
            Customer.contact_person.ilike(pattern),
        ))

    customers = query.order_by(Customer.company_name.asc()).all()
    balances = get_outstanding_balances([c.id for c in customers])

    results = []
    for c in customers:
        outstanding = balances.get(c.id, 0)
        limit = c.credit_limit_cents or 0
        results.append({
            "customer_code": c.customer_code,
            "company_name": c.company_name,
            "contact_person": c.contact_person,
            "email": c.email,
            "phone": c.phone,
            "credit_limit": cents_to_amount(limit),
            "outstanding_balance": cents_to_amount(outstanding),
            "available_credit": cents_to_amount(max(0, limit - outstanding)),
            "payment_terms": c.payment_terms,
            "status": c.status,
            "billing_address": c.billing_address,
            "shipping_address": c.shipping_address,
            "tax_id": c.tax_id,
        })
    return results
