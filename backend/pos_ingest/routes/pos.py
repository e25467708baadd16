# Overview: Terminal-facing API routes: sale, payment, return and credit note ingestion, customer directory, sale log.

"""
POS Terminal API Routes

ENDPOINTS:
- POST /api/pos/sales                     ingest one terminal sale
- POST /api/pos/payments                  collect a payment against an invoice
- POST /api/pos/returns                   goods returned against an earlier invoice
- POST /api/pos/credit-notes              standalone customer credit
- GET  /api/pos/customers                 customer directory with available credit
- GET  /api/pos/sales                     recent sale log rows
- GET  /api/pos/sales/stats               today's totals
- GET  /api/pos/sales/<transaction_id>    one sale log row with items

SECURITY:
- x-pos-api-key must match POS_API_KEY when one is configured
- Ingestion is rate limited per terminal, the directory per API key/address

ERRORS: {"success": false, "error": CODE, "message": ..., "details": ...}
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import client_key, rate_limited, require_pos_api_key, terminal_key
from ..errors import InvalidPayloadError, PosError
from ..extensions import db
from ..services import credit_note_service, customer_service, pos_payment_service, pos_return_service, pos_sale_service
from ..validation import ValidationError


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")

MAX_SEARCH_LENGTH = 100
MAX_LIST_LIMIT = 200


def _error_response(exc: PosError):
    return jsonify(exc.to_dict()), exc.http_status


def _internal_error(what: str, exc: Exception):
    current_app.logger.exception(what)
    db.session.rollback()
    return jsonify({
        "success": False,
        "error": "INTERNAL_ERROR",
        "error_type": type(exc).__name__,
        "message": "An unexpected error occurred",
    }), 500


def _read_json():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Invalid JSON payload")
    return payload


# =============================================================================
# INGESTION
# =============================================================================

@pos_bp.post("/sales")
@require_pos_api_key
@rate_limited("pos_rate_limiter", terminal_key)
def ingest_sale_route():
    """
    Ingest one terminal sale.

    Request body:
    {
        "pos_terminal_id": "T1",
        "transaction_id": "T1-000123",
        "transaction_datetime": "2026-10-18T09:30:00Z",   (optional)
        "customer_code": "CUST001",                       (optional, walk-in otherwise)
        "payment_method": "cash",                         (optional)
        "amount_paid": 22.00,                             (optional)
        "bank_account_id": 1,                             (optional)
        "notes": "...",                                   (optional)
        "items": [{"sku": "A", "quantity": 2, "unit_price": 10.0,
                   "discount": 0, "tax_rate": 10}]
    }

    Returns:
        200: Sale recorded (or replayed, with "message")
        400: INVALID_PAYLOAD, VALIDATION_FAILED, CREDIT_LIMIT_EXCEEDED
        401: UNAUTHORIZED
        429: RATE_LIMIT_EXCEEDED
        500: INTERNAL_ERROR
    """
    try:
        result = pos_sale_service.process_sale(_read_json())
        return jsonify(result.to_dict()), 200
    except PosError as e:
        return _error_response(e)
    except ValidationError as e:
        return _error_response(InvalidPayloadError(str(e)))
    except Exception as e:
        return _internal_error("Failed to process POS sale", e)


@pos_bp.post("/payments")
@require_pos_api_key
@rate_limited("pos_rate_limiter", terminal_key)
def ingest_payment_route():
    """
    Collect a payment against an existing invoice.

    Request body:
    {
        "pos_terminal_id": "T1",
        "transaction_id": "T1-PAY-0001",
        "invoice_number": "POS-2026-0001",   (or "invoice_id")
        "customer_code": "CUST001",          (optional, must own the invoice)
        "amount": 50.00,
        "payment_method": "card",
        "bank_account_id": 1,                (optional)
        "reference": "AUTH-123",             (optional)
        "notes": "..."                       (optional)
    }

    Returns:
        200: Payment applied (or replayed)
        400: INVALID_PAYLOAD, CUSTOMER_MISMATCH, INVOICE_ALREADY_PAID, VALIDATION_FAILED
        404: INVOICE_NOT_FOUND
    """
    try:
        result = pos_payment_service.apply_payment(_read_json())
        return jsonify(result.to_dict()), 200
    except PosError as e:
        return _error_response(e)
    except ValidationError as e:
        return _error_response(InvalidPayloadError(str(e)))
    except Exception as e:
        return _internal_error("Failed to process POS payment", e)


@pos_bp.post("/returns")
@require_pos_api_key
@rate_limited("pos_rate_limiter", terminal_key)
def ingest_return_route():
    """
    Goods brought back against an earlier invoice.

    Request body:
    {
        "pos_terminal_id": "T1",
        "transaction_id": "T1-RET-0001",
        "original_invoice_number": "POS-2026-0001",   (or the sale's transaction_id)
        "return_reason": "wrong size",
        "refund_method": "cash",                      (cash | original_payment | store_credit)
        "refund_amount": 11.00,
        "restock": true,                              (optional, default true)
        "bank_account_id": 1,                         (optional, cash refunds)
        "notes": "...",                               (optional)
        "items": [{"sku": "A", "quantity": 1, "unit_price": 10.0, "condition": "good"}]
    }

    Returns:
        200: Return recorded (or replayed, with "message")
        400: INVALID_PAYLOAD, VALIDATION_FAILED, INVOICE_NOT_CREATED
        404: INVOICE_NOT_FOUND
    """
    try:
        result = pos_return_service.process_return(_read_json())
        return jsonify(result.to_dict()), 200
    except PosError as e:
        return _error_response(e)
    except ValidationError as e:
        return _error_response(InvalidPayloadError(str(e)))
    except Exception as e:
        return _internal_error("Failed to process POS return", e)


@pos_bp.post("/credit-notes")
@require_pos_api_key
@rate_limited("pos_rate_limiter", terminal_key)
def ingest_credit_note_route():
    """
    Standalone customer credit, optionally applied to one invoice.

    Request body:
    {
        "pos_terminal_id": "T1",
        "transaction_id": "T1-CN-0001",
        "customer_code": "CUST001",
        "amount": 15.00,
        "reason": "goodwill",
        "invoice_number": "POS-2026-0001",   (optional)
        "apply_immediately": true,           (optional, default true)
        "notes": "..."                       (optional)
    }

    Returns:
        200: Credit note issued (or replayed)
        400: INVALID_PAYLOAD, CUSTOMER_MISMATCH
        404: CUSTOMER_NOT_FOUND, INVOICE_NOT_FOUND
    """
    try:
        result = credit_note_service.issue_credit_note(_read_json())
        return jsonify(result.to_dict()), 200
    except PosError as e:
        return _error_response(e)
    except ValidationError as e:
        return _error_response(InvalidPayloadError(str(e)))
    except Exception as e:
        return _internal_error("Failed to process POS credit note", e)


# =============================================================================
# CUSTOMER DIRECTORY
# =============================================================================

@pos_bp.get("/customers")
@require_pos_api_key
@rate_limited("pos_customers_rate_limiter", client_key)
def list_customers_route():
    """
    Customers with credit limit, outstanding balance and available credit.

    Query params:
        search: matches company name, code or contact (max 100 chars)
        code: exact customer code
        active_only: "false" to include inactive customers (default true)
    """
    search = (request.args.get("search") or "").strip() or None
    code = (request.args.get("code") or "").strip() or None
    active_only = (request.args.get("active_only") or "true").strip().lower() not in ("false", "0", "no")

    if search and len(search) > MAX_SEARCH_LENGTH:
        return jsonify({
            "success": False,
            "error": "INVALID_REQUEST",
            "message": f"Search term too long (max {MAX_SEARCH_LENGTH} characters)",
        }), 400

    try:
        customers = customer_service.list_customers_with_balance(
            search=search,
            code=code,
            active_only=active_only,
        )
        return jsonify({"success": True, "customers": customers, "count": len(customers)}), 200
    except Exception as e:
        return _internal_error("Failed to list POS customers", e)


# =============================================================================
# SALE LOG
# =============================================================================

@pos_bp.get("/sales")
@require_pos_api_key
def list_sales_route():
    """
    Recent sale log rows, newest first.

    Query params:
        status: completed | failed
        terminal: terminal id
        limit: max rows (default 50, max 200)
    """
    try:
        limit = min(max(int(request.args.get("limit", 50)), 1), MAX_LIST_LIMIT)
    except ValueError:
        return _error_response(InvalidPayloadError("limit must be an integer"))

    try:
        sales = pos_sale_service.list_sales(
            status=request.args.get("status") or None,
            terminal=request.args.get("terminal") or None,
            limit=limit,
        )
        return jsonify({"success": True, "sales": [s.to_dict() for s in sales], "count": len(sales)}), 200
    except Exception as e:
        return _internal_error("Failed to list POS sales", e)


@pos_bp.get("/sales/stats")
@require_pos_api_key
def sales_stats_route():
    try:
        return jsonify({"success": True, **pos_sale_service.get_sales_stats()}), 200
    except Exception as e:
        return _internal_error("Failed to compute POS sale stats", e)


@pos_bp.get("/sales/<transaction_id>")
@require_pos_api_key
def get_sale_route(transaction_id: str):
    try:
        sale = pos_sale_service.get_sale_by_transaction_id(transaction_id)
        return jsonify({"success": True, "sale": sale.to_dict(include_items=True)}), 200
    except PosError as e:
        return _error_response(e)
    except Exception as e:
        return _internal_error("Failed to load POS sale", e)
