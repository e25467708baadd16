from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from ..extensions import db
from ..models import SystemConfig


KEY_PRICE_TOLERANCE = "pos_price_tolerance"
KEY_REQUIRE_STOCK = "pos_require_stock"
KEY_WALK_IN_CUSTOMER_CODE = "walk_in_customer_code"
KEY_VALIDATE_CREDIT_LIMIT = "pos_validate_credit_limit"
KEY_DEFAULT_CURRENCY = "default_currency"

POS_KEYS = [
    KEY_PRICE_TOLERANCE,
    KEY_REQUIRE_STOCK,
    KEY_WALK_IN_CUSTOMER_CODE,
    KEY_VALIDATE_CREDIT_LIMIT,
    KEY_DEFAULT_CURRENCY,
]

DEFAULT_PRICE_TOLERANCE = Decimal("10")
DEFAULT_WALK_IN_CUSTOMER_CODE = "WALK-IN"
DEFAULT_CURRENCY = "USD"


class SettingsError(ValueError):
    pass


@dataclass(frozen=True)
class PosSettings:
    price_tolerance_percent: Decimal = DEFAULT_PRICE_TOLERANCE
    require_stock: bool = True
    walk_in_customer_code: str = DEFAULT_WALK_IN_CUSTOMER_CODE
    validate_credit_limit: bool = False
    default_currency: str = DEFAULT_CURRENCY


def _clean(value: str | None) -> str | None:
    """Config values may be stored JSON-encoded ('"USD"'); strip the quotes."""
    if value is None:
        return None
    text = str(value).replace('"', "").strip()
    return text or None


def get_config_values(keys: list[str]) -> dict[str, str]:
    rows = db.session.query(SystemConfig).filter(SystemConfig.key.in_(keys)).all()
    values = {}
    for row in rows:
        cleaned = _clean(row.value)
        if cleaned is not None:
            values[row.key] = cleaned
    return values


def _parse_tolerance(raw: str) -> Decimal:
    try:
        tolerance = Decimal(raw)
    except InvalidOperation:
        raise SettingsError(f"{KEY_PRICE_TOLERANCE} must be a number")
    if not tolerance.is_finite() or tolerance < 0:
        raise SettingsError(f"{KEY_PRICE_TOLERANCE} must be a non-negative number")
    return tolerance


def _parse_currency(raw: str) -> str:
    code = raw.upper()
    if len(code) != 3 or not code.isascii() or not code.isalpha():
        raise SettingsError(f"{KEY_DEFAULT_CURRENCY} must be a 3-letter currency code")
    return code


def get_pos_settings() -> PosSettings:
    """
    Resolve POS ingestion settings from system_config.

    Missing or blank keys fall back to defaults. require_stock is on unless
    explicitly "false"; validate_credit_limit is off unless explicitly "true".
    """
    values = get_config_values(POS_KEYS)

    tolerance = DEFAULT_PRICE_TOLERANCE
    if KEY_PRICE_TOLERANCE in values:
        tolerance = _parse_tolerance(values[KEY_PRICE_TOLERANCE])

    currency = DEFAULT_CURRENCY
    if KEY_DEFAULT_CURRENCY in values:
        currency = _parse_currency(values[KEY_DEFAULT_CURRENCY])

    return PosSettings(
        price_tolerance_percent=tolerance,
        require_stock=values.get(KEY_REQUIRE_STOCK, "true").lower() != "false",
        walk_in_customer_code=values.get(KEY_WALK_IN_CUSTOMER_CODE, DEFAULT_WALK_IN_CUSTOMER_CODE),
        validate_credit_limit=values.get(KEY_VALIDATE_CREDIT_LIMIT, "false").lower() == "true",
        default_currency=currency,
    )


def set_config(key: str, value: str | None, description: str | None = None) -> SystemConfig:
    if not key or not key.strip():
        raise SettingsError("key is required")
    key = key.strip()
    if key == KEY_PRICE_TOLERANCE and _clean(value) is not None:
        _parse_tolerance(_clean(value))
    if key == KEY_DEFAULT_CURRENCY and _clean(value) is not None:
        _parse_currency(_clean(value))

    row = db.session.query(SystemConfig).filter_by(key=key).first()
    if row is None:
        row = SystemConfig(key=key)
        db.session.add(row)
    row.value = value
    if description is not None:
        row.description = description
    db.session.commit()
    return row


def list_config() -> list[SystemConfig]:
    return db.session.query(SystemConfig).order_by(SystemConfig.key.asc()).all()
