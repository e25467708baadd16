# Overview: Request decorators for terminal-facing routes (API key, rate limiting).

import hmac
from functools import wraps

from flask import current_app, jsonify, request


def _error(code: str, message: str, status: int):
    return jsonify({"success": False, "error": code, "message": message}), status


def require_pos_api_key(f):
    """
    Require the shared terminal secret in the x-pos-api-key header.

    Skipped when POS_API_KEY is not configured. Comparison is constant-time.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("POS_API_KEY")
        if expected:
            provided = request.headers.get("x-pos-api-key") or ""
            if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
                current_app.logger.warning(
                    "Rejected POS request to %s from %s: invalid API key",
                    request.path,
                    request.remote_addr,
                )
                return _error("UNAUTHORIZED", "Invalid or missing API key", 401)

        return f(*args, **kwargs)

    return decorated_function


def terminal_key() -> str:
    """Rate-limit key for sale/payment ingestion: the terminal id in the body."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        terminal_id = payload.get("pos_terminal_id")
        if isinstance(terminal_id, str) and terminal_id:
            return terminal_id
    return "unknown"


def client_key() -> str:
    """Rate-limit key for directory lookups: the API key, else the caller address."""
    return request.headers.get("x-pos-api-key") or request.remote_addr or "unknown"


def rate_limited(extension_key: str, key_func=terminal_key):
    """
    Reject with 429 once the limiter installed at app.extensions[extension_key]
    refuses the request's key.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            limiter = current_app.extensions.get(extension_key)
            if limiter is not None:
                key = key_func()
                if not limiter.allow(key):
                    current_app.logger.warning("Rate limit exceeded for %s on %s", key, request.path)
                    return _error("RATE_LIMIT_EXCEEDED", "Too many requests. Please try again later.", 429)

            return f(*args, **kwargs)

        return decorated_function

    return decorator
