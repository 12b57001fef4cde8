"""Shared request helpers for the blueprints.

current_user:   actor from X-User / X-Forwarded-User, default "system"
json_body:      tuple-return pattern, (data, None) or (None, error_response)
query_bool:     tri-state boolean query parameter
"""
from flask import request

from app.utils.errors import E, api_error


def current_user() -> str:
    """Best-effort current user extraction (no auth enforcement)."""
    return (
        request.headers.get("X-User", "").strip()
        or request.headers.get("X-Forwarded-User", "").strip()
        or "system"
    )


def json_body():
    """Return the request's JSON object or a 400 error tuple.

    Usage:
        data, err = json_body()
        if err:
            return err
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_REQUIRED, "Request body is required")
    return data, None


def query_bool(name):
    """``?flag=true|false`` → True / False; absent or unrecognised → None."""
    raw = request.args.get(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return None
