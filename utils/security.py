"""Security helpers for headers, input sanitation, and public references."""
import html
import secrets
from typing import Mapping

from flask import request


def sanitize_input(data: Mapping) -> dict:
    """Return a sanitized copy of incoming query data to reduce injection risk."""
    sanitized = {}
    for key, value in data.items():
        sanitized[html.escape(str(key))] = html.escape(str(value).strip())
    return sanitized


def apply_security_headers(response, force_https: bool = False):
    """Apply security headers for a JSON-only API."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Cache-Control", "no-store")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response


def generate_reference(prefix: str, length: int = 8) -> str:
    """Short public reference such as CMP-1A2B3C4D or ANON-9F8E7D6C."""
    return f"{prefix}-{secrets.token_hex(length // 2).upper()}"
