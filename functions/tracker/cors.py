"""
Cross-origin response headers shared by both transports.
"""

from __future__ import annotations

from typing import Optional, Sequence

ALLOW_METHODS = "GET,POST,DELETE,OPTIONS"
ALLOW_HEADERS = "Authorization,Content-Type"


def allow_origin_value(origin: Optional[str], allowed_origins: Sequence[str]) -> Optional[str]:
    wildcard = "*" in allowed_origins
    if not origin:
        return "*" if wildcard else None
    if wildcard or origin in allowed_origins:
        # Credentialed requests need the concrete origin rather than "*".
        return origin
    return "null"


def cors_headers(origin: Optional[str], allowed_origins: Sequence[str]) -> dict[str, str]:
    headers = {
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
        "Vary": "Origin",
    }
    allow_origin = allow_origin_value(origin, allowed_origins)
    if allow_origin is not None:
        headers["Access-Control-Allow-Origin"] = allow_origin
    return headers
