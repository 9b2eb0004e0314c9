"""
CORS headers for every response.
A declared Origin is reflected with credentials allowed; without one the
wildcard is used (browsers refuse credentials with "*").
"""

from __future__ import annotations

ALLOW_HEADERS = "Content-Type, X-Session-ID"
ALLOW_METHODS = "GET,POST,OPTIONS"


def cors_headers(origin: str | None, session_header: str = "X-Session-ID") -> dict[str, str]:
    headers: dict[str, str] = {}
    if origin:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
        headers["Vary"] = "Origin"
    else:
        headers["Access-Control-Allow-Origin"] = "*"

    allow_headers = ALLOW_HEADERS
    if session_header.lower() != "x-session-id":
        allow_headers = f"Content-Type, {session_header}"
    headers["Access-Control-Allow-Headers"] = allow_headers
    headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
    return headers
