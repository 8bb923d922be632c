"""CORS header computation, applied to every response including errors and preflights."""
from __future__ import annotations

from typing import Optional, Sequence

ALLOW_METHODS: str = "GET,POST,OPTIONS"
ALLOW_HEADERS: str = "Content-Type,Authorization"


def resolve_allowed_origin(request_origin: Optional[str], allowed_origins: Sequence[str]) -> str:
    """Pick the ``Access-Control-Allow-Origin`` value.

    Rules, in order:
        - empty allow-list or one containing ``*``: echo the request origin
        - request origin present in the allow-list: echo it
        - otherwise the first configured origin
        - no origin to echo: ``*``
    """
    if not allowed_origins or "*" in allowed_origins:
        return request_origin or "*"
    if request_origin and request_origin in allowed_origins:
        return request_origin
    return allowed_origins[0]


def cors_headers(request_origin: Optional[str], allowed_origins: Sequence[str]) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": resolve_allowed_origin(request_origin, allowed_origins),
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
    }
