"""
Client IP resolution for FastAPI requests.

Used as the rate-limit key. Forwarding headers are read only when the
deployment sits behind a reverse proxy that sets them.
"""

from __future__ import annotations

from fastapi import Request

PROXY_HEADERS: tuple[str, ...] = (
    "CF-Connecting-IP",  # Cloudflare
    "True-Client-IP",  # Akamai & others
    "X-Forwarded-For",  # first entry is the original client
    "X-Real-IP",  # nginx
)


def get_client_ip(request: Request, *, trust_proxy_headers: bool = False) -> str:
    """Return the client address, or ``""`` when none is known."""
    if trust_proxy_headers:
        for header in PROXY_HEADERS:
            value = request.headers.get(header)
            if value:
                client_ip = value.split(",")[0].strip()
                if client_ip:
                    return client_ip

    return request.client.host if request.client else ""
