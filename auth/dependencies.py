"""
auth/dependencies.py -- Per-request helpers: who is calling, and with what cookie.

Client identity is the caller IP as reported by the edge in a trusted header
(CF-Connecting-IP, X-Real-IP by default). It is never taken from anything the
client controls directly. When no header is present the identity is None:
the request still proceeds, but any pass minted for it can never validate
(fail-closed).

try_get_session() is the soft check used by the gate's catch-all route.

Layer rule: no imports from web/. May import from fastapi because these
helpers read Starlette Request objects.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request

logger = logging.getLogger("edgegate.auth")


def edge_client_ip(request: Request) -> Optional[str]:
    """Resolve the caller IP the way the gate trusts it. Silent; see get_client_identity."""
    settings = request.app.state.settings
    for header in settings.client_ip_headers:
        value = request.headers.get(header, "").strip()
        if value:
            return value
    if settings.trust_peer_address and request.client:
        return request.client.host
    return None


def get_client_identity(request: Request) -> Optional[str]:
    """Return the caller IP from the first non-empty trusted header, or None."""
    identity = edge_client_ip(request)
    if identity is not None:
        return identity
    settings = request.app.state.settings
    logger.warning(
        "No client IP found in headers %s for %s %s",
        settings.client_ip_headers,
        request.method,
        request.url.path,
    )
    return None


def get_session_cookie(request: Request) -> Optional[str]:
    """Return the raw session cookie value. Unparseable Cookie headers count as absent."""
    return request.cookies.get(request.app.state.settings.cookie_name) or None


def try_get_session(request: Request) -> bool:
    """True when the request carries a valid pass for its client identity.

    Never raises -- every cookie failure mode collapses into False so the
    client cannot distinguish them.
    """
    cookie = get_session_cookie(request)
    if cookie is None:
        return False
    return request.app.state.gate.is_authenticated(cookie, get_client_identity(request))
