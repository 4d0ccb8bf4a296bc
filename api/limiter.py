"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and web/routes.py (to
apply the per-route limit on POST /validate_captcha with @limiter.limit()).

Keyed on the same client IP the gate binds passes to (auth.dependencies),
not the socket peer: behind a CDN every request arrives from a handful of
edge addresses, and limiting on those would throttle unrelated users together.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from auth.dependencies import edge_client_ip


def client_identity_key(request: Request) -> str:
    return edge_client_ip(request) or get_remote_address(request)


limiter = Limiter(key_func=client_identity_key, storage_uri="memory://")
