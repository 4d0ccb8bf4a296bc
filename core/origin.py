"""
origin.py -- Reverse-proxy pass-through to the protected origin.

Only requests that already carry a valid session cookie get here. The request
is forwarded as-is and the origin's answer is returned unmodified: status,
headers (minus hop-by-hop) and the raw, still-encoded body bytes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

import requests

logger = logging.getLogger("edgegate.origin")

# RFC 9110 section 7.6.1 connection-specific headers, plus Host (rewritten by
# requests for the origin) and Content-Length (recomputed on both legs).
_HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)


class OriginError(Exception):
    """The origin could not be reached."""


@dataclass
class OriginResponse:
    status_code: int
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""


def _end_to_end(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    return [(k, v) for k, v in headers if k.lower() not in _HOP_BY_HOP]


class OriginClient:
    def __init__(self, base_url: str, timeout: float = 30.0, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def forward(
        self,
        method: str,
        path: str,
        query: str = "",
        headers: Iterable[tuple[str, str]] = (),
        body: bytes = b"",
    ) -> OriginResponse:
        """Send one request to the origin and return its response verbatim.

        Redirects are not followed -- a 3xx from the origin is the answer the
        client should see.
        """
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"
        try:
            resp = self._session.request(
                method,
                url,
                headers=dict(_end_to_end(headers)),
                data=body or None,
                timeout=self.timeout,
                allow_redirects=False,
                stream=True,
            )
        except requests.RequestException as e:
            raise OriginError(f"{method} {path}: {e}") from e
        try:
            # decode_content=False keeps Content-Encoding and the body in sync
            raw = resp.raw.read(decode_content=False)
        finally:
            resp.close()
        return OriginResponse(
            status_code=resp.status_code,
            headers=_end_to_end(resp.raw.headers.items()),
            body=raw,
        )
