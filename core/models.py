"""
Domain dataclasses for the gate.

Pure data containers. The codec, verifier and policy modules do the work;
route handlers translate these into HTTP responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SessionToken:
    """Decoded content of the session cookie.

    client_identity is the caller IP at mint time. An empty string means no
    identity was visible when the token was minted; such a token never
    validates.
    """

    client_identity: str
    expires_at: int  # Unix seconds


@dataclass(frozen=True)
class Assessment:
    """Normalized verdict from the risk verifier, whatever its transport."""

    issued_at: float  # Unix seconds
    is_anonymized: bool
    client_identity: Optional[str] = None
    service_name: Optional[str] = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str  # "ok", "stale", "anonymized", "identity_mismatch"
    service_name: Optional[str] = None
