"""
auth/tokens.py -- Session cookie codec: mint and validate the gate's pass.

Security design decisions:
  Payload: "identity|expiresAt" where identity is the caller IP at mint time
       and expiresAt is integer Unix seconds (mint time + TTL). The token is
       the only state -- there is no server-side session table.

  AEAD scheme (default): AES-256-GCM with a fresh 96-bit random nonce per
       mint. Wire form is "nonce_hex.ciphertext_hex". Gives confidentiality
       and integrity; the IP inside is not readable by the client.

  MAC scheme: HMAC-SHA256 over the plaintext payload. Wire form is
       "identity|expiresAt:mac_hex". Integrity and authenticity only.

  Hex is lowercase only. bytes.fromhex() also accepts uppercase, which would
       let a single-character flip ("a" -> "A") decode to the same bytes and
       still validate. Strict parsing makes every flip detectable [T1].

  Errors: validate() raises a specific InvalidToken subclass so tests and the
       CLI can tell failures apart. The gate collapses all of them into
       "invalid" -- the client never learns which check failed [T2].

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.models import SessionToken

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("edgegate.tokens")

DEFAULT_TTL = 3600
_NONCE_BYTES = 12
_HEX_RE = re.compile(r"[0-9a-f]+")
_MAC_HEX_LEN = hashlib.sha256().digest_size * 2


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class InvalidToken(Exception):
    """Base class for every cookie validation failure."""

    reason = "invalid"


class MalformedCookie(InvalidToken):
    reason = "malformed"


class CryptoFailure(InvalidToken):
    reason = "crypto_failure"


class IdentityMismatch(InvalidToken):
    reason = "identity_mismatch"


class Expired(InvalidToken):
    reason = "expired"


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _hex_to_bytes(value: str) -> bytes:
    if len(value) % 2 or not _HEX_RE.fullmatch(value):
        raise MalformedCookie("not lowercase hex")
    return bytes.fromhex(value)


def _encode_payload(identity: str, expires_at: int) -> str:
    return f"{identity}|{expires_at}"


def _decode_payload(payload: str) -> SessionToken:
    # rpartition: the identity is everything before the last "|"
    identity, sep, expiry = payload.rpartition("|")
    if not sep or not expiry.isdigit():
        raise MalformedCookie("bad payload layout")
    return SessionToken(client_identity=identity, expires_at=int(expiry))


# ---------------------------------------------------------------------------
# Codec interface
# ---------------------------------------------------------------------------


class TokenCodec(ABC):
    """Mint and validate session cookie values.

    Subclasses implement only the wire encoding (_seal / _open). Expiry and
    identity binding are checked here so both schemes enforce them the same
    way.
    """

    scheme = ""

    def __init__(self, key: bytes, ttl: int = DEFAULT_TTL) -> None:
        if len(key) < 32:
            raise ValueError("Cookie key must be at least 32 bytes")
        self._key = key
        self.ttl = ttl

    @abstractmethod
    def _seal(self, payload: str) -> str:
        """Encode the plaintext payload into a cookie value."""

    @abstractmethod
    def _open(self, value: str) -> str:
        """Return the authenticated plaintext payload or raise InvalidToken."""

    def mint(self, identity: Optional[str], now: Optional[float] = None) -> str:
        """Return a cookie value for identity that expires ttl seconds from now.

        A missing identity is encoded as the empty string. validate() rejects
        empty identities, so the resulting cookie can never grant access.
        """
        issued = int(time.time() if now is None else now)
        return self._seal(_encode_payload(identity or "", issued + self.ttl))

    def validate(self, value: str, presented_identity: Optional[str], now: Optional[float] = None) -> SessionToken:
        """Decode value and check it against the caller's identity and the clock.

        Raises MalformedCookie, CryptoFailure, IdentityMismatch or Expired.
        Returns the decoded SessionToken on success.

        Expiry has whole-second granularity: mint() floors its clock and so
        does this check. A pass minted at a fractional time therefore expires
        up to one second early, never late.
        """
        if not value:
            raise MalformedCookie("empty value")
        token = _decode_payload(self._open(value))
        if not token.client_identity or not presented_identity or token.client_identity != presented_identity:
            raise IdentityMismatch(f"expected {token.client_identity!r}, got {presented_identity!r}")
        current = int(time.time() if now is None else now)
        if current >= token.expires_at:
            raise Expired(f"expired at {token.expires_at}")
        return token

    def is_valid(self, value: Optional[str], presented_identity: Optional[str], now: Optional[float] = None) -> bool:
        """Collapse validate() into a boolean [T2]. Failure reasons go to DEBUG logs only."""
        if not value:
            return False
        try:
            self.validate(value, presented_identity, now)
        except InvalidToken as e:
            logger.debug("Rejected session cookie (%s): %s", e.reason, e)
            return False
        return True


# ---------------------------------------------------------------------------
# AEAD scheme -- AES-256-GCM
# ---------------------------------------------------------------------------


class AeadTokenCodec(TokenCodec):
    scheme = "aead"

    def __init__(self, key: bytes, ttl: int = DEFAULT_TTL) -> None:
        if len(key) != 32:
            raise ValueError("AES-256-GCM key must be exactly 32 bytes")
        super().__init__(key, ttl)
        self._aesgcm = AESGCM(key)

    def _seal(self, payload: str) -> str:
        nonce = os.urandom(_NONCE_BYTES)
        ciphertext = self._aesgcm.encrypt(nonce, payload.encode("utf-8"), None)
        return f"{nonce.hex()}.{ciphertext.hex()}"

    def _open(self, value: str) -> str:
        nonce_hex, sep, ciphertext_hex = value.partition(".")
        if not sep or not nonce_hex or not ciphertext_hex or "." in ciphertext_hex:
            raise MalformedCookie("expected nonce.ciphertext")
        nonce = _hex_to_bytes(nonce_hex)
        ciphertext = _hex_to_bytes(ciphertext_hex)
        if len(nonce) != _NONCE_BYTES:
            raise MalformedCookie("bad nonce length")
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise CryptoFailure("decryption failed") from None
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedCookie("payload is not utf-8") from None


# ---------------------------------------------------------------------------
# MAC scheme -- HMAC-SHA256 over a readable payload
# ---------------------------------------------------------------------------


class MacTokenCodec(TokenCodec):
    scheme = "mac"

    def _mac(self, payload: str) -> str:
        return hmac.new(self._key, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def _seal(self, payload: str) -> str:
        return f"{payload}:{self._mac(payload)}"

    def _open(self, value: str) -> str:
        # rpartition: IPv6 identities contain ":" too
        payload, sep, mac_hex = value.rpartition(":")
        if not sep or not payload or len(mac_hex) != _MAC_HEX_LEN or not _HEX_RE.fullmatch(mac_hex):
            raise MalformedCookie("expected payload:mac")
        if not hmac.compare_digest(self._mac(payload), mac_hex):
            raise CryptoFailure("mac mismatch")
        return payload


_CODECS: dict[str, type[TokenCodec]] = {
    AeadTokenCodec.scheme: AeadTokenCodec,
    MacTokenCodec.scheme: MacTokenCodec,
}


def build_codec(settings: Settings) -> TokenCodec:
    """Return the codec selected by COOKIE_SCHEME, keyed by COOKIE_SECRET."""
    return _CODECS[settings.cookie_scheme](settings.cookie_key, ttl=settings.token_ttl_seconds)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_session_cookie(response, name: str, value: str, max_age: int, samesite: str = "strict") -> None:
    """Write the session pass as a cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    secure=True: always -- the gate sits behind TLS at the edge.
    samesite: "strict" by default. "lax" lets the cookie ride on top-level
        cross-site navigations, at the cost of weaker CSRF protection.
    max_age: matches the token expiry so both expire together.
    """
    response.set_cookie(
        name,
        value=value,
        max_age=max_age,
        path="/",
        secure=True,
        httponly=True,
        samesite=samesite,
    )
