"""
verifier.py -- Turn an opaque challenge bundle into a normalized Assessment.

Two transports, one interface:
  RemoteVerifier -- POST the bundle to the assessment API, which decrypts it
                    and answers with JSON.
  LocalVerifier  -- decrypt the bundle ourselves. The bundle is a compact JWE
                    (ECDH-ES key agreement) encrypted to the operator's public
                    key; the plaintext is the same JSON document.

Both hand the JSON to parse_assessment(), so the policy never knows which
transport produced an Assessment.

Failures are never retried. A stale bundle would fail the freshness check on
a second attempt anyway -- the client must run a new challenge.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import requests
from authlib.jose import JsonWebEncryption, JsonWebKey
from authlib.jose.errors import JoseError
from cryptography.exceptions import InvalidTag

from core.config import DEFAULT_VERIFIER_URL
from core.models import Assessment

logger = logging.getLogger("edgegate.verifier")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class VerifierError(Exception):
    """Verification could not produce an Assessment. No cookie is issued."""

    status_code = 500


class BundleError(VerifierError):
    """The bundle itself was rejected: undecryptable, or its fields are unusable."""

    status_code = 400


class VerifierTransportError(VerifierError):
    """The assessment API was unreachable, timed out, or answered garbage."""

    status_code = 500


# ---------------------------------------------------------------------------
# Assessment parsing
# ---------------------------------------------------------------------------


def _parse_timestamp(value: Any) -> float:
    if isinstance(value, bool):
        raise BundleError("ts is not a timestamp")
    if isinstance(value, (int, float)):
        try:
            ts = float(value)
        except OverflowError:
            raise BundleError("ts out of range") from None
        if not math.isfinite(ts):
            raise BundleError(f"ts is not finite: {value!r}")
        return ts
    if isinstance(value, str) and value.strip():
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            raise BundleError(f"unparseable ts: {value!r}") from None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp()
    raise BundleError("assessment has no ts")


def parse_assessment(data: Any) -> Assessment:
    """Map the assessment JSON document onto an Assessment.

    Consumed fields: ts (ISO-8601 string or Unix seconds), anon (bool),
    ip (optional string), service (optional string). Everything else in the
    document is ignored.
    """
    if not isinstance(data, dict):
        raise BundleError("assessment is not a JSON object")
    anon = data.get("anon")
    if not isinstance(anon, bool):
        raise BundleError("assessment has no boolean anon field")
    ip = data.get("ip")
    service = data.get("service")
    return Assessment(
        issued_at=_parse_timestamp(data.get("ts")),
        is_anonymized=anon,
        client_identity=str(ip) if ip else None,
        service_name=str(service) if service else None,
    )


# ---------------------------------------------------------------------------
# Verifier interface
# ---------------------------------------------------------------------------


class Verifier(Protocol):
    def assess(self, bundle: str) -> Assessment: ...


class RemoteVerifier:
    """Send the bundle to the hosted assessment API."""

    def __init__(
        self,
        token: str,
        url: str = DEFAULT_VERIFIER_URL,
        timeout: float = 3.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._token = token
        self._session = session or requests.Session()
        # Known endpoint, 3 hops is generous.
        self._session.max_redirects = 3

    def assess(self, bundle: str) -> Assessment:
        try:
            resp = self._session.post(
                self.url,
                data=bundle.encode("utf-8"),
                headers={"Content-Type": "text/plain", "Token": self._token},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise VerifierTransportError(f"assessment API timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise VerifierTransportError(f"assessment API unreachable: {e}") from e

        if 400 <= resp.status_code < 500:
            raise BundleError(f"assessment API rejected bundle: HTTP {resp.status_code}")
        if resp.status_code != 200:
            raise VerifierTransportError(f"assessment API failed: HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise VerifierTransportError("assessment API returned non-JSON body") from e
        return parse_assessment(data)


class LocalVerifier:
    """Decrypt the bundle with the operator's EC private key."""

    def __init__(self, private_key_pem: str) -> None:
        self._key = None
        if private_key_pem:
            try:
                self._key = JsonWebKey.import_key(private_key_pem, {"kty": "EC"})
            except Exception as e:
                raise ValueError(f"PRIVATE_KEY is not a usable EC private key: {e}") from e
        else:
            logger.warning("LocalVerifier started without a private key")
        self._jwe = JsonWebEncryption()

    def assess(self, bundle: str) -> Assessment:
        if self._key is None:
            raise VerifierTransportError("no private key configured for bundle decryption")
        try:
            result = self._jwe.deserialize_compact(bundle, self._key)
        except (JoseError, InvalidTag, ValueError, KeyError, TypeError) as e:
            raise BundleError(f"could not decrypt bundle: {e}") from e
        try:
            data = json.loads(result["payload"])
        except (ValueError, TypeError) as e:
            raise BundleError("bundle plaintext is not JSON") from e
        return parse_assessment(data)


def build_verifier(settings) -> Verifier:
    """Return the verifier selected by VERIFIER_MODE."""
    if settings.verifier_mode == "local":
        return LocalVerifier(settings.private_key)
    return RemoteVerifier(
        settings.verify_token,
        url=settings.verifier_url,
        timeout=settings.verifier_timeout_seconds,
    )
