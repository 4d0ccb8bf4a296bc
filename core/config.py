"""
core/config.py -- Centralized gate configuration via pydantic-settings.

All environment variable reads for EdgeGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. cookie_secret -> COOKIE_SECRET). List and set fields are given as
      JSON, e.g. EXEMPTED_SERVICES='["WARP_VPN"]'.

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Implements the DEBUG-conditional COOKIE_SECRET policy: dev mode
      generates a key with a warning, production mode refuses to start.

Security notes:
  [S1] COOKIE_SECRET must be hex and decode to at least 32 bytes (256 bits).
       The AEAD scheme uses AES-256-GCM, so it needs exactly 32 bytes.

  [S2] In production mode a missing COOKIE_SECRET, VERIFY_TOKEN (remote
       verifier) or PRIVATE_KEY (local verifier) is a hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("edgegate.config")

DEFAULT_VERIFIER_URL = "https://decrypt.mcl.spur.us/api/v1/assessment"


class Settings(BaseSettings):
    """Gate settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments with only DEBUG=true set.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False

    # ------------------------------------------------------------------
    # Session cookie
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; the validator below
    # either generates a dev key or raises.
    cookie_secret: str = ""
    cookie_name: str = "MCLVALID"
    cookie_scheme: Literal["aead", "mac"] = "aead"
    cookie_samesite: Literal["strict", "lax"] = "strict"
    token_ttl_seconds: int = 3600

    # ------------------------------------------------------------------
    # Client identity
    # ------------------------------------------------------------------

    # Headers written by the edge (CDN / load balancer), checked in order.
    client_ip_headers: list[str] = ["CF-Connecting-IP", "X-Real-IP"]
    # Fall back to the TCP peer address. Only safe when nothing sits between
    # the client and the gate (local development).
    trust_peer_address: bool = False

    # ------------------------------------------------------------------
    # Risk verifier
    # ------------------------------------------------------------------

    verifier_mode: Literal["remote", "local"] = "remote"
    verifier_url: str = DEFAULT_VERIFIER_URL
    verify_token: str = ""
    private_key: str = ""  # PEM, local mode only
    verifier_timeout_seconds: float = 3.0

    # ------------------------------------------------------------------
    # Assessment policy
    # ------------------------------------------------------------------

    freshness_tolerance_seconds: float = 5.0
    exempted_services: frozenset[str] = frozenset({"WARP_VPN", "ICLOUD_RELAY_PROXY"})

    # ------------------------------------------------------------------
    # Challenge page
    # ------------------------------------------------------------------

    publishable_key: str = ""
    challenge_mode: Literal["page", "redirect"] = "page"

    # ------------------------------------------------------------------
    # Origin
    # ------------------------------------------------------------------

    origin_url: str = "http://127.0.0.1:8080"
    origin_timeout_seconds: float = 30.0

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    verify_rate_limit: str = "20/minute"
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_cookie_secret(self) -> "Settings":
        """Enforce the COOKIE_SECRET policy [S1] [S2].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Cookies will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start without a key. A random key per
            process would also break cookies across replicas behind one edge.
        """
        if not self.cookie_secret:
            if self.debug:
                self.cookie_secret = secrets.token_hex(32)
                logger.warning("Using auto-generated COOKIE_SECRET. Cookies will not persist across restarts.")
            else:
                raise ValueError(
                    "COOKIE_SECRET is required in production mode. "
                    "Generate one with `python main.py gen-secret`. "
                    "To run in development mode, set DEBUG=true."
                )
        try:
            key = bytes.fromhex(self.cookie_secret)
        except ValueError:
            raise ValueError("COOKIE_SECRET must be a hex string.") from None
        if len(key) < 32:
            raise ValueError("COOKIE_SECRET must decode to at least 32 bytes.")
        if self.cookie_scheme == "aead" and len(key) != 32:
            raise ValueError("COOKIE_SECRET must decode to exactly 32 bytes for the aead scheme.")
        if self.token_ttl_seconds <= 0:
            raise ValueError("TOKEN_TTL_SECONDS must be positive.")
        return self

    @model_validator(mode="after")
    def validate_verifier_credentials(self) -> "Settings":
        """Each verifier mode needs its own credential [S2]."""
        missing = None
        if self.verifier_mode == "remote" and not self.verify_token:
            missing = "VERIFY_TOKEN"
        elif self.verifier_mode == "local" and not self.private_key:
            missing = "PRIVATE_KEY"
        if missing:
            if not self.debug:
                raise ValueError(f"{missing} is required for VERIFIER_MODE={self.verifier_mode}.")
            logger.warning("%s is not set -- every verification will fail.", missing)
        return self

    @property
    def cookie_key(self) -> bytes:
        return bytes.fromhex(self.cookie_secret)


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
