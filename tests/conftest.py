"""
tests/conftest.py -- Shared test fixtures for EdgeGate integration tests.

This module provides:
  - FakeClock / FakeVerifier / FakeOrigin: in-process stand-ins for the wall
    clock, the assessment API and the protected origin
  - _patch_lifespan(): wires them into app.state, bypassing real startup
  - make_gate: factory yielding a running TestClient for given settings
  - gate: the default gate (aead scheme, page-style challenge)

Environment variables must be set before any core/auth/api import so
get_settings() builds a valid Settings instead of raising in production mode.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import ExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

# CRITICAL: set before any app import -- settings are read at import time.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("COOKIE_SECRET", "7f" * 32)
os.environ.setdefault("VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("PUBLISHABLE_KEY", "test_publishable_key")
os.environ.setdefault("VERIFY_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.tokens import TokenCodec, build_codec
from core.config import Settings
from core.gate import Gate
from core.models import Assessment
from core.origin import OriginError, OriginResponse
from core.policy import AssessmentPolicy

CLIENT_IP = "203.0.113.7"
T0 = 1_700_000_000


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeVerifier:
    """Returns (or raises) whatever the test put in .result."""

    def __init__(self) -> None:
        self.result: Union[Assessment, Exception, None] = None
        self.bundles: list[str] = []

    def assess(self, bundle: str) -> Assessment:
        self.bundles.append(bundle)
        if isinstance(self.result, Exception):
            raise self.result
        assert self.result is not None, "test did not configure an assessment"
        return self.result


@dataclass
class FakeOrigin:
    response: OriginResponse = field(
        default_factory=lambda: OriginResponse(
            status_code=200,
            headers=[("content-type", "text/plain"), ("x-origin", "yes"), ("set-cookie", "a=1"), ("set-cookie", "b=2")],
            body=b"Example Domain",
        )
    )
    fail: bool = False
    calls: list[tuple] = field(default_factory=list)

    def forward(self, method, path, query="", headers=(), body=b""):
        self.calls.append((method, path, query, dict(headers), body))
        if self.fail:
            raise OriginError("connection refused")
        return self.response


@dataclass
class GateHarness:
    client: TestClient
    settings: Settings
    codec: TokenCodec
    clock: FakeClock
    verifier: FakeVerifier
    origin: FakeOrigin

    def headers(self, cookie: Optional[str] = None, ip: Optional[str] = CLIENT_IP) -> dict[str, str]:
        h = {}
        if ip is not None:
            h["CF-Connecting-IP"] = ip
        if cookie is not None:
            h["Cookie"] = f"{self.settings.cookie_name}={cookie}"
        return h

    def allow_next(self, **overrides) -> None:
        fields = {"issued_at": self.clock.now, "is_anonymized": False, "service_name": "none"}
        fields.update(overrides)
        self.verifier.result = Assessment(**fields)


def _patch_lifespan(settings: Settings, gate: Gate, origin: FakeOrigin):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.gate = gate
        app.state.origin = origin
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_gate() -> Generator[Callable[..., GateHarness], None, None]:
    """Factory: make_gate(**settings_overrides) -> running GateHarness.

    follow_redirects=False so redirect-style challenges can be asserted on.
    Every harness gets its own clock, verifier and origin.
    """
    original = app.router.lifespan_context
    with ExitStack() as stack:

        def factory(**overrides) -> GateHarness:
            settings = Settings(**overrides)
            clock = FakeClock()
            verifier = FakeVerifier()
            origin = FakeOrigin()
            codec = build_codec(settings)
            gate = Gate(
                codec=codec,
                policy=AssessmentPolicy(settings.exempted_services, settings.freshness_tolerance_seconds),
                verifier=verifier,
                clock=clock,
            )
            app.router.lifespan_context = _patch_lifespan(settings, gate, origin)
            client = stack.enter_context(TestClient(app, follow_redirects=False, raise_server_exceptions=True))
            return GateHarness(client, settings, codec, clock, verifier, origin)

        yield factory
    app.router.lifespan_context = original


@pytest.fixture
def gate(make_gate) -> GateHarness:
    return make_gate()
