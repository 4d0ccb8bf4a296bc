"""
policy.py -- Decide whether a verified assessment earns a session pass.

Pure logic, no I/O. The exemption set is injected at construction so each
deployment (and each test) can carry its own allow-list.

Rules, in order:
  1. If the assessment carries the IP the verifier saw, it must match the IP
     the gate sees now. A bundle captured on one network cannot be replayed
     from another. Exemptions do not override this.
  2. Deny if the bundle is stale (|now - issued_at| > tolerance) or the caller
     is anonymized, unless the reported service is exempted. Known-benign
     relays (corporate VPN, OS private relay) always look anonymized, so
     without the allow-list their users would be blocked permanently.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from typing import Optional

from core.models import Assessment, Decision

DEFAULT_TOLERANCE_SECONDS = 5.0


class PolicyDenied(Exception):
    """Raised by the gate when the policy rejects an assessment."""

    def __init__(self, decision: Decision) -> None:
        self.decision = decision
        super().__init__(f"{decision.reason}: {decision.service_name or 'unknown service'}")


class AssessmentPolicy:
    def __init__(
        self,
        exempted_services: Iterable[str] = (),
        tolerance_seconds: float = DEFAULT_TOLERANCE_SECONDS,
    ) -> None:
        self.exempted_services = frozenset(exempted_services)
        self.tolerance_seconds = tolerance_seconds

    def is_exempt(self, service_name: Optional[str]) -> bool:
        return bool(service_name) and service_name in self.exempted_services

    def decide(self, assessment: Assessment, presented_identity: Optional[str], now: Optional[float] = None) -> Decision:
        """Return an allow/deny Decision for assessment."""
        current = time.time() if now is None else now
        service = assessment.service_name

        if assessment.client_identity is not None and assessment.client_identity != presented_identity:
            return Decision(allowed=False, reason="identity_mismatch", service_name=service)

        if self.is_exempt(service):
            return Decision(allowed=True, reason="ok", service_name=service)

        # negated so a NaN timestamp counts as stale
        if not abs(current - assessment.issued_at) <= self.tolerance_seconds:
            return Decision(allowed=False, reason="stale", service_name=service)
        if assessment.is_anonymized:
            return Decision(allowed=False, reason="anonymized", service_name=service)
        return Decision(allowed=True, reason="ok", service_name=service)
