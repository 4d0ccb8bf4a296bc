"""
gate.py -- The access decision, independent of the HTTP framework.

Gate wires the three collaborators together:
  TokenCodec        -- is the presented cookie a live pass for this caller?
  Verifier          -- what does the challenge bundle say about the caller?
  AssessmentPolicy  -- is that good enough to issue a pass?

Route handlers in web/routes.py own the HTTP mapping: challenge page, 403,
400/500, Set-Cookie. Nothing here touches Request or Response objects, so the
whole flow is testable with plain values and a fake clock.

State machine per request:
  no cookie / invalid cookie  -> Unauthenticated (challenge, never proxy)
  valid cookie                -> Authenticated   (proxy, never re-verify)
  POST bundle                 -> Verifying       (verifier, policy, mint)
Expiry is noticed lazily: the next request simply fails validation.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Optional

from auth.tokens import TokenCodec
from core.policy import AssessmentPolicy, PolicyDenied
from core.verifier import Verifier

logger = logging.getLogger("edgegate.gate")

Clock = Callable[[], float]


class Gate:
    def __init__(
        self,
        codec: TokenCodec,
        policy: AssessmentPolicy,
        verifier: Verifier,
        clock: Clock = time.time,
    ) -> None:
        self.codec = codec
        self.policy = policy
        self.verifier = verifier
        self.clock = clock

    def is_authenticated(self, cookie_value: Optional[str], identity: Optional[str]) -> bool:
        """True when cookie_value is a live pass bound to identity."""
        return self.codec.is_valid(cookie_value, identity, now=self.clock())

    def verify(self, bundle: str, identity: Optional[str]) -> str:
        """Run one verification round trip and return a fresh cookie value.

        Raises VerifierError when no Assessment could be obtained and
        PolicyDenied when the Assessment does not earn a pass. Nothing is
        minted unless the whole decision succeeds.
        """
        assessment = self.verifier.assess(bundle)
        decision = self.policy.decide(assessment, identity, now=self.clock())
        if not decision.allowed:
            logger.info(
                "Denied %s: %s (service=%s)",
                identity or "unknown client",
                decision.reason,
                decision.service_name,
            )
            raise PolicyDenied(decision)
        if not identity:
            logger.warning("Minting a pass without a client identity; it will never validate")
        return self.codec.mint(identity, now=self.clock())
