"""
API request and response models for the gate's own endpoints.

These Pydantic v2 models define the HTTP contract. They are separate from the
dataclasses in core/models.py, which own the internal domain representation.
"""

from typing import Optional

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CaptchaSubmission(BaseModel):
    """Request body for POST /validate_captcha.

    captchaData is the opaque bundle produced by the challenge script. Its
    content is only meaningful to the verifier. The size cap keeps a hostile
    client from streaming megabytes into the verifier call.
    """

    captchaData: str = Field(min_length=1, max_length=16384)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope: {"error": {"code", "message", "detail"}}."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    cookie_scheme: str
    verifier_mode: str
