"""
web/routes.py -- The gate's HTTP surface: challenge, verification, pass-through.

Route registration order matters. The catch-all proxy route must be the last
route registered, after every gate-owned path, or it swallows them.

Routes:
  GET  /captcha_page.html   -- challenge page (target of redirect-style challenges)
  GET  /denied              -- denial page shown after a 403 from verification
  POST /validate_captcha    -- verify a challenge bundle, issue the session cookie
  *    /{path}              -- valid cookie: proxy to origin; otherwise challenge

Error policy:
  Cookie failures of every kind render the challenge page -- never a distinct
  error, never the origin. Verification failures are explicit: 403 for a
  policy denial, 400/500 for verifier failures, no cookie in either case.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode, urlsplit

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import CaptchaSubmission, ErrorDetail
from auth.dependencies import get_client_identity, try_get_session
from auth.tokens import set_session_cookie
from core.config import get_settings
from core.origin import OriginError
from core.policy import PolicyDenied
from core.verifier import BundleError, VerifierError

logger = logging.getLogger("edgegate.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

_PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-challenge redirect target. Only accept relative paths.

    Rejects absolute and protocol-relative URLs. Also rejects any backslash or
    control character, since browsers read "/\\host" as "//host" and
    drop tabs and newlines before parsing.
    """
    if not next_url or not next_url.startswith("/") or next_url.startswith("//"):
        return "/"
    if "\\" in next_url or any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in next_url):
        return "/"
    parts = urlsplit(next_url)
    if parts.scheme or parts.netloc:
        return "/"
    return next_url


def _local_url(request: Request) -> str:
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


def _challenge_page(request: Request, return_url: str) -> Response:
    response = templates.TemplateResponse(
        request,
        "challenge.html",
        {
            "publishable_key": request.app.state.settings.publishable_key,
            "return_url": _safe_next(return_url),
        },
    )
    response.headers["Cache-Control"] = "no-store"
    return response


def _challenge(request: Request) -> Response:
    """Answer an unauthenticated request: inline challenge page or redirect to it."""
    if request.app.state.settings.challenge_mode == "redirect":
        query = urlencode({"uri": _local_url(request)})
        return RedirectResponse(f"/captcha_page.html?{query}", status_code=302)
    return _challenge_page(request, _local_url(request))


# ---------------------------------------------------------------------------
# GET /captcha_page.html and GET /denied
# ---------------------------------------------------------------------------


@router.get("/captcha_page.html", include_in_schema=False)
async def captcha_page(request: Request, uri: Optional[str] = None) -> Response:
    return _challenge_page(request, uri or "/")


@router.get("/denied", include_in_schema=False)
async def denied_page(request: Request) -> Response:
    response = templates.TemplateResponse(request, "denied.html", {})
    response.headers["Cache-Control"] = "no-store"
    return response


# ---------------------------------------------------------------------------
# POST /validate_captcha
# ---------------------------------------------------------------------------


@router.post("/validate_captcha", include_in_schema=False)
@limiter.limit(lambda: get_settings().verify_rate_limit)
def validate_captcha(request: Request, body: CaptchaSubmission) -> Response:
    """Verify a challenge bundle and, if the policy allows, issue the session cookie.

    Plain def: FastAPI runs it in the thread pool, so the blocking verifier
    call does not stall the event loop.
    """
    state = request.app.state
    identity = get_client_identity(request)
    try:
        cookie_value = state.gate.verify(body.captchaData, identity)
    except PolicyDenied as e:
        decision = e.decision
        raise HTTPException(
            status_code=403,
            detail=ErrorDetail(
                code="policy_denied",
                message=f"Access denied ({decision.reason}).",
                detail=decision.service_name or decision.reason,
            ).model_dump(),
        ) from e
    except BundleError as e:
        logger.warning("Error verifying bundle from %s: %s", identity or "unknown client", e)
        raise HTTPException(
            status_code=e.status_code,
            detail=ErrorDetail(code="bundle_rejected", message="Error verifying bundle.", detail=str(e)).model_dump(),
        ) from e
    except VerifierError as e:
        logger.error("Error evaluating assessment: %s", e)
        raise HTTPException(
            status_code=e.status_code,
            detail=ErrorDetail(code="verifier_unavailable", message="Error evaluating assessment.").model_dump(),
        ) from e

    settings = state.settings
    response = PlainTextResponse("Captcha validated successfully", status_code=200)
    set_session_cookie(
        response,
        settings.cookie_name,
        cookie_value,
        max_age=settings.token_ttl_seconds,
        samesite=settings.cookie_samesite,
    )
    response.headers["Cache-Control"] = "no-store"
    return response


# ---------------------------------------------------------------------------
# Catch-all: pass-through or challenge. Must stay last.
# ---------------------------------------------------------------------------


@router.api_route("/{full_path:path}", methods=_PROXY_METHODS, include_in_schema=False)
async def gate(request: Request, full_path: str) -> Response:
    """Proxy to the origin when the cookie is a live pass; challenge otherwise."""
    if not try_get_session(request):
        return _challenge(request)

    body = await request.body()
    try:
        upstream = await run_in_threadpool(
            request.app.state.origin.forward,
            request.method,
            request.url.path,
            request.url.query,
            request.headers.items(),
            body,
        )
    except OriginError as e:
        logger.error("Origin request failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=ErrorDetail(code="origin_unavailable", message="The origin service is unreachable.").model_dump(),
        ) from e

    response = Response(content=upstream.body, status_code=upstream.status_code)
    for name, value in upstream.headers:
        response.headers.append(name, value)
    return response
