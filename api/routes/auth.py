"""
api/routes/auth.py -- Login and logout.

Routes:
  POST /login   -- form or JSON credentials; sets the auth cookie
  GET  /logout  -- clears the auth cookie

Both routes serve browsers and API clients from the same URL:
  Browser (Accept: text/html, or a form POST): 302 redirects. Login failures
      redirect to /?error=<code>; the login page maps the code to a fixed
      message, so nothing from the request is reflected.
  API client: JSON bodies, 400 / 401 / 503 on failure.

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  Unknown username and wrong password produce the same response.
  Cache-Control: no-store on every login response.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError as PydanticValidationError

from api.limiter import limiter, login_rate_limit
from api.models import LoginRequest, LoginResponse, LogoutResponse, UserResponse
from api.responses import describe_validation_errors, error_json
from auth.dependencies import get_user_store, wants_html
from auth.errors import AuthError, BadCredentialsError, ValidationError
from auth.passwords import authenticate_user
from auth.tokens import clear_auth_cookie, create_access_token, set_auth_cookie

logger = logging.getLogger("pkm.api")

# Auth policy:
# - POST /login:  public -- rate limited
# - GET  /logout: public -- clearing a cookie needs no prior auth
router = APIRouter()

_MENU_URL = "/menu"
_LOGIN_PAGE = "/"


async def _read_credentials(request: Request) -> dict:
    """Return the login body as a dict, from JSON or form encoding."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            data = await request.json()
        except ValueError as exc:
            raise ValidationError("Request body must be valid JSON.") from exc
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object.")
        return data
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post(
    "/login",
    response_model=LoginResponse,
    responses={302: {"description": "Browser clients are redirected to /menu"}},
)
async def login(request: Request) -> Response:
    """Authenticate with username and password; set the auth cookie.

    Order: body validation (400) -> backend availability (503) -> credential
    check (401). bcrypt runs in the thread pool so other requests proceed.
    """
    html = wants_html(request, form_counts=True)
    try:
        data = await _read_credentials(request)
        try:
            body = LoginRequest.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(describe_validation_errors(exc.errors())) from exc

        store = get_user_store(request)
        user = await run_in_threadpool(authenticate_user, store, body.username, body.password)
        if user is None:
            logger.info("Failed login for username=%r", body.username)
            raise BadCredentialsError()
    except AuthError as exc:
        resp = RedirectResponse(f"{_LOGIN_PAGE}?error={exc.code}", status_code=302) if html else error_json(exc)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    token = create_access_token(user.id, user.username, user.role)
    logger.info("User id=%s logged in (role=%s)", user.id, user.role)

    if html:
        resp = RedirectResponse(_MENU_URL, status_code=302)
    else:
        resp = JSONResponse(
            content=LoginResponse(user=UserResponse.from_user(user), token=token, redirect=_MENU_URL).model_dump()
        )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get(
    "/logout",
    response_model=LogoutResponse,
    responses={302: {"description": "Browser clients are redirected to /"}},
)
async def logout(request: Request) -> Response:
    """Clear the auth cookie.

    The token itself stays valid until it expires: there is no server-side
    revocation list. Logging out removes it from this browser only.
    """
    if wants_html(request):
        resp: Response = RedirectResponse(_LOGIN_PAGE, status_code=302)
    else:
        resp = JSONResponse(content=LogoutResponse().model_dump())
    clear_auth_cookie(resp)
    return resp
