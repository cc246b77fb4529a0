"""
api/responses.py -- Content negotiation and error body helpers.

Browser clients (Accept: text/html, or a submitted HTML form) get redirects
and small HTML fragments; every other client gets the JSON ErrorResponse
envelope. Route handlers, the exception handlers in api/main.py and the web
routes all decide through auth.dependencies.wants_html(), so they never
disagree.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import HTMLResponse, JSONResponse

from api.models import ErrorResponse
from auth.dependencies import wants_html
from auth.errors import AuthError
from core.config import get_settings

# Minimal fragments for browser clients. Static text only: nothing from the
# request is echoed back.
_HTML_FRAGMENTS: dict[int, str] = {
    401: "<p>Unauthorized. Please login.</p>",
    403: "<p>Forbidden</p>",
}


def describe_validation_errors(errors: list[dict]) -> str:
    """Turn pydantic's error list into one human-readable message (the first error)."""
    if not errors:
        return "Invalid input."
    first = errors[0]
    # Drop the "body"/"path" prefix FastAPI adds to locations.
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "path", "query")]
    msg = str(first.get("msg", "Invalid value"))
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, ") :]
    return f"{'.'.join(loc)}: {msg}" if loc else msg


def error_json(exc: AuthError) -> JSONResponse:
    detail = exc.detail if get_settings().debug else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.code, message=exc.message, detail=detail).model_dump(exclude_none=True),
    )


def error_response(request: Request, exc: AuthError) -> HTMLResponse | JSONResponse:
    """Render an AuthError for the client: HTML fragment for 401/403 browsers, JSON otherwise."""
    if exc.status_code in _HTML_FRAGMENTS and wants_html(request):
        return HTMLResponse(_HTML_FRAGMENTS[exc.status_code], status_code=exc.status_code)
    return error_json(exc)
