"""
web/routes.py -- Jinja2 template routes for the PKM Prototype web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same credential store) and the same Auth Gate.

Routes:
  GET /      -- login page (redirects to /menu when already signed in)
  GET /menu  -- role-gated main menu (auth required; HTML or JSON)
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from auth.dependencies import get_current_user, try_get_current_user, wants_html
from auth.models import ROLE_ADMIN, ROLE_USER, Identity

logger = logging.getLogger("pkm.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Login page
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on / .
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted error query strings.
_ERROR_MESSAGES: dict[str, str] = {
    "validation_error": "Please enter a valid username and password.",
    "encoding_error": "Please enter a valid username and password.",
    "authentication_failed": "Invalid username or password.",
    "service_unavailable": "Login is temporarily unavailable. Please try again later.",
}

# ---------------------------------------------------------------------------
# Menus by role
# ---------------------------------------------------------------------------


class MenuEntry(BaseModel):
    id: str
    title: str
    modules: list[str] = []


class MenuResponse(BaseModel):
    """JSON body of GET /menu for API clients."""

    success: bool = True
    user: dict
    menus: list[MenuEntry]


_MENUS: dict[str, list[MenuEntry]] = {
    ROLE_ADMIN: [
        MenuEntry(id="master", title="Master Data", modules=["items", "customers", "students"]),
        MenuEntry(id="users", title="User Management"),
        MenuEntry(id="report", title="Reports"),
        MenuEntry(id="profile", title="Profile"),
    ],
    ROLE_USER: [
        MenuEntry(id="report", title="Reports"),
        MenuEntry(id="profile", title="Profile"),
    ],
}


def menus_for(role: str) -> list[MenuEntry]:
    """Menu entries visible to a role. Unknown roles see the user menu."""
    return _MENUS.get(role, _MENUS[ROLE_USER])


@router.get("/", response_class=HTMLResponse)
def login_page(request: Request) -> Response:
    """Render the login form."""
    if try_get_current_user(request) is not None:
        return RedirectResponse("/menu", status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""))
    return templates.TemplateResponse(request, "login.html", {"error_msg": error_msg})


@router.get("/menu", response_model=MenuResponse)
def menu(request: Request, current_user: Identity = Depends(get_current_user)) -> Response:
    """Main menu for the signed-in user, filtered by role."""
    entries = menus_for(current_user.role)
    if wants_html(request):
        return templates.TemplateResponse(
            request,
            "menu.html",
            {"username": current_user.username, "role": current_user.role, "menus": entries},
        )
    body = MenuResponse(
        user={"id": current_user.id, "username": current_user.username, "role": current_user.role},
        menus=entries,
    )
    return JSONResponse(content=body.model_dump())
