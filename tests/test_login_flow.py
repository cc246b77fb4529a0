"""
tests/test_login_flow.py -- POST /login, GET /logout and the login page.

Uses web_client (follow_redirects=False) so redirect Location headers and
Set-Cookie attributes can be asserted directly.

Covers:
  - Browser form login -> 302 /menu with an httpOnly, SameSite=Lax,
    30-minute auth cookie
  - JSON login -> 200 with user, token and redirect, never the password
  - Bad credentials are indistinguishable for unknown user and wrong password
  - Missing or malformed fields -> 400 (JSON) or /?error=validation_error
  - Login page only ever shows whitelisted messages
  - /menu contents by role, HTML and JSON
  - Logout clears the cookie and redirects browsers to /
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from api.limiter import limiter
from core.config import get_settings


def _set_cookie_headers(resp) -> list[str]:
    return resp.headers.get_list("set-cookie")


class TestBrowserLogin:
    def test_form_login_redirects_to_menu_with_cookie(self, web_client) -> None:
        resp = web_client.client.post("/login", data={"username": "admin", "password": "admin"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/menu"
        assert resp.headers["cache-control"] == "no-store"

        cookie = next(h for h in _set_cookie_headers(resp) if h.startswith("auth="))
        lowered = cookie.lower()
        assert "httponly" in lowered
        assert "samesite=lax" in lowered
        assert "max-age=1800" in lowered

    def test_cookie_opens_the_menu(self, web_client) -> None:
        client: TestClient = web_client.client
        client.post("/login", data={"username": "admin", "password": "admin"})
        resp = client.get("/menu", headers={"Accept": "text/html"})
        assert resp.status_code == 200
        assert "admin" in resp.text
        assert "User Management" in resp.text

    def test_wrong_password_redirects_with_code(self, web_client) -> None:
        resp = web_client.client.post("/login", data={"username": "admin", "password": "nope"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/?error=authentication_failed"
        assert not any(h.startswith("auth=") for h in _set_cookie_headers(resp))

    def test_missing_password_redirects_with_validation_code(self, web_client) -> None:
        resp = web_client.client.post("/login", data={"username": "admin"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/?error=validation_error"

    def test_signed_in_visitor_skips_login_page(self, web_client) -> None:
        web_client.client.cookies.set("auth", web_client.admin_token)
        resp = web_client.client.get("/")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/menu"

    def test_logout_redirects_browsers_and_clears_cookie(self, web_client) -> None:
        client: TestClient = web_client.client
        client.post("/login", data={"username": "admin", "password": "admin"})
        resp = client.get("/logout", headers={"Accept": "text/html"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        cleared = next(h for h in _set_cookie_headers(resp) if h.startswith("auth="))
        assert "max-age=0" in cleared.lower()
        assert client.get("/menu").status_code == 401


class TestLoginPage:
    def test_renders_form(self, web_client) -> None:
        resp = web_client.client.get("/")
        assert resp.status_code == 200
        assert '<form method="post" action="/login">' in resp.text

    def test_known_error_code_shows_fixed_message(self, web_client) -> None:
        resp = web_client.client.get("/?error=authentication_failed")
        assert "Invalid username or password." in resp.text

    def test_unknown_error_code_is_not_reflected(self, web_client) -> None:
        resp = web_client.client.get("/?error=<script>alert(1)</script>")
        assert resp.status_code == 200
        assert "<script>alert(1)</script>" not in resp.text
        assert 'class="error"' not in resp.text


class TestJsonLogin:
    def test_success_returns_user_and_token(self, web_client) -> None:
        resp = web_client.client.post("/login", json={"username": "alice", "password": "alice-pass"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["redirect"] == "/menu"
        assert body["user"]["username"] == "alice"
        assert body["user"]["role"] == "user"
        assert body["token"]
        assert "password" not in body["user"]
        assert "auth" in web_client.client.cookies

    def test_username_is_trimmed(self, web_client) -> None:
        resp = web_client.client.post("/login", json={"username": "  alice  ", "password": "alice-pass"})
        assert resp.status_code == 200

    def test_password_is_not_trimmed(self, web_client) -> None:
        resp = web_client.client.post("/login", json={"username": "alice", "password": " alice-pass "})
        assert resp.status_code == 401

    def test_unknown_user_and_wrong_password_match(self, web_client) -> None:
        unknown = web_client.client.post("/login", json={"username": "ghost", "password": "whatever"})
        wrong = web_client.client.post("/login", json={"username": "alice", "password": "whatever"})
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert unknown.json()["error"] == "authentication_failed"

    def test_missing_username_is_400(self, web_client) -> None:
        resp = web_client.client.post("/login", json={"password": "admin"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "validation_error"
        assert body["message"].startswith("username")

    def test_bad_username_charset_is_400(self, web_client) -> None:
        resp = web_client.client.post("/login", json={"username": "ad min", "password": "admin"})
        assert resp.status_code == 400

    def test_non_object_json_is_400(self, web_client) -> None:
        resp = web_client.client.post("/login", json=["admin", "admin"])
        assert resp.status_code == 400

    def test_invalid_json_is_400(self, web_client) -> None:
        resp = web_client.client.post(
            "/login", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400

    def test_logout_json(self, web_client) -> None:
        resp = web_client.client.get("/logout")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Logged out successfully", "redirect": "/"}


class TestMenu:
    def test_requires_auth(self, web_client) -> None:
        assert web_client.client.get("/menu").status_code == 401

    def test_admin_menu_json(self, web_client) -> None:
        resp = web_client.client.get("/menu", headers={"Authorization": f"Bearer {web_client.admin_token}"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"] == {"id": web_client.admin_id, "username": "admin", "role": "admin"}
        ids = [m["id"] for m in body["menus"]]
        assert ids == ["master", "users", "report", "profile"]
        master = body["menus"][0]
        assert master["modules"] == ["items", "customers", "students"]

    def test_user_menu_json(self, web_client) -> None:
        resp = web_client.client.get("/menu", headers={"Authorization": f"Bearer {web_client.user_token}"})
        assert resp.status_code == 200
        assert [m["id"] for m in resp.json()["menus"]] == ["report", "profile"]

    def test_user_menu_html_hides_admin_entries(self, web_client) -> None:
        resp = web_client.client.get(
            "/menu", headers={"Authorization": f"Bearer {web_client.user_token}", "Accept": "text/html"}
        )
        assert resp.status_code == 200
        assert "Reports" in resp.text
        assert "User Management" not in resp.text
        assert "Master Data" not in resp.text


def test_login_is_rate_limited(web_client, monkeypatch) -> None:
    """Past LOGIN_RATE_LIMIT the client gets 429 with Retry-After, before credentials are checked."""
    limiter.reset()
    monkeypatch.setattr(get_settings(), "login_rate_limit", "2/minute")
    try:
        for _ in range(2):
            resp = web_client.client.post("/login", json={"username": "alice", "password": "wrong"})
            assert resp.status_code == 401
        resp = web_client.client.post("/login", json={"username": "alice", "password": "alice-pass"})
        assert resp.status_code == 429
        assert resp.json()["error"] == "rate_limited"
        assert "retry-after" in resp.headers
    finally:
        limiter.reset()
