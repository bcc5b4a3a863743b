from __future__ import annotations

import apps.admin.app.main as admin_main
import apps.admin.app.sessions as sessions

from conftest import login


def test_login_sets_session_cookie_and_hides_upstream_token(client):
    r = client.post("/auth/login", json={"email": "Admin@simenu.id", "password": "admin123"})
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["user"]["role"] == "Admin"
    assert body["user"]["email"] == "admin@simenu.id"
    assert "token" not in body and "token" not in body["user"]
    assert client.cookies.get("simenu_session") == body["session"]

    r2 = client.get("/me")
    assert r2.status_code == 200
    assert r2.json()["email"] == "admin@simenu.id"


def test_login_wrong_password_passes_upstream_error(client):
    r = client.post("/auth/login", json={"email": "admin@simenu.id", "password": "nope"})
    assert r.status_code == 401
    detail = r.json()["detail"]
    assert detail["errors"]["messages"] == ["Invalid email or password"]


def test_login_requires_fields(client):
    r = client.post("/auth/login", json={"email": " ", "password": ""})
    assert r.status_code == 400
    fields = r.json()["detail"]["errors"]["fields"]
    assert set(fields) == {"email", "password"}


def test_non_admin_cannot_sign_in(client):
    r = client.post("/auth/login", json={"email": "staff@simenu.id", "password": "staff123"})
    assert r.status_code == 403
    assert r.json()["detail"] == "unauthorized role"
    assert client.cookies.get("simenu_session") is None


def test_login_is_rate_limited_per_email(client, monkeypatch):
    monkeypatch.setattr(admin_main, "AUTH_MAX_PER_EMAIL", 2)
    for _ in range(2):
        r = client.post("/auth/login", json={"email": "admin@simenu.id", "password": "bad"})
        assert r.status_code == 401
    r = client.post("/auth/login", json={"email": "admin@simenu.id", "password": "admin123"})
    assert r.status_code == 429


def test_login_is_rate_limited_per_ip(client, monkeypatch):
    monkeypatch.setattr(admin_main, "AUTH_MAX_PER_IP", 3)
    for i in range(3):
        r = client.post("/auth/login", json={"email": f"user{i}@simenu.id", "password": "bad"})
        assert r.status_code != 429
    r = client.post("/auth/login", json={"email": "admin@simenu.id", "password": "admin123"})
    assert r.status_code == 429
    assert r.json()["detail"] == "rate limited: too many requests from this ip"


def test_admin_endpoints_need_session(client):
    assert client.get("/categories").status_code == 401
    assert client.get("/me", headers={"X-Session": "not-a-session"}).status_code == 401


def test_non_admin_session_is_forbidden(client):
    sid = sessions.create_session("staff-token", {"id": "u-2", "email": "staff@simenu.id", "role": "Staff"})
    r = client.get("/categories", headers={"X-Session": sid})
    assert r.status_code == 403


def test_session_header_accepts_cookie_syntax(client):
    sid = login(client)
    client.cookies.clear()
    r = client.get("/me", headers={"X-Session": f"simenu_session={sid}; Path=/"})
    assert r.status_code == 200


def test_session_persists_via_db_when_memory_cache_cleared(client, monkeypatch):
    sid = login(client)
    headers = {"X-Session": sid}
    assert client.get("/me", headers=headers).status_code == 200

    # Simulated restart: the DB still authorizes the session.
    monkeypatch.setattr(sessions, "_SESSIONS", {})
    assert client.get("/me", headers=headers).status_code == 200


def test_logout_revokes_db_backed_session(client, monkeypatch):
    sid = login(client)
    headers = {"X-Session": sid}
    assert client.post("/auth/logout", headers=headers).status_code == 200

    monkeypatch.setattr(sessions, "_SESSIONS", {})
    assert client.get("/me", headers=headers).status_code == 401


def test_cleanup_expired_removes_stale_sessions(monkeypatch):
    monkeypatch.setattr(sessions, "AUTH_SESSION_TTL_SECS", -10)
    sid = sessions.create_session("tok", {"id": "u-1", "role": "Admin"})
    assert sessions.cleanup_expired() >= 1
    assert sessions.get_session(sid) is None


def test_auth_check_states(client, resto, monkeypatch):
    assert client.get("/auth/check").json() == {"role": "Guest", "is_logged_in": False, "error": None}

    sid = login(client)
    headers = {"X-Session": sid}
    assert client.get("/auth/check", headers=headers).json() == {
        "role": "Admin",
        "is_logged_in": True,
        "error": None,
    }

    # Upstream no longer knows the token.
    resto._tokens.clear()
    state = client.get("/auth/check", headers=headers).json()
    assert state["is_logged_in"] is False
    assert state["role"] == "Guest"
    assert state["error"] == "Unauthorized"


def test_auth_check_rejects_non_admin_role_upstream(client, resto):
    token = resto._issue_token(resto._users["u-2"])
    sid = sessions.create_session(token, {"id": "u-2", "email": "staff@simenu.id", "role": "Admin"})
    state = client.get("/auth/check", headers={"X-Session": sid}).json()
    assert state == {"role": "Guest", "is_logged_in": False, "error": "Unauthorized role"}


def test_auth_check_malformed_response(client, monkeypatch):
    sid = login(client)
    monkeypatch.setattr(admin_main, "unwrap", lambda r: ["unexpected"])
    state = client.get("/auth/check", headers={"X-Session": sid}).json()
    assert state["error"] == "Invalid response format"


def test_google_url(client):
    r = client.get("/auth/google/url")
    assert r.status_code == 200
    assert r.json()["url"].startswith("https://accounts.google.com/")


def test_oauth_callback_signs_admin_in(client):
    r = client.get("/auth/callback?code=admin-code&state=xyz", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/admin/dashboard"
    assert client.cookies.get("simenu_session")
    assert client.get("/me").json()["role"] == "Admin"


def test_oauth_callback_without_query_goes_to_login(client):
    r = client.get("/auth/callback", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"


def test_oauth_callback_errors_render_login_page(client):
    r = client.get("/auth/callback?code=bogus", follow_redirects=False)
    assert r.status_code == 400
    assert "Invalid authorization code" in r.text

    r = client.get("/auth/callback?code=staff-code", follow_redirects=False)
    assert r.status_code == 403
    assert "unauthorized role" in r.text


def test_profile_update(client, admin):
    r = client.put("/me", json={"name": "Admin Baru"}, headers=admin)
    assert r.status_code == 200
    assert r.json()["name"] == "Admin Baru"
    assert client.get("/me", headers=admin).json()["name"] == "Admin Baru"

    assert client.put("/me", json={"name": "  "}, headers=admin).status_code == 400


def test_login_page_renders(client):
    r = client.get("/login")
    assert r.status_code == 200
    assert "siMenu Admin" in r.text
