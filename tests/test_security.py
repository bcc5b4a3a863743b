from __future__ import annotations

import logging

import pytest
from fastapi import HTTPException

import apps.admin.app.main as admin_main
import apps.admin.app.upstream as upstream
from apps.admin.app import events


def test_root_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data.get("status") == "ok"
    assert data.get("service") == "siMenu Admin"
    assert data["checks"] == {"session_db": True}


def test_upstreams_health_reports_resto_status(client):
    data = client.get("/upstreams/health").json()
    assert data["resto"]["status_code"] == 200
    assert data["resto"]["body"]["status"] == "OK"


def test_upstreams_health_reports_unreachable_resto(client, monkeypatch):
    def _down(*args, **kwargs):
        raise HTTPException(status_code=502, detail="resto api unavailable")

    monkeypatch.setattr(admin_main, "resto_call", _down)
    data = client.get("/upstreams/health").json()
    assert data == {"resto": {"error": "resto api unavailable"}}


def test_security_headers_present(client):
    headers = client.get("/health").headers
    assert headers.get("X-Content-Type-Options") == "nosniff"
    assert headers.get("X-Frame-Options") == "DENY"
    assert headers.get("Referrer-Policy") == "strict-origin-when-cross-origin"
    assert "frame-ancestors 'none'" in headers.get("Content-Security-Policy", "")
    assert headers.get("X-Request-ID")


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"X-Request-ID": "req-12345678"})
    assert r.headers["X-Request-ID"] == "req-12345678"


@pytest.fixture()
def csrf_on(monkeypatch):
    monkeypatch.setattr(admin_main, "CSRF_GUARD_ENABLED", True)
    monkeypatch.setattr(admin_main, "_CSRF_ORIGIN_WILDCARD", False)
    monkeypatch.setattr(admin_main, "_CSRF_ALLOWED_ORIGINS", {"http://localhost:5173"})


def test_csrf_guard_blocks_cross_site_cookie_write(client, csrf_on):
    r = client.post(
        "/auth/logout",
        cookies={"simenu_session": "a" * 32},
        headers={"Origin": "https://evil.example", "Sec-Fetch-Site": "cross-site"},
    )
    assert r.status_code == 403


def test_csrf_guard_blocks_cross_site_without_origin(client, csrf_on):
    r = client.post(
        "/auth/logout",
        cookies={"simenu_session": "a" * 32},
        headers={"Sec-Fetch-Site": "cross-site"},
    )
    assert r.status_code == 403


def test_csrf_guard_allows_allowed_origin_cookie_write(client, csrf_on):
    r = client.post(
        "/auth/logout",
        cookies={"simenu_session": "a" * 32},
        headers={"Origin": "http://localhost:5173"},
    )
    assert r.status_code == 200


def test_csrf_guard_skips_header_session(client, csrf_on):
    r = client.post(
        "/auth/logout",
        cookies={"simenu_session": "a" * 32},
        headers={"Origin": "https://evil.example", "X-Session": "a" * 32},
    )
    assert r.status_code == 200


def test_csrf_guard_ignores_reads(client, csrf_on):
    r = client.get("/auth/check", cookies={"simenu_session": "a" * 32}, headers={"Origin": "https://evil.example"})
    assert r.status_code == 200


def test_http_5xx_details_are_scrubbed_in_prod(client, admin, monkeypatch):
    monkeypatch.setenv("ENV", "prod")

    def _down(*args, **kwargs):
        raise HTTPException(status_code=502, detail="resto api unavailable")

    monkeypatch.setattr(admin_main, "resto_call", _down)
    resp = client.get("/categories", headers=admin)
    assert resp.status_code == 502
    body = resp.json()
    assert body.get("detail") == "internal error"
    assert body.get("request_id")


def test_http_4xx_details_are_kept_in_prod(client, admin, monkeypatch):
    monkeypatch.setenv("ENV", "prod")
    resp = client.get("/categories/999", headers=admin)
    assert resp.status_code == 404
    assert resp.json()["detail"]["message"] == "Category not found"


def test_maintenance_mode(client, monkeypatch):
    monkeypatch.setattr(admin_main, "MAINTENANCE_MODE_ENABLED", True)
    r = client.get("/categories")
    assert r.status_code == 503
    assert r.headers["Retry-After"] == "60"
    assert client.get("/health").status_code == 200


def test_audit_buffer_requires_admin(client, admin):
    assert client.get("/admin/audit").status_code == 401
    events_ = client.get("/admin/audit", headers=admin).json()["events"]
    assert any(e.get("action") == "login" and e.get("actor") == "admin@simenu.id" for e in events_)


def test_audit_records_mutations(client, admin):
    client.post("/categories", json={"name": "Snack"}, headers=admin)
    last = client.get("/admin/audit", params={"limit": 1}, headers=admin).json()["events"]
    assert len(last) == 1
    assert last[0]["action"] == "category_create"
    assert last[0]["name"] == "Snack"


def test_upstream_token_is_never_logged(client, admin, caplog):
    with caplog.at_level(logging.DEBUG):
        client.get("/categories", headers=admin)
    rec = admin_main._sessions.get_session(admin["X-Session"])
    assert rec is not None
    assert rec.token not in caplog.text


def test_emit_event_falls_back_to_log(caplog):
    with caplog.at_level(logging.INFO, logger="simenu.events"):
        data = events.emit_event("orders", "order_created", {"order_id": "INV/1"})
    assert data["domain"] == "orders"
    assert data["type"] == "order_created"
    assert any(getattr(r, "event", None) == data for r in caplog.records)


def test_checkout_emits_order_event(client, admin, monkeypatch):
    seen = []
    monkeypatch.setattr(admin_main, "emit_event", lambda d, t, p: seen.append((d, t, p["table"])))
    client.post("/orders/cart/T01/items", json={"product_id": "p-1"}, headers=admin)
    client.post("/orders/cart/T01/checkout", json={"customer_name": "Sari", "order_type": "dine_in"}, headers=admin)
    assert seen == [("orders", "order_created", "T01")]


def test_shutdown_closes_shared_clients(monkeypatch):
    import asyncio

    import httpx

    sync_client = httpx.Client()
    monkeypatch.setattr(upstream, "_HTTPX_CLIENT", sync_client)
    monkeypatch.setattr(upstream, "_HTTPX_ASYNC_CLIENT", httpx.AsyncClient())
    asyncio.run(upstream.close_clients())
    assert sync_client.is_closed
    assert upstream._HTTPX_CLIENT is None
    assert upstream._HTTPX_ASYNC_CLIENT is None
