import os
import tempfile
from typing import Dict

import httpx
import pytest
from fastapi.testclient import TestClient

_DB_DIR = tempfile.mkdtemp(prefix="simenu-admin-tests-")

os.environ.setdefault("ENV", "test")
os.environ["ADMIN_DB_URL"] = f"sqlite+pysqlite:///{_DB_DIR}/admin.db"
os.environ["EVENTS_ENABLED"] = "false"


@pytest.fixture(scope="session")
def app():
    """
    Import the admin FastAPI app once per test session.
    """
    from apps.admin.app.main import app as admin_app

    return admin_app


@pytest.fixture(autouse=True)
def resto(monkeypatch):
    """
    Wire the upstream client to the in-memory resto API and restore its
    seed data, so no test ever leaves the process.
    """
    import apps.admin.app.main as admin
    import apps.admin.app.resto_stub as resto_stub
    import apps.admin.app.upstream as upstream

    resto_stub.reset()
    sync_client = TestClient(resto_stub.app)
    async_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=resto_stub.app))
    monkeypatch.setattr(upstream, "_httpx_client", lambda: sync_client)
    monkeypatch.setattr(upstream, "_httpx_async_client", lambda: async_client)
    admin._AUTH_RATE_EMAIL.clear()
    admin._AUTH_RATE_IP.clear()
    return resto_stub


@pytest.fixture()
def client(app):
    """
    Synchronous TestClient for calling the admin service.
    """
    return TestClient(app)


def login(client: TestClient, email: str = "admin@simenu.id", password: str = "admin123") -> str:
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    sid = r.json().get("session")
    assert isinstance(sid, str) and len(sid) == 32
    return sid


@pytest.fixture()
def admin(client) -> Dict[str, str]:
    """
    Headers of a signed-in admin. The session travels in `X-Session`
    so tests do not depend on the cookie jar.
    """
    sid = login(client)
    client.cookies.clear()
    return {"X-Session": sid}


@pytest.fixture()
def seed_order_id(client, admin) -> str:
    r = client.get("/orders", headers=admin)
    assert r.status_code == 200
    orders = r.json()
    assert len(orders) == 1
    return orders[0]["order_id"]
