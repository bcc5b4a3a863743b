from __future__ import annotations

import apps.admin.app.main as admin_main


def test_payment_methods(client):
    methods = client.get("/payments/methods").json()
    assert [m["value"] for m in methods] == ["cash", "credit_card", "debit_card", "qris"]


def test_cash_payment_must_cover_total(client, admin, seed_order_id):
    r = client.post(
        "/payments",
        json={"order_id": seed_order_id, "payment_method": "cash", "amount_paid": "Rp 40.000"},
        headers=admin,
    )
    assert r.status_code == 400
    assert "Rp 50.000,00" in r.json()["detail"]


def test_cash_payment_returns_change(client, admin, seed_order_id):
    r = client.post(
        "/payments",
        json={"order_id": seed_order_id, "payment_method": "cash", "amount_paid": "Rp 60.000"},
        headers=admin,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "paid"
    assert body["amount_paid"] == 60000
    assert body["change"] == 10000

    order = client.get(f"/orders/{seed_order_id}", headers=admin).json()
    assert order["status"] == "completed"
    assert order["payment"]["method"] == "cash"


def test_non_cash_payment_has_no_change(client, admin, seed_order_id):
    r = client.post(
        "/payments",
        json={"order_id": seed_order_id.replace("/", "|"), "payment_method": "debit_card", "amount_paid": 50000},
        headers=admin,
    )
    assert r.status_code == 200, r.text
    assert r.json()["change"] == 0


def test_payment_validation(client, admin, seed_order_id):
    r = client.post(
        "/payments",
        json={"order_id": seed_order_id, "payment_method": "bitcoin", "amount_paid": "abc"},
        headers=admin,
    )
    assert r.status_code == 400
    assert set(r.json()["detail"]["errors"]["fields"]) == {"payment_method", "amount_paid"}


def test_payment_is_audited_and_emits_event(client, admin, seed_order_id, monkeypatch):
    events = []
    monkeypatch.setattr(admin_main, "emit_event", lambda d, t, p: events.append((d, t, p)))
    r = client.post(
        "/payments",
        json={"order_id": seed_order_id, "payment_method": "qris", "amount_paid": 50000},
        headers=admin,
    )
    assert r.status_code == 200
    assert events == [("payments", "payment_processed", {"order_id": seed_order_id, "method": "qris", "amount": 50000})]

    audit = client.get("/admin/audit", headers=admin).json()["events"]
    assert audit[-1]["action"] == "payment"
    assert audit[-1]["order_id"] == seed_order_id
