from __future__ import annotations

from datetime import date

import httpx

import apps.admin.app.upstream as upstream
from apps.admin.app import reports


def test_date_ranges():
    today = date(2026, 10, 19)
    assert reports.date_range("daily", today) == {"start_date": "2026-10-19", "end_date": "2026-10-19"}
    assert reports.date_range("weekly", today) == {"start_date": "2026-10-13", "end_date": "2026-10-19"}
    assert reports.date_range("monthly", today) == {"start_date": "2026-01-01", "end_date": "2026-10-19"}


def test_stat_cards_growth_and_peak():
    sales = [
        {"date": "2026-10-18", "total_sales": 100000, "order_count": 4},
        {"date": "2026-10-19", "total_sales": 150000, "order_count": 6},
    ]
    hours = [
        {"hour": 12, "time_slot": "12:00-13:00", "order_count": 3},
        {"hour": 19, "time_slot": "19:00-20:00", "order_count": 7},
    ]
    tables = [{"total_orders": 2}, {"total_orders": 5}]
    cards = reports.stat_cards(sales, hours, tables)
    assert cards["total_sales"] == {"total": 250000, "rate": 50.0, "level_up": True}
    assert cards["total_orders"] == {"total": 10, "rate": 50.0, "level_up": True}
    assert cards["table_usage"]["total"] == 7
    assert cards["table_usage"]["rate"] == 150.0
    assert cards["peak_hour"] == {"orders": 7, "hour": 19}


def test_growth_is_zero_for_single_point_or_zero_start():
    one = [{"total_sales": 5000, "order_count": 1}]
    assert reports.stat_cards(one, [], [])["total_sales"]["rate"] == 0.0
    zero_start = [{"total_sales": 0, "order_count": 0}, {"total_sales": 5000, "order_count": 2}]
    cards = reports.stat_cards(zero_start, [], [])
    assert cards["total_sales"]["rate"] == 0.0
    assert cards["total_orders"]["rate"] == 0.0
    assert cards["peak_hour"] == {"orders": 0, "hour": None}


def test_peak_hours_sorted_by_slot_hour():
    rows = [
        {"time_slot": "19:00-20:00", "order_count": 7},
        {"time_slot": "bad", "order_count": 1},
        {"time_slot": "08:00-09:00", "order_count": 2},
    ]
    chart = reports.peak_hours_chart(rows)
    assert chart["time_slots"] == ["bad", "08:00-09:00", "19:00-20:00"]
    assert chart["orders"] == [1, 2, 7]


def test_popular_menu_top_five_with_share():
    rows = [{"product_id": f"p-{i}", "name": f"Menu {i}", "total_quantity": i} for i in range(1, 7)]
    chart = reports.popular_menu_chart(rows)
    assert chart["names"] == ["Menu 6", "Menu 5", "Menu 4", "Menu 3", "Menu 2"]
    # total quantity is 21
    assert chart["percentages"][0] == "28.6"
    assert len(chart["ids"]) == 5


def test_table_usage_percentages():
    rows = [
        {"table_id": 1, "table_code": "T01", "total_orders": 3, "usage_ratio": "60.00%", "average_daily_orders": 0.4286},
        {"table_id": 2, "table_code": "T02", "total_orders": 2, "usage_ratio": "0.4", "average_daily_orders": 2},
    ]
    chart = reports.table_usage_chart(rows)
    assert chart["table_codes"] == ["T01", "T02"]
    assert chart["percentages"] == ["60.0", "0.0"]
    assert chart["averages"] == ["0.4", "2.0"]


def test_dashboard_endpoint(client, admin):
    r = client.get("/dashboard", params={"period": "weekly"}, headers=admin)
    assert r.status_code == 200, r.text
    d = r.json()
    assert d["period"] == "weekly"
    assert d["errors"] == {}
    assert set(d["cards"]) == {"total_sales", "total_orders", "table_usage", "peak_hour"}
    assert set(d["charts"]) == {"sales", "peak_hours", "popular_menu", "table_usage"}
    assert sorted(d["charts"]["table_usage"]["table_codes"]) == ["T01", "T02"]


def test_dashboard_rejects_unknown_period(client, admin):
    assert client.get("/dashboard", params={"period": "yearly"}, headers=admin).status_code == 400


def test_dashboard_keeps_rendering_when_one_report_fails(client, admin, resto, monkeypatch):
    stub = httpx.ASGITransport(app=resto.app)

    async def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/peak-hours"):
            return httpx.Response(500, text="boom")
        return await stub.handle_async_request(request)

    flaky = httpx.AsyncClient(transport=httpx.MockTransport(_handler))
    monkeypatch.setattr(upstream, "_httpx_async_client", lambda: flaky)

    d = client.get("/dashboard", headers=admin).json()
    assert d["errors"] == {"peak_hours": "resto api error"}
    assert d["charts"]["peak_hours"] == {"time_slots": [], "orders": []}
    assert "sales" not in d["errors"]


def test_report_pass_through(client, admin):
    r = client.get(
        "/reports/sales", params={"start_date": "2000-01-01", "end_date": "2100-01-01"}, headers=admin
    )
    assert r.status_code == 200
    assert r.json()[0]["order_count"] == 1
    r = client.get("/reports/popular-menu", params={"limit": 1}, headers=admin)
    assert [row["product_id"] for row in r.json()] == ["p-1"]


def test_admin_dashboard_page(client, admin):
    r = client.get("/admin/dashboard", headers=admin)
    assert r.status_code == 200
    assert "Dashboard" in r.text
    assert "Menu Populer" in r.text


def test_admin_dashboard_redirects_guests(client):
    r = client.get("/admin/dashboard", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"
