from __future__ import annotations

import re
from datetime import date, timedelta
from typing import Any

PERIODS = ("daily", "weekly", "monthly")

_HOUR_RE = re.compile(r"^(\d{2}):00")


def date_range(period: str, today: date | None = None) -> dict[str, str]:
    """
    daily: today only; weekly: the last seven days including today;
    monthly: year to date.
    """
    today = today or date.today()
    if period == "daily":
        start = today
    elif period == "weekly":
        start = today - timedelta(days=6)
    elif period == "monthly":
        start = today.replace(month=1, day=1)
    else:
        raise ValueError(f"unknown period: {period}")
    return {"start_date": start.isoformat(), "end_date": today.isoformat()}


def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _rate(rows: list[dict[str, Any]], key: str) -> float:
    """Relative change between the first and the last row, in percent."""
    if len(rows) < 2:
        return 0.0
    first = _num(rows[0].get(key))
    last = _num(rows[-1].get(key))
    if first == 0:
        return 0.0
    return round((last - first) / first * 100, 2)


def stat_cards(
    sales: list[dict[str, Any]],
    peak_hours: list[dict[str, Any]],
    table_usage: list[dict[str, Any]],
) -> dict[str, Any]:
    total_sales = sum(_num(r.get("total_sales")) for r in sales)
    total_orders = sum(int(_num(r.get("order_count"))) for r in sales)
    tables_total = sum(int(_num(r.get("total_orders"))) for r in table_usage)

    peak: dict[str, Any] = {"orders": 0, "hour": None}
    if peak_hours:
        top = peak_hours[0]
        for row in peak_hours[1:]:
            if _num(row.get("order_count")) > _num(top.get("order_count")):
                top = row
        peak = {
            "orders": int(_num(top.get("order_count"))),
            "hour": top.get("hour", _slot_hour(top.get("time_slot"))),
        }

    sales_growth = _rate(sales, "total_sales")
    orders_rate = _rate(sales, "order_count")
    tables_rate = _rate(table_usage, "total_orders")
    return {
        "total_sales": {"total": total_sales, "rate": sales_growth, "level_up": sales_growth > 0},
        "total_orders": {"total": total_orders, "rate": orders_rate, "level_up": orders_rate > 0},
        "table_usage": {"total": tables_total, "rate": tables_rate, "level_up": tables_rate > 0},
        "peak_hour": peak,
    }


def _slot_hour(slot: Any) -> int:
    m = _HOUR_RE.match(str(slot or ""))
    return int(m.group(1)) if m else 0


def sales_chart(rows: list[dict[str, Any]]) -> dict[str, list[Any]]:
    return {
        "dates": [r.get("date") for r in rows],
        "revenue": [_num(r.get("total_sales")) for r in rows],
        "orders": [int(_num(r.get("order_count"))) for r in rows],
    }


def peak_hours_chart(rows: list[dict[str, Any]]) -> dict[str, list[Any]]:
    ordered = sorted(rows, key=lambda r: _slot_hour(r.get("time_slot")))
    return {
        "time_slots": [r.get("time_slot") for r in ordered],
        "orders": [int(_num(r.get("order_count"))) for r in ordered],
    }


def popular_menu_chart(rows: list[dict[str, Any]], top: int = 5) -> dict[str, list[Any]]:
    total_qty = sum(_num(r.get("total_quantity")) for r in rows) or 1
    ordered = sorted(rows, key=lambda r: _num(r.get("total_quantity")), reverse=True)[:top]
    return {
        "names": [r.get("name") or "Unnamed Item" for r in ordered],
        "quantities": [int(_num(r.get("total_quantity"))) for r in ordered],
        "percentages": [f"{_num(r.get('total_quantity')) / total_qty * 100:.1f}" for r in ordered],
        "ids": [str(r.get("product_id") or "") for r in ordered],
        "prices": [r.get("price") or "0" for r in ordered],
    }


def _usage_percentage(ratio: Any) -> str:
    raw = str(ratio or "")
    if "%" not in raw:
        return "0.0"
    m = re.match(r"\s*(-?\d+(?:\.\d+)?)", raw)
    return f"{float(m.group(1)):.1f}" if m else "0.0"


def table_usage_chart(rows: list[dict[str, Any]], top: int = 5) -> dict[str, list[Any]]:
    ordered = sorted(rows, key=lambda r: _num(r.get("total_orders")), reverse=True)[:top]
    return {
        "table_codes": [r.get("table_code") or f"Table {r.get('table_id')}" for r in ordered],
        "orders": [int(_num(r.get("total_orders"))) for r in ordered],
        "percentages": [_usage_percentage(r.get("usage_ratio")) for r in ordered],
        "ids": [str(r.get("table_id") if r.get("table_id") is not None else r.get("table_code") or "") for r in ordered],
        "averages": [f"{_num(r.get('average_daily_orders')):.1f}" for r in ordered],
    }


def build_dashboard(period: str, dates: dict[str, str], data: dict[str, list[dict[str, Any]]], errors: dict[str, str]) -> dict[str, Any]:
    sales = data.get("sales") or []
    menu = data.get("popular_menu") or []
    hours = data.get("peak_hours") or []
    tables = data.get("table_usage") or []
    return {
        "period": period,
        **dates,
        "cards": stat_cards(sales, hours, tables),
        "charts": {
            "sales": sales_chart(sales),
            "peak_hours": peak_hours_chart(hours),
            "popular_menu": popular_menu_chart(menu),
            "table_usage": table_usage_chart(tables),
        },
        "errors": errors,
    }
