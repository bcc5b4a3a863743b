import httpx
import pytest
from fastapi import HTTPException

import apps.admin.app.upstream as upstream
from apps.admin.app.upstream import encode_order_id, normalize_errors, unwrap


def _resp(status: int, **kw) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("GET", "http://resto.local/api/v1/x"), **kw)


def test_normalize_errors_shapes():
    assert normalize_errors("boom") == {"messages": ["boom"], "fields": {}}
    assert normalize_errors([{"field": "name", "message": "Name is required"}, {"message": "other"}]) == {
        "messages": ["Name is required", "other"],
        "fields": {"name": "Name is required"},
    }
    assert normalize_errors(["a", "b"]) == {"messages": ["a", "b"], "fields": {}}
    assert normalize_errors({"price": "Price must be positive", "n": 3}) == {
        "messages": ["Price must be positive"],
        "fields": {"price": "Price must be positive"},
    }
    assert normalize_errors(None) == {"messages": [], "fields": {}}


def test_unwrap_returns_data_of_successful_envelope():
    r = _resp(200, json={"data": [1, 2], "message": "ok", "status_code": 200})
    assert unwrap(r) == [1, 2]
    r = _resp(201, json={"data": {"id": 1}, "message": "created", "status_code": 201})
    assert unwrap(r) == {"id": 1}


def test_unwrap_maps_client_errors_with_same_status():
    r = _resp(404, json={"errors": "Category not found", "message": "", "status_code": 404})
    with pytest.raises(HTTPException) as ei:
        unwrap(r)
    assert ei.value.status_code == 404
    assert ei.value.detail["message"] == "Category not found"
    assert ei.value.detail["errors"]["messages"] == ["Category not found"]


def test_unwrap_maps_server_errors_and_bad_bodies_to_502():
    with pytest.raises(HTTPException) as ei:
        unwrap(_resp(500, json={"errors": "db down"}))
    assert ei.value.status_code == 502

    with pytest.raises(HTTPException) as ei:
        unwrap(_resp(200, text="<html>gateway</html>"))
    assert ei.value.status_code == 502

    with pytest.raises(HTTPException) as ei:
        unwrap(_resp(200, json={"data": None, "message": "weird", "status_code": 422}))
    assert ei.value.status_code == 502
    assert ei.value.detail["message"] == "weird"


def test_transport_errors_become_502(monkeypatch):
    def _boom(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    broken = httpx.Client(transport=httpx.MockTransport(_boom))
    monkeypatch.setattr(upstream, "_httpx_client", lambda: broken)
    with pytest.raises(HTTPException) as ei:
        upstream.resto_call("GET", "/api/v1/category/", token="secret-token")
    assert ei.value.status_code == 502
    assert ei.value.detail == "resto api unavailable"


def test_bearer_token_is_attached(monkeypatch):
    seen = {}

    def _capture(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"data": [], "status_code": 200})

    monkeypatch.setattr(upstream, "_httpx_client", lambda: httpx.Client(transport=httpx.MockTransport(_capture)))
    monkeypatch.setattr(upstream, "RESTO_BASE", "http://resto.local/")
    unwrap(upstream.resto_call("GET", "/api/v1/tables/", token="tkn"))
    assert seen["auth"] == "Bearer tkn"
    assert seen["url"] == "http://resto.local/api/v1/tables/"


def test_encode_order_id():
    assert encode_order_id("INV/20261019/0001") == "INV|20261019|0001"
    assert encode_order_id("INV|1") == "INV|1"
