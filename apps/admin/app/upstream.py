"""
Client for the resto API.

All admin endpoints talk to the resto API through the helpers below so that
envelope unwrapping and error mapping behave the same everywhere. Bearer
tokens are attached per call and never logged.
"""
from __future__ import annotations

import logging
import os
from typing import Any

import httpx
from fastapi import HTTPException
from simenu_shared.request_id import get_request_id

_log = logging.getLogger("simenu.upstream")

RESTO_BASE = os.getenv("RESTO_API_BASE_URL", "http://localhost:4000")
RESTO_TIMEOUT = float(os.getenv("RESTO_API_TIMEOUT_SECS", "10"))

_HTTPX_CLIENT: httpx.Client | None = None
_HTTPX_ASYNC_CLIENT: httpx.AsyncClient | None = None

_OK_CODES = (200, 201)


def resto_url(path: str) -> str:
    return RESTO_BASE.rstrip("/") + "/" + path.lstrip("/")


def _httpx_client() -> httpx.Client:
    """Shared sync HTTPX client (keep-alive, pooled)."""
    global _HTTPX_CLIENT
    if _HTTPX_CLIENT is None:
        _HTTPX_CLIENT = httpx.Client(
            timeout=RESTO_TIMEOUT,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )
    return _HTTPX_CLIENT


def _httpx_async_client() -> httpx.AsyncClient:
    """Shared async HTTPX client (keep-alive, pooled)."""
    global _HTTPX_ASYNC_CLIENT
    if _HTTPX_ASYNC_CLIENT is None:
        _HTTPX_ASYNC_CLIENT = httpx.AsyncClient(
            timeout=RESTO_TIMEOUT,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )
    return _HTTPX_ASYNC_CLIENT


async def close_clients() -> None:
    """Close shared HTTPX clients on shutdown."""
    global _HTTPX_CLIENT, _HTTPX_ASYNC_CLIENT
    if _HTTPX_CLIENT is not None:
        _HTTPX_CLIENT.close()
    if _HTTPX_ASYNC_CLIENT is not None:
        await _HTTPX_ASYNC_CLIENT.aclose()
    _HTTPX_CLIENT = None
    _HTTPX_ASYNC_CLIENT = None


def _headers(token: str | None) -> dict[str, str]:
    headers = {"Accept": "application/json", "X-Request-ID": get_request_id()}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def resto_call(
    method: str,
    path: str,
    *,
    token: str | None = None,
    params: dict[str, Any] | None = None,
    json: Any = None,
    data: dict[str, Any] | None = None,
    files: dict[str, Any] | None = None,
) -> httpx.Response:
    try:
        return _httpx_client().request(
            method,
            resto_url(path),
            headers=_headers(token),
            params=params,
            json=json,
            data=data,
            files=files,
        )
    except httpx.HTTPError as e:
        _log.warning("resto api unreachable: %s %s (%s)", method, path, type(e).__name__)
        raise HTTPException(status_code=502, detail="resto api unavailable")


async def resto_call_async(
    method: str,
    path: str,
    *,
    token: str | None = None,
    params: dict[str, Any] | None = None,
    json: Any = None,
) -> httpx.Response:
    try:
        return await _httpx_async_client().request(
            method,
            resto_url(path),
            headers=_headers(token),
            params=params,
            json=json,
        )
    except httpx.HTTPError as e:
        _log.warning("resto api unreachable: %s %s (%s)", method, path, type(e).__name__)
        raise HTTPException(status_code=502, detail="resto api unavailable")


def normalize_errors(errors: Any) -> dict[str, Any]:
    """
    Flattens the resto API ``errors`` payload.

    The API answers with a plain string, a list of ``{field, message}``
    objects, a list of strings or a ``{field: message}`` mapping. The result
    always has ``messages`` (list) and ``fields`` (field -> message).
    """
    messages: list[str] = []
    fields: dict[str, str] = {}
    if isinstance(errors, str):
        if errors:
            messages.append(errors)
    elif isinstance(errors, list):
        for item in errors:
            if isinstance(item, dict):
                msg = str(item.get("message") or "")
                field = item.get("field")
                if msg:
                    messages.append(msg)
                if field and msg:
                    fields[str(field)] = msg
            elif isinstance(item, str) and item:
                messages.append(item)
    elif isinstance(errors, dict):
        for field, msg in errors.items():
            if isinstance(msg, str):
                fields[str(field)] = msg
                messages.append(msg)
    return {"messages": messages, "fields": fields}


def _body(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return None


def unwrap(r: httpx.Response) -> Any:
    """Returns ``data`` of a successful envelope or raises HTTPException."""
    body = _body(r)
    if r.status_code >= 500 or not isinstance(body, dict):
        _log.warning("resto api error: status=%s url=%s", r.status_code, r.request.url.path)
        raise HTTPException(status_code=502, detail={"message": "resto api error", "status_code": r.status_code})
    if r.status_code >= 400:
        errs = normalize_errors(body.get("errors"))
        message = str(body.get("message") or "") or "; ".join(errs["messages"]) or "request failed"
        raise HTTPException(status_code=r.status_code, detail={"message": message, "errors": errs})
    code = body.get("status_code", r.status_code)
    try:
        code = int(code)
    except (TypeError, ValueError):
        code = 0
    if code not in _OK_CODES:
        errs = normalize_errors(body.get("errors"))
        message = str(body.get("message") or "") or "; ".join(errs["messages"]) or "unexpected response"
        _log.warning("resto api envelope status=%s url=%s", code, r.request.url.path)
        raise HTTPException(status_code=502, detail={"message": message, "errors": errs})
    if "data" in body:
        return body["data"]
    return body


def encode_order_id(order_id: str) -> str:
    """Order ids may contain '/', the resto API expects '|' in path segments."""
    return order_id.replace("/", "|")
