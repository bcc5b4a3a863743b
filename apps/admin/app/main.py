from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, Response, JSONResponse
from starlette.responses import RedirectResponse
from simenu_shared import RequestIDMiddleware, configure_cors, add_standard_health, setup_json_logging
from simenu_shared.request_id import get_request_id
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from collections import deque
import asyncio
import html as _html
import logging
import os
import time
from typing import Any
from urllib.parse import urlparse

from . import cart as _cart
from . import qr as _qr
from . import reports as _reports
from . import sessions as _sessions
from . import upstream
from .events import emit_event
from .formatting import digits_only, format_date, format_rupiah, time_elapsed
from .upstream import encode_order_id, resto_call, resto_call_async, unwrap


def _env_or(key: str, default: str) -> str:
    v = os.getenv(key)
    return v if v is not None else default


_ENV_LOWER = _env_or("ENV", "dev").lower()

PUBLIC_MENU_BASE = _env_or("PUBLIC_MENU_BASE_URL", "http://localhost:3000/menu")
SESSION_COOKIE = "simenu_session"

AUTH_RATE_WINDOW_SECS = int(_env_or("AUTH_RATE_WINDOW_SECS", "60"))
AUTH_MAX_PER_EMAIL = int(_env_or("AUTH_MAX_PER_EMAIL", "5"))
AUTH_MAX_PER_IP = int(_env_or("AUTH_MAX_PER_IP", "40"))

SECURITY_HEADERS_ENABLED = _env_or("SECURITY_HEADERS_ENABLED", "true").lower() == "true"
MAINTENANCE_MODE_ENABLED = _env_or("MAINTENANCE_MODE", "false").lower() == "true"

# CSRF guard only applies to cookie-authenticated, non-idempotent requests.
CSRF_GUARD_ENABLED = _env_or("CSRF_GUARD_ENABLED", "true" if _ENV_LOWER in ("prod", "staging") else "false").lower() == "true"
_CSRF_ALLOWED_ORIGINS_RAW = [o.strip() for o in (os.getenv("ALLOWED_ORIGINS") or "").split(",") if o.strip()]
if not _CSRF_ALLOWED_ORIGINS_RAW:
    _CSRF_ALLOWED_ORIGINS_RAW = ["http://localhost:5173", "http://127.0.0.1:5173"]
_CSRF_ORIGIN_WILDCARD = "*" in _CSRF_ALLOWED_ORIGINS_RAW
_CSRF_ALLOWED_ORIGINS = {o for o in _CSRF_ALLOWED_ORIGINS_RAW if o and o != "*"}

PAYMENT_METHODS = {
    "cash": "Tunai",
    "credit_card": "Kartu Kredit",
    "debit_card": "Kartu Debit",
    "qris": "QRIS",
}
ORDER_TYPES = ("dine_in", "take_away")
ITEM_STATUSES = ("pending", "completed", "cancelled")
TABLE_STATUSES = ("tersedia", "terisi", "maintenance")


app = FastAPI(title="siMenu Admin", version="0.1.0")
setup_json_logging()
app.add_middleware(RequestIDMiddleware)
configure_cors(app, os.getenv("ALLOWED_ORIGINS", ""))
add_standard_health(app, checks={"session_db": _sessions.ping})

_log = logging.getLogger("simenu.admin")
_audit_logger = logging.getLogger("simenu.audit")
_AUDIT_EVENTS: deque[dict[str, Any]] = deque(maxlen=2000)


class _AuditInMemoryHandler(logging.Handler):
    """Keeps the latest audit records for GET /admin/audit."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = record.msg
            if isinstance(msg, dict):
                payload = dict(msg)
            else:
                payload = {"event": "audit", "action": record.getMessage()}
            payload.setdefault("ts_ms", int(time.time() * 1000))
            _AUDIT_EVENTS.append(payload)
        except Exception:
            self.handleError(record)


_audit_logger.addHandler(_AuditInMemoryHandler())
_audit_logger.setLevel(logging.INFO)


def _audit(action: str, actor: str | None = None, **extra: Any) -> None:
    """Structured audit entry for admin mutations."""
    payload: dict[str, Any] = {
        "event": "audit",
        "action": action,
        "actor": actor or "",
        "ts_ms": int(time.time() * 1000),
    }
    for k, v in extra.items():
        if v is not None:
            payload[k] = v
    _audit_logger.info(payload)


def _is_prod_env() -> bool:
    return (os.getenv("ENV") or "dev").strip().lower() in ("prod", "production", "staging")


@app.exception_handler(HTTPException)
async def _http_exception_handler(request: Request, exc: HTTPException):
    # Never leak upstream details for server-side errors in prod/staging.
    if _is_prod_env() and int(exc.status_code or 500) >= 500:
        payload: dict[str, Any] = {"detail": "internal error"}
        rid = get_request_id()
        if rid:
            payload["request_id"] = rid
        return JSONResponse(status_code=exc.status_code, content=payload)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    rid = get_request_id()
    logging.getLogger("simenu.errors").exception("unhandled exception", extra={"request_id": rid})
    payload: dict[str, Any] = {"detail": "internal error" if _is_prod_env() else str(exc)}
    if rid:
        payload["request_id"] = rid
    return JSONResponse(status_code=500, content=payload)


def _normalize_origin(raw: str | None) -> str | None:
    """`scheme://host[:port]` of an Origin header, None for anything else."""
    s = (raw or "").strip()
    if not s or s.lower() == "null":
        return None
    try:
        u = urlparse(s)
        port = u.port
    except ValueError:
        return None
    scheme = (u.scheme or "").lower()
    host = (u.hostname or "").strip().lower()
    if scheme not in ("http", "https") or not host:
        return None
    return f"{scheme}://{host}:{port}" if port else f"{scheme}://{host}"


def _csrf_guard(request: Request) -> Response | None:
    """
    Blocks cross-site writes that ride on the session cookie.

    Requests that carry the session in the X-Session header are skipped:
    a browser cannot attach custom headers cross-origin without CORS.
    """
    if not CSRF_GUARD_ENABLED:
        return None
    if (request.method or "").upper() not in ("POST", "PUT", "PATCH", "DELETE"):
        return None
    if request.headers.get("X-Session"):
        return None
    if not (request.cookies.get(SESSION_COOKIE) or "").strip():
        return None

    origin_raw = request.headers.get("Origin")
    if origin_raw:
        origin = _normalize_origin(origin_raw)
        if not origin:
            return JSONResponse(status_code=403, content={"detail": "forbidden"})
        if _CSRF_ORIGIN_WILDCARD or origin in _CSRF_ALLOWED_ORIGINS:
            return None
        # Same host behind a TLS-terminating proxy.
        req_host = (request.headers.get("host") or "").split(":", 1)[0].strip().lower()
        origin_host = (urlparse(origin).hostname or "").lower()
        if req_host and req_host == origin_host:
            return None
        return JSONResponse(status_code=403, content={"detail": "forbidden"})

    sfs = (request.headers.get("Sec-Fetch-Site") or "").strip().lower()
    if sfs == "cross-site":
        return JSONResponse(status_code=403, content={"detail": "forbidden"})
    return None


@app.middleware("http")
async def _security_headers_mw(request: Request, call_next):
    """
    Maintenance mode, CSRF guard and basic security headers.
    """
    if MAINTENANCE_MODE_ENABLED:
        path = request.url.path
        if not (path.startswith("/health") or path.startswith("/admin/audit")):
            return JSONResponse(
                status_code=503,
                content={"status": "maintenance", "detail": "service temporarily unavailable"},
                headers={"Retry-After": "60"},
            )

    block = _csrf_guard(request)
    if block is not None:
        return block

    response = await call_next(request)
    if SECURITY_HEADERS_ENABLED:
        headers = response.headers
        headers.setdefault("X-Content-Type-Options", "nosniff")
        headers.setdefault("X-Frame-Options", "DENY")
        headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        headers.setdefault(
            "Content-Security-Policy",
            "default-src 'self'; img-src 'self' data: https:; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; frame-ancestors 'none'",
        )
    return response


app.router.on_shutdown.append(upstream.close_clients)


# Optional: mount the in-memory resto API for local development.
if _env_or("ENABLE_STUBS", "false").lower() == "true":
    from .resto_stub import app as resto_stub_app

    app.mount("/stub/resto", resto_stub_app)


# --- auth helpers ---

_AUTH_RATE_EMAIL: dict[str, list[int]] = {}
_AUTH_RATE_IP: dict[str, list[int]] = {}


def _now() -> int:
    return int(time.time())


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


def _rate_limit_auth(request: Request, email: str) -> None:
    """
    In-memory sliding window for login attempts, per email and per IP.
    """
    now = _now()
    if email:
        lst = [ts for ts in _AUTH_RATE_EMAIL.get(email, []) if ts >= now - AUTH_RATE_WINDOW_SECS]
        lst.append(now)
        _AUTH_RATE_EMAIL[email] = lst
        if len(lst) > AUTH_MAX_PER_EMAIL:
            raise HTTPException(status_code=429, detail="rate limited: too many attempts for this email")
    ip = _client_ip(request)
    if ip:
        lst_ip = [ts for ts in _AUTH_RATE_IP.get(ip, []) if ts >= now - AUTH_RATE_WINDOW_SECS]
        lst_ip.append(now)
        _AUTH_RATE_IP[ip] = lst_ip
        if len(lst_ip) > AUTH_MAX_PER_IP:
            raise HTTPException(status_code=429, detail="rate limited: too many requests from this ip")


def _prune_sessions() -> None:
    """Deletes expired session rows and the carts their owners left behind."""
    try:
        removed = _sessions.cleanup_expired()
    except SQLAlchemyError:
        _log.exception("session cleanup failed")
        removed = 0
    carts = _cart.prune_owners(lambda sid: _sessions.get_session(sid) is not None)
    if removed or carts:
        _log.info("pruned %d expired sessions and %d carts", removed, carts)


app.router.on_startup.append(_prune_sessions)


def _session_sid(request: Request) -> str | None:
    raw = request.headers.get("X-Session")
    if raw:
        return _sessions.normalize_sid(raw)
    return _sessions.normalize_sid(request.cookies.get(SESSION_COOKIE))


def _require_admin(request: Request) -> tuple[str, _sessions.AdminSession]:
    sid = _session_sid(request)
    rec = _sessions.get_session(sid) if sid else None
    if sid is None or rec is None:
        raise HTTPException(status_code=401, detail="unauthorized")
    if rec.role != "Admin":
        raise HTTPException(status_code=403, detail="forbidden")
    return sid, rec


def _set_session_cookie(response: Response, sid: str) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        sid,
        max_age=_sessions.AUTH_SESSION_TTL_SECS,
        httponly=True,
        samesite="lax",
        secure=_is_prod_env(),
        path="/",
    )


def _login_from(data: Any) -> tuple[str, dict[str, Any]]:
    """Turns a resto `{token, user}` login payload into an admin session."""
    if not isinstance(data, dict) or not data.get("token") or not isinstance(data.get("user"), dict):
        raise HTTPException(status_code=502, detail="invalid login response")
    user = data["user"]
    if user.get("role") != "Admin":
        _audit("login_denied", actor=str(user.get("email") or ""), role=user.get("role"))
        raise HTTPException(status_code=403, detail="unauthorized role")
    _prune_sessions()
    sid = _sessions.create_session(str(data["token"]), user)
    _audit("login", actor=str(user.get("email") or ""))
    return sid, {k: user.get(k) for k in ("id", "name", "email", "role")}


def _detail_message(detail: Any) -> str:
    if isinstance(detail, dict):
        errs = detail.get("errors")
        if isinstance(errs, dict) and errs.get("messages"):
            return ", ".join(errs["messages"])
        return str(detail.get("message") or "request failed")
    return str(detail)


def _validation_error(fields: dict[str, str]) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={
            "message": "validation error",
            "errors": {"messages": list(fields.values()), "fields": fields},
        },
    )


# --- auth ---

class LoginReq(BaseModel):
    email: str
    password: str


class ProfileReq(BaseModel):
    name: str


@app.post("/auth/login")
def auth_login(req: LoginReq, request: Request, response: Response):
    email = req.email.strip().lower()
    fields: dict[str, str] = {}
    if not email:
        fields["email"] = "Email is required"
    if not req.password:
        fields["password"] = "Password is required"
    if fields:
        raise _validation_error(fields)
    _rate_limit_auth(request, email)
    data = unwrap(resto_call("POST", "/api/v1/users/login", json={"email": email, "password": req.password}))
    sid, user = _login_from(data)
    _set_session_cookie(response, sid)
    return {"ok": True, "user": user, "session": sid}


@app.get("/auth/google/url")
def auth_google_url():
    data = unwrap(resto_call("GET", "/api/v1/auth/url"))
    url = data.get("url") if isinstance(data, dict) else data
    if not url:
        raise HTTPException(status_code=502, detail="invalid auth url response")
    return {"url": url}


@app.get("/auth/callback")
def auth_callback(request: Request):
    query = request.url.query
    if not query:
        return RedirectResponse(url="/login", status_code=303)
    try:
        data = unwrap(resto_call("GET", f"/api/v1/auth/token?{query}"))
        sid, _ = _login_from(data)
    except HTTPException as e:
        _log.info("oauth callback rejected: %s", e.status_code)
        if isinstance(e.detail, dict):
            messages = e.detail.get("errors", {}).get("messages") or [e.detail.get("message") or "login failed"]
        else:
            messages = [str(e.detail)]
        return HTMLResponse(content=_login_page(messages), status_code=e.status_code)
    resp = RedirectResponse(url="/admin/dashboard", status_code=303)
    _set_session_cookie(resp, sid)
    return resp


@app.get("/auth/check")
def auth_check(request: Request):
    guest: dict[str, Any] = {"role": "Guest", "is_logged_in": False, "error": None}
    sid = _session_sid(request)
    rec = _sessions.get_session(sid) if sid else None
    if rec is None:
        return guest
    try:
        data = unwrap(resto_call("GET", "/api/v1/auth/check", token=rec.token))
    except HTTPException as e:
        return dict(guest, error=_detail_message(e.detail))
    if not isinstance(data, dict) or not isinstance(data.get("role"), str):
        return dict(guest, error="Invalid response format")
    if data["role"] != "Admin":
        return dict(guest, error="Unauthorized role")
    return {"role": "Admin", "is_logged_in": True, "error": None}


@app.post("/auth/logout")
def auth_logout(request: Request, response: Response):
    sid = _session_sid(request)
    if sid:
        rec = _sessions.get_session(sid)
        _sessions.revoke_session(sid)
        _cart.drop_owner_carts(sid)
        if rec is not None:
            _audit("logout", actor=rec.email)
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"ok": True}


@app.get("/me")
def me(request: Request):
    _, sess = _require_admin(request)
    return unwrap(resto_call("GET", f"/api/v1/users/{sess.user_id}", token=sess.token))


@app.put("/me")
def update_me(req: ProfileReq, request: Request):
    sid, sess = _require_admin(request)
    name = req.name.strip()
    if not name:
        raise _validation_error({"name": "Name is required"})
    data = unwrap(resto_call("PUT", "/api/v1/users/", token=sess.token, json={"id": sess.user_id, "name": name}))
    _sessions.update_session_name(sid, name)
    _audit("profile_update", actor=sess.email)
    return data


# --- categories ---

class CategoryReq(BaseModel):
    name: str


@app.get("/categories")
def list_categories(request: Request):
    _, sess = _require_admin(request)
    return unwrap(resto_call("GET", "/api/v1/category/", token=sess.token))


@app.get("/categories/{category_id}")
def get_category(category_id: int, request: Request):
    _, sess = _require_admin(request)
    return unwrap(resto_call("GET", f"/api/v1/category/{category_id}", token=sess.token))


@app.post("/categories")
def create_category(req: CategoryReq, request: Request):
    _, sess = _require_admin(request)
    name = req.name.strip()
    if not name:
        raise _validation_error({"name": "Name is required"})
    data = unwrap(resto_call("POST", "/api/v1/category/", token=sess.token, json={"name": name}))
    _audit("category_create", actor=sess.email, name=name)
    return data


@app.put("/categories/{category_id}")
def update_category(category_id: int, req: CategoryReq, request: Request):
    _, sess = _require_admin(request)
    name = req.name.strip()
    if not name:
        raise _validation_error({"name": "Name is required"})
    data = unwrap(resto_call("PUT", "/api/v1/category/", token=sess.token, json={"id": category_id, "name": name}))
    _audit("category_update", actor=sess.email, category_id=category_id)
    return data


@app.delete("/categories/{category_id}")
def delete_category(category_id: int, request: Request):
    _, sess = _require_admin(request)
    unwrap(resto_call("DELETE", f"/api/v1/category/{category_id}", token=sess.token))
    _audit("category_delete", actor=sess.email, category_id=category_id)
    return {"ok": True}


# --- products ---

def _short(text: Any, limit: int = 50) -> str:
    s = str(text or "")
    return s[:limit] + "..." if len(s) > limit else s


def _as_number(raw: Any) -> float | None:
    try:
        return float(str(raw).strip())
    except (TypeError, ValueError):
        return None


async def _product_form(request: Request, *, create: bool) -> tuple[dict[str, Any], dict[str, Any] | None]:
    """
    Validates the multipart product form; returns (data, files) ready for
    the resto API. `image` may be an uploaded file or an image URL.
    """
    form = await request.form()
    fields: dict[str, str] = {}
    name = str(form.get("name") or "").strip()
    if not name:
        fields["name"] = "Name is required"
    price = _as_number(form.get("price"))
    if price is None or price <= 0:
        fields["price"] = "Price must be greater than 0"
    category = _as_number(form.get("category"))
    if category is None or category <= 0:
        fields["category"] = "Category is required"
    data: dict[str, Any] = {
        "name": name,
        "description": str(form.get("description") or ""),
        "price": str(price) if price is not None else "",
        "category": str(int(category)) if category is not None else "",
    }
    if create:
        raw_stock = form.get("stock")
        stock = _as_number(raw_stock) if raw_stock not in (None, "") else 0.0
        if stock is None or stock < 0:
            fields["stock"] = "Stock must be 0 or more"
        else:
            data["stock"] = str(int(stock))
    if fields:
        raise _validation_error(fields)

    files = None
    image = form.get("image")
    if isinstance(image, str):
        if image.strip():
            data["image"] = image.strip()
    elif image is not None and image.filename:
        content = await image.read()
        files = {"image": (image.filename, content, image.content_type or "application/octet-stream")}
    return data, files


@app.get("/products")
def list_products(request: Request):
    _, sess = _require_admin(request)
    rows = unwrap(resto_call("GET", "/api/v1/products/", token=sess.token)) or []
    return [dict(p, description_short=_short(p.get("description"))) for p in rows]


@app.get("/products/{product_id}")
def get_product(product_id: str, request: Request):
    _, sess = _require_admin(request)
    return unwrap(resto_call("GET", f"/api/v1/products/{product_id}", token=sess.token))


@app.post("/products")
async def create_product(request: Request):
    _, sess = _require_admin(request)
    data, files = await _product_form(request, create=True)
    r = await asyncio.to_thread(resto_call, "POST", "/api/v1/products/", token=sess.token, data=data, files=files)
    out = unwrap(r)
    _audit("product_create", actor=sess.email, name=data["name"])
    return out


@app.put("/products/{product_id}")
async def update_product(product_id: str, request: Request):
    _, sess = _require_admin(request)
    data, files = await _product_form(request, create=False)
    data["id"] = product_id
    r = await asyncio.to_thread(resto_call, "PUT", "/api/v1/products/", token=sess.token, data=data, files=files)
    out = unwrap(r)
    _audit("product_update", actor=sess.email, product_id=product_id)
    return out


@app.delete("/products/{product_id}")
def delete_product(product_id: str, request: Request):
    _, sess = _require_admin(request)
    unwrap(resto_call("DELETE", f"/api/v1/products/{product_id}", token=sess.token))
    _audit("product_delete", actor=sess.email, product_id=product_id)
    return {"ok": True}


# --- inventory ---

class InventoryReq(BaseModel):
    product_id: str
    stock_qty: int = Field(ge=0)
    alert_threshold: int = Field(ge=0)


def stock_status(rec: dict[str, Any]) -> str:
    qty = rec.get("stock_qty")
    if qty is None:
        return "unknown"
    threshold = rec.get("alert_threshold") or 0
    if qty <= 0:
        return "out_of_stock"
    if qty <= threshold:
        return "restock"
    return "available"


def _with_status(rec: Any) -> Any:
    if isinstance(rec, dict):
        return dict(rec, stock_status=stock_status(rec))
    return rec


@app.get("/inventory")
def list_inventory(request: Request):
    _, sess = _require_admin(request)
    rows = unwrap(resto_call("GET", "/api/v1/inventory/", token=sess.token)) or []
    return [_with_status(r) for r in rows]


@app.get("/inventory/alerts")
def inventory_alerts(request: Request):
    rows = list_inventory(request)
    return [r for r in rows if r.get("stock_status") in ("out_of_stock", "restock")]


@app.get("/inventory/{inventory_id}")
def get_inventory(inventory_id: int, request: Request):
    _, sess = _require_admin(request)
    return _with_status(unwrap(resto_call("GET", f"/api/v1/inventory/{inventory_id}", token=sess.token)))


@app.post("/inventory")
def create_inventory(req: InventoryReq, request: Request):
    _, sess = _require_admin(request)
    data = unwrap(resto_call("POST", "/api/v1/inventory/", token=sess.token, json=req.model_dump()))
    _audit("inventory_create", actor=sess.email, product_id=req.product_id)
    return _with_status(data)


@app.put("/inventory/{inventory_id}")
def update_inventory(inventory_id: int, req: InventoryReq, request: Request):
    _, sess = _require_admin(request)
    payload = dict(req.model_dump(), id=inventory_id)
    data = unwrap(resto_call("PUT", "/api/v1/inventory/", token=sess.token, json=payload))
    _audit("inventory_update", actor=sess.email, inventory_id=inventory_id, stock_qty=req.stock_qty)
    return _with_status(data)


@app.delete("/inventory/{inventory_id}")
def delete_inventory(inventory_id: int, request: Request):
    _, sess = _require_admin(request)
    unwrap(resto_call("DELETE", f"/api/v1/inventory/{inventory_id}", token=sess.token))
    _audit("inventory_delete", actor=sess.email, inventory_id=inventory_id)
    return {"ok": True}


# --- tables ---

class TableReq(BaseModel):
    code: str
    status: str = "tersedia"
    capacity: int = 1


def _check_table(req: TableReq) -> None:
    fields: dict[str, str] = {}
    if not req.code.strip():
        fields["code"] = "Code is required"
    if req.status not in TABLE_STATUSES:
        fields["status"] = "Status must be one of " + ", ".join(TABLE_STATUSES)
    if req.capacity < 1:
        fields["capacity"] = "Capacity must be at least 1"
    if fields:
        raise _validation_error(fields)


@app.get("/tables")
def list_tables(request: Request):
    _, sess = _require_admin(request)
    return unwrap(resto_call("GET", "/api/v1/tables/", token=sess.token))


@app.get("/tables/{code}")
def get_table(code: str, request: Request):
    _, sess = _require_admin(request)
    return unwrap(resto_call("GET", f"/api/v1/tables/{code}", token=sess.token))


@app.post("/tables")
def create_table(req: TableReq, request: Request):
    _, sess = _require_admin(request)
    _check_table(req)
    payload = {"code": req.code.strip(), "status": req.status, "capacity": req.capacity}
    data = unwrap(resto_call("POST", "/api/v1/tables/", token=sess.token, json=payload))
    _audit("table_create", actor=sess.email, code=payload["code"])
    return data


@app.put("/tables/{code}")
def update_table(code: str, req: TableReq, request: Request):
    _, sess = _require_admin(request)
    _check_table(req)
    current = unwrap(resto_call("GET", f"/api/v1/tables/{code}", token=sess.token))
    if not isinstance(current, dict) or current.get("id") is None:
        raise HTTPException(status_code=404, detail="table not found")
    payload = {"id": current["id"], "code": req.code.strip(), "status": req.status, "capacity": req.capacity}
    data = unwrap(resto_call("PUT", "/api/v1/tables/", token=sess.token, json=payload))
    _audit("table_update", actor=sess.email, code=code)
    return data


@app.delete("/tables/{code}")
def delete_table(code: str, request: Request):
    _, sess = _require_admin(request)
    unwrap(resto_call("DELETE", f"/api/v1/tables/{code}", token=sess.token))
    _audit("table_delete", actor=sess.email, code=code)
    return {"ok": True}


def _table_qr(code: str, token: str) -> dict[str, Any] | None:
    try:
        rec = unwrap(resto_call("GET", f"/api/v1/tables/qr-code/{code}", token=token))
    except HTTPException as e:
        if e.status_code in (401, 403):
            raise
        return None
    if not isinstance(rec, dict):
        return None
    return rec


def _qr_url(code: str, rec: dict[str, Any]) -> str:
    return str(rec.get("url") or f"{PUBLIC_MENU_BASE}?table={code}")


@app.get("/tables/{code}/qr")
def get_table_qr(code: str, request: Request):
    _, sess = _require_admin(request)
    rec = _table_qr(code, sess.token)
    if rec is None:
        return {"generated": False, "url": None, "updated_at": None, "generated_ago": None}
    updated_at = rec.get("updated_at")
    return {
        "generated": True,
        "url": _qr_url(code, rec),
        "updated_at": updated_at,
        "generated_ago": time_elapsed(updated_at),
    }


@app.post("/tables/{code}/qr")
def generate_table_qr(code: str, request: Request):
    _, sess = _require_admin(request)
    data = unwrap(resto_call("POST", "/api/v1/tables/qr-code", token=sess.token, json={"code": code}))
    _audit("table_qr_generate", actor=sess.email, code=code)
    return data


@app.delete("/tables/{code}/qr")
def delete_table_qr(code: str, request: Request):
    _, sess = _require_admin(request)
    unwrap(resto_call("DELETE", f"/api/v1/tables/qr-code/{code}", token=sess.token))
    _audit("table_qr_delete", actor=sess.email, code=code)
    return {"ok": True}


def _require_qr(code: str, token: str) -> dict[str, Any]:
    rec = _table_qr(code, token)
    if rec is None:
        raise HTTPException(status_code=404, detail="qr code not generated")
    return rec


@app.get("/tables/{code}/qr.png")
def table_qr_png(code: str, request: Request, box_size: int = 8):
    _, sess = _require_admin(request)
    rec = _require_qr(code, sess.token)
    return Response(content=_qr.qr_png(_qr_url(code, rec), box_size=box_size), media_type="image/png")


@app.get("/tables/{code}/qr.pdf")
def table_qr_pdf(code: str, request: Request):
    _, sess = _require_admin(request)
    rec = _require_qr(code, sess.token)
    pdf = _qr.table_tent_pdf(code, _qr_url(code, rec))
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="meja-{code}.pdf"'},
    )


@app.get("/tables/{code}/qr/print", response_class=HTMLResponse)
def table_qr_print(code: str, request: Request):
    _, sess = _require_admin(request)
    rec = _require_qr(code, sess.token)
    generated = format_date(rec.get("updated_at"))
    return HTMLResponse(content=_qr.print_page_html(code, _qr_url(code, rec), generated=generated))


@app.get("/tables/{code}/bill")
def table_bill(code: str, request: Request):
    """
    Current bill of a table: the first order that is not completed yet, or
    the most recent (already paid) order when every order is completed.
    """
    _, sess = _require_admin(request)
    try:
        orders = unwrap(resto_call("GET", f"/api/v1/orders/table/{code}", token=sess.token)) or []
    except HTTPException as e:
        if e.status_code == 404:
            return {"order": None}
        raise
    if not orders:
        return {"order": None}
    for o in orders:
        if o.get("status") != "completed":
            return {"order": _order_view(o), "paid": False}
    latest = max(orders, key=lambda o: str(o.get("created_at") or ""))
    return {"order": _order_view(latest), "paid": True}


# --- orders ---

class ItemStatusReq(BaseModel):
    status: str


class CartItemReq(BaseModel):
    product_id: str
    notes: str = ""


class CartPatchReq(BaseModel):
    quantity: int | None = None
    notes: str | None = None


class CheckoutReq(BaseModel):
    customer_name: str
    order_type: str = "dine_in"


def _order_view(o: Any) -> Any:
    if not isinstance(o, dict):
        return o
    amount = o.get("total_amount") or 0
    try:
        total = format_rupiah(amount)
    except (TypeError, ValueError):
        total = str(amount)
    return dict(
        o,
        total_formatted=total,
        created_label=format_date(o.get("created_at")),
    )


@app.get("/orders")
def list_orders(request: Request, status: str = ""):
    _, sess = _require_admin(request)
    params = {"status": status} if status else None
    rows = unwrap(resto_call("GET", "/api/v1/orders", token=sess.token, params=params)) or []
    return [_order_view(o) for o in rows]


@app.get("/orders/menu")
def order_menu(request: Request, category: str = "", q: str = ""):
    _, sess = _require_admin(request)
    rows = unwrap(resto_call("GET", "/api/v1/products/", token=sess.token)) or []
    rows = [p for p in rows if p.get("is_available")]
    if category:
        rows = [p for p in rows if str(p.get("category")) == category]
    needle = q.strip().lower()
    if needle:
        rows = [
            p for p in rows
            if needle in str(p.get("name") or "").lower() or needle in str(p.get("description") or "").lower()
        ]
    return rows


@app.put("/orders/items/{item_id}/status")
def update_order_item_status(item_id: int, req: ItemStatusReq, request: Request):
    _, sess = _require_admin(request)
    if req.status not in ITEM_STATUSES:
        raise _validation_error({"status": "Status must be one of " + ", ".join(ITEM_STATUSES)})
    data = unwrap(resto_call(
        "PUT", "/api/v1/orders/status", token=sess.token, json={"itemId": item_id, "newStatus": req.status}
    ))
    _audit("order_item_status", actor=sess.email, item_id=item_id, status=req.status)
    return data


@app.get("/orders/cart/{table}")
def get_order_cart(table: str, request: Request):
    sid, _ = _require_admin(request)
    cart = _cart.find_cart(sid, table)
    return (cart or _cart.Cart()).snapshot()


@app.post("/orders/cart/{table}/items")
def add_cart_item(table: str, req: CartItemReq, request: Request):
    sid, sess = _require_admin(request)
    product = unwrap(resto_call("GET", f"/api/v1/products/{req.product_id}", token=sess.token))
    if not isinstance(product, dict) or not product.get("is_available"):
        raise HTTPException(status_code=400, detail="product not available")
    cart = _cart.get_cart(sid, table)
    cart.add(product, notes=req.notes)
    return cart.snapshot()


@app.patch("/orders/cart/{table}/items/{product_id}")
def update_cart_item(table: str, product_id: str, req: CartPatchReq, request: Request):
    sid, _ = _require_admin(request)
    cart = _cart.find_cart(sid, table)
    if cart is None:
        raise HTTPException(status_code=404, detail="item not in cart")
    try:
        cart.update(product_id, quantity=req.quantity, notes=req.notes)
    except KeyError:
        raise HTTPException(status_code=404, detail="item not in cart")
    if not cart.lines:
        _cart.drop_cart(sid, table)
    return cart.snapshot()


@app.delete("/orders/cart/{table}/items/{product_id}")
def remove_cart_item(table: str, product_id: str, request: Request):
    sid, _ = _require_admin(request)
    cart = _cart.find_cart(sid, table)
    if cart is None or not cart.remove(product_id):
        raise HTTPException(status_code=404, detail="item not in cart")
    if not cart.lines:
        _cart.drop_cart(sid, table)
    return cart.snapshot()


@app.delete("/orders/cart/{table}")
def clear_cart(table: str, request: Request):
    sid, _ = _require_admin(request)
    _cart.drop_cart(sid, table)
    return {"items": [], "total": 0, "count": 0}


@app.post("/orders/cart/{table}/checkout")
def checkout_cart(table: str, req: CheckoutReq, request: Request):
    sid, sess = _require_admin(request)
    cart = _cart.find_cart(sid, table)
    if cart is None or not cart.lines:
        raise HTTPException(status_code=400, detail="Please add items to your order")
    fields: dict[str, str] = {}
    customer = req.customer_name.strip()
    if not customer:
        fields["customer_name"] = "Customer name is required"
    if req.order_type not in ORDER_TYPES:
        fields["order_type"] = "Order type must be dine_in or take_away"
    if fields:
        raise _validation_error(fields)
    key = _cart.cart_key(table)
    payload = {
        "on_behalf": customer,
        "table_id": "" if key == _cart.WALK_IN else key,
        "order_type": req.order_type,
        "items": cart.order_items(),
    }
    data = unwrap(resto_call("POST", "/api/v1/orders", token=sess.token, json=payload))
    total = cart.total
    order_id = data.get("order_id") if isinstance(data, dict) else None
    _cart.drop_cart(sid, table)
    _audit("order_create", actor=sess.email, order_id=order_id, table=payload["table_id"] or None)
    emit_event("orders", "order_created", {"order_id": order_id, "table": payload["table_id"], "total": total})
    return {"order_id": order_id, "total": total}


@app.get("/orders/{order_id:path}/items")
def get_order_items(order_id: str, request: Request):
    _, sess = _require_admin(request)
    return unwrap(resto_call("GET", f"/api/v1/orders/order/{encode_order_id(order_id)}", token=sess.token))


@app.get("/orders/{order_id:path}")
def get_order(order_id: str, request: Request):
    _, sess = _require_admin(request)
    return _order_view(unwrap(resto_call("GET", f"/api/v1/orders/{encode_order_id(order_id)}", token=sess.token)))


@app.delete("/orders/{order_id:path}")
def delete_order(order_id: str, request: Request):
    _, sess = _require_admin(request)
    unwrap(resto_call("DELETE", f"/api/v1/orders/{encode_order_id(order_id)}", token=sess.token))
    _audit("order_delete", actor=sess.email, order_id=order_id)
    emit_event("orders", "order_deleted", {"order_id": order_id})
    return {"ok": True}


# --- payments ---

class PaymentReq(BaseModel):
    order_id: str
    payment_method: str
    amount_paid: int | float | str


@app.get("/payments/methods")
def payment_methods():
    return [{"value": k, "label": v} for k, v in PAYMENT_METHODS.items()]


@app.post("/payments")
def process_payment(req: PaymentReq, request: Request):
    _, sess = _require_admin(request)
    order_id = req.order_id.strip().replace("|", "/")
    fields: dict[str, str] = {}
    if not order_id:
        fields["order_id"] = "Order is required"
    if req.payment_method not in PAYMENT_METHODS:
        fields["payment_method"] = "Unknown payment method"
    paid = digits_only(req.amount_paid)
    if paid is None or paid < 0:
        fields["amount_paid"] = "Amount paid is required"
    if fields:
        raise _validation_error(fields)

    change = 0
    if req.payment_method == "cash":
        order = unwrap(resto_call("GET", f"/api/v1/orders/{encode_order_id(order_id)}", token=sess.token))
        total = float(order.get("total_amount") or 0) if isinstance(order, dict) else 0.0
        if paid < total:
            raise HTTPException(
                status_code=400,
                detail=f"Amount paid is less than the order total ({format_rupiah(total)})",
            )
        change = max(paid - total, 0)

    data = unwrap(resto_call(
        "PUT",
        "/api/v1/payments/",
        token=sess.token,
        json={"orderId": order_id, "paymentMethod": req.payment_method, "amountPaid": paid},
    ))
    _audit("payment", actor=sess.email, order_id=order_id, method=req.payment_method, amount=paid)
    emit_event("payments", "payment_processed", {"order_id": order_id, "method": req.payment_method, "amount": paid})
    out = dict(data) if isinstance(data, dict) else {"payment": data}
    out["change"] = change
    return out


# --- reports ---

def _report_params(**kwargs: Any) -> dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v not in (None, "")}


@app.get("/reports/sales")
def report_sales(request: Request, period: str = "daily", start_date: str = "", end_date: str = ""):
    _, sess = _require_admin(request)
    params = _report_params(period=period, start_date=start_date, end_date=end_date)
    return unwrap(resto_call("GET", "/api/v1/reports/sales", token=sess.token, params=params))


@app.get("/reports/popular-menu")
def report_popular_menu(request: Request, start_date: str = "", end_date: str = "", limit: int = 10):
    _, sess = _require_admin(request)
    params = _report_params(start_date=start_date, end_date=end_date, limit=limit)
    return unwrap(resto_call("GET", "/api/v1/reports/popular-menu", token=sess.token, params=params))


@app.get("/reports/peak-hours")
def report_peak_hours(request: Request, start_date: str = "", end_date: str = "", interval: int = 1):
    _, sess = _require_admin(request)
    params = _report_params(start_date=start_date, end_date=end_date, interval=interval)
    return unwrap(resto_call("GET", "/api/v1/reports/peak-hours", token=sess.token, params=params))


@app.get("/reports/table-usage")
def report_table_usage(request: Request, start_date: str = "", end_date: str = "", table_id: str = ""):
    _, sess = _require_admin(request)
    params = _report_params(start_date=start_date, end_date=end_date, table_id=table_id)
    return unwrap(resto_call("GET", "/api/v1/reports/table-usage", token=sess.token, params=params))


async def _fetch_report(path: str, token: str, params: dict[str, Any]) -> Any:
    return unwrap(await resto_call_async("GET", path, token=token, params=params))


async def _dashboard_data(period: str, token: str) -> dict[str, Any]:
    if period not in _reports.PERIODS:
        raise _validation_error({"period": "Period must be daily, weekly or monthly"})
    dates = _reports.date_range(period)
    calls = {
        "sales": ("/api/v1/reports/sales", dict(dates, period=period)),
        "popular_menu": ("/api/v1/reports/popular-menu", dict(dates, limit=10)),
        "peak_hours": ("/api/v1/reports/peak-hours", dict(dates, interval=1)),
        "table_usage": ("/api/v1/reports/table-usage", dict(dates)),
    }
    results = await asyncio.gather(
        *[_fetch_report(path, token, params) for path, params in calls.values()],
        return_exceptions=True,
    )
    data: dict[str, list[dict[str, Any]]] = {}
    errors: dict[str, str] = {}
    for name, res in zip(calls, results):
        if isinstance(res, HTTPException):
            errors[name] = _detail_message(res.detail)
            data[name] = []
        elif isinstance(res, BaseException):
            raise res
        else:
            data[name] = res if isinstance(res, list) else []
    if errors:
        _log.warning("dashboard reports failed: %s", sorted(errors))
    return _reports.build_dashboard(period, dates, data, errors)


@app.get("/dashboard")
async def dashboard(request: Request, period: str = "daily"):
    _, sess = _require_admin(request)
    return await _dashboard_data(period, sess.token)


# --- pages ---

def _login_page(errors: list[str] | None = None) -> str:
    items = "".join(f"<li>{_html.escape(m)}</li>" for m in (errors or []))
    err_block = f'<ul class="err">{items}</ul>' if items else ""
    return f"""<!doctype html>
<html lang="id"><head><meta charset="utf-8"/><title>siMenu Admin - Login</title>
<style>
body{{font-family:sans-serif;background:#f6f6f6;display:flex;justify-content:center;padding-top:80px}}
form{{background:#fff;padding:24px;border-radius:8px;width:320px}}
input{{width:100%;margin:6px 0 12px;padding:8px;box-sizing:border-box}}
.err{{color:#b00020;padding-left:18px}}
</style></head>
<body><form id="f">
<h2>siMenu Admin</h2>
{err_block}
<label>Email<input name="email" type="email" required/></label>
<label>Password<input name="password" type="password" required/></label>
<button type="submit">Masuk</button>
<p><a href="#" id="google">Masuk dengan Google</a></p>
</form>
<script>
document.getElementById('f').onsubmit = async (e) => {{
  e.preventDefault();
  const fd = new FormData(e.target);
  const r = await fetch('/auth/login', {{method: 'POST', headers: {{'Content-Type': 'application/json'}},
    body: JSON.stringify({{email: fd.get('email'), password: fd.get('password')}})}});
  if (r.ok) {{ location.href = '/admin/dashboard'; return; }}
  const j = await r.json();
  alert(typeof j.detail === 'string' ? j.detail : (j.detail.message || 'Login gagal'));
}};
document.getElementById('google').onclick = async (e) => {{
  e.preventDefault();
  const r = await fetch('/auth/google/url');
  if (r.ok) {{ location.href = (await r.json()).url; }}
}};
</script>
</body></html>
"""


@app.get("/login", response_class=HTMLResponse)
def login_page():
    return HTMLResponse(content=_login_page())


def _rows(labels: list[Any], *cols: list[Any]) -> str:
    out = []
    for i, label in enumerate(labels):
        cells = "".join(f"<td>{_html.escape(str(c[i]))}</td>" for c in cols)
        out.append(f"<tr><td>{_html.escape(str(label))}</td>{cells}</tr>")
    return "".join(out) or '<tr><td colspan="4">Belum ada data</td></tr>'


@app.get("/admin/dashboard", response_class=HTMLResponse)
async def admin_dashboard(request: Request, period: str = "daily"):
    sid = _session_sid(request)
    rec = _sessions.get_session(sid) if sid else None
    if rec is None:
        return RedirectResponse(url="/login", status_code=303)
    if rec.role != "Admin":
        raise HTTPException(status_code=403, detail="forbidden")
    d = await _dashboard_data(period, rec.token)
    cards = d["cards"]
    charts = d["charts"]
    peak = cards["peak_hour"]
    errors = "".join(
        f"<li>{_html.escape(k)}: {_html.escape(v)}</li>" for k, v in d["errors"].items()
    )
    periods = " | ".join(
        f'<a href="/admin/dashboard?period={p}">{p}</a>' for p in _reports.PERIODS
    )
    html = f"""<!doctype html>
<html lang="id"><head><meta charset="utf-8"/><title>siMenu Admin - Dashboard</title>
<style>
body{{font-family:sans-serif;margin:24px}}
.cards{{display:flex;gap:12px}}
.card{{border:1px solid #ddd;border-radius:8px;padding:12px 16px;min-width:160px}}
.up{{color:#0a7d32}}.down{{color:#b00020}}
table{{border-collapse:collapse;margin:12px 0}}td,th{{border:1px solid #ddd;padding:4px 8px}}
.err{{color:#b00020}}
</style></head>
<body>
<h1>Dashboard</h1>
<p>Halo, {_html.escape(rec.name or rec.email)}. Periode: {periods} ({_html.escape(d["start_date"])} s/d {_html.escape(d["end_date"])})</p>
<ul class="err">{errors}</ul>
<div class="cards">
<div class="card">Total Penjualan<br/><b>{format_rupiah(cards["total_sales"]["total"])}</b><br/>
<span class="{'up' if cards['total_sales']['level_up'] else 'down'}">{cards["total_sales"]["rate"]}%</span></div>
<div class="card">Total Pesanan<br/><b>{cards["total_orders"]["total"]}</b><br/>
<span class="{'up' if cards['total_orders']['level_up'] else 'down'}">{cards["total_orders"]["rate"]}%</span></div>
<div class="card">Penggunaan Meja<br/><b>{cards["table_usage"]["total"]}</b></div>
<div class="card">Jam Sibuk<br/><b>{_html.escape(str(peak["hour"]) if peak["hour"] is not None else "-")}</b><br/>{peak["orders"]} pesanan</div>
</div>
<h2>Penjualan</h2>
<table><tr><th>Tanggal</th><th>Pendapatan</th><th>Pesanan</th></tr>
{_rows(charts["sales"]["dates"], [format_rupiah(v) for v in charts["sales"]["revenue"]], charts["sales"]["orders"])}</table>
<h2>Menu Populer</h2>
<table><tr><th>Menu</th><th>Jumlah</th><th>%</th></tr>
{_rows(charts["popular_menu"]["names"], charts["popular_menu"]["quantities"], charts["popular_menu"]["percentages"])}</table>
<h2>Jam Sibuk</h2>
<table><tr><th>Jam</th><th>Pesanan</th></tr>
{_rows(charts["peak_hours"]["time_slots"], charts["peak_hours"]["orders"])}</table>
<h2>Penggunaan Meja</h2>
<table><tr><th>Meja</th><th>Pesanan</th><th>%</th><th>Rata-rata/hari</th></tr>
{_rows(charts["table_usage"]["table_codes"], charts["table_usage"]["orders"], charts["table_usage"]["percentages"], charts["table_usage"]["averages"])}</table>
</body></html>
"""
    return HTMLResponse(content=html)


# --- ops ---

@app.get("/admin/audit")
def admin_audit(request: Request, limit: int = 100):
    _require_admin(request)
    limit = max(1, min(limit, len(_AUDIT_EVENTS) or 1))
    return {"events": list(_AUDIT_EVENTS)[-limit:]}


@app.get("/upstreams/health")
def upstreams_health():
    out: dict[str, Any] = {}
    try:
        r = resto_call("GET", "/health")
        try:
            body: Any = r.json()
        except ValueError:
            body = r.text
        out["resto"] = {"status_code": r.status_code, "body": body}
    except HTTPException as e:
        out["resto"] = {"error": _detail_message(e.detail)}
    return out
