"""
In-memory resto API for local development and tests.

Speaks the same envelope as the real API (``{data, message, status_code}``
on success, ``{errors, message, status_code}`` on failure) for every route
the admin service uses. State lives in module globals and can be restored
to the seed data with ``reset()``.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta, timezone
import secrets

app = FastAPI(title="Resto API Stub")

PUBLIC_MENU_BASE = "http://localhost:3000/menu"


class User(BaseModel):
    id: str
    name: str
    email: str
    role: str
    password: str


class Category(BaseModel):
    id: int
    name: str


class Product(BaseModel):
    id: str
    name: str
    description: str = ""
    price: float
    category: int
    stock: int = 0
    image_url: str = ""
    is_available: bool = True


class Table(BaseModel):
    id: int
    code: str
    status: str = "tersedia"
    capacity: int = 4


_users: Dict[str, User] = {}
_tokens: Dict[str, str] = {}
_oauth_codes: Dict[str, str] = {}
_categories: Dict[int, Category] = {}
_products: Dict[str, Product] = {}
_inventory: Dict[int, Dict[str, Any]] = {}
_tables: Dict[int, Table] = {}
_qr: Dict[str, Dict[str, Any]] = {}
_orders: Dict[str, Dict[str, Any]] = {}
_seq = {"category": 0, "product": 0, "inventory": 0, "table": 0, "order": 0, "item": 0, "payment": 0}


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _next(kind: str) -> int:
    _seq[kind] += 1
    return _seq[kind]


def _ok(data: Any, message: str = "success", status_code: int = 200):
    body = {"data": data, "message": message, "status_code": status_code}
    return JSONResponse(status_code=status_code, content=body)


def _fail(status_code: int, errors: Any, message: str = ""):
    body = {"errors": errors, "message": message, "status_code": status_code}
    return JSONResponse(status_code=status_code, content=body)


def reset() -> None:
    """Restores the seed data."""
    for store in (_users, _tokens, _oauth_codes, _categories, _products, _inventory, _tables, _qr, _orders):
        store.clear()
    for k in _seq:
        _seq[k] = 0

    _users["u-1"] = User(id="u-1", name="Admin siMenu", email="admin@simenu.id", role="Admin", password="admin123")
    _users["u-2"] = User(id="u-2", name="Staff Dapur", email="staff@simenu.id", role="Staff", password="staff123")
    _oauth_codes["admin-code"] = "u-1"
    _oauth_codes["staff-code"] = "u-2"

    for name in ("Makanan", "Minuman"):
        cid = _next("category")
        _categories[cid] = Category(id=cid, name=name)

    seed = [
        ("Nasi Goreng Spesial", "Nasi goreng dengan telur mata sapi, ayam suwir dan kerupuk udang", 25000, 1, 20, True),
        ("Es Teh Manis", "Teh melati dingin", 5000, 2, 50, True),
        ("Sate Ayam", "Sepuluh tusuk sate ayam bumbu kacang", 30000, 1, 0, False),
    ]
    for name, desc, price, cat, stock, available in seed:
        pid = f"p-{_next('product')}"
        _products[pid] = Product(
            id=pid, name=name, description=desc, price=price, category=cat,
            stock=stock, image_url=f"https://cdn.simenu.id/{pid}.jpg", is_available=available,
        )

    for pid, qty, threshold in (("p-1", 20, 5), ("p-2", 3, 10), ("p-3", 0, 5)):
        iid = _next("inventory")
        _inventory[iid] = {"id": iid, "product_id": pid, "stock_qty": qty, "alert_threshold": threshold}

    for code, status, capacity in (("T01", "tersedia", 4), ("T02", "terisi", 2)):
        tid = _next("table")
        _tables[tid] = Table(id=tid, code=code, status=status, capacity=capacity)
    _qr["T01"] = {"url": f"{PUBLIC_MENU_BASE}?table=T01", "updated_at": _now_iso()}

    _create_order("Budi", "T02", "dine_in", [{"product_id": "p-1", "quantity": 2, "notes": "pedas"}])


def _user_from(request: Request) -> Optional[User]:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        return None
    uid = _tokens.get(auth.split(" ", 1)[1].strip())
    return _users.get(uid) if uid else None


def _issue_token(user: User) -> str:
    tok = f"resto-{secrets.token_hex(12)}"
    _tokens[tok] = user.id
    return tok


def _public_user(u: User) -> Dict[str, Any]:
    return {"id": u.id, "name": u.name, "email": u.email, "role": u.role}


def _unauthorized():
    return _fail(401, "Unauthorized", "unauthorized")


@app.get("/health")
def health():
    return {"status": "OK", "service": "resto-api-stub"}


# --- users / auth ---

@app.post("/api/v1/users/login")
async def login(request: Request):
    body = await request.json()
    email = str(body.get("email") or "").strip().lower()
    password = str(body.get("password") or "")
    errs = []
    if not email:
        errs.append({"field": "email", "message": "Email is required"})
    if not password:
        errs.append({"field": "password", "message": "Password is required"})
    if errs:
        return _fail(400, errs, "validation error")
    for u in _users.values():
        if u.email == email and u.password == password:
            return _ok({"token": _issue_token(u), "user": _public_user(u)}, "login success")
    return _fail(401, "Invalid email or password", "login failed")


@app.get("/api/v1/users/{user_id}")
def get_user(user_id: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    u = _users.get(user_id)
    if u is None:
        return _fail(404, "User not found")
    return _ok(_public_user(u))


@app.put("/api/v1/users/")
async def update_user(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    u = _users.get(str(body.get("id") or ""))
    if u is None:
        return _fail(404, "User not found")
    name = str(body.get("name") or "").strip()
    if not name:
        return _fail(400, [{"field": "name", "message": "Name is required"}])
    u.name = name
    return _ok(_public_user(u), "user updated")


@app.get("/api/v1/auth/url")
def auth_url():
    return _ok({"url": "https://accounts.google.com/o/oauth2/v2/auth?client_id=simenu&response_type=code"})


@app.get("/api/v1/auth/token")
def auth_token(code: str = "", state: str = ""):
    uid = _oauth_codes.get(code)
    if not uid:
        return _fail(400, "Invalid authorization code")
    u = _users[uid]
    return _ok({"token": _issue_token(u), "user": _public_user(u)})


@app.get("/api/v1/auth/check")
def auth_check(request: Request):
    u = _user_from(request)
    if u is None:
        return _unauthorized()
    return _ok({"role": u.role, "user": _public_user(u)})


# --- categories ---

@app.get("/api/v1/category/")
def list_categories(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    return _ok([c.model_dump() for c in _categories.values()])


@app.get("/api/v1/category/{cid}")
def get_category(cid: int, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    c = _categories.get(cid)
    if c is None:
        return _fail(404, "Category not found")
    return _ok(c.model_dump())


@app.post("/api/v1/category/")
async def create_category(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    name = str(body.get("name") or "").strip()
    if not name:
        return _fail(400, [{"field": "name", "message": "Name is required"}])
    cid = _next("category")
    _categories[cid] = Category(id=cid, name=name)
    return _ok(_categories[cid].model_dump(), "category created", 201)


@app.put("/api/v1/category/")
async def update_category(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    c = _categories.get(int(body.get("id") or 0))
    if c is None:
        return _fail(404, "Category not found")
    c.name = str(body.get("name") or c.name)
    return _ok(c.model_dump(), "category updated")


@app.delete("/api/v1/category/{cid}")
def delete_category(cid: int, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    if _categories.pop(cid, None) is None:
        return _fail(404, "Category not found")
    return _ok(None, "category deleted")


# --- products ---

def _image_from(form) -> Optional[str]:
    image = form.get("image")
    if isinstance(image, str):
        return image.strip() or None
    if image is not None and image.filename:
        return f"https://cdn.simenu.id/uploads/{image.filename}"
    return None


@app.get("/api/v1/products/")
def list_products(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    return _ok([p.model_dump() for p in _products.values()])


@app.get("/api/v1/products/{pid}")
def get_product(pid: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    p = _products.get(pid)
    if p is None:
        return _fail(404, "Product not found")
    return _ok(p.model_dump())


@app.post("/api/v1/products/")
async def create_product(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    form = await request.form()
    try:
        category = int(form.get("category") or 0)
    except ValueError:
        category = 0
    if category not in _categories:
        return _fail(400, {"category": "Category does not exist"})
    pid = f"p-{_next('product')}"
    stock = int(form.get("stock") or 0)
    _products[pid] = Product(
        id=pid,
        name=str(form.get("name") or ""),
        description=str(form.get("description") or ""),
        price=float(form.get("price") or 0),
        category=category,
        stock=stock,
        image_url=_image_from(form) or "",
        is_available=stock > 0,
    )
    return _ok(_products[pid].model_dump(), "product created", 201)


@app.put("/api/v1/products/")
async def update_product(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    form = await request.form()
    p = _products.get(str(form.get("id") or ""))
    if p is None:
        return _fail(404, "Product not found")
    for key in ("name", "description"):
        if form.get(key) is not None:
            setattr(p, key, str(form.get(key)))
    if form.get("price") is not None:
        p.price = float(form.get("price"))
    if form.get("category") is not None:
        p.category = int(form.get("category"))
    image = _image_from(form)
    if image:
        p.image_url = image
    return _ok(p.model_dump(), "product updated")


@app.delete("/api/v1/products/{pid}")
def delete_product(pid: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    if _products.pop(pid, None) is None:
        return _fail(404, "Product not found")
    return _ok(None, "product deleted")


# --- inventory ---

def _inventory_view(rec: Dict[str, Any]) -> Dict[str, Any]:
    p = _products.get(rec["product_id"])
    return dict(rec, product=p.model_dump() if p else None)


@app.get("/api/v1/inventory/")
def list_inventory(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    return _ok([_inventory_view(r) for r in _inventory.values()])


@app.get("/api/v1/inventory/{iid}")
def get_inventory(iid: int, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    rec = _inventory.get(iid)
    if rec is None:
        return _fail(404, "Inventory not found")
    return _ok(_inventory_view(rec))


@app.post("/api/v1/inventory/")
async def create_inventory(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    pid = str(body.get("product_id") or "")
    if pid not in _products:
        return _fail(400, [{"field": "product_id", "message": "Product does not exist"}])
    iid = _next("inventory")
    _inventory[iid] = {
        "id": iid,
        "product_id": pid,
        "stock_qty": int(body.get("stock_qty") or 0),
        "alert_threshold": int(body.get("alert_threshold") or 0),
    }
    return _ok(_inventory_view(_inventory[iid]), "inventory created", 201)


@app.put("/api/v1/inventory/")
async def update_inventory(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    rec = _inventory.get(int(body.get("id") or 0))
    if rec is None:
        return _fail(404, "Inventory not found")
    for key in ("product_id", "stock_qty", "alert_threshold"):
        if key in body:
            rec[key] = body[key]
    return _ok(_inventory_view(rec), "inventory updated")


@app.delete("/api/v1/inventory/{iid}")
def delete_inventory(iid: int, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    if _inventory.pop(iid, None) is None:
        return _fail(404, "Inventory not found")
    return _ok(None, "inventory deleted")


# --- tables ---

def _table_by_code(code: str) -> Optional[Table]:
    for t in _tables.values():
        if t.code == code:
            return t
    return None


@app.get("/api/v1/tables/")
def list_tables(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    return _ok([t.model_dump() for t in _tables.values()])


@app.get("/api/v1/tables/qr-code/{code}")
def get_table_qr(code: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    rec = _qr.get(code)
    if rec is None:
        return _fail(404, "QR code not found")
    return _ok(dict(rec, code=code))


@app.post("/api/v1/tables/qr-code")
async def generate_table_qr(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    code = str(body.get("code") or "")
    if _table_by_code(code) is None:
        return _fail(404, "Table not found")
    _qr[code] = {"url": f"{PUBLIC_MENU_BASE}?table={code}&v={secrets.token_hex(4)}", "updated_at": _now_iso()}
    return _ok(dict(_qr[code], code=code), "qr code generated", 201)


@app.delete("/api/v1/tables/qr-code/{code}")
def delete_table_qr(code: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    if _qr.pop(code, None) is None:
        return _fail(404, "QR code not found")
    return _ok(None, "qr code deleted")


@app.get("/api/v1/tables/{code}")
def get_table(code: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    t = _table_by_code(code)
    if t is None:
        return _fail(404, "Table not found")
    return _ok(t.model_dump())


@app.post("/api/v1/tables/")
async def create_table(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    code = str(body.get("code") or "").strip()
    if not code:
        return _fail(400, [{"field": "code", "message": "Code is required"}])
    if _table_by_code(code) is not None:
        return _fail(409, [{"field": "code", "message": "Table code already exists"}])
    tid = _next("table")
    _tables[tid] = Table(
        id=tid, code=code, status=str(body.get("status") or "tersedia"), capacity=int(body.get("capacity") or 1)
    )
    return _ok(_tables[tid].model_dump(), "table created", 201)


@app.put("/api/v1/tables/")
async def update_table(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    t = _tables.get(int(body.get("id") or 0))
    if t is None:
        return _fail(404, "Table not found")
    for key in ("code", "status", "capacity"):
        if key in body:
            setattr(t, key, body[key])
    return _ok(t.model_dump(), "table updated")


@app.delete("/api/v1/tables/{code}")
def delete_table(code: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    t = _table_by_code(code)
    if t is None:
        return _fail(404, "Table not found")
    del _tables[t.id]
    _qr.pop(code, None)
    return _ok(None, "table deleted")


# --- orders ---

def _decode_order_id(raw: str) -> str:
    return raw.replace("|", "/")


def _create_order(on_behalf: str, table_code: str, order_type: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    oid = f"INV/{now:%Y%m%d}/{_next('order'):04d}"
    lines = []
    total = 0.0
    for it in items:
        p = _products[str(it["product_id"])]
        qty = int(it.get("quantity") or 1)
        lines.append({
            "id": _next("item"),
            "product": p.model_dump(),
            "quantity": qty,
            "notes": str(it.get("notes") or ""),
            "status": "pending",
        })
        total += p.price * qty
    t = _table_by_code(table_code)
    order = {
        "order_id": oid,
        "table_id": t.id if t else None,
        "table_code": table_code or None,
        "on_behalf": on_behalf,
        "type": order_type,
        "status": "pending",
        "created_at": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "updated_at": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "items": lines,
        "payment": {"id": None, "method": None, "status": "unpaid"},
        "total_amount": total,
    }
    _orders[oid] = order
    return order


@app.get("/api/v1/orders")
def list_orders(request: Request, status: str = ""):
    if _user_from(request) is None:
        return _unauthorized()
    rows = list(_orders.values())
    if status:
        rows = [o for o in rows if o["status"] == status]
    return _ok(rows)


@app.get("/api/v1/orders/order/{order_id}")
def order_items(order_id: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    o = _orders.get(_decode_order_id(order_id))
    if o is None:
        return _fail(404, "Order not found")
    return _ok(o["items"])


@app.get("/api/v1/orders/table/{code}")
def table_orders(code: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    rows = [o for o in _orders.values() if o["table_code"] == code]
    rows.sort(key=lambda o: o["created_at"], reverse=True)
    return _ok(rows)


@app.put("/api/v1/orders/status")
async def update_item_status(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    item_id = int(body.get("itemId") or 0)
    new_status = str(body.get("newStatus") or "")
    if new_status not in ("pending", "completed", "cancelled"):
        return _fail(400, [{"field": "newStatus", "message": "Invalid status"}])
    for o in _orders.values():
        for it in o["items"]:
            if it["id"] == item_id:
                it["status"] = new_status
                o["updated_at"] = _now_iso()
                return _ok(it, "item status updated")
    return _fail(404, "Order item not found")


@app.get("/api/v1/orders/{order_id}")
def get_order(order_id: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    o = _orders.get(_decode_order_id(order_id))
    if o is None:
        return _fail(404, "Order not found")
    return _ok(o)


@app.post("/api/v1/orders")
async def create_order(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    items = body.get("items") or []
    if not items:
        return _fail(400, [{"field": "items", "message": "Order must contain items"}])
    for it in items:
        p = _products.get(str(it.get("product_id") or ""))
        if p is None or not p.is_available:
            return _fail(400, f"Product {it.get('product_id')} is not available")
    o = _create_order(
        str(body.get("on_behalf") or ""), str(body.get("table_id") or ""), str(body.get("order_type") or "dine_in"), items
    )
    return _ok({"order_id": o["order_id"], "total_amount": o["total_amount"]}, "order created", 201)


@app.delete("/api/v1/orders/{order_id}")
def delete_order(order_id: str, request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    if _orders.pop(_decode_order_id(order_id), None) is None:
        return _fail(404, "Order not found")
    return _ok(None, "order deleted")


# --- payments ---

@app.put("/api/v1/payments/")
async def pay(request: Request):
    if _user_from(request) is None:
        return _unauthorized()
    body = await request.json()
    o = _orders.get(_decode_order_id(str(body.get("orderId") or "")))
    if o is None:
        return _fail(404, "Order not found")
    method = str(body.get("paymentMethod") or "")
    if method not in ("cash", "credit_card", "debit_card", "qris"):
        return _fail(400, [{"field": "paymentMethod", "message": "Invalid payment method"}])
    amount = float(body.get("amountPaid") or 0)
    if amount < o["total_amount"]:
        return _fail(400, "Amount paid is less than total")
    o["payment"] = {"id": _next("payment"), "method": method, "status": "paid"}
    o["status"] = "completed"
    o["updated_at"] = _now_iso()
    return _ok({
        "order_id": o["order_id"],
        "payment_method": method,
        "amount_paid": amount,
        "total_amount": o["total_amount"],
        "status": "paid",
    }, "payment processed")


# --- reports ---

def _orders_between(start_date: str, end_date: str) -> List[Dict[str, Any]]:
    rows = []
    for o in _orders.values():
        day = o["created_at"][:10]
        if (not start_date or day >= start_date) and (not end_date or day <= end_date):
            rows.append(o)
    return rows


def _days(start_date: str, end_date: str) -> int:
    try:
        start = datetime.strptime(start_date, "%Y-%m-%d")
        end = datetime.strptime(end_date, "%Y-%m-%d")
    except ValueError:
        return 1
    return max((end - start).days + 1, 1)


@app.get("/api/v1/reports/sales")
def report_sales(request: Request, period: str = "daily", start_date: str = "", end_date: str = ""):
    if _user_from(request) is None:
        return _unauthorized()
    by_day: Dict[str, Dict[str, Any]] = {}
    for o in _orders_between(start_date, end_date):
        day = o["created_at"][:10]
        rec = by_day.setdefault(day, {"date": day, "total_sales": 0.0, "order_count": 0})
        rec["total_sales"] += o["total_amount"]
        rec["order_count"] += 1
    return _ok([by_day[d] for d in sorted(by_day)])


@app.get("/api/v1/reports/popular-menu")
def report_popular_menu(request: Request, start_date: str = "", end_date: str = "", limit: int = 10):
    if _user_from(request) is None:
        return _unauthorized()
    qty: Dict[str, Dict[str, Any]] = {}
    for o in _orders_between(start_date, end_date):
        for it in o["items"]:
            p = it["product"]
            rec = qty.setdefault(p["id"], {"product_id": p["id"], "name": p["name"], "price": str(p["price"]), "total_quantity": 0})
            rec["total_quantity"] += it["quantity"]
    rows = sorted(qty.values(), key=lambda r: r["total_quantity"], reverse=True)
    return _ok(rows[: max(limit, 0)])


@app.get("/api/v1/reports/peak-hours")
def report_peak_hours(request: Request, start_date: str = "", end_date: str = "", interval: int = 1):
    if _user_from(request) is None:
        return _unauthorized()
    step = max(interval, 1)
    slots: Dict[int, int] = {}
    for o in _orders_between(start_date, end_date):
        hour = int(o["created_at"][11:13]) // step * step
        slots[hour] = slots.get(hour, 0) + 1
    rows = [
        {"hour": h, "time_slot": f"{h:02d}:00-{(h + step) % 24:02d}:00", "order_count": n}
        for h, n in sorted(slots.items(), key=lambda kv: kv[1], reverse=True)
    ]
    return _ok(rows)


@app.get("/api/v1/reports/table-usage")
def report_table_usage(request: Request, start_date: str = "", end_date: str = "", table_id: str = ""):
    if _user_from(request) is None:
        return _unauthorized()
    orders = [o for o in _orders_between(start_date, end_date) if o["table_code"]]
    total = len(orders) or 1
    days = _days(start_date, end_date)
    rows = []
    for t in _tables.values():
        if table_id and str(t.id) != table_id:
            continue
        n = sum(1 for o in orders if o["table_code"] == t.code)
        rows.append({
            "table_id": t.id,
            "table_code": t.code,
            "total_orders": n,
            "usage_ratio": f"{n / total * 100:.2f}%",
            "average_daily_orders": round(n / days, 2),
        })
    return _ok(rows)


reset()
