from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

# Cart key used when an order is taken without a table (take-away counter).
WALK_IN = "_walk_in"


class CartLine(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int = Field(default=1, ge=1)
    notes: str = ""

    @property
    def subtotal(self) -> float:
        return self.price * self.quantity


class Cart:
    """
    Order cart of one admin for one table.

    Lines keep insertion order and there is at most one line per product.
    """

    def __init__(self) -> None:
        self.lines: list[CartLine] = []

    def _index(self, product_id: str) -> int:
        for i, line in enumerate(self.lines):
            if line.product_id == product_id:
                return i
        return -1

    def add(self, product: dict[str, Any], notes: str = "") -> CartLine:
        """
        Adds one unit of ``product``. A product already in the cart only gets
        its quantity bumped; the notes of the existing line are kept.
        """
        pid = str(product.get("id") or "")
        i = self._index(pid)
        if i >= 0:
            line = self.lines[i]
            line.quantity += 1
            return line
        line = CartLine(
            product_id=pid,
            name=str(product.get("name") or ""),
            price=float(product.get("price") or 0),
            quantity=1,
            notes=notes or "",
        )
        self.lines.append(line)
        return line

    def update(self, product_id: str, quantity: int | None = None, notes: str | None = None) -> CartLine | None:
        """Returns the updated line, or None when it was removed."""
        i = self._index(product_id)
        if i < 0:
            raise KeyError(product_id)
        if quantity is not None and quantity <= 0:
            del self.lines[i]
            return None
        line = self.lines[i]
        if quantity is not None:
            line.quantity = quantity
        if notes is not None:
            line.notes = notes
        return line

    def remove(self, product_id: str) -> bool:
        i = self._index(product_id)
        if i < 0:
            return False
        del self.lines[i]
        return True

    def clear(self) -> None:
        self.lines = []

    @property
    def total(self) -> float:
        return sum(line.subtotal for line in self.lines)

    @property
    def count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def order_items(self) -> list[dict[str, Any]]:
        return [
            {"product_id": line.product_id, "quantity": line.quantity, "notes": line.notes}
            for line in self.lines
        ]

    def snapshot(self) -> dict[str, Any]:
        return {
            "items": [dict(line.model_dump(), subtotal=line.subtotal) for line in self.lines],
            "total": self.total,
            "count": self.count,
        }


_CARTS: dict[tuple[str, str], Cart] = {}
_CARTS_LOCK = threading.Lock()


def cart_key(table_code: str | None) -> str:
    code = (table_code or "").strip()
    return code or WALK_IN


def get_cart(owner: str, table_code: str | None) -> Cart:
    key = (owner, cart_key(table_code))
    with _CARTS_LOCK:
        cart = _CARTS.get(key)
        if cart is None:
            cart = Cart()
            _CARTS[key] = cart
        return cart


def drop_cart(owner: str, table_code: str | None) -> None:
    with _CARTS_LOCK:
        _CARTS.pop((owner, cart_key(table_code)), None)


def drop_owner_carts(owner: str) -> None:
    with _CARTS_LOCK:
        for key in [k for k in _CARTS if k[0] == owner]:
            _CARTS.pop(key, None)


def find_cart(owner: str, table_code: str | None) -> Cart | None:
    """Existing cart or None; never creates one."""
    with _CARTS_LOCK:
        return _CARTS.get((owner, cart_key(table_code)))


def prune_owners(is_live: Callable[[str], bool]) -> int:
    """Drops every cart whose owner session is no longer live."""
    with _CARTS_LOCK:
        owners = {owner for owner, _ in _CARTS}
    dead = {owner for owner in owners if not is_live(owner)}
    with _CARTS_LOCK:
        stale = [k for k in _CARTS if k[0] in dead]
        for key in stale:
            _CARTS.pop(key, None)
    return len(stale)
