from __future__ import annotations

import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

JAKARTA = ZoneInfo("Asia/Jakarta")

_MONTHS_ID = [
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
]


def parse_number(value: str | int | float) -> float:
    """
    Parses an Indonesian formatted amount: dots group thousands and the
    comma is the decimal separator ("1.234,5" -> 1234.5).
    """
    if isinstance(value, (int, float)):
        return float(value)
    raw = str(value).strip().replace(".", "").replace(",", ".", 1)
    return float(raw)


def digits_only(value: str | int | float | None) -> int | None:
    """Keeps only the digits of a typed amount ("Rp 50.000" -> 50000)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    digits = re.sub(r"[^\d]", "", str(value))
    if not digits:
        return None
    return int(digits)


def format_rupiah(price: str | int | float) -> str:
    amount = parse_number(price)
    sign = "-" if amount < 0 else ""
    whole, frac = f"{abs(amount):,.2f}".split(".")
    return f"{sign}Rp {whole.replace(',', '.')},{frac}"


def _parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_date(value: str | None) -> str:
    if not value:
        return "N/A"
    try:
        dt = _parse_iso(value).astimezone(JAKARTA)
    except ValueError:
        return value
    return f"{dt.day:02d} {_MONTHS_ID[dt.month - 1]} {dt.year} {dt:%H.%M.%S}"


def time_elapsed(value: str | None, now: datetime | None = None) -> str:
    if not value:
        return "N/A"
    try:
        past = _parse_iso(value)
    except ValueError:
        return "waktu tidak valid"
    now = now or datetime.now(timezone.utc)
    seconds = int((now - past).total_seconds())
    if seconds < 60:
        return f"{max(seconds, 0)} detik yang lalu"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} menit yang lalu"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} jam yang lalu"
    days = hours // 24
    if days < 30:
        return f"{days} hari yang lalu"
    months = days // 30
    if months < 12:
        return f"{months} bulan yang lalu"
    return f"{months // 12} tahun yang lalu"
