from __future__ import annotations

import hashlib
import logging
import os
import re
import secrets
import threading
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

_log = logging.getLogger("simenu.admin")

ADMIN_DB_URL = os.getenv("ADMIN_DB_URL", "sqlite+pysqlite:////tmp/simenu-admin.db")
AUTH_SESSION_TTL_SECS = int(os.getenv("AUTH_SESSION_TTL_SECS", "43200"))

_SID_RE = re.compile(r"[a-f0-9]{32}")


class _Base(DeclarativeBase):
    pass


class AdminSessionDB(_Base):
    """
    DB-backed admin sessions.

    Only a SHA-256 hash of the session id is stored. The resto API token
    lives here so it never has to reach the browser.
    """

    __tablename__ = "admin_sessions"
    __table_args__ = (UniqueConstraint("sid_hash", name="uq_admin_sessions_sid_hash"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sid_hash: Mapped[str] = mapped_column(String(64), index=True)
    token: Mapped[str] = mapped_column(Text)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    email: Mapped[str] = mapped_column(String(255), default="")
    name: Mapped[str] = mapped_column(String(255), default="")
    role: Mapped[str] = mapped_column(String(32), default="")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class AdminSession(BaseModel):
    user_id: str
    email: str = ""
    name: str = ""
    role: str = ""
    token: str
    expires_at: int

    def public(self) -> dict[str, Any]:
        """Session view safe to hand to the browser (no token)."""
        return {
            "user_id": self.user_id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "expires_at": self.expires_at,
        }


_SESSIONS: dict[str, AdminSession] = {}
_engine = None
_engine_lock = threading.Lock()


def _now() -> int:
    return int(time.time())


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _dt_to_epoch(dt: datetime) -> int:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def _db() -> Session:
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = create_engine(ADMIN_DB_URL, future=True)
                _Base.metadata.create_all(_engine)
    return Session(_engine)


def ping() -> bool:
    with _db() as s:
        s.execute(select(1))
    return True


def normalize_sid(raw: str | None) -> str | None:
    """
    Accepts a bare session id or cookie syntax (``simenu_session=<id>; ...``).
    """
    token = (raw or "").strip()
    if "=" in token:
        for part in token.split(";"):
            part = part.strip()
            if part.startswith("simenu_session="):
                token = part.split("=", 1)[1].strip()
                break
    if not _SID_RE.fullmatch(token):
        return None
    return token


def create_session(token: str, user: dict[str, Any]) -> str:
    # Session ids are bearer secrets; never log them.
    sid = secrets.token_hex(16)
    exp_ts = _now() + AUTH_SESSION_TTL_SECS
    rec = AdminSession(
        user_id=str(user.get("id") or ""),
        email=str(user.get("email") or ""),
        name=str(user.get("name") or ""),
        role=str(user.get("role") or ""),
        token=token,
        expires_at=exp_ts,
    )
    with _db() as s:
        s.add(
            AdminSessionDB(
                sid_hash=_sha256_hex(sid),
                token=token,
                user_id=rec.user_id,
                email=rec.email,
                name=rec.name,
                role=rec.role,
                expires_at=datetime.fromtimestamp(exp_ts, timezone.utc),
            )
        )
        s.commit()
    _SESSIONS[sid] = rec
    return sid


def get_session(sid: str | None) -> AdminSession | None:
    """
    Resolve a session id.

    The DB is the source of truth so logout is immediate across instances;
    the in-memory cache is only used when the DB cannot be reached.
    """
    if not sid:
        return None
    now_ts = _now()
    sid_hash = _sha256_hex(sid)
    try:
        with _db() as s:
            row = s.execute(
                select(AdminSessionDB).where(AdminSessionDB.sid_hash == sid_hash).limit(1)
            ).scalars().first()
            if row is None or row.revoked_at is not None:
                _SESSIONS.pop(sid, None)
                return None
            exp_ts = _dt_to_epoch(row.expires_at)
            if exp_ts < now_ts:
                _SESSIONS.pop(sid, None)
                s.execute(delete(AdminSessionDB).where(AdminSessionDB.sid_hash == sid_hash))
                s.commit()
                return None
            rec = AdminSession(
                user_id=row.user_id,
                email=row.email or "",
                name=row.name or "",
                role=row.role or "",
                token=row.token,
                expires_at=exp_ts,
            )
            _SESSIONS[sid] = rec
            return rec
    except SQLAlchemyError:
        _log.exception("session lookup failed, using in-memory cache")
        rec = _SESSIONS.get(sid)
        if rec is None or rec.expires_at < now_ts:
            _SESSIONS.pop(sid, None)
            return None
        return rec


def update_session_name(sid: str, name: str) -> None:
    with _db() as s:
        row = s.execute(
            select(AdminSessionDB).where(AdminSessionDB.sid_hash == _sha256_hex(sid)).limit(1)
        ).scalars().first()
        if row is not None:
            row.name = name
            s.commit()
    rec = _SESSIONS.get(sid)
    if rec is not None:
        rec.name = name


def revoke_session(sid: str) -> None:
    _SESSIONS.pop(sid, None)
    with _db() as s:
        row = s.execute(
            select(AdminSessionDB).where(AdminSessionDB.sid_hash == _sha256_hex(sid)).limit(1)
        ).scalars().first()
        if row is not None and row.revoked_at is None:
            row.revoked_at = datetime.now(timezone.utc)
            s.commit()


def cleanup_expired() -> int:
    """Deletes expired session rows; returns how many were removed."""
    now_ts = _now()
    for sid, rec in list(_SESSIONS.items()):
        if rec.expires_at < now_ts:
            _SESSIONS.pop(sid, None)
    with _db() as s:
        res = s.execute(
            delete(AdminSessionDB).where(
                AdminSessionDB.expires_at < datetime.fromtimestamp(now_ts, timezone.utc)
            )
        )
        s.commit()
        return int(res.rowcount or 0)
