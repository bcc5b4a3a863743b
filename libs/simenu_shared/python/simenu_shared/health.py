from __future__ import annotations

import os
from collections.abc import Callable

from fastapi import FastAPI


def add_standard_health(
    app: FastAPI,
    env_key: str = "ENV",
    checks: dict[str, Callable[[], bool]] | None = None,
):
    """
    Registers ``GET /health``. Each optional check is a cheap local probe
    (e.g. the session database); the endpoint reports ``degraded`` when one
    of them fails instead of raising.
    """

    @app.get("/health")
    def _health():
        out = {
            "status": "ok",
            "env": os.getenv(env_key, "dev"),
            "service": app.title,
            "version": getattr(app, "version", None),
        }
        if checks:
            results: dict[str, bool] = {}
            for name, probe in checks.items():
                try:
                    results[name] = bool(probe())
                except Exception:
                    results[name] = False
            out["checks"] = results
            if not all(results.values()):
                out["status"] = "degraded"
        return out
