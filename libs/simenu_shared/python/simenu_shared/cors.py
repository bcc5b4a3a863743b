from __future__ import annotations

from fastapi.middleware.cors import CORSMiddleware

# Vite dev server of the admin frontend.
DEFAULT_DEV_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]


def parse_origins(allowed: str | None) -> list[str]:
    return [o.strip().rstrip("/") for o in (allowed or "").split(",") if o.strip()]


def configure_cors(app, allowed: str | None):
    origins = parse_origins(allowed) or list(DEFAULT_DEV_ORIGINS)

    if "*" in origins:
        # The admin session is a cookie, so a wildcard must not be credentialed.
        origins = ["*"]
        allow_credentials = False
    else:
        allow_credentials = True

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    return origins
