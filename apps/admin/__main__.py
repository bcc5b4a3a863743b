"""
Convenience entrypoint to run the siMenu admin service with uvicorn.

Example:
  python -m apps.admin
"""
import uvicorn
import os


def main() -> None:
    reload = os.getenv("ADMIN_RELOAD", "false").lower() == "true"
    host = os.getenv("ADMIN_HOST", "0.0.0.0")
    port = int(os.getenv("ADMIN_PORT", "8080"))
    uvicorn.run(
        "apps.admin.app.main:app",
        host=host,
        port=port,
        reload=reload,
        reload_dirs=["apps", "libs"] if reload else None,
    )


if __name__ == "__main__":
    main()
