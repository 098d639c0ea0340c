"""
main.py

Entry point for the Procurement Stage Tracker API.

Configures logging, wires the in-memory infrastructure into the FastAPI app
and starts uvicorn.

Usage
-----
    # Option 1 — run directly
    python main.py

    # Option 2 — run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI
    http://localhost:8000/health    ← liveness check

Quick-start walkthrough (every call needs an X-User-Id header;
add X-User-Admin: 1 to act as an administrator)
-------------------------------------------------
1.  POST  /api/v1/projects                          — create a project
2.  GET   /api/v1/projects/{id}/stages              — see which stage is open
3.  POST  /api/v1/projects/{id}/stages/Purchase%20Request
          {"approved_at": "2024-01-01T10:00", "office": "BAC", "remark": "ok"}
4.  POST  the same URL again as an admin            — unsubmits it
5.  GET   /api/v1/projects?search=...               — dashboard
6.  GET   /api/v1/projects/statistics               — finished / ongoing counts

Configuration
-------------
APP_ENV selects development / testing / production settings (see config.py);
HOST, PORT, LOG_LEVEL and LOG_FORMAT override individual settings.
"""

import uvicorn

from api import app, get_uow
from config import get_settings
from infrastructure import InMemoryUnitOfWork
from logging_config import configure_logging

settings = get_settings()
configure_logging(settings)


# ---------------------------------------------------------------------------
# Wire the concrete Unit of Work into the FastAPI dependency system.
# To swap databases, replace InMemoryUnitOfWork with your SQL implementation.
# ---------------------------------------------------------------------------

app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
    )
