"""FastAPI application entry point for the short-link service.

This module builds the FastAPI application with middleware, lifecycle
management, error mapping and route registration.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │  uvicorn     │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ create_app() │
    │ AppResources │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ CORS, error  │
    │ handler,     │
    │ routes       │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ startup:     │
    │ init_db,     │
    │ producer,    │
    │ dispatcher   │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ requests     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ shutdown:    │
    │ drain clicks,│
    │ close all    │
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortlink.main:app --host 0.0.0.0 --port 8080

**Step 2 — Access interactive docs**::
    http://localhost:8080/docs

**Step 3 — Make API calls**::
    curl -X POST http://localhost:8080/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

    curl -i http://localhost:8080/abc123

Key Behaviours
===============
- Connections are opened lazily; building the app never touches the network.
- Every ``ShortLinkError`` is rendered as ``{"detail": ...}`` with its status.
- Shutdown drains the click dispatcher before closing the producer.
- Prometheus metrics are exposed at /metrics when ``METRICS_ENABLED``.
"""

__all__ = ["app", "create_app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortlink.config import Settings, get_settings
from shortlink.dependencies import AppResources
from shortlink.errors import ShortLinkError
from shortlink.routes import router


async def shortlink_error_handler(request: Request, exc: ShortLinkError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app(resources: AppResources | None = None, settings: Settings | None = None) -> FastAPI:
    if resources is None:
        resources = AppResources.from_settings(settings or get_settings())
    settings = resources.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await resources.startup()
        yield
        await resources.shutdown()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="URL shortener with cached redirects and click analytics",
        lifespan=lifespan,
    )
    app.state.resources = resources

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ShortLinkError, shortlink_error_handler)

    if settings.METRICS_ENABLED:
        Instrumentator(
            should_group_status_codes=True,
            should_ignore_untemplated=False,
            should_respect_env_var=False,
        ).instrument(app).expose(app)

    app.include_router(router)
    return app


app = create_app()
