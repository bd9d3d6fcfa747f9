"""FastAPI application entry point for the short-link service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │  uvicorn     │
    │  startup     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan():  │
    │ ServiceManager│
    │ .initialize()│
    │ init_db()    │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ requests     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan():  │
    │ drain clicks │
    │ close redis  │
    │ dispose db   │
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortlinks.main:app --host 0.0.0.0 --port 8080

**Step 2 — Make API calls**::
    # Create a link
    curl -X POST http://localhost:8080/api/links \
         -H "Content-Type: application/json" \
         -d '{"original_url": "https://example.com", "custom_alias": "docs-home"}'

    # Follow it
    curl -i http://localhost:8080/docs-home

Key Behaviours
===============
- Database tables are created automatically on startup.
- Shared clients live on ``app.state.services`` for the life of the process.
- Pending click recordings are drained on shutdown before connections close.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app", "create_app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shortlinks.config import get_settings
from shortlinks.database import init_db
from shortlinks.dependencies import ServiceManager
from shortlinks.routes import router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    manager = ServiceManager(get_settings())
    await manager.initialize()
    await init_db(manager.engine)
    app.state.services = manager
    yield
    # Shutdown
    await manager.cleanup()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Short links with click analytics",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app)

    app.include_router(router)
    return app


app = create_app()
