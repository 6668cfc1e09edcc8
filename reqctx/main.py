from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from reqctx.api.router import api_router
from reqctx.context.registry import reset_registry
from reqctx.core.middleware import ContextMiddleware
from reqctx.core.settings import settings
from reqctx.utils.logger import configure_logging


def create_app(**context_options: Any) -> FastAPI:
    """Demo app; ``context_options`` are passed straight to ContextMiddleware."""
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        # Session contexts live for the process; drop them on shutdown.
        reset_registry()

    app = FastAPI(
        title="reqctx demo",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(ContextMiddleware, **context_options)
    app.include_router(api_router)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "env": settings.APP_ENV, "mode": context_options.get("mode") or settings.MODE}

    return app


app = create_app()
