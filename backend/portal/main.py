"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import redis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.gzip import GZipMiddleware
from starlette.middleware.sessions import SessionMiddleware

from portal.api.v1 import router as api_v1_router
from portal.config import get_settings
from portal.exceptions import (
    AuthError,
    NotFoundError,
    PermissionDenied,
    PortalError,
    TransientStorageError,
    ValidationError,
)
from portal.runtime import PortalRuntime

logger = logging.getLogger(__name__)
settings = get_settings()

ERROR_STATUS = {
    ValidationError: 422,
    AuthError: 401,
    PermissionDenied: 403,
    NotFoundError: 404,
    TransientStorageError: 503,
}


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    body = {"detail": exc.message}
    if isinstance(exc, ValidationError) and exc.errors:
        body["errors"] = exc.errors
    return JSONResponse(status_code=status, content=body)


def create_app(runtime: PortalRuntime | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application startup and shutdown."""
        logger.info("Starting %s...", settings.app_name)
        rt = runtime or PortalRuntime(settings)
        await rt.store.create_all()
        logger.info("Database tables verified")
        await rt.start()
        app.state.runtime = rt
        yield
        logger.info("Shutting down...")
        await rt.stop()

    app = FastAPI(
        title=settings.app_name,
        description="University internship portal with realtime analytics",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(SessionMiddleware, secret_key=settings.secret_key, same_site="lax")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PortalError, portal_error_handler)

    # Include API routers
    app.include_router(api_v1_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "app": settings.app_name}

    @app.get("/health/detailed")
    async def detailed_health_check(request: Request):
        rt: PortalRuntime = request.app.state.runtime
        checks = {}

        # Database
        try:
            async with rt.store.engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                result.scalar()
                checks["database"] = {"ok": True}
        except Exception as e:
            checks["database"] = {"ok": False, "message": str(e)}

        # Realtime feed
        checks["realtime"] = {
            "ok": rt.store.feed.connected,
            "backend": settings.realtime_backend,
            "tables": {t: rt.realtime.state(t).value for t in sorted(rt.realtime.subscriptions)},
        }

        # Redis
        try:
            r = redis.from_url(settings.redis_url, socket_timeout=5)
            r.ping()
            checks["redis"] = {"ok": True}
        except Exception as e:
            checks["redis"] = {"ok": False, "message": str(e)}

        # Celery workers
        try:
            from portal.tasks.celery_app import celery_app
            inspect = celery_app.control.inspect(timeout=5)
            active_workers = inspect.active()
            checks["celery_workers"] = {
                "ok": bool(active_workers),
                "workers": list(active_workers.keys()) if active_workers else [],
            }
        except Exception as e:
            checks["celery_workers"] = {"ok": False, "message": str(e)}

        all_ok = all(check.get("ok", False) for check in checks.values())
        status = "healthy" if all_ok else "degraded"

        return {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        }

    return app


app = create_app()
