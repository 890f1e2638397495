"""FastAPI application entry point."""

import logging
import shutil
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.app.api.router import api_router
from backend.app.config import Settings, get_settings
from backend.app.container import ExportServices, build_services
from backend.app.core.exceptions import ErrorKind, ExportServiceError
from backend.app.core.logging import setup_logging

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PERMANENT_CONTENT: 422,
    ErrorKind.TRANSIENT_INFRA: 503,
}


async def export_error_handler(request: Request, exc: ExportServiceError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind.value, "message": exc.message, "details": exc.details},
    )


async def check_dependencies(services: ExportServices) -> dict:
    """
    Deep health check with dependency status.

    Checks the database, the job queue and the export directory.
    """
    settings = services.settings
    checks: dict[str, dict] = {}
    overall_status = "healthy"

    # Check database
    try:
        latency_ms = await services.database.ping()
        checks["database"] = {"status": "up", "latency_ms": round(latency_ms, 2)}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = {"status": "down", "error": str(e)}
        overall_status = "unhealthy"

    # Check queue
    try:
        start = datetime.now(timezone.utc)
        depth = await services.queue.depth()
        latency_ms = (datetime.now(timezone.utc) - start).total_seconds() * 1000
        checks["queue"] = {
            "status": "up",
            "backend": services.queue.backend_name,
            "depth": depth,
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        logger.error(f"Queue health check failed: {e}")
        checks["queue"] = {"status": "down", "error": str(e)}
        overall_status = "unhealthy"

    # Check export directory
    try:
        export_path = settings.export_directory
        if export_path.exists():
            usage = shutil.disk_usage(export_path)
            free_gb = usage.free / (1024**3)

            disk_status = "up"
            if free_gb < settings.disk_space_error_threshold_gb:
                disk_status = "critical"
            elif free_gb < settings.disk_space_warning_threshold_gb:
                disk_status = "warning"
            if disk_status != "up" and overall_status == "healthy":
                overall_status = "degraded"

            checks["exports"] = {
                "status": disk_status,
                "free_gb": round(free_gb, 2),
                "total_gb": round(usage.total / (1024**3), 2),
                "artifacts": len(services.store.list_artifacts()),
                "path": str(export_path),
            }
        else:
            checks["exports"] = {"status": "warning", "error": "Export directory not found"}
            if overall_status == "healthy":
                overall_status = "degraded"
    except Exception as e:
        logger.error(f"Export directory health check failed: {e}")
        checks["exports"] = {"status": "unknown", "error": str(e)}

    return {
        "status": overall_status,
        "app_name": settings.app_name,
        "environment": settings.app_env,
        "services": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        # Startup
        setup_logging(settings)
        services = build_services(settings)
        await services.database.init()
        services.store.ensure_directory()
        app.state.services = services
        yield
        # Shutdown
        await services.close()

    app = FastAPI(
        title=settings.app_name,
        description="USFM scripture export: streamed downloads and background export jobs",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )
    app.add_exception_handler(ExportServiceError, export_error_handler)
    app.include_router(api_router, prefix="/api")

    @app.get("/health")
    async def health_check() -> dict:
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "app_name": settings.app_name,
            "environment": settings.app_env,
        }

    @app.get("/health/deep")
    async def deep_health_check(request: Request) -> dict:
        return await check_dependencies(request.app.state.services)

    @app.get("/")
    async def root() -> dict:
        """Root endpoint."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "docs": "/docs" if settings.debug else "disabled",
            "health": "/health",
        }

    return app


app = create_app()
