"""
FastAPI main application for the schedule change monitor.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from api.auth import verify_admin_key
from api.config import config as api_config
from api.models import (
    CacheClearRequest, CacheClearResponse, ErrorResponse, HealthResponse,
    RegisterRequest, RegisterResponse, StatusResponse, PushTestRequest, UnregisterRequest
)
from scheduler.cache_store import current_week
from scheduler.change_detector import format_diagnosis_text
from timetable.errors import MappingFetchError
from utilities.services import MonitorServices, build_services

# Setup logging
logger = structlog.get_logger(__name__)


def get_services(request: Request) -> MonitorServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services not available"
        )
    return services


def create_app(services: Optional[MonitorServices] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Prebuilt service graph; built from configuration on startup when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting schedule monitor API")
        app.state.services = services or build_services()
        try:
            await app.state.services.connect()
        except Exception as e:
            logger.error("Failed to connect to key-value store", error=str(e))
            raise

        yield

        logger.info("Shutting down schedule monitor API")
        await app.state.services.close()

    app = FastAPI(
        title=api_config.api_title,
        description="""
    Device registration and administration for the schedule change monitor.

    ## Authentication

    Admin endpoints require the admin key in the Authorization header:

    ```
    Authorization: Bearer your_admin_key_here
    ```
    """,
        version=api_config.api_version,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=api_config.cors_origins,
        allow_methods=api_config.cors_allow_methods,
        allow_headers=api_config.cors_allow_headers,
    )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc: HTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.detail,
                status_code=exc.status_code
            ).model_dump(),
            headers=exc.headers
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc: Exception):
        """Handle general exceptions."""
        logger.error("Unhandled exception", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal server error",
                detail=str(exc) if api_config.debug else None,
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
            ).model_dump()
        )

    # Health check endpoint (no authentication required)
    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(services: MonitorServices = Depends(get_services)):
        """Health check endpoint."""
        db_status = "healthy" if await services.kv.ping() else "unhealthy"
        return HealthResponse(
            status="healthy" if db_status == "healthy" else "degraded",
            timestamp=datetime.now(timezone.utc),
            version=api_config.api_version,
            database_status=db_status
        )

    @app.get("/status", response_model=StatusResponse, tags=["Health"])
    async def get_status(services: MonitorServices = Depends(get_services)):
        """Registered devices and classes, last batch run and cache size."""
        year, week = current_week()
        return StatusResponse(year=year, week=week, **await services.status())

    # Device endpoints
    @app.post("/register", response_model=RegisterResponse, tags=["Devices"])
    async def register_device(body: RegisterRequest, services: MonitorServices = Depends(get_services)):
        """
        Subscribe a device to schedule change alerts for one class.

        - **deviceToken**: APNs device token
        - **className**: Class to follow
        - **username**: Display name
        """
        await services.subscriptions.register(body.device_token, body.class_name, body.username)
        return RegisterResponse(message="Device registered successfully", class_name=body.class_name)

    @app.post("/unregister", response_model=RegisterResponse, tags=["Devices"])
    async def unregister_device(body: UnregisterRequest, services: MonitorServices = Depends(get_services)):
        """Remove a device and its class subscription."""
        await services.subscriptions.unregister(body.device_token)
        return RegisterResponse(message="Device unregistered successfully")

    # Admin endpoints
    @app.post("/check", tags=["Admin"])
    async def run_check(
        services: MonitorServices = Depends(get_services),
        api_key: str = Depends(verify_admin_key)
    ):
        """Run one batch check over every registered class now."""
        result = await services.detector.check_all()
        content = result.model_dump(mode="json")
        content["notified"] = result.notified_count
        content["errors"] = result.error_count
        return JSONResponse(
            status_code=status.HTTP_200_OK if result.success else status.HTTP_502_BAD_GATEWAY,
            content=content
        )

    @app.get("/diagnose", tags=["Admin"])
    async def diagnose(
        class_name: Optional[str] = None,
        format: str = "json",
        services: MonitorServices = Depends(get_services),
        api_key: str = Depends(verify_admin_key)
    ):
        """
        Dry-run comparison for every (or one) class. Nothing is cached or sent.

        - **class_name**: Restrict to one class
        - **format**: json or text
        """
        try:
            report = await services.detector.diagnose(class_name=class_name)
        except MappingFetchError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

        if format == "text":
            return PlainTextResponse(format_diagnosis_text(report))

        content = report.model_dump(mode="json")
        content["summary"] = report.summary
        return JSONResponse(content=content)

    @app.get("/cache", tags=["Admin"])
    async def list_cache(
        services: MonitorServices = Depends(get_services),
        api_key: str = Depends(verify_admin_key)
    ):
        """List all cache entries."""
        entries = await services.detector.cache.list_entries()
        return {"total": len(entries), "entries": entries}

    @app.post("/cache/clear", response_model=CacheClearResponse, tags=["Admin"])
    async def clear_cache(
        body: CacheClearRequest,
        services: MonitorServices = Depends(get_services),
        api_key: str = Depends(verify_admin_key)
    ):
        """Clear one class for the current week, every entry, or every stale entry."""
        year, week = current_week()
        cache = services.detector.cache

        if body.all:
            deleted = await cache.clear_all()
        elif body.stale_only:
            deleted = await cache.purge_stale(year, week)
        elif body.class_name:
            deleted = int(await cache.clear_class(body.class_name, year, week))
        else:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Specify class_name, all or stale_only"
            )

        return CacheClearResponse(deleted=deleted, year=year, week=week)

    @app.post("/devices/cleanup", tags=["Admin"])
    async def cleanup_devices(
        dry_run: bool = False,
        services: MonitorServices = Depends(get_services),
        api_key: str = Depends(verify_admin_key)
    ):
        """Probe every device token and remove the invalid ones (report only with dry_run)."""
        report = await services.dispatcher.prune_invalid_devices(dry_run=dry_run)
        return report.model_dump(mode="json")

    @app.post("/test-push", tags=["Admin"])
    async def test_push(
        body: PushTestRequest,
        services: MonitorServices = Depends(get_services),
        api_key: str = Depends(verify_admin_key)
    ):
        """Send the test alert to every device of a class."""
        report = await services.dispatcher.send_test_push(body.class_name)
        if report.devices == 0:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No devices registered for {body.class_name}"
            )
        return report.model_dump(mode="json")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=api_config.debug,
        log_level="info"
    )
