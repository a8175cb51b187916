"""
Main application module for the tracking service.

This module defines the FastAPI application, its lifecycle and the tracking
routes.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx
import structlog
import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tracking_service import __version__
from tracking_service.auth import require_permission
from tracking_service.config import Settings, settings
from tracking_service.exceptions import (
    AlreadyTrackingError, AuthError, NoTrackingReferenceError, RemoteError,
    StoreWriteError, TrackingError, VehicleNotFoundError
)
from tracking_service.logging_config import configure_logging
from tracking_service.schemas.responses import (
    CurrentPositionResponse, HistoryResponse, StartTrackingRequest,
    StartTrackingResponse, StatsResponse, StopResult
)
from tracking_service.services.telemetry_client import TelemetryClient
from tracking_service.services.timeseries_store import TimeSeriesStore
from tracking_service.services.tracking_scheduler import TrackingScheduler
from tracking_service.services.vehicle_repository import VehicleRepository

logger = structlog.get_logger(__name__)

ERROR_STATUS = [
    (AlreadyTrackingError, 409),
    (VehicleNotFoundError, 404),
    (NoTrackingReferenceError, 422),
    (AuthError, 502),
    (RemoteError, 502),
    (StoreWriteError, 502),
]


@dataclass
class TrackingServices:
    """Long-lived collaborators shared by the routes."""
    telemetry: TelemetryClient
    store: TimeSeriesStore
    vehicles: VehicleRepository
    scheduler: TrackingScheduler
    drain_seconds: float = 15.0

    @classmethod
    def from_settings(cls, conf: Settings) -> "TrackingServices":
        telemetry = TelemetryClient(conf.wialon_api_url, conf.wialon_token, timeout=conf.telemetry_timeout)
        store = TimeSeriesStore(
            conf.influx_host, conf.influx_token, conf.influx_database, timeout=conf.store_timeout
        )
        vehicles = VehicleRepository.from_url(conf.database_url)
        return cls(
            telemetry=telemetry,
            store=store,
            vehicles=vehicles,
            scheduler=TrackingScheduler(telemetry, store, vehicles),
            drain_seconds=conf.shutdown_drain_seconds,
        )

    async def startup(self) -> None:
        await self.store.initialize()
        try:
            await self.telemetry.login()
        except AuthError as e:
            # Requests retry the login lazily
            logger.error("telemetry_login_failed_at_startup", error=e.message, detail=e.detail)

    async def shutdown(self) -> None:
        logger.info("tracking_service_shutting_down")
        await self.scheduler.stop_all_trackings(timeout=self.drain_seconds)
        await self.telemetry.logout()
        await self.telemetry.close()
        await self.store.close()
        await self.vehicles.close()


def _error_response(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error": error},
    )


def get_scheduler(request: Request) -> TrackingScheduler:
    return request.app.state.services.scheduler


def create_app(services: Optional[TrackingServices] = None, conf: Settings = settings) -> FastAPI:
    """Build the application; tests inject their own services."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(conf.log_level, conf.log_format)
        active = services or TrackingServices.from_settings(conf)
        await active.startup()
        app.state.services = active
        logger.info("tracking_service_started", version=__version__)
        try:
            yield
        finally:
            await active.shutdown()

    app = FastAPI(
        title="Delivery Tracking Service",
        description="Vehicle position tracking for deliveries",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=conf.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TrackingError)
    async def tracking_error_handler(request: Request, exc: TrackingError):
        status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
        logger.warning(
            "tracking_request_failed",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=exc.message,
        )
        detail = None if exc.detail is None else str(exc.detail)
        return _error_response(status_code, exc.message, detail)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error_response(400, "Invalid request", str(exc))

    @app.exception_handler(httpx.HTTPError)
    async def upstream_error_handler(request: Request, exc: httpx.HTTPError):
        logger.error("upstream_request_failed", path=request.url.path, error=str(exc))
        return _error_response(502, "Upstream service error", str(exc))

    @app.get("/ping")
    @app.head("/ping")
    async def ping():
        """Health check endpoint. Supports both GET and HEAD methods."""
        return {"status": "ok"}

    @app.post(
        "/tracking/start/{delivery_id}",
        response_model=StartTrackingResponse,
        dependencies=[Depends(require_permission("delivery", "update"))],
    )
    async def start_tracking(
        delivery_id: str,
        body: StartTrackingRequest,
        scheduler: TrackingScheduler = Depends(get_scheduler),
    ):
        interval = body.interval_seconds or conf.default_interval_seconds
        info = await scheduler.start_delivery_tracking(delivery_id, body.vehicle_id, interval)
        return StartTrackingResponse(tracking_info=info)

    @app.post(
        "/tracking/stop/{delivery_id}",
        response_model=StopResult,
        dependencies=[Depends(require_permission("delivery", "update"))],
    )
    async def stop_tracking(delivery_id: str, scheduler: TrackingScheduler = Depends(get_scheduler)):
        return await scheduler.stop_delivery_tracking(delivery_id)

    @app.get(
        "/tracking/history/{delivery_id}",
        response_model=HistoryResponse,
        dependencies=[Depends(require_permission("delivery", "read"))],
    )
    async def delivery_history(
        delivery_id: str,
        fmt: str = Query("json", alias="format"),
        scheduler: TrackingScheduler = Depends(get_scheduler),
    ):
        result = await scheduler.get_delivery_history(delivery_id, fmt)
        return HistoryResponse(data=result.data, count=result.count)

    @app.get(
        "/tracking/current/{vehicle_id}",
        response_model=CurrentPositionResponse,
        dependencies=[Depends(require_permission("vehicle", "read"))],
    )
    async def current_position(vehicle_id: str, scheduler: TrackingScheduler = Depends(get_scheduler)):
        sample = await scheduler.get_current_position(vehicle_id)
        return CurrentPositionResponse(data=sample, timestamp=datetime.now(timezone.utc))

    @app.get(
        "/tracking/stats",
        response_model=StatsResponse,
        dependencies=[Depends(require_permission("delivery", "read"))],
    )
    async def tracking_stats(scheduler: TrackingScheduler = Depends(get_scheduler)):
        return StatsResponse(data=await scheduler.get_tracking_stats())

    return app


app = create_app()


def main() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
