"""
Delivery tracking scheduler.

Each tracked delivery owns one asyncio task that runs a fetch, decode and
write cycle at a fixed cadence. A failing cycle is logged and the task keeps
going; only an explicit stop (or shutdown) ends it.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

import structlog
from pydantic import ValidationError

from tracking_service.exceptions import (
    AlreadyTrackingError, DecodeError, NoTrackingReferenceError
)
from tracking_service.schemas.responses import (
    DeliveryTrackingStats, StopResult, TrackingInfo, TrackingStats
)
from tracking_service.schemas.telemetry import DecodedSample, UnitPayload
from tracking_service.schemas.vehicle import Vehicle
from tracking_service.services.signal_decoder import decode_unit, load_sensor_mapping
from tracking_service.services.telemetry_client import ALL_FLAGS, TelemetryClient
from tracking_service.services.timeseries_store import HistoryResult, TimeSeriesStore
from tracking_service.services.vehicle_repository import VehicleRepository

logger = structlog.get_logger(__name__)


@dataclass
class TrackingSession:
    delivery_id: str
    vehicle_id: str
    interval_seconds: float
    start_time: datetime
    started_at: float
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None

    def elapsed(self) -> int:
        return round(time.monotonic() - self.started_at)

    def info(self) -> TrackingInfo:
        return TrackingInfo(
            delivery_id=self.delivery_id,
            vehicle_id=self.vehicle_id,
            interval_seconds=self.interval_seconds,
            start_time=self.start_time,
        )


class TrackingScheduler:
    """Registry of active delivery trackings and their polling tasks."""

    def __init__(
        self,
        telemetry: TelemetryClient,
        store: TimeSeriesStore,
        vehicles: VehicleRepository,
        sensor_mapping: Optional[Dict[str, Any]] = None,
    ):
        self._telemetry = telemetry
        self._store = store
        self._vehicles = vehicles
        self._mapping = sensor_mapping or load_sensor_mapping()
        self._sessions: Dict[str, TrackingSession] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

    async def _trackable_vehicle(self, vehicle_id: str) -> Vehicle:
        vehicle = await self._vehicles.get_vehicle(vehicle_id)
        if not vehicle.is_trackable:
            raise NoTrackingReferenceError(f"Vehicle {vehicle_id} has no tracking ID")
        return vehicle

    async def _fetch(self, vehicle: Vehicle) -> DecodedSample:
        data = await self._telemetry.search_unit_by_id(vehicle.tracking.id, flags=ALL_FLAGS)
        try:
            payload = UnitPayload.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Malformed unit payload for vehicle {vehicle.id}", detail=str(e)) from e
        return decode_unit(vehicle, payload, self._mapping)

    async def fetch_vehicle_data(self, vehicle_id: str) -> DecodedSample:
        """Look the vehicle up and decode its latest telemetry."""
        vehicle = await self._trackable_vehicle(vehicle_id)
        return await self._fetch(vehicle)

    async def _cycle(self, delivery_id: str, vehicle_id: str) -> None:
        sample = await self.fetch_vehicle_data(vehicle_id)
        await self._store.write_sample(sample, delivery_id)

    async def _tick(self, session: TrackingSession) -> None:
        try:
            await self._cycle(session.delivery_id, session.vehicle_id)
        except Exception:
            # Transient failures must never end the tracking
            logger.exception(
                "tracking_tick_failed",
                delivery_id=session.delivery_id,
                vehicle_id=session.vehicle_id,
            )

    async def _run(self, session: TrackingSession) -> None:
        loop = asyncio.get_running_loop()
        interval = session.interval_seconds
        next_tick = loop.time() + interval
        while True:
            try:
                await asyncio.wait_for(
                    session.stop_event.wait(), timeout=max(next_tick - loop.time(), 0)
                )
                return
            except asyncio.TimeoutError:
                pass

            await self._tick(session)

            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                missed = int((now - next_tick) // interval) + 1
                next_tick += missed * interval
                logger.warning(
                    "tracking_ticks_skipped",
                    delivery_id=session.delivery_id,
                    skipped=missed,
                )

    async def start_delivery_tracking(
        self, delivery_id: str, vehicle_id: str, interval_seconds: float = 30
    ) -> TrackingInfo:
        """
        Start polling the vehicle of a delivery.

        Raises AlreadyTrackingError for a delivery that is already tracked and
        NoTrackingReferenceError when the vehicle cannot be located remotely.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        logger.info(
            "tracking_starting",
            delivery_id=delivery_id,
            vehicle_id=vehicle_id,
            interval_seconds=interval_seconds,
        )
        async with self._lock:
            if delivery_id in self._sessions:
                logger.warning("tracking_already_active", delivery_id=delivery_id)
                raise AlreadyTrackingError(f"Tracking already active for delivery {delivery_id}")
            session = TrackingSession(
                delivery_id=delivery_id,
                vehicle_id=vehicle_id,
                interval_seconds=interval_seconds,
                start_time=datetime.now(timezone.utc),
                started_at=time.monotonic(),
            )
            # Reserved before any I/O so a concurrent start is rejected
            self._sessions[delivery_id] = session

        try:
            vehicle = await self._trackable_vehicle(vehicle_id)

            try:
                sample = await self._fetch(vehicle)
                await self._store.write_sample(sample, delivery_id)
            except Exception as e:
                logger.warning("initial_position_save_failed", delivery_id=delivery_id, error=str(e))

            task = asyncio.create_task(self._run(session), name=f"tracking:{delivery_id}")
            session.task = task
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        finally:
            # Failed or cancelled before a task existed
            if session.task is None and self._sessions.get(delivery_id) is session:
                del self._sessions[delivery_id]

        logger.info("tracking_started", delivery_id=delivery_id)
        return session.info()

    async def stop_delivery_tracking(self, delivery_id: str) -> StopResult:
        async with self._lock:
            session = self._sessions.pop(delivery_id, None)

        if session is None:
            logger.info("tracking_not_active", delivery_id=delivery_id)
            return StopResult(success=False, message="No active tracking found")

        session.stop_event.set()
        duration = session.elapsed()
        logger.info("tracking_stopped", delivery_id=delivery_id, duration=duration)
        return StopResult(success=True, message="Tracking stopped", duration=duration)

    async def get_current_position(self, vehicle_id: str) -> DecodedSample:
        return await self.fetch_vehicle_data(vehicle_id)

    async def get_delivery_history(self, delivery_id: str, fmt: str = "json") -> HistoryResult:
        return await self._store.query_history(delivery_id, fmt)

    def is_tracking(self, delivery_id: str) -> bool:
        return delivery_id in self._sessions

    async def get_tracking_stats(self) -> TrackingStats:
        async with self._lock:
            sessions = list(self._sessions.values())
        return TrackingStats(
            active_trackings=len(sessions),
            deliveries=[
                DeliveryTrackingStats(
                    delivery_id=s.delivery_id,
                    vehicle_id=s.vehicle_id,
                    start_time=s.start_time,
                    duration=s.elapsed(),
                    interval_seconds=s.interval_seconds,
                )
                for s in sessions
            ],
        )

    async def stop_all_trackings(self, timeout: Optional[float] = None) -> int:
        """
        Stop every tracking and wait for the polling tasks to finish.

        Tasks still running after ``timeout`` seconds are cancelled. Returns
        the number of sessions that were active.
        """
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        logger.info("tracking_stop_all", active=len(sessions))
        for session in sessions:
            session.stop_event.set()

        tasks = list(self._tasks)
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("tracking_tasks_cancelled", count=len(pending))
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info("tracking_all_stopped")
        return len(sessions)
