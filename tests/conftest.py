"""
Test configuration and fixtures for the tracking service.

This module provides common fixtures for both unit and integration tests:
sample provider payloads, vehicles and mocked collaborators.
"""
from unittest.mock import AsyncMock

import pytest

from tracking_service.exceptions import VehicleNotFoundError
from tracking_service.schemas.telemetry import TrackingReference
from tracking_service.schemas.vehicle import Vehicle
from tracking_service.services.signal_decoder import load_sensor_mapping
from tracking_service.services.telemetry_client import TelemetryClient
from tracking_service.services.timeseries_store import TimeSeriesStore
from tracking_service.services.tracking_scheduler import TrackingScheduler
from tracking_service.services.vehicle_repository import VehicleRepository

FUEL_TABLE = [
    {"x": 0, "a": 1, "b": 0},
    {"x": 50, "a": 2, "b": -10},
]


def make_unit_payload(lat=36.8, lng=10.18, speed=42, fuel_raw=60, temp_raw=2.5, ignition=1):
    """Build a core/search_item answer as the provider sends it."""
    prms = {}
    if fuel_raw is not None:
        prms["io_273"] = {"v": fuel_raw, "at": 1700000000}
    if temp_raw is not None:
        prms["io_26"] = {"v": temp_raw, "at": 1700000000}
    if ignition is not None:
        prms["io_239"] = {"v": ignition, "at": 1700000000}
    return {
        "item": {
            "id": 734455,
            "nm": "TU 123 4567",
            "pos": {"x": lng, "y": lat, "s": speed, "t": 1700000000},
            "prms": prms,
            "sens": {
                "1": {"id": 1, "n": "Fuel level", "t": "fuel level", "p": "io_273", "m": "l", "tbl": FUEL_TABLE},
                "2": {"id": 2, "n": "Cargo temperature", "t": "temperature", "p": "io_26*const10", "m": "°C", "tbl": []},
            },
        }
    }


@pytest.fixture
def unit_payload():
    return make_unit_payload


@pytest.fixture
def sensor_mapping():
    return load_sensor_mapping()


@pytest.fixture
def vehicle():
    return Vehicle(
        id="veh-1",
        name="Truck 1",
        registration_number="TU 123 4567",
        tracking=TrackingReference(id="734455", plate="TU 123 4567"),
    )


@pytest.fixture
def untracked_vehicle():
    return Vehicle(id="veh-2", name="Van 2", registration_number="TU 9", tracking=TrackingReference())


@pytest.fixture
def telemetry():
    client = AsyncMock(spec=TelemetryClient)
    client.search_unit_by_id.return_value = make_unit_payload()
    return client


@pytest.fixture
def store():
    return AsyncMock(spec=TimeSeriesStore)


@pytest.fixture
def vehicles(vehicle, untracked_vehicle):
    repo = AsyncMock(spec=VehicleRepository)
    known = {vehicle.id: vehicle, untracked_vehicle.id: untracked_vehicle}

    async def get_vehicle(vehicle_id):
        if vehicle_id not in known:
            raise VehicleNotFoundError(f"Vehicle {vehicle_id} not found")
        return known[vehicle_id]

    repo.get_vehicle.side_effect = get_vehicle
    return repo


@pytest.fixture
def scheduler(telemetry, store, vehicles, sensor_mapping):
    return TrackingScheduler(telemetry, store, vehicles, sensor_mapping)
