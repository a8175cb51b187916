"""
Vehicle lookup against the business database.

The tracking service only reads vehicles; their lifecycle belongs to the
back-office CRUD routes.
"""
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tracking_service.exceptions import VehicleNotFoundError
from tracking_service.schemas.telemetry import TrackingReference
from tracking_service.schemas.vehicle import Vehicle

VEHICLE_QUERY = sa.text(
    "SELECT id, name, registration_number, tracking_id, tracking_plate "
    "FROM vehicles WHERE id = :vehicle_id"
)


class VehicleRepository:
    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "VehicleRepository":
        return cls(create_async_engine(database_url, pool_pre_ping=True))

    async def find_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        async with self._engine.connect() as conn:
            result = await conn.execute(VEHICLE_QUERY, {"vehicle_id": vehicle_id})
            row = result.mappings().first()
        if row is None:
            return None
        return Vehicle(
            id=str(row["id"]),
            name=row["name"],
            registration_number=row["registration_number"],
            tracking=TrackingReference(
                id=str(row["tracking_id"]) if row["tracking_id"] is not None else None,
                plate=row["tracking_plate"] or row["registration_number"],
            ),
        )

    async def get_vehicle(self, vehicle_id: str) -> Vehicle:
        """Like find_vehicle, but a missing vehicle raises VehicleNotFoundError."""
        vehicle = await self.find_vehicle(vehicle_id)
        if vehicle is None:
            raise VehicleNotFoundError(f"Vehicle {vehicle_id} not found")
        return vehicle

    async def close(self) -> None:
        await self._engine.dispose()
