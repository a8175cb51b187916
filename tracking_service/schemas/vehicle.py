"""Vehicle entity as exposed by the business database."""
from typing import Optional

from pydantic import BaseModel

from tracking_service.schemas.telemetry import TrackingReference


class Vehicle(BaseModel):
    id: str
    name: Optional[str] = None
    registration_number: Optional[str] = None
    tracking: TrackingReference = TrackingReference()

    @property
    def is_trackable(self) -> bool:
        return bool(self.tracking.id)
