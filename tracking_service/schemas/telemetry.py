"""
Schemas for telemetry payloads and decoded samples.

The provider payload models keep every field optional: the remote API omits
parameters and sensors freely depending on the unit configuration.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CalibrationPoint(BaseModel):
    """One breakpoint of a sensor calibration table."""
    x: Optional[float] = None
    a: Optional[float] = None
    b: Optional[float] = None


class SensorDescriptor(BaseModel):
    """Sensor configured on a unit (``sens`` entry)."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    n: Optional[str] = Field(None, description="Sensor name")
    t: Optional[str] = Field(None, description="Sensor type")
    p: Optional[str] = Field(None, description="Parameter expression, e.g. io_273")
    m: Optional[str] = Field(None, description="Unit label")
    tbl: Optional[List[CalibrationPoint]] = None


class UnitParameter(BaseModel):
    """Last known value of a numbered parameter (``prms`` entry)."""
    model_config = ConfigDict(extra="ignore")

    v: Optional[Any] = None
    at: Optional[int] = None


class UnitPosition(BaseModel):
    """Last known position: x is longitude, y latitude, s speed in km/h."""
    model_config = ConfigDict(extra="ignore")

    x: Optional[float] = None
    y: Optional[float] = None
    s: Optional[float] = None
    t: Optional[int] = None


class UnitItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    nm: Optional[str] = None
    pos: Optional[UnitPosition] = None
    prms: Dict[str, Optional[UnitParameter]] = Field(default_factory=dict)
    sens: Dict[str, Optional[SensorDescriptor]] = Field(default_factory=dict)


class UnitPayload(BaseModel):
    """Response of ``core/search_item``."""
    model_config = ConfigDict(extra="ignore")

    item: Optional[UnitItem] = None
    error: Optional[int] = None


class TrackingReference(BaseModel):
    id: Optional[str] = None
    plate: Optional[str] = None


class Position(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
    speed: float = 0


class Reading(BaseModel):
    value: Optional[float] = None
    unit: str


class DecodedSample(BaseModel):
    """Domain reading of a vehicle at one poll."""
    vehicle_id: str
    tracking: TrackingReference
    pos: Position
    fuel: Reading
    temp: Reading
    active: Optional[bool] = None
    timestamp: datetime
