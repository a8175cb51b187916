"""
API response schemas for the tracking service.

This module defines the Pydantic models returned by the tracking routes.
"""
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from tracking_service.schemas.telemetry import DecodedSample


class StartTrackingRequest(BaseModel):
    """Body of the start tracking route."""
    vehicle_id: str = Field(..., description="Vehicle carrying the delivery")
    interval_seconds: Optional[float] = Field(
        None,
        gt=0,
        description="Polling interval; the service default applies when omitted"
    )


class TrackingInfo(BaseModel):
    delivery_id: str
    vehicle_id: str
    interval_seconds: float
    start_time: datetime


class StartTrackingResponse(BaseModel):
    success: bool = True
    message: str = "Tracking started"
    tracking_info: TrackingInfo


class StopResult(BaseModel):
    success: bool
    message: str
    duration: Optional[int] = Field(None, description="Tracking duration in seconds")


class HistoryResponse(BaseModel):
    success: bool = True
    data: Any = Field(..., description="Rows for json, raw text for other formats")
    count: int = 0


class CurrentPositionResponse(BaseModel):
    success: bool = True
    data: DecodedSample
    timestamp: datetime


class DeliveryTrackingStats(BaseModel):
    delivery_id: str
    vehicle_id: str
    start_time: datetime
    duration: int
    interval_seconds: float


class TrackingStats(BaseModel):
    active_trackings: int = 0
    deliveries: List[DeliveryTrackingStats] = Field(default_factory=list)


class StatsResponse(BaseModel):
    success: bool = True
    data: TrackingStats


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    error: Optional[str] = None
