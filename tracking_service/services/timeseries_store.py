"""
Time-series store client.

Writes vehicle position points to InfluxDB 3 with the line protocol and
reads delivery history back through its SQL query endpoint.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import structlog

from tracking_service.exceptions import StoreWriteError
from tracking_service.schemas.telemetry import DecodedSample

logger = structlog.get_logger(__name__)

MEASUREMENT = "vehicle_position"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
QUERY_FORMATS = ("json", "jsonl", "csv", "pretty")

_TAG_ESCAPE = re.compile(r"([,= ])")
_MEASUREMENT_ESCAPE = re.compile(r"([, ])")


def _escape_tag(value: str) -> str:
    return _TAG_ESCAPE.sub(r"\\\1", value.replace("\\", "\\\\"))


def _format_field(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return repr(float(value))


@dataclass
class TimeSeriesPoint:
    """Immutable sample as stored: tags are indexed, fields are values."""
    tags: Dict[str, str]
    fields: Dict[str, Any]
    timestamp_ns: int
    measurement: str = MEASUREMENT

    def to_line(self) -> str:
        fields = {k: v for k, v in self.fields.items() if v is not None}
        if not fields:
            raise StoreWriteError("Point has no field values")
        head = _MEASUREMENT_ESCAPE.sub(r"\\\1", self.measurement)
        tags = ",".join(
            f"{_escape_tag(k)}={_escape_tag(str(v))}"
            for k, v in self.tags.items() if v not in (None, "")
        )
        if tags:
            head = f"{head},{tags}"
        body = ",".join(f"{_escape_tag(k)}={_format_field(v)}" for k, v in fields.items())
        return f"{head} {body} {self.timestamp_ns}"


def to_ns(ts: datetime) -> int:
    """Nanoseconds since the epoch; naive datetimes are taken as UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    delta = ts - EPOCH
    return (delta.days * 86400 + delta.seconds) * 10**9 + delta.microseconds * 1000


def point_from_sample(
    sample: DecodedSample,
    delivery_id: Optional[str] = None,
    timestamp_ns: Optional[int] = None,
) -> TimeSeriesPoint:
    plate = re.sub(r"\s", "_", sample.tracking.plate or "")
    tags = {
        "vehicle_id": sample.vehicle_id,
        "plate": plate,
        "tracking_id": sample.tracking.id or "",
    }
    if delivery_id:
        tags["delivery_id"] = delivery_id
    return TimeSeriesPoint(
        tags=tags,
        fields={
            "lat": sample.pos.lat,
            "lng": sample.pos.lng,
            "speed": sample.pos.speed,
            "fuel_value": sample.fuel.value,
            "temp_value": sample.temp.value,
            "active": sample.active,
        },
        timestamp_ns=timestamp_ns if timestamp_ns is not None else to_ns(sample.timestamp),
    )


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


@dataclass
class HistoryResult:
    data: Any = field(default_factory=list)
    count: int = 0


class TimeSeriesStore:
    """Client for the InfluxDB 3 HTTP API."""

    def __init__(
        self,
        host: str,
        token: str,
        database: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.database = database
        self._http = http_client or httpx.AsyncClient(
            base_url=host,
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def initialize(self) -> bool:
        """Create the database; an existing one counts as ready."""
        try:
            response = await self._http.post(
                "/api/v3/configure/database", json={"db": self.database}
            )
        except httpx.HTTPError as e:
            logger.error("influx_database_init_failed", database=self.database, error=str(e))
            return False

        if response.status_code == 409:
            logger.info("influx_database_exists", database=self.database)
            return True
        if response.is_error:
            logger.error(
                "influx_database_init_failed",
                database=self.database,
                status=response.status_code,
                error=response.text,
            )
            return False
        logger.info("influx_database_ready", database=self.database)
        return True

    async def write(self, point: TimeSeriesPoint) -> None:
        line = point.to_line()
        try:
            response = await self._http.post(
                "/api/v3/write_lp",
                params={"db": self.database},
                content=line.encode("utf-8"),
                headers={"Content-Type": "text/plain; charset=utf-8"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreWriteError(
                f"Write rejected with status {e.response.status_code}", detail=e.response.text
            ) from e
        except httpx.HTTPError as e:
            raise StoreWriteError(f"Write failed: {e}", detail=str(e)) from e

    async def write_sample(self, sample: DecodedSample, delivery_id: Optional[str] = None) -> TimeSeriesPoint:
        point = point_from_sample(sample, delivery_id)
        await self.write(point)
        logger.info(
            "position_saved",
            plate=sample.tracking.plate,
            vehicle_id=sample.vehicle_id,
            delivery_id=delivery_id,
        )
        return point

    async def query_history(self, delivery_id: str, fmt: str = "json") -> HistoryResult:
        """All points of a delivery, oldest first. Unknown deliveries give no rows."""
        if fmt not in QUERY_FORMATS:
            raise ValueError(f"Unsupported history format '{fmt}', expected one of {', '.join(QUERY_FORMATS)}")

        query = (
            "SELECT time, lat, lng, speed, fuel_value, temp_value, active "
            f"FROM {MEASUREMENT} "
            f"WHERE delivery_id = {_quote_literal(delivery_id)} "
            "ORDER BY time ASC"
        )
        response = await self._http.post(
            "/api/v3/query_sql",
            json={"db": self.database, "q": query, "format": fmt},
        )
        # The measurement does not exist until the first write
        if response.status_code == 404:
            return HistoryResult(data=[] if fmt == "json" else "", count=0)
        response.raise_for_status()

        if fmt == "json":
            rows = response.json()
            return HistoryResult(data=rows, count=len(rows) if isinstance(rows, list) else 0)
        return HistoryResult(data=response.text, count=0)

    async def close(self) -> None:
        await self._http.aclose()
