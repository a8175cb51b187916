"""
Signal decoding for provider telemetry.

Pure functions: raw parameter values go in, domain quantities come out.
Out-of-domain input yields None instead of raising, so a single bad sample
never aborts a poll.
"""
import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Mapping, Optional

from tracking_service.config import load_yaml_config
from tracking_service.schemas.telemetry import (
    DecodedSample, Position, Reading, UnitItem, UnitPayload
)
from tracking_service.schemas.vehicle import Vehicle

TWO_PLACES = Decimal("0.01")


def _field(obj: Any, name: str) -> Any:
    """Read a field from either a mapping or a model."""
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def load_sensor_mapping() -> Dict[str, Any]:
    return load_yaml_config("sensors.yaml", required_key="sensors")


def compute_fuel_value(raw: Any, table: Any) -> Optional[float]:
    """
    Convert a raw fuel reading with a piecewise-linear calibration table.

    The table is ordered by ascending ``x``; the rightmost breakpoint with
    ``x <= raw`` supplies the coefficients of ``a * raw + b``. The result is
    rounded to 2 decimals, half away from zero.
    """
    if not _is_number(raw) or not isinstance(table, (list, tuple)):
        return None

    selected = None
    for point in table:
        x = _field(point, "x")
        if not _is_number(x):
            return None
        if x <= raw:
            selected = point
        else:
            break

    if selected is None:
        return None

    a = _field(selected, "a")
    b = _field(selected, "b")
    if not _is_number(a) or not _is_number(b):
        return None

    value = a * raw + b
    try:
        if not math.isfinite(value):
            return None
        rounded = Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, OverflowError):
        return None
    return float(rounded)


def get_sensor_by_p(sensors: Any, tag: str) -> Optional[Any]:
    """Return the sensor descriptor whose ``p`` expression equals tag."""
    if not isinstance(sensors, Mapping):
        return None
    for descriptor in sensors.values():
        if descriptor is not None and _field(descriptor, "p") == tag:
            return descriptor
    return None


def _param_value(item: UnitItem, code: str) -> Any:
    parameter = item.prms.get(code)
    return parameter.v if parameter is not None else None


def decode_unit(
    vehicle: Vehicle,
    payload: UnitPayload,
    mapping: Dict[str, Any],
    now: Optional[datetime] = None,
) -> DecodedSample:
    """Build a decoded sample from a unit lookup payload."""
    item = payload.item or UnitItem()
    pos = item.pos

    fuel_conf = mapping["fuel"]
    fuel_raw = _param_value(item, fuel_conf["parameter"])
    fuel_sensor = get_sensor_by_p(item.sens, fuel_conf["sensor"])
    fuel_table = fuel_sensor.tbl if fuel_sensor is not None else None
    if _is_number(fuel_raw) and isinstance(fuel_table, list):
        fuel_value = compute_fuel_value(fuel_raw, fuel_table)
    else:
        fuel_value = fuel_raw if _is_number(fuel_raw) else None

    temp_conf = mapping["temperature"]
    temp_raw = _param_value(item, temp_conf["parameter"])
    temp_sensor = get_sensor_by_p(item.sens, temp_conf["sensor"])
    temp_value = temp_raw * temp_conf.get("multiplier", 1) if _is_number(temp_raw) else None

    ignition_conf = mapping["ignition"]
    ignition_raw = _param_value(item, ignition_conf["parameter"])
    active = None if ignition_raw is None else ignition_raw == ignition_conf.get("on_value", 1)

    return DecodedSample(
        vehicle_id=vehicle.id,
        tracking=vehicle.tracking,
        pos=Position(
            lat=pos.y if pos else None,
            lng=pos.x if pos else None,
            speed=(pos.s or 0) if pos else 0,
        ),
        fuel=Reading(
            value=fuel_value,
            unit=(fuel_sensor.m if fuel_sensor and fuel_sensor.m else fuel_conf["default_unit"]),
        ),
        temp=Reading(
            value=temp_value,
            unit=(temp_sensor.m if temp_sensor and temp_sensor.m else temp_conf["default_unit"]),
        ),
        active=active,
        timestamp=now or datetime.now(timezone.utc),
    )
