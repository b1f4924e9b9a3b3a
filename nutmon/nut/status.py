"""
Status derivation for NUT integration.

Turns the raw variables of one UPS into a StatusSnapshot. Numbers are read
the lenient way NUT consumers traditionally do: leading whitespace is
skipped and the longest numeric prefix wins, so "230.1 V" reads as 230.1.
A value with no numeric prefix reads as None and never compares true.
"""

import re
from datetime import datetime, timezone
from typing import Mapping, Optional

from .models import ChargingState, DeviceInfo, StatusSnapshot, UPSVars

_FLOAT_PREFIX = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")

STATUS_CHARGING = "OL CHRG"
STATUS_DISCHARGING = "OB DISCHRG"


def parse_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    match = _FLOAT_PREFIX.match(value)
    if not match:
        return None
    return float(match.group(1))


def parse_int(value: Optional[str]) -> Optional[int]:
    """Parse the leading integer of ``value``; "39.9" gives 39."""
    if value is None:
        return None
    match = _INT_PREFIX.match(value)
    if not match:
        return None
    return int(match.group(1))


def charging_state(status: Optional[str]) -> ChargingState:
    if status == STATUS_CHARGING:
        return ChargingState.CHARGING
    if status == STATUS_DISCHARGING:
        return ChargingState.DISCHARGING
    return ChargingState.NOT_CHARGING


def is_on_battery(status: Optional[str]) -> bool:
    return status is not None and status.startswith("OB")


def is_low_battery(charge: Optional[str], threshold: int) -> bool:
    level = parse_int(charge)
    return level is not None and level < threshold


def is_active(load: Optional[str]) -> bool:
    value = parse_int(load)
    return value is not None and value > 0


def derive_snapshot(ups_vars: Mapping[str, str], low_batt_threshold: int) -> StatusSnapshot:
    """
    Build a fresh snapshot from one successful variable fetch.

    Args:
        ups_vars: Variables as returned by the NUT server.
        low_batt_threshold: Battery percentage below which the UPS counts as low.

    Returns:
        A snapshot with ``fault`` cleared and ``updated_at`` set to now.
    """
    raw = UPSVars.model_validate(dict(ups_vars))
    return StatusSnapshot(
        battery_level=parse_float(raw.battery_charge),
        input_voltage=parse_float(raw.input_voltage),
        output_voltage=parse_float(raw.output_voltage),
        battery_voltage=parse_float(raw.battery_voltage),
        load_percent=parse_int(raw.ups_load),
        temperature=parse_float(raw.ups_temperature),
        status=raw.status,
        low_battery=is_low_battery(raw.battery_charge, low_batt_threshold),
        charging=charging_state(raw.status),
        active=is_active(raw.ups_load),
        on_battery=is_on_battery(raw.status),
        fault=False,
        updated_at=datetime.now(timezone.utc),
    )


def device_info(ups_name: str, ups_vars: Mapping[str, str]) -> DeviceInfo:
    raw = UPSVars.model_validate(dict(ups_vars))
    model = (raw.device_model or "").strip()
    return DeviceInfo(
        name=ups_name,
        manufacturer=raw.device_mfr or raw.ups_vendorid or "No Manufacturer",
        model=model or raw.ups_productid or "No Model#",
        serial_number=raw.ups_serial or "No Serial#",
        firmware_revision=raw.ups_firmware or "No Data",
    )


def title_name(ups_name: str, description: Optional[str]) -> str:
    """Friendly name for a device; falls back to the UPS name when ups.conf has no description."""
    words = re.split(r"[\s_\-.]+", (description or ups_name).strip())
    return " ".join(word[:1].upper() + word[1:].lower() for word in words if word)
