"""
Data models for NUT (Network UPS Tools) integration.

This module defines the Pydantic models for representing and validating
UPS data polled from the NUT server, and the state enums shared by the
supervisor and pollers.
"""

from datetime import datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    """Connectivity of the single NUT session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


class ChargingState(IntEnum):
    NOT_CHARGING = 0
    CHARGING = 1
    DISCHARGING = 2


class UPSVars(BaseModel):
    """
    Raw NUT variables used for status derivation.

    All fields are optional as they may not be available from all UPS devices.
    Values are kept as the strings the server sent.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    battery_charge: str | None = Field(None, alias="battery.charge")
    battery_voltage: str | None = Field(None, alias="battery.voltage")
    input_voltage: str | None = Field(None, alias="input.voltage")
    output_voltage: str | None = Field(None, alias="output.voltage")
    ups_load: str | None = Field(None, alias="ups.load")
    ups_temperature: str | None = Field(None, alias="ups.temperature")
    status: str | None = Field(None, alias="ups.status")

    device_mfr: str | None = Field(None, alias="device.mfr")
    device_model: str | None = Field(None, alias="device.model")
    ups_vendorid: str | None = Field(None, alias="ups.vendorid")
    ups_productid: str | None = Field(None, alias="ups.productid")
    ups_serial: str | None = Field(None, alias="ups.serial")
    ups_firmware: str | None = Field(None, alias="ups.firmware")


class DeviceInfo(BaseModel):
    """Identification of a UPS, read once when the device is discovered."""

    name: str
    manufacturer: str = "No Manufacturer"
    model: str = "No Model#"
    serial_number: str = "No Serial#"
    firmware_revision: str = "No Data"


class StatusSnapshot(BaseModel):
    """
    The most recently derived status for one UPS.

    Readings are only trustworthy while ``fault`` is False. A failed fetch
    sets ``fault`` and leaves the previous readings in place.
    """

    battery_level: float | None = None
    input_voltage: float | None = None
    output_voltage: float | None = None
    battery_voltage: float | None = None
    load_percent: int | None = None
    temperature: float | None = None
    status: str | None = None

    low_battery: bool = False
    charging: ChargingState = ChargingState.NOT_CHARGING
    active: bool = False
    on_battery: bool = False
    fault: bool = False

    updated_at: datetime | None = None
