"""
NUT integration for nutmon.

Provides the asynchronous NUT client, the supervisor that owns the single
NUT session, and the per-device pollers that derive UPS status snapshots.
"""

from nutmon.nut.client import NUTClient, NUTCommandError, NUTConnectionError, NUTError
from nutmon.nut.models import ChargingState, DeviceInfo, SessionState, StatusSnapshot
from nutmon.nut.poller import DevicePoller
from nutmon.nut.supervisor import (
    ConnectionSupervisor,
    EnumerationFailedError,
    FetchFailedError,
    NotConnectedError,
)

__all__ = [
    "NUTClient",
    "NUTError",
    "NUTConnectionError",
    "NUTCommandError",
    "NotConnectedError",
    "FetchFailedError",
    "EnumerationFailedError",
    "ConnectionSupervisor",
    "DevicePoller",
    "SessionState",
    "ChargingState",
    "DeviceInfo",
    "StatusSnapshot",
]
