"""
Background polling for NUT integration.

This module contains the DevicePoller class, which keeps the status
snapshot of one UPS up to date. It checks the shared session before each
refresh, asks the supervisor to reconnect when the session is down, and
turns every failure into the snapshot's fault flag.
"""

import asyncio
import logging

from ..core.bus import TOPIC_DEVICE_FAULT, TOPIC_DEVICE_UPDATED, EventBus
from .client import NUTError
from .models import DeviceInfo, StatusSnapshot
from .status import derive_snapshot
from .supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)


class DevicePoller:
    """
    A service that polls one UPS through the shared NUT session.
    """

    def __init__(
        self,
        supervisor: ConnectionSupervisor,
        ups_name: str,
        *,
        name: str | None = None,
        info: DeviceInfo | None = None,
        low_batt_threshold: int = 40,
        poll_interval: float = 0,
        reconnect_wait: float = 2.0,
        fetch_timeout: float | None = None,
        bus: EventBus | None = None,
    ):
        """
        Initialize the poller.

        Args:
            supervisor: The session shared by all pollers.
            ups_name: The name of the UPS on the NUT server.
            name: Friendly name used in logs and events.
            info: Identification read when the device was discovered.
            low_batt_threshold: Battery percentage below which the UPS counts as low.
            poll_interval: Seconds between automatic checks; 0 disables polling.
            reconnect_wait: Seconds to wait for the session after asking for a reconnect.
            fetch_timeout: Upper bound for one variable fetch, in seconds.
            bus: Event bus for snapshot updates. Defaults to the supervisor's.
        """
        self.supervisor = supervisor
        self.ups_name = ups_name
        self.name = name or ups_name
        self.info = info or DeviceInfo(name=self.name)
        self.low_batt_threshold = low_batt_threshold
        self.poll_interval = poll_interval
        self.reconnect_wait = reconnect_wait
        self.fetch_timeout = fetch_timeout
        self.bus = bus or supervisor.bus
        self._snapshot = StatusSnapshot()
        self._task: asyncio.Task | None = None
        self._should_stop = asyncio.Event()

    @property
    def snapshot(self) -> StatusSnapshot:
        """A copy of the current snapshot."""
        return self._snapshot.model_copy()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        """Start the poller as a background task."""
        if self.poll_interval <= 0:
            logger.info(f"Polling is OFF for '{self.name}'")
            return
        if self.is_running:
            logger.warning("Poller is already running.")
            return

        logger.debug(f"NUT service polling begin for '{self.name}' every {self.poll_interval}s")
        self._should_stop.clear()
        self._task = asyncio.create_task(self._poll_loop(), name=f"nut-poll-{self.ups_name}")

    async def stop(self):
        """Stop the poller."""
        if not self.is_running:
            return

        logger.info(f"Stopping NUT poller for UPS '{self.name}'")
        self._should_stop.set()
        try:
            await asyncio.wait_for(self._task, timeout=10.0)
        except asyncio.CancelledError:
            pass
        except asyncio.TimeoutError:
            logger.error("Poller task did not stop gracefully within timeout.")
            self._task.cancel()
        self._task = None

    async def check_and_refresh(self):
        """
        Refresh the snapshot, reconnecting the session first if it is down.

        Never raises for NUT failures; they end up in ``snapshot.fault``.
        """
        logger.debug(f"Checking connection to NUT server for '{self.name}'")
        if self.supervisor.is_ready():
            await self.refresh()
            return

        logger.debug("NUT not connected, attempting reconnection...")
        self.supervisor.start()
        if await self.supervisor.wait_ready(self.reconnect_wait):
            await self.refresh()
        else:
            logger.error(f"NUT unable to reconnect for '{self.name}'!")
            await self._mark_fault("unable to reconnect")

    async def refresh(self):
        """Fetch the variables of this UPS and re-derive the snapshot."""
        logger.debug(f"NUT request to get vars for '{self.name}'")
        try:
            ups_vars = await self.supervisor.fetch_vars(self.ups_name, timeout=self.fetch_timeout)
        except NUTError as e:
            logger.error(f"NUT error for '{self.name}': {e}")
            await self._mark_fault(str(e))
            return
        await self.update(ups_vars)

    async def update(self, ups_vars):
        """Re-derive the snapshot from variables already fetched for this UPS."""
        self._snapshot = derive_snapshot(ups_vars, self.low_batt_threshold)
        await self.bus.publish(TOPIC_DEVICE_UPDATED, {"ups_name": self.ups_name, "name": self.name, "snapshot": self.snapshot})

    async def _mark_fault(self, reason: str):
        self._snapshot.fault = True
        await self.bus.publish(
            TOPIC_DEVICE_FAULT,
            {"ups_name": self.ups_name, "name": self.name, "reason": reason, "snapshot": self.snapshot},
        )

    async def _poll_loop(self):
        """The main polling loop."""
        while not self._should_stop.is_set():
            try:
                await asyncio.wait_for(self._should_stop.wait(), timeout=self.poll_interval)
                break
            except asyncio.TimeoutError:
                pass

            logger.debug(f"NUT is polling for '{self.name}'...")
            try:
                await self.check_and_refresh()
            except Exception:
                logger.exception("An unexpected error occurred in the polling loop.")
