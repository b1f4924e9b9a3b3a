"""
NUT Polling Service for nutmon.

This module provides a service that opens the NUT session, discovers the
UPS devices once, and keeps one poller per device. It is the surface
consumers use: read snapshots, trigger on-demand checks, subscribe to
session and device events.
"""

import asyncio
import logging
from typing import Any, Dict, List

from ..config import Settings, settings as default_settings
from ..nut.client import NUTClient, NUTError
from ..nut.models import StatusSnapshot
from ..nut.poller import DevicePoller
from ..nut.status import device_info, title_name
from ..nut.supervisor import ConnectionSupervisor
from .bus import EventBus, EventCallback

logger = logging.getLogger(__name__)


class NUTService:
    """
    Service that manages NUT polling for all discovered UPS devices.
    """

    def __init__(self, config: Settings | None = None, *, client: NUTClient | None = None, bus: EventBus | None = None):
        self.config = config or default_settings
        self.bus = bus or EventBus()
        self.client = client or NUTClient(
            host=self.config.NUT_HOST,
            port=self.config.NUT_PORT,
            username=self.config.NUT_USERNAME,
            password=self.config.NUT_PASSWORD,
            timeout=self.config.NUT_TIMEOUT,
        )
        self.supervisor = ConnectionSupervisor(
            self.client,
            self.bus,
            disconnect_on_error=self.config.DISCONNECT_ON_ERROR,
        )
        self.pollers: Dict[str, DevicePoller] = {}

    async def start(self):
        """Open the session, discover devices and start their pollers."""
        logger.info(
            "Starting NUT service on %s:%s. Polling (seconds): %s",
            self.client.host,
            self.client.port,
            self.config.POLL_INTERVAL or "OFF",
        )
        self.supervisor.start()
        await asyncio.sleep(self.config.SEARCH_TIME_DELAY)
        await self._discover_and_start_pollers()
        logger.info("NUT service started with %d device(s)", len(self.pollers))

    async def stop(self):
        """Stop all pollers and close the session."""
        logger.info("Stopping NUT service...")
        stop_tasks = [poller.stop() for poller in self.pollers.values()]
        if stop_tasks:
            await asyncio.gather(*stop_tasks, return_exceptions=True)
        await self.supervisor.close()
        await self.bus.drain()
        logger.info("NUT service stopped")

    async def __aenter__(self) -> "NUTService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _discover_and_start_pollers(self):
        """Discover UPS devices and start pollers for them."""
        try:
            ups_list = await self.supervisor.list_devices()
        except NUTError as e:
            logger.error(f"Nut Error: {e}")
            return

        if not ups_list:
            logger.warning("No UPS devices found on NUT server")
            return

        for ups_name, description in ups_list.items():
            if ups_name in self.pollers:
                continue
            logger.info(f"Received NUT device {ups_name} ({description or 'NullDesc'})")
            try:
                ups_vars = await self.supervisor.fetch_vars(ups_name, timeout=self.config.FETCH_TIMEOUT)
            except NUTError as e:
                logger.error(f"Nut Error: {e}")
                continue

            friendly = title_name(ups_name, description)
            poller = DevicePoller(
                self.supervisor,
                ups_name,
                name=friendly,
                info=device_info(friendly, ups_vars),
                low_batt_threshold=self.config.LOW_BATT_THRESHOLD,
                poll_interval=self.config.POLL_INTERVAL,
                reconnect_wait=self.config.reconnect_wait,
                fetch_timeout=self.config.FETCH_TIMEOUT,
                bus=self.bus,
            )
            await poller.update(ups_vars)
            await poller.start()
            self.pollers[ups_name] = poller

    def get_devices(self) -> List[str]:
        """Get list of currently monitored UPS devices."""
        return list(self.pollers.keys())

    def get_poller(self, ups_name: str) -> DevicePoller:
        try:
            return self.pollers[ups_name]
        except KeyError:
            raise KeyError(f"Unknown UPS '{ups_name}'") from None

    def get_snapshot(self, ups_name: str) -> StatusSnapshot:
        return self.get_poller(ups_name).snapshot

    async def check(self, ups_name: str) -> StatusSnapshot:
        """Run an on-demand check of one UPS and return its snapshot."""
        poller = self.get_poller(ups_name)
        await poller.check_and_refresh()
        return poller.snapshot

    async def subscribe(self, topic: str, callback: EventCallback):
        await self.bus.subscribe(topic, callback)

    def get_poller_status(self) -> Dict[str, Dict[str, Any]]:
        """Get status information for all pollers."""
        status = {}
        for ups_name, poller in self.pollers.items():
            snapshot = poller.snapshot
            status[ups_name] = {
                "name": poller.name,
                "is_running": poller.is_running,
                "session": self.supervisor.state.value,
                "fault": snapshot.fault,
                "updated_at": snapshot.updated_at,
            }
        return status
