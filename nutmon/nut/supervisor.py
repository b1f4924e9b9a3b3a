"""
Session supervision for NUT integration.

This module contains the ConnectionSupervisor, which owns the one TCP
session to a NUT server. Every session operation (connect, list, fetch)
goes through a single actor task that serves requests one at a time, so
the underlying socket is never used concurrently and only the actor ever
changes the session state. Pollers read the state and submit requests.

Session errors come in two kinds. A lost connection closes the session
(state goes back to DISCONNECTED). An error reply from the server is
reported but leaves the session READY, unless ``disconnect_on_error`` is
set, in which case any error closes the session.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from ..core.bus import (
    TOPIC_DEVICES_LISTED,
    TOPIC_SESSION_CLOSED,
    TOPIC_SESSION_ERROR,
    TOPIC_SESSION_READY,
    EventBus,
)
from .client import NUTClient, NUTConnectionError, NUTError
from .models import SessionState

logger = logging.getLogger(__name__)


class NotConnectedError(NUTError):
    """Raised when an operation needs a READY session and there is none."""
    pass


class FetchFailedError(NUTError):
    """Raised when the server could not deliver the variables of a UPS."""
    pass


class EnumerationFailedError(NUTError):
    """Raised when the server could not list its UPS devices."""
    pass


_CONNECT = "connect"
_LIST = "list"
_FETCH = "fetch"


@dataclass
class _Request:
    kind: str
    ups_name: Optional[str] = None
    future: Optional[asyncio.Future] = field(default=None, repr=False)


class ConnectionSupervisor:
    """
    Owner of the single NUT session shared by all device pollers.
    """

    def __init__(
        self,
        client: NUTClient,
        bus: EventBus | None = None,
        *,
        disconnect_on_error: bool = False,
    ):
        """
        Args:
            client: The NUT client used for every session operation.
            bus: Event bus for session events. A private one is created if omitted.
            disconnect_on_error: Close the session on server error replies too.
        """
        self.client = client
        self.bus = bus or EventBus()
        self.disconnect_on_error = disconnect_on_error
        self._state = SessionState.DISCONNECTED
        self._devices: Mapping[str, Optional[str]] | None = None
        self._ready = asyncio.Event()
        self._queue: asyncio.Queue[_Request] = asyncio.Queue()
        self._connect_queued = False
        self._task: asyncio.Task | None = None
        self._current: _Request | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def devices(self) -> Mapping[str, Optional[str]] | None:
        """The device list, or None until the first successful enumeration."""
        return self._devices

    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    def start(self) -> None:
        """
        Ask for the session to be opened.

        Does nothing while the session is connecting or ready, or while a
        connect request is already queued.
        """
        self._ensure_actor()
        if self._state is not SessionState.DISCONNECTED or self._connect_queued:
            logger.debug("NUT start ignored, session is %s", self._state.value)
            return
        self._connect_queued = True
        self._queue.put_nowait(_Request(_CONNECT))

    async def wait_ready(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for the session to become READY."""
        if self.is_ready():
            return True
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return self.is_ready()

    async def list_devices(self) -> Mapping[str, Optional[str]]:
        """
        Return the UPS devices of the server, mapped to their descriptions.

        The list is read from the server once; later calls return it as is.

        Raises:
            NotConnectedError: If the session is not READY.
            EnumerationFailedError: If the server could not list its devices.
        """
        if not self.is_ready():
            raise NotConnectedError(f"Not connected to NUT server {self.client.host}:{self.client.port}")
        if self._devices is not None:
            return self._devices
        return await self._submit(_Request(_LIST))

    async def fetch_vars(self, ups_name: str, timeout: float | None = None) -> Dict[str, str]:
        """
        Fetch all variables of one UPS.

        Raises:
            NotConnectedError: If the session is not READY.
            FetchFailedError: If the fetch failed or did not finish within ``timeout``.
        """
        if not self.is_ready():
            raise NotConnectedError(f"Not connected to NUT server {self.client.host}:{self.client.port}")
        try:
            return await asyncio.wait_for(self._submit(_Request(_FETCH, ups_name)), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise FetchFailedError(f"Timed out getting variables for UPS '{ups_name}'") from e

    async def close(self) -> None:
        """Stop the actor and drop the session."""
        current = self._current
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        pending = [current] if current is not None else []
        while not self._queue.empty():
            pending.append(self._queue.get_nowait())
        for request in pending:
            self._fail(request, NotConnectedError("NUT session closed"))
        self._connect_queued = False

        await self.client.close()
        if self._state is not SessionState.DISCONNECTED:
            self._mark_disconnected()
        logger.info("NUT session to %s:%s closed", self.client.host, self.client.port)

    def _ensure_actor(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="nut-session")

    async def _submit(self, request: _Request) -> Any:
        self._ensure_actor()
        request.future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(request)
        return await request.future

    async def _run(self) -> None:
        """The actor loop. Serves one request at a time."""
        while True:
            request = await self._queue.get()
            self._current = request
            try:
                if request.kind == _CONNECT:
                    await self._handle_connect()
                elif request.kind == _LIST:
                    self._resolve(request, await self._enumerate())
                elif request.kind == _FETCH:
                    await self._handle_fetch(request)
            except NUTError as e:
                self._fail(request, e)
            except Exception as e:
                logger.exception("Unexpected error serving NUT %s request", request.kind)
                self._fail(request, e)
            finally:
                self._current = None

    @staticmethod
    def _resolve(request: _Request, result: Any) -> None:
        if request.future is not None and not request.future.done():
            request.future.set_result(result)

    @staticmethod
    def _fail(request: _Request, error: BaseException) -> None:
        if request.future is not None and not request.future.done():
            request.future.set_exception(error)

    async def _handle_connect(self) -> None:
        self._connect_queued = False
        if self._state is SessionState.READY:
            return
        self._state = SessionState.CONNECTING
        try:
            await self.client.connect()
        except NUTConnectionError as e:
            self._report_error(e)
            self._mark_disconnected()
            return
        await self._mark_ready()

    async def _handle_fetch(self, request: _Request) -> None:
        if request.future is not None and request.future.done():
            return
        if not self.is_ready():
            raise NotConnectedError("ERROR not connected to Nut")
        try:
            ups_vars = await self.client.get_vars(request.ups_name)
        except NUTError as e:
            await self._on_client_error(e)
            raise FetchFailedError(f"ERROR getting UPSVars: {e}") from e
        self._resolve(request, ups_vars)

    async def _enumerate(self) -> Mapping[str, Optional[str]]:
        if self._devices is not None:
            return self._devices
        if not self.is_ready():
            raise NotConnectedError("ERROR not connected to Nut")
        try:
            upslist = await self.client.list_ups()
        except NUTError as e:
            await self._on_client_error(e)
            raise EnumerationFailedError(f"Nut ERROR initializing: {e}") from e
        self._devices = MappingProxyType({name: (desc or None) for name, desc in upslist.items()})
        logger.info("NUT devices: %s", ", ".join(self._devices) or "none")
        self.bus.publish_nowait(TOPIC_DEVICES_LISTED, self._devices)
        return self._devices

    async def _mark_ready(self) -> None:
        self._state = SessionState.READY
        self._ready.set()
        self.bus.publish_nowait(TOPIC_SESSION_READY, self._state)
        if self._devices is None:
            logger.debug("NUT ready received. Initializing and getting list of UPS devices.")
            try:
                await self._enumerate()
            except EnumerationFailedError as e:
                logger.error("%s", e)
        else:
            logger.debug("NUT ready received. Successful reconnect after disconnection.")

    def _mark_disconnected(self) -> None:
        self._state = SessionState.DISCONNECTED
        self._ready.clear()
        self.bus.publish_nowait(TOPIC_SESSION_CLOSED, self._state)
        logger.debug("NUT disconnect occurred.")

    def _report_error(self, error: NUTError) -> None:
        logger.error("NUT error received - %s", error)
        self.bus.publish_nowait(TOPIC_SESSION_ERROR, error)

    async def _on_client_error(self, error: NUTError) -> None:
        self._report_error(error)
        if isinstance(error, NUTConnectionError) or self.disconnect_on_error:
            await self.client.close()
            self._mark_disconnected()
