"""
NUT (Network UPS Tools) client wrapper.

This module provides an asynchronous client for interacting with a NUT server,
using the synchronous python-nut2 library. It uses asyncio.to_thread to run
blocking I/O operations in a separate thread.

Failures are split in two. Only an ``ERR ...`` reply from the server leaves
the session usable; it is raised as NUTCommandError. Everything else means
the byte stream can no longer be trusted and is raised as NUTConnectionError
after the session has been closed. That covers socket errors, a refused
connect, and a read timeout, which pynut2 reports as an empty PyNUTError. It
also covers a closed socket, where pynut2 returns None from its read and
then fails while parsing it.
"""

import asyncio
import logging
from typing import Dict

from pynut2.nut2 import PyNUTClient, PyNUTError

logger = logging.getLogger(__name__)


class NUTError(Exception):
    """Base exception for NUT client errors."""
    pass


class NUTConnectionError(NUTError):
    """Exception for NUT connection errors."""
    pass


class NUTCommandError(NUTError):
    """Exception for error replies from a connected NUT server."""
    pass


def is_error_reply(error: PyNUTError) -> bool:
    """True when pynut2 raised a complete ``ERR <code>`` line from the server."""
    return str(error).startswith("ERR ")


def _logout(handle: PyNUTClient) -> None:
    # pynut2's context exit sends LOGOUT and closes the socket.
    with handle:
        pass


class NUTClient:
    """
    An asynchronous client for NUT servers.

    The client holds at most one session. ``connect()`` replaces it.
    Callers are expected to serialize access; the session is a single
    TCP connection.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 3493,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 5.0,
    ):
        """
        Initialize the NUT client.

        Args:
            host: The NUT server hostname or IP address.
            port: The NUT server port.
            username: The username for authentication.
            password: The password for authentication.
            timeout: Socket timeout for each network operation, in seconds.
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout
        self._client: PyNUTClient | None = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """
        Open a new session to the NUT server, closing any previous one.

        Raises:
            NUTConnectionError: If the server cannot be reached or rejects the login.
        """
        await self._release()
        logger.debug("Connecting to NUT server %s:%s", self.host, self.port)
        try:
            self._client = await asyncio.to_thread(
                PyNUTClient,
                host=self.host,
                port=self.port,
                login=self.username,
                password=self.password,
                timeout=self.timeout,
            )
        except Exception as e:
            # A dropped login exchange surfaces as AttributeError on pynut2's None read.
            raise NUTConnectionError(f"Failed to connect to NUT server {self.host}:{self.port}: {e!r}") from e
        logger.info("Connected to NUT server host=%s port=%s user=%s", self.host, self.port, bool(self.username))

    async def close(self) -> None:
        """Log out and close the current session, if any."""
        if self._client is not None:
            logger.debug("Closing NUT session to %s:%s", self.host, self.port)
        await self._release()

    async def _release(self) -> None:
        handle, self._client = self._client, None
        if handle is None:
            return
        try:
            await asyncio.to_thread(_logout, handle)
        except Exception as e:
            logger.debug("Error closing NUT session to %s:%s: %r", self.host, self.port, e)

    async def _call(self, description: str, method: str, *args):
        if self._client is None:
            raise NUTConnectionError(f"Not connected to NUT server {self.host}:{self.port}")
        try:
            return await asyncio.to_thread(getattr(self._client, method), *args)
        except PyNUTError as e:
            if is_error_reply(e):
                raise NUTCommandError(f"{description}: {e}") from e
            await self._release()
            reason = str(e) or "no reply before timeout"
            raise NUTConnectionError(f"{description}: {reason}") from e
        except Exception as e:
            await self._release()
            raise NUTConnectionError(f"{description}: connection lost ({e!r})") from e

    async def list_ups(self) -> Dict[str, str]:
        """
        List the available UPS devices on the NUT server.

        Returns:
            A dictionary of UPS devices, where the key is the UPS name and
            the value is the UPS description.

        Raises:
            NUTConnectionError: If the session is missing or was lost.
            NUTCommandError: If the server answered with an error.
        """
        logger.debug("Listing UPS devices from %s:%s", self.host, self.port)
        data = await self._call(f"Failed to list UPS devices from {self.host}:{self.port}", "list_ups")
        logger.info("NUT list_ups ok: %d devices", len(data) if data else 0)
        return dict(data or {})

    async def get_vars(self, ups_name: str) -> Dict[str, str]:
        """
        Get all variables for a specific UPS.

        Args:
            ups_name: The name of the UPS device.

        Returns:
            A dictionary of variables for the specified UPS.

        Raises:
            NUTConnectionError: If the session is missing or was lost.
            NUTCommandError: If the server answered with an error.
        """
        logger.debug("Fetching vars for UPS '%s'", ups_name)
        vars_ = await self._call(f"Failed to get variables for UPS '{ups_name}'", "list_vars", ups_name)
        logger.debug("NUT get_vars ok for '%s' (%d vars)", ups_name, len(vars_) if vars_ else 0)
        return dict(vars_ or {})
