import asyncio

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from nutmon.core.bus import EventBus
from nutmon.nut.client import NUTClient
from nutmon.nut.supervisor import ConnectionSupervisor


UPS_VARS = {
    "battery.charge": "100",
    "battery.voltage": "13.5",
    "input.voltage": "230.0",
    "output.voltage": "229.5",
    "ups.load": "23",
    "ups.temperature": "31.2",
    "ups.status": "OL",
    "device.mfr": "EATON",
    "device.model": "5PX 1500 ",
    "ups.serial": "G123",
    "ups.firmware": "02.08",
}


@pytest.fixture
def ups_vars():
    return dict(UPS_VARS)


@pytest.fixture
def fake_client(ups_vars):
    """A NUTClient whose network operations are mocked out."""
    client = NUTClient(host="testhost", port=1234)
    client.connect = AsyncMock()
    client.close = AsyncMock()
    client.list_ups = AsyncMock(return_value={"myups": "Office UPS"})
    client.get_vars = AsyncMock(return_value=ups_vars)
    return client


@pytest.fixture
def bus():
    return EventBus()


@pytest_asyncio.fixture
async def supervisor(fake_client, bus):
    supervisor = ConnectionSupervisor(fake_client, bus)
    yield supervisor
    await supervisor.close()


@pytest_asyncio.fixture
async def ready_supervisor(supervisor):
    supervisor.start()
    assert await supervisor.wait_ready(1.0)
    return supervisor


def list_var_reply(ups_name, charge):
    return (
        f"BEGIN LIST VAR {ups_name}\n"
        f'VAR {ups_name} battery.charge "{charge}"\n'
        f'VAR {ups_name} ups.status "OL"\n'
        f"END LIST VAR {ups_name}\n"
    ).encode()


class FakeNUTServer:
    """
    A loopback server speaking enough of the NUT protocol for one UPS.

    Each ``LIST VAR`` request, counted across connections, answers with the
    next entry of ``charges``. ``delays`` maps a request index to seconds to
    wait before answering it. ``drop_after`` closes a connection once it has
    answered that many ``LIST VAR`` requests.
    """

    def __init__(self, charges, *, ups_name="ups", delays=None, drop_after=None):
        self.charges = list(charges)
        self.ups_name = ups_name
        self.delays = delays or {}
        self.drop_after = drop_after
        self.requests = 0
        self.connections = 0
        self.port = None
        self._server = None
        self._writers = set()

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self):
        self._server.close()
        for writer in self._writers:
            writer.close()
        await self._server.wait_closed()

    async def _handle(self, reader, writer):
        self.connections += 1
        self._writers.add(writer)
        served = 0
        try:
            while True:
                line = (await reader.readline()).decode()
                if not line or line.startswith("LOGOUT"):
                    break
                if line == "LIST UPS\n":
                    writer.write(f'BEGIN LIST UPS\nUPS {self.ups_name} "Test UPS"\nEND LIST UPS\n'.encode())
                elif line == f"LIST VAR {self.ups_name}\n":
                    index = self.requests
                    self.requests += 1
                    if index in self.delays:
                        await asyncio.sleep(self.delays[index])
                    writer.write(list_var_reply(self.ups_name, self.charges[index]))
                    served += 1
                elif line.startswith("LIST VAR "):
                    writer.write(b"ERR UNKNOWN-UPS\n")
                else:
                    writer.write(b"ERR UNKNOWN-COMMAND\n")
                await writer.drain()
                if self.drop_after is not None and served >= self.drop_after:
                    break
        except ConnectionError:
            pass
        finally:
            writer.close()


@pytest_asyncio.fixture
async def nut_server():
    """Factory for loopback NUT servers, stopped on teardown."""
    servers = []

    async def make(charges, **kwargs):
        server = FakeNUTServer(charges, **kwargs)
        await server.start()
        servers.append(server)
        return server

    yield make
    for server in servers:
        await server.stop()
