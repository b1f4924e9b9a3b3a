"""
Tests for the NUT device poller.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from nutmon.core.bus import TOPIC_DEVICE_FAULT, TOPIC_DEVICE_UPDATED, EventBus
from nutmon.nut.client import NUTClient, NUTCommandError
from nutmon.nut.models import ChargingState, SessionState
from nutmon.nut.poller import DevicePoller
from nutmon.nut.supervisor import ConnectionSupervisor, FetchFailedError, NotConnectedError


@pytest.fixture
def mock_supervisor(ups_vars):
    """A supervisor stub that is always ready."""
    supervisor = MagicMock()
    supervisor.bus = EventBus()
    supervisor.is_ready.return_value = True
    supervisor.wait_ready = AsyncMock(return_value=True)
    supervisor.fetch_vars = AsyncMock(return_value=ups_vars)
    return supervisor


@pytest.mark.asyncio
async def test_poller_initialization(mock_supervisor):
    """Test poller initialization."""
    poller = DevicePoller(mock_supervisor, "myups", name="Office Ups")
    assert poller.ups_name == "myups"
    assert poller.name == "Office Ups"
    assert poller.info.name == "Office Ups"
    assert poller._task is None
    snapshot = poller.snapshot
    assert snapshot.fault is False
    assert snapshot.battery_level is None
    assert snapshot.updated_at is None


@pytest.mark.asyncio
async def test_check_when_ready_does_not_reconnect(mock_supervisor):
    poller = DevicePoller(mock_supervisor, "myups", fetch_timeout=5.0)

    await poller.check_and_refresh()

    mock_supervisor.start.assert_not_called()
    mock_supervisor.wait_ready.assert_not_awaited()
    mock_supervisor.fetch_vars.assert_awaited_once_with("myups", timeout=5.0)
    assert poller.snapshot.battery_level == 100.0
    assert poller.snapshot.fault is False


@pytest.mark.asyncio
async def test_check_when_disconnected_reconnects_then_refreshes(mock_supervisor):
    mock_supervisor.is_ready.return_value = False
    poller = DevicePoller(mock_supervisor, "myups", reconnect_wait=2.0)

    await poller.check_and_refresh()

    mock_supervisor.start.assert_called_once_with()
    mock_supervisor.wait_ready.assert_awaited_once_with(2.0)
    mock_supervisor.fetch_vars.assert_awaited_once()
    assert poller.snapshot.fault is False


@pytest.mark.asyncio
async def test_check_reconnect_timeout_marks_fault(mock_supervisor):
    mock_supervisor.is_ready.return_value = False
    mock_supervisor.wait_ready.return_value = False
    poller = DevicePoller(mock_supervisor, "myups")
    await poller.update({"battery.charge": "80", "ups.load": "10", "ups.status": "OL"})
    before = poller.snapshot

    faults = []

    async def on_fault(event):
        faults.append(event)

    await mock_supervisor.bus.subscribe(TOPIC_DEVICE_FAULT, on_fault)

    await poller.check_and_refresh()

    mock_supervisor.start.assert_called_once_with()
    mock_supervisor.fetch_vars.assert_not_awaited()
    after = poller.snapshot
    assert after.fault is True
    assert after.model_dump(exclude={"fault"}) == before.model_dump(exclude={"fault"})
    assert faults[0]["reason"] == "unable to reconnect"


@pytest.mark.asyncio
async def test_check_against_real_supervisor_that_never_connects(supervisor, fake_client):
    never = asyncio.Event()

    async def hang():
        await never.wait()

    fake_client.connect.side_effect = hang
    poller = DevicePoller(supervisor, "myups", reconnect_wait=0.05)

    with patch.object(supervisor, "start", wraps=supervisor.start) as start:
        await poller.check_and_refresh()

    start.assert_called_once_with()
    assert supervisor.state is SessionState.CONNECTING
    assert poller.snapshot.fault is True
    assert poller.snapshot.battery_level is None
    fake_client.get_vars.assert_not_awaited()


@pytest.mark.asyncio
async def test_check_against_real_supervisor(supervisor, fake_client):
    poller = DevicePoller(supervisor, "myups", reconnect_wait=1.0)

    await poller.check_and_refresh()

    assert supervisor.is_ready()
    fake_client.connect.assert_awaited_once()
    fake_client.get_vars.assert_awaited_once_with("myups")
    assert poller.snapshot.status == "OL"

    await poller.check_and_refresh()
    fake_client.connect.assert_awaited_once()
    assert fake_client.get_vars.await_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    NotConnectedError("ERROR not connected to Nut"),
    FetchFailedError("ERROR getting UPSVars: ERR UNKNOWN-UPS"),
])
async def test_refresh_failure_keeps_readings(mock_supervisor, error):
    poller = DevicePoller(mock_supervisor, "myups")
    await poller.refresh()
    before = poller.snapshot
    assert before.fault is False

    mock_supervisor.fetch_vars.side_effect = error
    await poller.refresh()

    after = poller.snapshot
    assert after.fault is True
    assert after.battery_level == before.battery_level
    assert after.load_percent == before.load_percent
    assert after.input_voltage == before.input_voltage
    assert after.output_voltage == before.output_voltage
    assert after.battery_voltage == before.battery_voltage
    assert after.temperature == before.temperature
    assert after.updated_at == before.updated_at


@pytest.mark.asyncio
async def test_refresh_after_fault_clears_it(mock_supervisor, ups_vars):
    poller = DevicePoller(mock_supervisor, "myups")
    mock_supervisor.fetch_vars.side_effect = FetchFailedError("boom")
    await poller.refresh()
    assert poller.snapshot.fault is True

    mock_supervisor.fetch_vars.side_effect = None
    mock_supervisor.fetch_vars.return_value = dict(ups_vars, **{"ups.status": "OB DISCHRG", "ups.load": "0"})
    await poller.refresh()

    snapshot = poller.snapshot
    assert snapshot.fault is False
    assert snapshot.on_battery is True
    assert snapshot.active is False
    assert snapshot.charging is ChargingState.DISCHARGING


@pytest.mark.asyncio
async def test_low_battery_threshold(mock_supervisor):
    mock_supervisor.fetch_vars.return_value = {"battery.charge": "35"}
    poller = DevicePoller(mock_supervisor, "myups", low_batt_threshold=40)
    await poller.refresh()
    assert poller.snapshot.low_battery is True
    assert poller.snapshot.battery_level == 35.0

    poller.low_batt_threshold = 30
    await poller.refresh()
    assert poller.snapshot.low_battery is False


@pytest.mark.asyncio
async def test_refresh_publishes_update(mock_supervisor):
    poller = DevicePoller(mock_supervisor, "myups", name="Office Ups")
    events = []

    async def on_update(event):
        events.append(event)

    await mock_supervisor.bus.subscribe(TOPIC_DEVICE_UPDATED, on_update)
    await poller.refresh()

    assert len(events) == 1
    assert events[0]["ups_name"] == "myups"
    assert events[0]["name"] == "Office Ups"
    assert events[0]["snapshot"].battery_level == 100.0


@pytest.mark.asyncio
async def test_snapshot_is_a_copy(mock_supervisor):
    poller = DevicePoller(mock_supervisor, "myups")
    snapshot = poller.snapshot
    snapshot.fault = True
    assert poller.snapshot.fault is False


@pytest.mark.asyncio
async def test_polling_disabled_never_refreshes(mock_supervisor):
    poller = DevicePoller(mock_supervisor, "myups", poll_interval=0)

    await poller.start()
    await asyncio.sleep(0.05)

    assert not poller.is_running
    assert poller._task is None
    mock_supervisor.fetch_vars.assert_not_awaited()
    assert poller.snapshot.updated_at is None

    await poller.check_and_refresh()
    mock_supervisor.fetch_vars.assert_awaited_once()
    await poller.stop()


@pytest.mark.asyncio
async def test_polling_loop_refreshes_on_interval(mock_supervisor):
    poller = DevicePoller(mock_supervisor, "myups", poll_interval=0.01)

    await poller.start()
    assert poller.is_running
    await asyncio.sleep(0.1)
    await poller.stop()

    assert not poller.is_running
    calls = mock_supervisor.fetch_vars.await_count
    assert calls >= 2
    await asyncio.sleep(0.05)
    assert mock_supervisor.fetch_vars.await_count == calls


@pytest.mark.asyncio
async def test_polling_loop_survives_faults(mock_supervisor):
    mock_supervisor.fetch_vars.side_effect = FetchFailedError("ERROR getting UPSVars: ERR DATA-STALE")
    poller = DevicePoller(mock_supervisor, "myups", poll_interval=0.01)

    await poller.start()
    await asyncio.sleep(0.05)
    assert poller.is_running
    await poller.stop()

    assert mock_supervisor.fetch_vars.await_count >= 2
    assert poller.snapshot.fault is True


@pytest.mark.asyncio
async def test_poller_start_twice(mock_supervisor):
    poller = DevicePoller(mock_supervisor, "myups", poll_interval=10)
    await poller.start()
    task = poller._task
    await poller.start()
    assert poller._task is task
    await poller.stop()
    assert poller._task is None


@pytest.mark.asyncio
async def test_command_error_through_real_supervisor(ready_supervisor, fake_client):
    fake_client.get_vars.side_effect = NUTCommandError("ERR UNKNOWN-UPS")
    poller = DevicePoller(ready_supervisor, "ghost")

    await poller.check_and_refresh()

    assert poller.snapshot.fault is True
    assert ready_supervisor.is_ready()


@pytest.mark.asyncio
async def test_dropped_connection_faults_then_reconnects(nut_server):
    server = await nut_server([90, 80], drop_after=1)
    supervisor = ConnectionSupervisor(NUTClient(host="127.0.0.1", port=server.port, timeout=2.0))
    poller = DevicePoller(supervisor, "ups", reconnect_wait=2.0, fetch_timeout=5.0)
    try:
        await poller.check_and_refresh()
        assert poller.snapshot.battery_level == 90
        assert supervisor.state is SessionState.READY

        await poller.check_and_refresh()
        assert poller.snapshot.fault is True
        assert supervisor.state is SessionState.DISCONNECTED

        await poller.check_and_refresh()
        assert poller.snapshot.fault is False
        assert poller.snapshot.battery_level == 80
        assert supervisor.state is SessionState.READY
    finally:
        await supervisor.close()
    assert server.connections == 2


@pytest.mark.asyncio
async def test_timed_out_fetch_does_not_leave_stale_replies(nut_server):
    server = await nut_server([10, 20, 30], delays={0: 0.6})
    supervisor = ConnectionSupervisor(NUTClient(host="127.0.0.1", port=server.port, timeout=0.2))
    poller = DevicePoller(supervisor, "ups", reconnect_wait=2.0, fetch_timeout=5.0)
    try:
        await poller.check_and_refresh()
        assert poller.snapshot.fault is True
        assert supervisor.state is SessionState.DISCONNECTED

        await poller.check_and_refresh()
        assert poller.snapshot.fault is False
        assert poller.snapshot.battery_level == 20

        await poller.check_and_refresh()
        assert poller.snapshot.battery_level == 30
    finally:
        await supervisor.close()
