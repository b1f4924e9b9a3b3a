import asyncio
import sys

import click
from rich.table import Table

from nutmon.core.bus import TOPIC_DEVICE_FAULT, TOPIC_DEVICE_UPDATED
from nutmon.core.nut_service import NUTService
from nutmon.nut.client import NUTClient
from nutmon.nut.poller import DevicePoller
from nutmon.nut.supervisor import ConnectionSupervisor
from nutmon.utils.timeparse import parse_duration

from .utils import console, handle_async_command, snapshot_table


def _client(config) -> NUTClient:
    return NUTClient(
        host=config.NUT_HOST,
        port=config.NUT_PORT,
        username=config.NUT_USERNAME,
        password=config.NUT_PASSWORD,
        timeout=config.NUT_TIMEOUT,
    )


@click.command(name='list')
@click.pass_obj
@handle_async_command
async def list_devices(obj) -> None:
    """Lists the UPS devices known to the NUT server."""
    config = obj['SETTINGS']
    console.print(f"[bold blue]UPS devices on {config.NUT_HOST}:{config.NUT_PORT}[/bold blue]")
    supervisor = ConnectionSupervisor(_client(config))
    try:
        supervisor.start()
        if not await supervisor.wait_ready(config.reconnect_wait):
            console.print("[red]❌ Unable to connect to NUT server[/red]")
            sys.exit(1)
        devices = await supervisor.list_devices()
    finally:
        await supervisor.close()

    if not devices:
        console.print("[yellow]No UPS devices found[/yellow]")
        return
    table = Table(title="UPS Devices")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    for name, description in devices.items():
        table.add_row(name, description or "")
    console.print(table)


@click.command()
@click.argument('ups_name')
@click.pass_obj
@handle_async_command
async def status(obj, ups_name: str) -> None:
    """Checks one UPS once and prints its status."""
    config = obj['SETTINGS']
    supervisor = ConnectionSupervisor(_client(config), disconnect_on_error=config.DISCONNECT_ON_ERROR)
    poller = DevicePoller(
        supervisor,
        ups_name,
        low_batt_threshold=config.LOW_BATT_THRESHOLD,
        reconnect_wait=config.reconnect_wait,
        fetch_timeout=config.FETCH_TIMEOUT,
    )
    try:
        await poller.check_and_refresh()
    finally:
        await supervisor.close()

    snapshot = poller.snapshot
    console.print(snapshot_table(f"UPS {ups_name}", snapshot))
    if snapshot.fault:
        sys.exit(1)


@click.command()
@click.option('--interval', default=None, help="Polling interval, e.g. '30', '30s' or '2m'. Defaults to the configured interval, or 60s when polling is off.")
@click.pass_obj
@handle_async_command
async def watch(obj, interval: str | None) -> None:
    """Polls every UPS and prints status changes until interrupted."""
    config = obj['SETTINGS']
    if interval is not None:
        config = config.model_copy(update={'POLL_INTERVAL': parse_duration(interval)})
    if config.POLL_INTERVAL <= 0:
        config = config.model_copy(update={'POLL_INTERVAL': 60})

    service = NUTService(config, client=_client(config))

    async def on_update(event):
        console.print(snapshot_table(event['name'], event['snapshot']))

    async def on_fault(event):
        console.print(f"[red]⚠ {event['name']}: {event['reason']}[/red]")

    console.print(f"[bold blue]Watching {config.NUT_HOST}:{config.NUT_PORT} every {config.POLL_INTERVAL}s[/bold blue]")
    async with service:
        if not service.get_devices():
            console.print("[yellow]No UPS devices to watch[/yellow]")
            return
        for ups_name in service.get_devices():
            poller = service.get_poller(ups_name)
            console.print(snapshot_table(poller.name, poller.snapshot, poller.info))

        await service.subscribe(TOPIC_DEVICE_UPDATED, on_update)
        await service.subscribe(TOPIC_DEVICE_FAULT, on_fault)
        await asyncio.Event().wait()
