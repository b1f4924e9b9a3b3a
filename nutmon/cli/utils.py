import asyncio
import functools
import sys

from rich.console import Console
from rich.table import Table

from nutmon.nut.models import DeviceInfo, StatusSnapshot

console = Console()


def handle_async_command(async_func):
    """Decorator to handle async CLI commands."""
    @functools.wraps(async_func)
    def wrapper(*args, **kwargs):
        try:
            return asyncio.run(async_func(*args, **kwargs))
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            sys.exit(1)
        except Exception as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)
    return wrapper


def _fmt(value, unit: str = "") -> str:
    if value is None:
        return "[dim]n/a[/dim]"
    return f"{value}{unit}"


def snapshot_table(title: str, snapshot: StatusSnapshot, info: DeviceInfo | None = None) -> Table:
    """Render one snapshot as a two-column table."""
    table = Table(title=title)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    if info is not None:
        table.add_row("Manufacturer", info.manufacturer)
        table.add_row("Model", info.model)
        table.add_row("Serial", info.serial_number)
        table.add_row("Firmware", info.firmware_revision)

    table.add_row("Status", _fmt(snapshot.status))
    table.add_row("Battery", _fmt(snapshot.battery_level, "%"))
    table.add_row("Low battery", "[red]yes[/red]" if snapshot.low_battery else "no")
    table.add_row("Charging", snapshot.charging.name.replace("_", " ").lower())
    table.add_row("On battery", "[yellow]yes[/yellow]" if snapshot.on_battery else "no")
    table.add_row("Load", _fmt(snapshot.load_percent, "%"))
    table.add_row("Active", "yes" if snapshot.active else "no")
    table.add_row("Input voltage", _fmt(snapshot.input_voltage, " V"))
    table.add_row("Output voltage", _fmt(snapshot.output_voltage, " V"))
    table.add_row("Battery voltage", _fmt(snapshot.battery_voltage, " V"))
    table.add_row("Temperature", _fmt(snapshot.temperature, " °C"))
    table.add_row("Fault", "[red]FAULT[/red]" if snapshot.fault else "[green]OK[/green]")
    return table
