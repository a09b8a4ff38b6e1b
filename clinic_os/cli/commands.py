"""CLI commands for clinic-os."""

import asyncio
import uuid
from datetime import date
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from clinic_os.config import get_settings
from clinic_os.core.database import get_session_factory, init_db
from clinic_os.core.repository import SqlSchedulingStore
from clinic_os.scheduling.errors import SchedulingError
from clinic_os.scheduling.scheduler import SchedulingService, clinic_today
from clinic_os.scheduling.waitlist import WaitlistResolver

app = typer.Typer(
    name="clinic-os",
    help="Scheduling and waiting-list resolution for multi-tenant clinics",
    add_completion=False,
)
console = Console()

T = TypeVar("T")


def _parse_uuid(value: str, name: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Invalid {name}: {value}[/red]")
        raise typer.Exit(1)


async def _with_resolver(fn: Callable[[WaitlistResolver], Awaitable[T]]) -> T:
    """Run *fn* against the configured database and commit its writes."""
    settings = get_settings()
    async with get_session_factory()() as session:
        resolver = WaitlistResolver(
            SqlSchedulingStore(session),
            service=SchedulingService.from_settings(settings),
            today=lambda: clinic_today(settings.clinic_timezone),
            window_days=settings.scheduling_window_days,
        )
        try:
            result = await fn(resolver)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        return result


def _run(fn: Callable[[WaitlistResolver], Awaitable[T]]) -> T:
    try:
        return asyncio.run(_with_resolver(fn))
    except SchedulingError as e:
        console.print(f"[red]{e.code}: {e.message}[/red]")
        raise typer.Exit(1)


@app.command()
def slots(
    tenant: str = typer.Option(..., "--tenant", "-t", help="Tenant ID"),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Window length in days"),
    start: Optional[str] = typer.Option(None, "--start", help="First day (YYYY-MM-DD), default today"),
    output_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List free slots of every active provider."""
    tenant_id = _parse_uuid(tenant, "tenant")
    start_date = None
    if start:
        try:
            start_date = date.fromisoformat(start)
        except ValueError:
            console.print(f"[red]Invalid date: {start}[/red]")
            raise typer.Exit(1)

    free = _run(lambda r: r.compute_available_slots(tenant_id, window_days=days, start_date=start_date))

    if output_json:
        console.print_json(data=[s.model_dump(mode="json") for s in free])
        return

    table = Table(title=f"Available slots ({len(free)})")
    table.add_column("Date")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Provider")
    for slot in free:
        table.add_row(
            slot.date.isoformat(),
            slot.start_time.strftime("%H:%M"),
            slot.end_time.strftime("%H:%M"),
            str(slot.provider_id),
        )
    console.print(table)


@app.command("auto-assign")
def auto_assign(
    entry_id: str = typer.Argument(..., help="Waiting-list entry ID"),
    tenant: str = typer.Option(..., "--tenant", "-t", help="Tenant ID"),
):
    """Book the earliest matching slot for one waiting entry."""
    tenant_id = _parse_uuid(tenant, "tenant")
    eid = _parse_uuid(entry_id, "entry ID")

    result = _run(lambda r: r.auto_assign(tenant_id, eid))

    console.print(
        f"[green]Scheduled[/green] entry {result.entry_id} with provider {result.slot.provider_id} "
        f"on {result.slot.datetime:%Y-%m-%d %H:%M}"
    )
    if not result.honored_preferences:
        console.print("[yellow]Preferences could not be honored; earliest free slot used.[/yellow]")


@app.command()
def resolve(
    tenant: str = typer.Option(..., "--tenant", "-t", help="Tenant ID"),
):
    """Auto-assign every waiting entry in queue order."""
    tenant_id = _parse_uuid(tenant, "tenant")

    batch = _run(lambda r: r.resolve_waitlist(tenant_id))

    table = Table(title="Waiting list resolution")
    table.add_column("Entry")
    table.add_column("Priority", justify="right")
    table.add_column("Result")
    for outcome in batch.outcomes:
        if outcome.assigned and outcome.result:
            status = f"[green]{outcome.result.slot.datetime:%Y-%m-%d %H:%M}[/green]"
        else:
            status = f"[red]{outcome.error_code}[/red]"
        table.add_row(str(outcome.entry_id), str(outcome.priority), status)
    console.print(table)
    console.print(f"Assigned {len(batch.assigned)} of {len(batch.outcomes)} entries")


@app.command("init-db")
def init_db_command():
    """Create database tables."""
    asyncio.run(init_db())
    console.print("[green]Database initialized[/green]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", "-h", help="Host to bind"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
):
    """Start the REST API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    console.print(f"Starting clinic-os API server on {host}:{port}")
    uvicorn.run(
        "clinic_os.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command()
def version():
    """Show version information."""
    from clinic_os import __version__

    console.print(f"clinic-os version {__version__}")
