"""
FanZone - Main CLI Application

Command-line interface for inspecting and exercising the service runtime.
"""
import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from config import get_config
from core.errors import BootstrapError
from di.container import DIContainer
from observability.logging import LoggingConfig, get_logger, setup_logging, shutdown_logging
from repositories.memory import MemoryRepository

app = typer.Typer(
    name="fanzone",
    help="FanZone - Service Runtime",
    add_completion=False
)

console = Console()
logger = get_logger("fanzone.cli")

BUSINESS_SERVICES = ("platform_adapter", "repository", "auth_service", "user_service", "gift_service")


@app.callback()
def configure(
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
):
    """Configure logging before any command runs."""
    # Module-level loggers configured defaults at import time
    shutdown_logging()
    setup_logging(LoggingConfig(level=log_level.upper(), json_format=json_logs))


def _build_container(
    user_id: Optional[int],
    username: Optional[str],
    offline_repository: bool,
) -> DIContainer:
    config = get_config()
    if user_id is not None:
        config.platform.user_payload = {"id": user_id, "username": username}

    container = DIContainer(config)
    if offline_repository:
        container.register(
            "repository",
            lambda: MemoryRepository(reachable=False),
            aliases=["data_repository", "dataRepository"],
        )
    return container


def _bootstrap(container: DIContainer) -> None:
    try:
        asyncio.run(container.initialize_app())
    except BootstrapError as e:
        console.print(f"[red]Bootstrap failed at step '{e.step}': {escape(e.message)}[/red]")
        raise typer.Exit(1)


@app.command()
def status():
    """Show the effective configuration."""
    console.print(Panel.fit(
        "[bold blue]FanZone - Service Runtime[/bold blue]",
        border_style="blue"
    ))

    table = Table(title="Configuration")
    table.add_column("Section", style="cyan")
    table.add_column("Setting")
    table.add_column("Value", style="green")

    for section, values in get_config().to_dict().items():
        if not isinstance(values, dict):
            table.add_row(section, "", str(values))
            continue
        for key, value in values.items():
            table.add_row(section, key, str(value))

    console.print(table)


@app.command()
def bootstrap(
    user_id: Optional[int] = typer.Option(None, "--user-id", "-u", help="Platform user id"),
    username: Optional[str] = typer.Option(None, "--username", help="Platform username"),
    offline_repository: bool = typer.Option(False, "--offline-repo", help="Simulate an unreachable repository"),
):
    """Run the full bootstrap and report the registry."""
    container = _build_container(user_id, username, offline_repository)
    _bootstrap(container)

    stats = container.get_stats()
    table = Table(title="Container")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for key in ("values", "singletons", "factories", "aliases", "initialized"):
        table.add_row(key, str(stats[key]))
    console.print(table)

    if container.degraded_services:
        console.print("[yellow]Degraded services:[/yellow]")
        for name, info in container.degraded_services.items():
            console.print(f"  [yellow]{name}[/yellow] ({info.category.value}): {info.user_message}")
    else:
        console.print("[green]All services healthy[/green]")

    user = container.get("auth").get_current_user()
    if user:
        console.print(f"Signed in as [bold]{user.get('username')}[/bold] ({user.get('points')} points)")


@app.command()
def health(
    user_id: Optional[int] = typer.Option(None, "--user-id", "-u", help="Platform user id"),
    offline_repository: bool = typer.Option(False, "--offline-repo", help="Simulate an unreachable repository"),
):
    """Show per-service health after bootstrap."""
    container = _build_container(user_id, None, offline_repository)
    _bootstrap(container)

    validator = container.get("service_validator")
    table = Table(title="Service Health")
    table.add_column("Service", style="cyan")
    table.add_column("Available")
    table.add_column("Initialized")
    table.add_column("Healthy")
    table.add_column("Issues")

    for name in BUSINESS_SERVICES:
        report = validator.get_service_health(container.get(name), name)
        table.add_row(
            name,
            "✓" if report.available else "✗",
            "✓" if report.initialized else "✗",
            "[green]yes[/green]" if report.healthy else "[red]no[/red]",
            ", ".join(report.issues),
        )

    console.print(table)


@app.command()
def errors(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the export here (file or directory)"),
    user_id: Optional[int] = typer.Option(None, "--user-id", "-u", help="Platform user id"),
    offline_repository: bool = typer.Option(False, "--offline-repo", help="Simulate an unreachable repository"),
):
    """Bootstrap, then export the error log as JSON."""
    container = _build_container(user_id, None, offline_repository)
    try:
        asyncio.run(container.initialize_app())
    except BootstrapError as e:
        logger.warning("Bootstrap failed, exporting errors anyway", step=e.step)

    data = container.get("error_handler").export_log(output)
    if output is None:
        console.print_json(data)
    else:
        console.print(f"[green]Error log exported to {output}[/green]")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
