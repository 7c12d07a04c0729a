"""
JSON Oracle CLI - Command-line interface for JSON Oracle.

Minimal CLI for server management and operator tasks.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from jsonoracle.logging_config import setup_logging

app = typer.Typer(
    name="jsonoracle",
    help="JSON Oracle - Multi-model analysis of JSON payloads",
    no_args_is_help=True,
)

console = Console()


def _init_logging() -> None:
    try:
        setup_logging(context="cli")
    except PermissionError:
        logging.basicConfig(level=logging.INFO)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind to"),
    port: Optional[int] = typer.Option(None, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """
    Start the FastAPI server.

    Runs the JSON Oracle API server.
    """
    import uvicorn

    from jsonoracle.config import get_settings

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    console.print("[bold green]Starting JSON Oracle API server...[/bold green]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Reload: {reload or settings.api_reload}")
    console.print(f"\n  API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "jsonoracle.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload or settings.api_reload,
    )


@app.command("init-db")
def init_db() -> None:
    """Create the database tables."""
    from jsonoracle.config import get_settings
    from jsonoracle.db.connection import Database

    _init_logging()
    database = Database.from_settings(get_settings())
    try:
        if not database.check_connection():
            console.print("[bold red]Error:[/bold red] Cannot connect to the database")
            raise typer.Exit(1)
        database.init_db()
        console.print("[green]✓ Database tables created[/green]")
    finally:
        database.dispose()


@app.command()
def register(
    owner: str = typer.Argument(..., help="Owner identity (identity-provider subject)"),
    name: str = typer.Argument(..., help="Integration name"),
    transport: str = typer.Option("webhook", help="webhook, polling or stream_only"),
    webhook_url: Optional[str] = typer.Option(None, help="Webhook URL for results"),
    domain: Optional[str] = typer.Option(None, help="Default analysis domain"),
    model: Optional[list[str]] = typer.Option(None, "--model", help="Default model (repeatable)"),
) -> None:
    """
    Register an integration and print its API key.

    The key is shown once and cannot be recovered later.
    """
    from jsonoracle.config import get_settings
    from jsonoracle.db.connection import Database
    from jsonoracle.exceptions import JsonOracleError
    from jsonoracle.integrations import IntegrationRegistry

    _init_logging()
    settings = get_settings()
    database = Database.from_settings(settings)
    config: dict = {}
    if domain:
        config["domain"] = domain
    if model:
        config["models"] = list(model)

    try:
        database.init_db()
        registry = IntegrationRegistry(database, api_key_namespace=settings.api_key_namespace)
        integration, api_key = registry.register(
            owner=owner,
            name=name,
            transport_kind=transport,
            webhook_url=webhook_url,
            config=config or None,
        )
    except JsonOracleError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    finally:
        database.dispose()

    console.print("[green]✓ Integration registered[/green]")
    console.print(f"  ID: {integration.id}")
    console.print(f"  Transport: {integration.transport_kind}")
    console.print(f"  API key: [bold]{api_key}[/bold]")
    console.print(f"  Webhook secret: {integration.webhook_secret}")
    console.print("\n[yellow]Store the API key now; it will not be shown again.[/yellow]")


@app.command("integrations")
def list_integrations(
    owner: str = typer.Argument(..., help="Owner identity"),
) -> None:
    """List an owner's integrations."""
    from jsonoracle.config import get_settings
    from jsonoracle.db.connection import Database
    from jsonoracle.integrations import IntegrationRegistry

    _init_logging()
    settings = get_settings()
    database = Database.from_settings(settings)
    try:
        registry = IntegrationRegistry(database, api_key_namespace=settings.api_key_namespace)
        integrations = registry.list_by_owner(owner)
    finally:
        database.dispose()

    if not integrations:
        console.print("[yellow]No integrations found[/yellow]")
        return

    table = Table(title=f"Integrations of {owner}")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Transport")
    table.add_column("Status")
    table.add_column("Key prefix")
    table.add_column("Last activity")
    for integration in integrations:
        table.add_row(
            str(integration.id),
            integration.name,
            integration.transport_kind,
            integration.status,
            integration.api_key_prefix,
            integration.last_activity_at.isoformat() if integration.last_activity_at else "-",
        )
    console.print(table)


@app.command()
def analyze(
    path: Path = typer.Argument(..., help="JSON file to analyse"),
    api_key: str = typer.Option(..., envvar="JSONORACLE_API_KEY", help="Integration API key"),
    domain: Optional[str] = typer.Option(None, help="Analysis domain"),
    model: Optional[list[str]] = typer.Option(None, "--model", help="Model id (repeatable)"),
    rounds: int = typer.Option(1, help="Conversation rounds"),
    analysis_type: Optional[str] = typer.Option(None, help="prediction, optimization, ... (default general)"),
    instructions: Optional[str] = typer.Option(None, help="Extra instructions for every model"),
    output_format: Optional[str] = typer.Option(None, help="structured, narrative, bullet_points, table or json"),
) -> None:
    """
    Run one analysis in-process and print the findings.

    The result is stored; webhook deliveries still pending on exit are dropped.
    """
    from jsonoracle.container import ServiceContainer
    from jsonoracle.exceptions import JsonOracleError

    _init_logging()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] Cannot read {path}: {e}")
        raise typer.Exit(1)

    async def run():
        container = ServiceContainer()
        await container.start()
        try:
            return await container.service.submit(
                api_key=api_key,
                integration_id=None,
                data=data,
                domain=domain,
                models=list(model) if model else None,
                rounds=rounds,
                analysis_type=analysis_type,
                custom_instructions=instructions,
                output_format=output_format,
            )
        finally:
            await container.stop()

    try:
        result = asyncio.run(run())
    except JsonOracleError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    colour = "green" if result.status == "completed" else "red"
    console.print(f"[{colour}]Analysis {result.id}: {result.status}[/{colour}]")
    if result.failure_reason:
        console.print(f"  Failure: {result.failure_reason}")
    console.print(f"  Processing time: {result.processing_time}s")

    if result.insights:
        table = Table(title="Insights")
        table.add_column("Kind", style="cyan")
        table.add_column("Impact")
        table.add_column("Confidence", justify="right")
        table.add_column("Description")
        for insight in result.insights:
            table.add_row(
                insight["kind"],
                insight["impact"],
                f"{insight['confidence']:.2f}",
                insight["description"],
            )
        console.print(table)

    for recommendation in result.recommendations:
        console.print(f"  • {recommendation}")
    if result.summary:
        console.print(f"\n{result.summary}")

    if result.status != "completed":
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
