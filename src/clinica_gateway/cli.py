"""Typer CLI for Clinica-Gateway."""

import asyncio

import typer
from rich.console import Console

app = typer.Typer(name="clinica-gateway", help="Clinica-Gateway: LibreClinica SOAP/database REST gateway")
console = Console()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the Clinica-Gateway API server."""
    import uvicorn
    from clinica_gateway.app import create_app

    console.print(f"[bold green]Starting Clinica-Gateway on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def status():
    """Show the configured hybrid mode (no server or database required)."""
    from clinica_gateway.common.config import get_settings
    from clinica_gateway.hybrid.policy import service_status

    current = service_status(get_settings().soap_enabled)
    colour = "green" if current.soap_enabled else "yellow"
    console.print(f"[bold {colour}]{current.mode}[/bold {colour}]: {current.description}")


@app.command("init-db")
def init_db(
    gateway_only: bool = typer.Option(
        False, "--gateway-only", help="Create only the gateway-owned tables",
    ),
    seed: bool = typer.Option(True, help="Insert missing lookup rows"),
):
    """Create tables in a development database."""
    from clinica_gateway.common.config import get_settings
    from clinica_gateway.common.database import DatabaseManager
    from clinica_gateway.common.models import GATEWAY_TABLES
    from clinica_gateway.common.reference import seed_reference_data

    async def _run() -> int:
        db = DatabaseManager(get_settings())
        await db.init()
        try:
            await db.create_all(GATEWAY_TABLES if gateway_only else None)
            if not seed or gateway_only:
                return 0
            async with db.get_session() as session:
                return await seed_reference_data(session)
        finally:
            await db.close()

    added = asyncio.run(_run())
    console.print(f"[bold green]Schema ready[/bold green], {added} lookup rows added")


@app.command("soap-check")
def soap_check(
    service: str = typer.Option("study", help="SOAP service to check"),
):
    """Fetch a LibreClinica WSDL to confirm the SOAP path is reachable."""
    from clinica_gateway.common.config import get_settings
    from clinica_gateway.soap.client import SoapClient

    client = SoapClient(get_settings())
    if asyncio.run(client.ping(service)):
        console.print(f"[bold green]REACHABLE[/bold green] {client.endpoint(service)}")
    else:
        console.print(f"[bold red]UNREACHABLE[/bold red] {client.endpoint(service)}")
        raise typer.Exit(1)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check Clinica-Gateway server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] v{data['version']}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
