"""Typer CLI for Entitlement-Bridge."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

app = typer.Typer(name="bridge", help="Entitlement-Bridge: Stripe to Frontegg provisioning")
console = Console()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (default: BRIDGE_HOST)"),
    port: Optional[int] = typer.Option(None, help="Bind port (default: BRIDGE_PORT)"),
):
    """Start the webhook server."""
    import uvicorn
    from entitlement_bridge.app import create_app
    from entitlement_bridge.common.config import get_settings

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port
    console.print(f"[bold green]Starting Entitlement-Bridge on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def resolve(
    price_id: str = typer.Argument(..., help="Stripe price ID"),
):
    """Show the Frontegg feature ID configured for a Stripe price ID."""
    from entitlement_bridge.common.config import get_settings
    from entitlement_bridge.provisioning.plans import PlanResolver

    feature_id = PlanResolver.from_settings(get_settings()).resolve(price_id)
    if feature_id is None:
        console.print(f"[bold red]UNMAPPED[/bold red] {price_id} is not in BRIDGE_PLAN_MAP")
        raise typer.Exit(1)
    console.print(f"[bold]{price_id}[/bold] -> {feature_id}")


@app.command()
def sign(
    payload_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Event JSON file"),
    secret: Optional[str] = typer.Option(None, help="Signing secret (default: BRIDGE_STRIPE_WEBHOOK_SECRET)"),
):
    """Print a Stripe-Signature header for a payload, for local testing."""
    from entitlement_bridge.common.config import get_settings
    from entitlement_bridge.provisioning.stripe_webhook import sign_stripe_payload

    secret = secret or get_settings().stripe_webhook_secret
    if not secret:
        console.print("[bold red]Error:[/bold red] no signing secret configured")
        raise typer.Exit(1)
    console.print(sign_stripe_payload(payload_file.read_bytes(), secret), soft_wrap=True)


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(
            f"[bold green]{data['status']}[/bold green] v{data['version']} "
            f"({data.get('event_type', '')})"
        )
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
