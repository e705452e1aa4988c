"""
CLI interface for callbridge.
Runs the webhook server and offers offline helpers for phone normalisation
and signature checks.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from callbridge.config import get_settings
from callbridge.logging_config import setup_logging
from callbridge.phone_utils import format_for_display, normalize_phone
from callbridge.signatures import verify_dialpad_signature, verify_signature_from_header

app = typer.Typer(
    name="callbridge",
    help="Dialpad call events to BuilderPrime activities",
    add_completion=False,
)
console = Console()


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (defaults to HOST)"),
    port: int = typer.Option(None, help="Port (defaults to PORT)"),
):
    """Run the webhook receiver."""
    import uvicorn

    from callbridge.server import create_app

    settings = get_settings()
    setup_logging(settings.log_dir, json_logs=settings.json_logs)

    bind_host = host or settings.host
    bind_port = port or settings.port
    console.print(f"\n[green]Webhook server running on {bind_host}:{bind_port}[/green]")
    uvicorn.run(create_app(settings), host=bind_host, port=bind_port, log_level="info")


@app.command()
def normalize(
    numbers: list[str] = typer.Argument(..., help="Raw phone numbers"),
):
    """Show how phone numbers normalise (NANP only)."""
    table = Table(title="Phone Normalisation")
    table.add_column("Input", style="cyan")
    table.add_column("E.164", style="green")
    table.add_column("Last 10")
    table.add_column("Display")

    for raw in numbers:
        phone = normalize_phone(raw)
        if phone is None:
            table.add_row(raw, "[red]invalid[/red]", "", "")
        else:
            table.add_row(raw, phone.e164, phone.last10, format_for_display(phone.e164))

    console.print(table)


@app.command()
def verify(
    body_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Raw request body"),
    signature: str = typer.Argument(..., help="Signature header value"),
    secret: str = typer.Option(None, help="Secret (defaults to DIALPAD_WEBHOOK_SECRET)"),
    generic: bool = typer.Option(False, help="Use the sha256=/sha1= header verifier"),
):
    """Check a webhook signature against a saved body."""
    settings = get_settings()
    setup_logging(None, json_logs=False)

    key = secret or (settings.generic_webhook_secret if generic else settings.dialpad_webhook_secret)
    if not key:
        console.print("[red]✗ No secret given or configured[/red]")
        raise typer.Exit(code=2)

    body = body_file.read_bytes()
    if generic:
        ok = verify_signature_from_header(body, signature, key)
    else:
        ok = verify_dialpad_signature(body, signature, key)

    if ok:
        console.print("[green]✓ Signature valid[/green]")
    else:
        console.print("[red]✗ Signature invalid[/red]")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
