"""
CLI entrypoint for the APNs push client.
"""
import asyncio
import sys
from typing import List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from apns_push.client.notification import APNsNotification
from apns_push.client.provider import APNsProvider
from apns_push.client.token import AuthToken
from apns_push.shared.config import settings
from apns_push.shared.errors import ConfigurationError
from apns_push.shared.models import SendResult

app = typer.Typer(help="Send push notifications through APNs over one HTTP/2 session")
console = Console()

def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())

def render_result(result: SendResult) -> Table:
    table = Table(title="Delivery Report", expand=True)
    table.add_column("Device", style="cyan", no_wrap=True)
    table.add_column("Outcome", style="magenta")
    table.add_column("Status", style="blue")
    table.add_column("Detail", style="green")

    for device in result.sent:
        table.add_row(device, "[green]sent[/]", "200", "")
    for failure in result.failed:
        detail = failure.reason or (repr(failure.error) if failure.error else str(failure.response))
        table.add_row(failure.device, "[red]failed[/]", failure.status or "-", detail)
    return table

async def _send(notification: APNsNotification, devices: list[str], production: bool | None) -> SendResult:
    options = settings.provider_options(production=production)
    async with APNsProvider(options) as provider:
        return await provider.send(notification, devices)

@app.callback()
def main(log_level: str = typer.Option(settings.LOG_LEVEL, help="loguru sink level")):
    configure_logging(log_level)

@app.command()
def send(
    device: List[str] = typer.Option(..., "--device", "-d", help="Device token; repeat for several devices"),
    alert: Optional[str] = typer.Option(None, help="Alert text"),
    topic: Optional[str] = typer.Option(settings.APNS_TOPIC, help="apns-topic (usually the app bundle id)"),
    badge: Optional[int] = typer.Option(None, help="Badge count"),
    sound: Optional[str] = typer.Option(None, help="Sound name"),
    production: Optional[bool] = typer.Option(None, "--production/--sandbox", help="Override the authority chosen from settings"),
):
    """Send one notification to one or more devices and print a per-device report."""
    notification = APNsNotification(alert=alert, topic=topic, badge=badge, sound=sound)
    try:
        result = asyncio.run(_send(notification, device, production))
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(2)

    console.print(render_result(result))
    if result.failed:
        raise typer.Exit(1)

@app.command()
def token():
    """Print a freshly signed provider token."""
    try:
        signer = AuthToken(settings.token_options())
        typer.echo(signer.generate())
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(2)

if __name__ == "__main__":
    app()
