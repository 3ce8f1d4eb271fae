"""Command line entry point for the marketing site backend."""

import asyncio
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config.production_settings import settings
from .core.exceptions import MarketingSiteError
from .core.models.email import Message
from .infrastructure.database.migrations import MigrationManager
from .infrastructure.email.service import ProductionEmailService
from .infrastructure.email.templates import EmailTemplateManager

console = Console()


def _print_validation_errors(validation_summary) -> None:
    console.print("[red]Configuration errors found:[/red]")
    for section, errors in validation_summary["errors_by_section"].items():
        for error in errors:
            console.print(f"  [red]•[/red] {section}: {escape(error)}")


@click.group()
@click.option('--debug', is_flag=True, help='Enable debug mode')
def cli(debug):
    """Marketing Site - Production CLI."""
    if debug:
        settings.system.debug = True
        settings.logging.level = "DEBUG"


@cli.command()
@click.option('--host', default=None, help='Bind address (defaults to HOST)')
@click.option('--port', type=int, default=None, help='Port (defaults to PORT)')
@click.option('--reload', is_flag=True, help='Reload on code changes (development only)')
def serve(host, port, reload):
    """Run the API and static site with uvicorn."""
    import uvicorn

    validation_summary = settings.get_validation_summary()
    if not validation_summary["is_valid"]:
        _print_validation_errors(validation_summary)
        if settings.system.is_production:
            console.print("\n[yellow]Please fix configuration errors before starting in production.[/yellow]")
            sys.exit(1)
        console.print("[yellow]Continuing; email delivery may fail until these are fixed.[/yellow]\n")

    host = host or settings.system.host
    port = port or settings.system.port

    console.print(Panel.fit(
        f"[bold]{settings.email.company_name}[/bold]\n"
        f"Environment: {settings.system.environment}\n"
        f"Listening on http://{host}:{port}",
        title="Marketing Site",
        border_style="yellow"
    ))

    uvicorn.run(
        "marketing_site.api.production_server:app",
        host=host,
        port=port,
        reload=reload and not settings.system.is_production,
        log_level=settings.logging.level.lower()
    )


@cli.command("check-config")
def check_config():
    """Validate configuration and print the effective settings."""
    validation_summary = settings.get_validation_summary()

    table = Table(title="Effective Configuration")
    table.add_column("Section", style="cyan")
    table.add_column("Setting", style="white")
    table.add_column("Value", style="green")

    for section, values in settings.to_dict().items():
        for key, value in values.items():
            table.add_row(section, key, escape(str(value)))

    console.print(table)

    templates = EmailTemplateManager(
        company_name=settings.email.company_name,
        client_url=settings.email.client_url,
        templates_dir=settings.email.templates_dir
    )
    template_table = Table(title="Email Templates")
    template_table.add_column("Template", style="cyan")
    template_table.add_column("Source", style="white")
    template_table.add_column("Status", style="green")

    template_errors = []
    for template_id, info in templates.get_available_templates().items():
        check = templates.validate_template(template_id)
        template_table.add_row(template_id, info["type"], "ok" if check["is_valid"] else "[red]invalid[/red]")
        template_errors.extend(f"{template_id}: {error}" for error in check["errors"])

    console.print(template_table)

    if validation_summary["is_valid"] and not template_errors:
        console.print("[green]✓ Configuration is valid[/green]")
        return

    if not validation_summary["is_valid"]:
        _print_validation_errors(validation_summary)
    for error in template_errors:
        console.print(f"  [red]•[/red] templates: {escape(error)}")
    sys.exit(1)


@cli.command()
@click.option('--status', 'show_status', is_flag=True, help='Only show the schema version')
@click.option('--rollback', 'rollback_to', type=int, default=None, help='Roll back to this schema version')
def migrate(show_status, rollback_to):
    """Apply, inspect or roll back submission store migrations."""
    asyncio.run(_migrate(show_status, rollback_to))


async def _migrate(show_status, rollback_to):
    settings.database.path.parent.mkdir(parents=True, exist_ok=True)
    manager = MigrationManager(settings.database.path)

    try:
        if rollback_to is not None:
            undone = await manager.rollback(rollback_to)
            console.print(f"[yellow]Rolled back {undone} migration(s)[/yellow]")
        elif not show_status:
            applied = await manager.migrate()
            console.print(f"[green]✓ Applied {applied} migration(s)[/green]")
        status = await manager.get_migration_status()
    except MarketingSiteError as e:
        console.print(f"[red]✗ {escape(e.message)}[/red]")
        sys.exit(1)

    console.print(
        f"Schema version {status['current_version']} of {status['latest_version']} "
        f"({escape(str(settings.database.path))})"
    )
    for pending in status["pending"]:
        console.print(f"  [yellow]pending[/yellow] {escape(pending)}")


@cli.command()
def profiles():
    """Show the transport profiles in the order they are tried."""
    try:
        service = ProductionEmailService.from_config(
            settings.email, production=settings.system.is_production
        )
    except MarketingSiteError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        sys.exit(1)

    table = Table(title="Transport Profiles (priority order)")
    table.add_column("#", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Host", style="white")
    table.add_column("Port", style="white")
    table.add_column("TLS", style="green")
    table.add_column("Verify Certs", style="yellow")

    for name, status in service.get_provider_status().items():
        config = status["config"]
        if config["secure"]:
            tls = "implicit"
        elif config["require_tls"]:
            tls = "STARTTLS"
        else:
            tls = "opportunistic"
        table.add_row(
            str(status["index"]),
            name,
            config["host"] or "-",
            str(config["port"]),
            tls if config["kind"] == "smtp" else "-",
            "yes" if config["verify_certificates"] else "no"
        )

    console.print(table)
    console.print(
        f"[dim]Retries per profile: {settings.email.max_retries}, "
        f"backoff {settings.email.retry_base_delay:g}s x{settings.email.retry_growth_factor:g}[/dim]"
    )


@cli.command("send-test")
@click.option('--to', 'recipient', default=None, help='Recipient (defaults to EMAIL_TO)')
@click.option('--verify-only', is_flag=True, help='Only connect and authenticate')
def send_test(recipient, verify_only):
    """Send a test email through the transport chain and show every attempt."""
    asyncio.run(_send_test(recipient, verify_only))


async def _send_test(recipient, verify_only):
    try:
        service = ProductionEmailService.from_config(settings.email)
    except MarketingSiteError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        sys.exit(1)

    try:
        if verify_only:
            result = await service.verify()
            if result.success:
                console.print(f"[green]✓ Connected and authenticated via {result.data['transport_name']}[/green]")
            else:
                console.print(f"[red]✗ {escape(result.error)}[/red]")
                sys.exit(1)
            return

        templates = EmailTemplateManager(
            company_name=settings.email.company_name,
            client_url=settings.email.client_url,
            templates_dir=settings.email.templates_dir
        )
        rendered = templates.render("contact_notification", {
            "name": "Test Sender",
            "email": settings.email.sender_address or "test@example.com",
            "phone": "+1 555 000 0000",
            "message": "This is a test message sent from the command line."
        })
        if not rendered.success:
            console.print(f"[red]{escape(rendered.error)}[/red]")
            sys.exit(1)

        message = Message(
            to=[recipient or settings.email.recipient_address],
            subject=f"[Test] {rendered.data.subject}",
            html=rendered.data.html,
            text=rendered.data.text
        )
        outcome = await service.deliver(message, deadline=settings.email.delivery_deadline)
    finally:
        await service.close()

    table = Table(title="Delivery Attempts")
    table.add_column("Transport", style="cyan")
    table.add_column("Attempt", style="white")
    table.add_column("Delay", style="white")
    table.add_column("Outcome", style="green")
    table.add_column("Error", style="red")

    for attempt in outcome.attempts:
        table.add_row(
            f"{attempt.transport_index}. {attempt.transport_name}",
            str(attempt.attempt),
            f"{attempt.delay_before:g}s",
            attempt.outcome.value,
            escape(attempt.error or "")
        )

    console.print(table)

    for failure in outcome.diagnostics.get("construction_failures", []):
        console.print(f"[yellow]⚠ {escape(failure['error'])}[/yellow]")

    if outcome.success:
        console.print(f"[green]✓ Sent via {outcome.transport_name} ({escape(outcome.message_id or '')})[/green]")
    else:
        console.print(f"[red]✗ {outcome.error_code}: {escape(outcome.error or '')}[/red]")
        sys.exit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
