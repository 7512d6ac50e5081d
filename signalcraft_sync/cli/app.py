"""Command-line interface for signalcraft-sync."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
import typer
from rich.console import Console

from signalcraft_sync.audit.logger import AuditLogger
from signalcraft_sync.clients.exceptions import ConfigurationError, StateError
from signalcraft_sync.config.loader import ConfigLoader, config_from_env, find_config_file
from signalcraft_sync.config.models import SyncConfig
from signalcraft_sync.cli.formatters import ConfigFormatter, StatusFormatter
from signalcraft_sync.core.controller import ReconcileController
from signalcraft_sync.core.manifests import load_manifests
from signalcraft_sync.core.models import ResourceIdentity
from signalcraft_sync.core.reconciler import ReconcileResult, Reconciler
from signalcraft_sync.core.store import FileResourceStore
from signalcraft_sync.resources import SUPPORTED_KINDS
from signalcraft_sync.security.validation import sanitize_log_input, validate_file_path

console = Console()
logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="signalcraft-sync",
    help="Converge declaratively managed SignalCraft resources with the SignalCraft API.",
    rich_markup_mode="rich",
    add_completion=False,
)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to configuration file")


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Setup structured logging.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True,
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format.lower() == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def load_configuration(config_file: Optional[Path] = None, quiet: bool = False) -> SyncConfig:
    """Load configuration from a file, or from the environment if there is none.

    Raises:
        typer.Exit: If configuration loading fails
    """
    try:
        if config_file is None:
            config_file = find_config_file()

        if config_file is None:
            config = config_from_env()
            source = "environment"
        else:
            if not validate_file_path(str(config_file)):
                console.print(
                    f"[red]Error: Invalid or unsafe configuration file path: "
                    f"{sanitize_log_input(str(config_file))}[/red]"
                )
                raise typer.Exit(1)
            config = ConfigLoader().load_config(config_file)
            source = str(config_file)

    except ConfigurationError as e:
        console.print(f"[red]Error loading configuration: {sanitize_log_input(str(e))}[/red]")
        raise typer.Exit(1)

    setup_logging(config.logging.level.value, config.logging.format.value)
    if not quiet:
        console.print(f"[green]✓[/green] Loaded configuration from {source}")
    return config


def open_store(config: SyncConfig) -> FileResourceStore:
    try:
        return FileResourceStore(config.state.state_file, enable_backup=config.state.enable_state_backup)
    except StateError as e:
        console.print(f"[red]Error opening state: {sanitize_log_input(str(e))}[/red]")
        raise typer.Exit(1)


def build_controller(config: SyncConfig, store: FileResourceStore) -> ReconcileController:
    reconciler = Reconciler.from_config(store, config.api, config=config.reconciler)
    audit_logger = AuditLogger(config.audit.audit_dir) if config.audit.enabled else None
    return ReconcileController(
        store,
        reconciler,
        max_concurrent=config.reconciler.max_concurrent,
        audit_logger=audit_logger,
    )


async def _close(controller: ReconcileController) -> None:
    client = controller.reconciler.client
    if client is not None:
        await client.close()


@app.command()
def validate(
    config_file: Optional[Path] = ConfigOption,
) -> None:
    """Validate configuration and show a summary."""
    console.print("[blue]Validating configuration...[/blue]")
    config = load_configuration(config_file)
    ConfigFormatter(console).format_config_summary(config)
    console.print("[green]✓ Configuration is valid[/green]")


@app.command()
def apply(
    manifest_file: Path = typer.Option(..., "--file", "-f", help="YAML manifest of desired resources"),
    config_file: Optional[Path] = ConfigOption,
) -> None:
    """Record the desired state declared in a manifest file."""
    config = load_configuration(config_file)
    try:
        manifests = load_manifests(manifest_file)
    except ConfigurationError as e:
        console.print(f"[red]Invalid manifest: {sanitize_log_input(str(e))}[/red]")
        raise typer.Exit(1)

    unknown = sorted({identity.kind for identity, _ in manifests} - set(SUPPORTED_KINDS))
    if unknown:
        console.print(
            f"[red]Unsupported kinds: {', '.join(unknown)}. "
            f"Supported: {', '.join(SUPPORTED_KINDS)}[/red]"
        )
        raise typer.Exit(1)

    store = open_store(config)
    changed = 0
    for identity, spec in manifests:
        before = store.get(identity)
        try:
            record = store.apply(identity, spec)
        except StateError as e:
            console.print(f"[red]{sanitize_log_input(str(e))}[/red]")
            raise typer.Exit(1)
        if before is None or before.generation != record.generation:
            changed += 1
            console.print(f"  [green]~[/green] {identity.key} (generation {record.generation})")

    console.print(f"[green]✓[/green] Applied {len(manifests)} resources, {changed} changed")


@app.command()
def delete(
    kind: str = typer.Argument(..., help="Resource kind, e.g. Team"),
    scope: str = typer.Argument(..., help="Resource scope (namespace)"),
    name: str = typer.Argument(..., help="Resource name"),
    config_file: Optional[Path] = ConfigOption,
) -> None:
    """Request deletion of a managed resource."""
    config = load_configuration(config_file)
    try:
        identity = ResourceIdentity(kind=kind, scope=scope, name=name)
    except ValueError as e:
        console.print(f"[red]Invalid identity: {sanitize_log_input(str(e))}[/red]")
        raise typer.Exit(1)

    store = open_store(config)
    if store.get(identity) is None:
        console.print(f"[yellow]{identity.key} is not managed[/yellow]")
        raise typer.Exit(1)

    record = store.request_deletion(identity)
    if record is None:
        console.print(f"[green]✓[/green] {identity.key} removed (never synced)")
    else:
        console.print(f"[green]✓[/green] Deletion of {identity.key} requested; run reconcile to complete it")


@app.command()
def reconcile(
    config_file: Optional[Path] = ConfigOption,
    force: bool = typer.Option(False, "--force", help="Re-send objects that are already synced"),
) -> None:
    """Run one reconcile pass over every managed resource."""
    config = load_configuration(config_file)
    store = open_store(config)
    controller = build_controller(config, store)

    async def run_reconcile() -> List[ReconcileResult]:
        audit = controller.audit_logger
        if audit is not None:
            audit.start_execution_audit()
        try:
            return await controller.reconcile_all(force=force)
        finally:
            if audit is not None:
                summary = audit.complete_execution_audit()
                if summary is not None:
                    StatusFormatter(console).format_audit_summary(summary)
            await _close(controller)

    try:
        results = asyncio.run(run_reconcile())
    except KeyboardInterrupt:
        console.print("\n[yellow]Reconcile interrupted by user[/yellow]")
        raise typer.Exit(130)

    StatusFormatter(console).format_results(results)
    if any(not r.success for r in results):
        raise typer.Exit(1)


@app.command()
def run(
    config_file: Optional[Path] = ConfigOption,
    poll_interval: Optional[float] = typer.Option(
        None, "--poll-interval", help="Seconds between polls (defaults to the configured value)"
    ),
    max_cycles: Optional[int] = typer.Option(None, "--max-cycles", help="Stop after this many cycles"),
) -> None:
    """Run the reconcile controller until interrupted."""
    config = load_configuration(config_file)
    store = open_store(config)
    controller = build_controller(config, store)
    interval = poll_interval or config.reconciler.poll_interval_seconds

    async def run_controller() -> int:
        audit = controller.audit_logger
        if audit is not None:
            audit.start_execution_audit()
        try:
            return await controller.run(interval, max_cycles=max_cycles)
        finally:
            if audit is not None:
                audit.complete_execution_audit()
            await _close(controller)

    console.print(f"[blue]Controller running (poll interval {interval:g}s), press Ctrl+C to stop[/blue]")
    try:
        cycles = asyncio.run(run_controller())
    except KeyboardInterrupt:
        console.print("\n[yellow]Controller stopped[/yellow]")
        return
    console.print(f"[green]✓[/green] Controller finished after {cycles} cycles")


@app.command()
def status(
    config_file: Optional[Path] = ConfigOption,
) -> None:
    """Show the observed status of every managed resource."""
    config = load_configuration(config_file, quiet=True)
    store = open_store(config)
    StatusFormatter(console).format_resources(store.list())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
