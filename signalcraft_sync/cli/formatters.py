"""Output formatters for CLI commands."""

from typing import Iterable, List

from rich.console import Console
from rich.table import Table

from signalcraft_sync.audit.logger import AuditSummary
from signalcraft_sync.config.models import SyncConfig
from signalcraft_sync.core.models import ManagedResource, SyncState
from signalcraft_sync.core.reconciler import ReconcileResult
from signalcraft_sync.security.validation import sanitize_log_input

STATE_STYLES = {
    SyncState.SYNCED: "green",
    SyncState.PENDING: "yellow",
    SyncState.ERROR: "red",
}


class ConfigFormatter:
    """Formats configuration for display."""

    def __init__(self, console: Console):
        self.console = console

    def format_config_summary(self, config: SyncConfig) -> None:
        """Display configuration summary. The API key is never shown."""
        table = Table(title="Configuration Summary")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        api_url = config.api.api_url or "[red]missing[/red]"
        api_key = "configured" if config.api.api_key else "[red]missing[/red]"
        table.add_row("API URL", sanitize_log_input(api_url))
        table.add_row("API Key", api_key)
        table.add_row("Rate Limit", str(config.api.rate_limit_per_minute or "disabled"))
        table.add_row("Retry Interval", f"{config.reconciler.retry_interval_seconds:g}s")
        table.add_row("Poll Interval", f"{config.reconciler.poll_interval_seconds:g}s")
        table.add_row("Max Concurrent", str(config.reconciler.max_concurrent))
        if config.reconciler.resync_synced:
            table.add_row("Resync Interval", f"{config.reconciler.resync_interval_seconds:g}s")
        table.add_row("State File", sanitize_log_input(str(config.state.state_file)))
        table.add_row("Audit", str(config.audit.audit_dir) if config.audit.enabled else "Disabled")

        self.console.print(table)

        missing = config.api.missing_fields()
        if missing:
            self.console.print(
                f"[yellow]Warning: {', '.join(missing)} not set; objects will report a configuration error[/yellow]"
            )

    def format_validation_errors(self, errors: List[str]) -> None:
        """Display configuration validation errors."""
        if not errors:
            self.console.print("[green]Configuration is valid[/green]")
            return

        self.console.print("[red]Configuration Validation Errors:[/red]")
        for i, error in enumerate(errors, 1):
            self.console.print(f"  {i}. {sanitize_log_input(error)}")


class StatusFormatter:
    """Formats managed resources and reconcile results."""

    def __init__(self, console: Console):
        self.console = console

    def format_resources(self, resources: Iterable[ManagedResource]) -> None:
        resources = list(resources)
        if not resources:
            self.console.print("[yellow]No managed resources[/yellow]")
            return

        table = Table(title="Managed Resources")
        table.add_column("Resource", style="cyan")
        table.add_column("State")
        table.add_column("Phase", style="magenta")
        table.add_column("Generation", justify="right")
        table.add_column("Remote ID", style="blue")
        table.add_column("Message", style="white")

        for resource in resources:
            status = resource.status
            style = STATE_STYLES.get(status.state, "white")
            generation = f"{status.observed_generation}/{resource.generation}"
            if resource.deletion_requested:
                generation += " (deleting)"
            table.add_row(
                sanitize_log_input(resource.key),
                f"[{style}]{status.state.value}[/{style}]",
                status.phase.value,
                generation,
                sanitize_log_input(status.remote_id or "-"),
                sanitize_log_input(status.message or ""),
            )

        self.console.print(table)

    def format_results(self, results: Iterable[ReconcileResult]) -> None:
        results = list(results)
        if not results:
            self.console.print("[green]Nothing to reconcile[/green]")
            return

        table = Table(title="Reconcile Results")
        table.add_column("Resource", style="cyan")
        table.add_column("Operation", style="magenta")
        table.add_column("Result")
        table.add_column("Requeue", justify="right")
        table.add_column("Message", style="white")

        for result in results:
            outcome = "[green]ok[/green]" if result.success else "[red]failed[/red]"
            if result.superseded:
                outcome = "[yellow]superseded[/yellow]"
            requeue = f"{result.requeue_after:g}s" if result.requeue else "-"
            table.add_row(
                sanitize_log_input(result.identity),
                result.operation,
                outcome,
                requeue,
                sanitize_log_input(result.message or ""),
            )

        self.console.print(table)

    def format_audit_summary(self, summary: AuditSummary) -> None:
        table = Table(title="Execution Summary")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Execution", summary.execution_id)
        table.add_row("Events", str(summary.total_events))
        table.add_row("Success Rate", f"{summary.get_success_rate():.1f}%")
        for operation, count in sorted(summary.operations.items()):
            table.add_row(f"Operation: {operation}", str(count))
        for error_type, count in sorted(summary.error_types.items()):
            table.add_row(f"Error: {error_type}", str(count))

        self.console.print(table)
