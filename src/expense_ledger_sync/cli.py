"""
Command-line interface for the expense ledger sync tool.
"""

from datetime import date, datetime
from pathlib import Path
from typing import Optional
import logging
import sys

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import SyncConfig, generate_default_config, load_config
from .models.sync_run import SyncRunStatus, SyncSummary
from .notify import CorrectionRequest, SlackNotifier
from .pipeline import SyncService
from .reports.department_summary import month_bounds, summarize_by_department
from .store.ledger import SupabaseLedgerStore
from .utils.exceptions import ConfigurationError, NotificationError
from .utils.logging_config import level_from_name, setup_logging

console = Console()

config_option = click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")


def _load(config: Optional[Path], verbose: bool) -> SyncConfig:
    sync_config = load_config(config)
    level = logging.DEBUG if verbose else level_from_name(sync_config.logging.level)
    log_file = Path(sync_config.logging.file) if sync_config.logging.file else None
    setup_logging(level, log_file=log_file, log_format=sync_config.logging.format)
    return sync_config


def _build_service(sync_config: SyncConfig) -> SyncService:
    store = SupabaseLedgerStore.from_config(sync_config.ledger)
    notifier = SlackNotifier(sync_config.slack) if sync_config.slack.notify_on_sync else None
    return SyncService(sync_config, store, notifier=notifier)


def _build_notifier(sync_config: SyncConfig) -> SlackNotifier:
    notifier = SlackNotifier(sync_config.slack)
    if not notifier.enabled:
        raise ConfigurationError("Slack is not configured: set slack.api_token or slack.webhook_url")
    return notifier


def _fail(e: Exception, verbose: bool) -> None:
    console.print(f"[red]Error: {e}[/red]")
    if verbose:
        console.print_exception()
    sys.exit(1)


@click.group()
@click.version_option(version="0.1.0")
def main():
    """Expense ledger sync: card transactions and vendor bills into one reviewable ledger."""
    pass


@main.command("sync-cards")
@config_option
@click.option("--days-back", type=int, default=None, help="Lookback window in days")
@click.option("--historical", is_flag=True, help="Import everything since the historical start date")
@click.option(
    "--complete-only", is_flag=True, help="Skip transactions still missing receipts or coding"
)
@verbose_option
def sync_cards(
    config: Optional[Path],
    days_back: Optional[int],
    historical: bool,
    complete_only: bool,
    verbose: bool,
):
    """Sync posted credit-card transactions into the ledger."""
    try:
        sync_config = _load(config, verbose)
        service = _build_service(sync_config)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Syncing credit card transactions...", total=None)
            summary = service.sync_credit_cards(
                days_back=days_back,
                historical=historical,
                include_incomplete=not complete_only,
            )
            progress.update(task, completed=True)

        _display_summary(summary)
    except Exception as e:
        _fail(e, verbose)


@main.command("sync-bills")
@config_option
@click.option(
    "--from-date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Earliest bill date (YYYY-MM-DD)",
)
@verbose_option
def sync_bills(config: Optional[Path], from_date: Optional[datetime], verbose: bool):
    """Sync ERP vendor bills into the ledger."""
    try:
        sync_config = _load(config, verbose)
        service = _build_service(sync_config)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Syncing vendor bills...", total=None)
            summary = service.sync_vendor_bills(from_date.date() if from_date else None)
            progress.update(task, completed=True)

        _display_summary(summary)
    except Exception as e:
        _fail(e, verbose)


@main.command("last-sync")
@config_option
@verbose_option
def last_sync(config: Optional[Path], verbose: bool):
    """Show when the last successful sync finished."""
    try:
        service = _build_service(_load(config, verbose))
        completed_at = service.last_successful_sync()
    except Exception as e:
        _fail(e, verbose)
        return

    if completed_at:
        console.print(f"Last successful sync: [green]{completed_at}[/green]")
    else:
        console.print("[yellow]No successful sync recorded[/yellow]")


@main.command()
@click.argument("external_id")
@click.argument("flag_category", required=False)
@config_option
@verbose_option
def flag(external_id: str, flag_category: Optional[str], config: Optional[Path], verbose: bool):
    """
    Set a record's flag, or clear it when FLAG_CATEGORY is omitted.

    EXTERNAL_ID: Ledger id, e.g. BILL-123 or NS-456
    """
    try:
        service = _build_service(_load(config, verbose))
        service.set_flag(external_id, flag_category)
    except Exception as e:
        _fail(e, verbose)
        return
    console.print(f"[green]{external_id}: flag set to {flag_category or 'none'}[/green]")


@main.command()
@click.argument("external_id")
@click.argument("status", type=click.Choice(["approved", "rejected", "pending"]))
@click.option("--by", "modified_by", default=None, help="Name recorded as the approver")
@config_option
@verbose_option
def approve(
    external_id: str,
    status: str,
    modified_by: Optional[str],
    config: Optional[Path],
    verbose: bool,
):
    """
    Approve, reject or reset a record to pending.

    EXTERNAL_ID: Ledger id, e.g. BILL-123 or NS-456
    """
    try:
        service = _build_service(_load(config, verbose))
        service.set_approval(external_id, None if status == "pending" else status, modified_by)
    except Exception as e:
        _fail(e, verbose)
        return
    console.print(f"[green]{external_id}: {status}[/green]")


@main.command("department-summary")
@config_option
@click.option("--month", default=None, help="Month to summarize (YYYY-MM); defaults to current month")
@click.option("--branch", default=None, help="Limit to one branch")
@click.option("--notify", is_flag=True, help="Post each summary to its department channel")
@verbose_option
def department_summary(
    config: Optional[Path],
    month: Optional[str],
    branch: Optional[str],
    notify: bool,
    verbose: bool,
):
    """Summarize a month's expenses by branch and department."""
    try:
        sync_config = _load(config, verbose)
        month = month or date.today().strftime("%Y-%m")
        start, end = month_bounds(month)

        store = SupabaseLedgerStore.from_config(sync_config.ledger)
        summaries = summarize_by_department(store.list_records(start, end, branch), month)

        table = Table(title=f"Department Summary: {month}")
        table.add_column("Branch")
        table.add_column("Department")
        table.add_column("Total", justify="right")
        table.add_column("Count", justify="right")
        table.add_column("Unapproved", justify="right")
        table.add_column("Flagged", justify="right")
        for s in summaries:
            table.add_row(
                s.branch,
                s.department,
                f"${s.total_amount:,.2f}",
                str(s.total_count),
                f"${s.unapproved_amount:,.2f} ({s.unapproved_count})",
                str(s.flagged_count),
            )
        console.print(table)

        if notify:
            notifier = _build_notifier(sync_config)
            failures = []
            for s in summaries:
                result = notifier.notify_department_summary(s)
                if result.success:
                    console.print(f"[green]Sent {s.branch} / {s.department}[/green]")
                else:
                    console.print(f"[yellow]{s.branch} / {s.department}: {result.error}[/yellow]")
                    failures.append(s)
            if failures:
                raise NotificationError(f"{len(failures)} of {len(summaries)} summaries were not sent")
    except Exception as e:
        _fail(e, verbose)


@main.command("notify-correction")
@click.argument("external_id")
@click.option("--to", "recipient", required=True, help="Slack user or channel id to message")
@click.option("--purchaser", required=True, help="Purchaser name used in the greeting")
@click.option("--vendor", required=True)
@click.option("--amount", type=float, required=True)
@click.option("--date", "occurred", required=True, help="Transaction date (YYYY-MM-DD)")
@click.option("--branch", nargs=2, default=(None, None), help="Incorrect and correct branch")
@click.option("--department", nargs=2, default=(None, None), help="Incorrect and correct department")
@click.option("--category", nargs=2, default=(None, None), help="Incorrect and correct category")
@click.option("--memo", default=None)
@click.option("--bill-url", default=None, help="Link to the transaction")
@config_option
@verbose_option
def notify_correction(
    external_id: str,
    recipient: str,
    purchaser: str,
    vendor: str,
    amount: float,
    occurred: str,
    branch: tuple,
    department: tuple,
    category: tuple,
    memo: Optional[str],
    bill_url: Optional[str],
    config: Optional[Path],
    verbose: bool,
):
    """
    Ask a purchaser to fix the coding of one record.

    EXTERNAL_ID: Ledger id, e.g. BILL-123 or NS-456
    """
    try:
        sync_config = _load(config, verbose)
        request = CorrectionRequest(
            record_id=external_id,
            recipient=recipient,
            purchaser_name=purchaser,
            vendor=vendor,
            amount=amount,
            date=occurred,
            incorrect_branch=branch[0],
            correct_branch=branch[1],
            incorrect_department=department[0],
            correct_department=department[1],
            incorrect_category=category[0],
            correct_category=category[1],
            memo=memo,
            bill_url=bill_url,
        )
        result = _build_notifier(sync_config).notify_correction(request)
        if not result.success:
            raise NotificationError(result.error)
    except Exception as e:
        _fail(e, verbose)
        return
    console.print(f"[green]Correction for {external_id} sent to {result.channel}[/green]")


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


@main.command()
@config_option
@click.option("--host", default=None, help="Bind address")
@click.option("--port", type=int, default=None, help="Bind port")
@verbose_option
def serve(config: Optional[Path], host: Optional[str], port: Optional[int], verbose: bool):
    """Run the HTTP trigger API."""
    import uvicorn

    from .api import create_app

    sync_config = _load(config, verbose)
    app = create_app(sync_config, lambda: _build_service(sync_config))
    uvicorn.run(app, host=host or sync_config.api.host, port=port or sync_config.api.port)


def _display_summary(summary: SyncSummary) -> None:
    """Display sync summary in console."""
    run = summary.run
    style = {
        SyncRunStatus.SUCCESS: "green",
        SyncRunStatus.PARTIAL: "yellow",
        SyncRunStatus.FAILED: "red",
    }.get(run.status, "white")

    table = Table(title=f"Sync Summary ({run.kind.value})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Run ID", str(run.id))
    table.add_row("Status", f"[{style}]{run.status.value}[/{style}]")
    table.add_row("Fetched", str(run.records_fetched))
    table.add_row("Created", str(summary.result.created))
    table.add_row("Updated", str(summary.result.updated))
    table.add_row("Flags Preserved", str(summary.result.flags_preserved))
    table.add_row("Errors", str(len(summary.result.errors)))
    for state, count in sorted(summary.result.sync_status_breakdown.items()):
        table.add_row(f"Sync Status {state}", str(count))

    console.print(table)

    if summary.result.errors:
        errors = Table(title="Record Errors")
        errors.add_column("Transaction")
        errors.add_column("Vendor")
        errors.add_column("Error")
        for err in summary.result.errors[:20]:
            errors.add_row(err.record_id, err.vendor or "-", err.error)
        console.print(errors)
        if len(summary.result.errors) > 20:
            console.print(f"\n... and {len(summary.result.errors) - 20} more errors")


if __name__ == "__main__":
    main()
