"""
Command-Line Interface for FinSched.

Purpose
-------
Manage recurring income and expense series from the shell: preview a
schedule, create series, extend or drop a year, and move rules in and
out as JSON.

Commands
--------
- preview: Dates a schedule would produce (nothing stored)
- create: Create a series and materialize it through the current year
- list / show: Inspect series
- rename: Change a series name
- extend-year / delete-year: Year-scoped materialization and cleanup
- delete: Remove a series, detaching or deleting its records
- export / import: Rules as JSON

Example Usage
-------------
    # Preview a quarterly schedule
    $ finsched preview -p QUARTERLY -d SPECIFIC_DAY --day 15 --start 2024-02-01 --end 2024-11-30

    # Create a monthly expense series
    $ finsched create -k EXPENSE -p MONTHLY --start 2025-01-01 --concept "Coworking" --base 150

    # Open 2026 for every running series
    $ finsched extend-year 2026

With ``--quiet`` output is plain tab-separated lines instead of tables.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .config import AppSettings, get_settings
from .exceptions import FinSchedError
from .logging import bind_context, clear_context, configure_logging
from .models import DayPolicy, Periodicity, RecordKind
from .recurrence import day_selection_label, describe_schedule, periodicity_label
from .scheduler import Scheduler
from .serialization import load_rules, save_rules

__version__ = "0.1.0"

_PERIODICITIES = [p.value for p in Periodicity]
_DAY_POLICIES = [d.value for d in DayPolicy]
_KINDS = [k.value for k in RecordKind]


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _scheduler(ctx: click.Context) -> Scheduler:
    if "scheduler" not in ctx.obj:
        app = Scheduler.open(ctx.obj["db_path"], settings=ctx.obj["settings"])
        ctx.obj["scheduler"] = app
        ctx.call_on_close(app.close)
    return ctx.obj["scheduler"]


def _schedule_payload(periodicity, day_policy, day, start, end) -> dict:
    payload = {
        "periodicity": periodicity,
        "day_policy": day_policy,
        "start_date": start,
    }
    if day is not None:
        payload["specific_day"] = day
    if end is not None:
        payload["end_date"] = end
    return payload


def _schedule_options(func):
    options = [
        click.option("--periodicity", "-p", type=click.Choice(_PERIODICITIES, case_sensitive=False),
                     required=True, help="Distance between occurrences"),
        click.option("--day-policy", "-d", type=click.Choice(_DAY_POLICIES, case_sensitive=False),
                     default=DayPolicy.LAST_BUSINESS_DAY.value, show_default=True,
                     help="Day selection inside each period"),
        click.option("--day", type=int, default=None, help="Day of month for SPECIFIC_DAY (1-31)"),
        click.option("--start", required=True, help="Start date, YYYY-MM-DD"),
        click.option("--end", default=None, help="End date, YYYY-MM-DD (omit for open-ended)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="finsched")
@click.option(
    "--db",
    "db_path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite database file (default: FINSCHED_DB_PATH or ~/.finsched/finsched.db)"
)
@click.option("--quiet", "-q", is_flag=True, help="Plain output, warnings-only logging")
@click.pass_context
def main(ctx: click.Context, db_path: Optional[Path], quiet: bool) -> None:
    """
    FinSched - Recurring income and expense scheduler.

    Use 'finsched COMMAND --help' for command-specific help.
    """
    ctx.ensure_object(dict)
    settings = get_settings()
    if quiet:
        settings = settings.model_copy(update={"log_level": "WARNING"})
    configure_logging(settings)
    ctx.obj["settings"] = settings
    ctx.obj["db_path"] = db_path if db_path is not None else settings.db_path
    clear_context()
    bind_context(command=ctx.invoked_subcommand, db=str(ctx.obj["db_path"]))
    ctx.call_on_close(clear_context)
    ctx.obj["quiet"] = quiet
    ctx.obj["console"] = Console()


@main.command()
@_schedule_options
@click.pass_context
def preview(ctx, periodicity, day_policy, day, start, end) -> None:
    """
    Show the dates a schedule would produce.

    Example:
        finsched preview -p MONTHLY -d LAST_BUSINESS_DAY --start 2025-01-01
    """
    settings: AppSettings = ctx.obj["settings"]
    app = Scheduler.in_memory(settings=settings)
    try:
        result = app.preview(_schedule_payload(periodicity, day_policy, day, start, end))
    except FinSchedError as e:
        _fail(str(e))

    if ctx.obj["quiet"]:
        for d in result.dates:
            click.echo(d.isoformat())
        return

    console: Console = ctx.obj["console"]
    table = Table(title=result.description.capitalize(), show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Date", style="cyan")
    table.add_column("Weekday")
    for i, d in enumerate(result.dates, start=1):
        table.add_row(str(i), d.isoformat(), d.strftime("%A"))
    console.print(table)
    console.print(f"{result.count} occurrence(s) through {result.bound.isoformat()}")
    if result.truncated:
        console.print(f"[yellow]Truncated at {settings.max_occurrences} occurrences[/yellow]")


@main.command()
@click.option("--kind", "-k", type=click.Choice(_KINDS, case_sensitive=False), required=True,
              help="Ledger the records go into")
@click.option("--name", "-n", default=None, help="Series name (default: 'Series <concept>')")
@_schedule_options
@click.option("--concept", required=True, help="Record concept")
@click.option("--base", "base_amount", type=float, default=0.0, help="Taxable base amount")
@click.option("--vat", "vat_rate", type=float, default=None, help="VAT % (default 21)")
@click.option("--withholding", "withholding_rate", type=float, default=None,
              help="Withholding % (default 7 income, 0 expense)")
@click.option("--counterparty", default="", help="Client or supplier name")
@click.option("--counterparty-tax-id", default="", help="Client or supplier tax id")
@click.option("--category", default="", help="Category")
@click.option("--contract-ref", default=None, help="Id of the source contract document")
@click.option("--through-year", type=int, default=None,
              help="Materialize through this year (default: current year)")
@click.pass_context
def create(ctx, kind, name, periodicity, day_policy, day, start, end, concept, base_amount,
           vat_rate, withholding_rate, counterparty, counterparty_tax_id, category,
           contract_ref, through_year) -> None:
    """
    Create a series and materialize its records.

    Example:
        finsched create -k INCOME -p MONTHLY --start 2025-01-01 --concept Retainer --base 1000
    """
    template = {
        "concept": concept,
        "base_amount": base_amount,
        "counterparty_name": counterparty,
        "counterparty_tax_id": counterparty_tax_id,
        "category": category,
    }
    if vat_rate is not None:
        template["vat_rate"] = vat_rate
    if withholding_rate is not None:
        template["withholding_rate"] = withholding_rate
    payload = {
        "kind": kind,
        "name": name,
        "schedule": _schedule_payload(periodicity, day_policy, day, start, end),
        "template": template,
    }
    if contract_ref:
        payload["contract_ref"] = {"document_id": contract_ref}

    app = _scheduler(ctx)
    try:
        result = app.create_series(payload, through_year=through_year)
    except FinSchedError as e:
        _fail(str(e))

    rule = result.rule
    if ctx.obj["quiet"]:
        click.echo(f"{rule.id}\t{result.created_count}")
        return
    console: Console = ctx.obj["console"]
    console.print(f"Created series {rule.id}")
    console.print(f"{rule.name}: {describe_schedule(rule.schedule)}")
    console.print(f"{result.created_count} record(s) created")


@main.command(name="list")
@click.option("--kind", "-k", type=click.Choice(_KINDS, case_sensitive=False), default=None)
@click.pass_context
def list_series(ctx, kind) -> None:
    """List series."""
    app = _scheduler(ctx)
    rules = app.registry.list(RecordKind(kind.upper()) if kind else None)

    if ctx.obj["quiet"]:
        for rule in rules:
            click.echo(f"{rule.id}\t{rule.kind.value}\t{rule.name}\t{rule.total_generated}")
        return

    table = Table(title="Series", show_header=True)
    table.add_column("Id", style="dim", overflow="fold")
    table.add_column("Kind")
    table.add_column("Name", style="cyan")
    table.add_column("Periodicity")
    table.add_column("Day")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Through", justify="right")
    table.add_column("Records", justify="right")
    for rule in rules:
        table.add_row(
            rule.id,
            rule.kind.value,
            rule.name,
            periodicity_label(rule.periodicity),
            day_selection_label(rule.day_selection),
            rule.start_date.isoformat(),
            rule.end_date.isoformat() if rule.end_date else "-",
            str(rule.last_year_generated or "-"),
            str(rule.total_generated),
        )
    ctx.obj["console"].print(table)


@main.command()
@click.argument("series_id")
@click.pass_context
def show(ctx, series_id) -> None:
    """Show one series and its records."""
    app = _scheduler(ctx)
    try:
        rule = app.registry.get(series_id)
        records = app.registry.records_of(series_id)
    except FinSchedError as e:
        _fail(str(e))

    if ctx.obj["quiet"]:
        click.echo(f"{rule.id}\t{rule.name}\t{len(records)}")
        for r in records:
            click.echo(f"{r.id}\t{r.date.isoformat()}\t{r.total:.2f}\t{r.number or ''}")
        return

    console: Console = ctx.obj["console"]
    console.print(f"[bold]{rule.name}[/bold] ({rule.kind.value})")
    console.print(describe_schedule(rule.schedule))
    console.print(f"Linked records: {len(records)}")
    table = Table(show_header=True)
    table.add_column("Id", justify="right")
    table.add_column("Date", style="cyan")
    table.add_column("Number")
    table.add_column("Concept")
    table.add_column("Total", justify="right", style="green")
    table.add_column("Status")
    for r in records:
        table.add_row(
            str(r.id), r.date.isoformat(), r.number or "-", r.concept, f"{r.total:,.2f}", r.status
        )
    console.print(table)


@main.command()
@click.argument("series_id")
@click.argument("name")
@click.pass_context
def rename(ctx, series_id, name) -> None:
    """Rename a series."""
    app = _scheduler(ctx)
    try:
        rule = app.registry.rename(series_id, name)
    except FinSchedError as e:
        _fail(str(e))
    if not ctx.obj["quiet"]:
        ctx.obj["console"].print(f"Renamed {rule.id} to {rule.name}")


@main.command(name="extend-year")
@click.argument("year", type=int)
@click.option("--kind", "-k", type=click.Choice(_KINDS, case_sensitive=False), default=None)
@click.pass_context
def extend_year(ctx, year, kind) -> None:
    """Materialize YEAR for every series still running in it."""
    app = _scheduler(ctx)
    try:
        result = app.mutator.extend_year(year, RecordKind(kind.upper()) if kind else None)
    except FinSchedError as e:
        _fail(str(e))
    if ctx.obj["quiet"]:
        click.echo(str(result.total_created))
    else:
        ctx.obj["console"].print(
            f"Extended {len(result.created)} series into {year}: "
            f"{result.total_created} record(s) created"
        )
    if result.failed:
        for series_id, message in result.failed.items():
            click.echo(f"Error: {series_id}: {message}", err=True)
        sys.exit(1)


@main.command(name="delete-year")
@click.argument("year", type=int)
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete_year(ctx, year, yes) -> None:
    """Delete every record dated in YEAR."""
    if not yes:
        click.confirm(f"Delete all records of {year}?", abort=True)
    app = _scheduler(ctx)
    result = app.mutator.delete_year(year)
    if ctx.obj["quiet"]:
        click.echo(str(result.deleted_count))
        return
    message = f"Deleted {result.deleted_count} record(s) of {year}"
    if result.removed_from_index:
        message += "; year removed from the index"
    ctx.obj["console"].print(message)


@main.command()
@click.argument("series_id")
@click.option("--with-records", is_flag=True, help="Delete the records too (default: detach them)")
@click.pass_context
def delete(ctx, series_id, with_records) -> None:
    """Delete a series."""
    app = _scheduler(ctx)
    try:
        result = app.mutator.delete_series(series_id, delete_records=with_records)
    except FinSchedError as e:
        _fail(str(e))
    if ctx.obj["quiet"]:
        return
    if with_records:
        ctx.obj["console"].print(f"Deleted series {series_id} and {result.deleted_records} record(s)")
    else:
        ctx.obj["console"].print(
            f"Deleted series {series_id}; {result.detached_records} record(s) kept as standalone"
        )


@main.command(name="export")
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def export_rules(ctx, path) -> None:
    """Write all series definitions to a JSON file."""
    app = _scheduler(ctx)
    rules = app.registry.list()
    save_rules(rules, path)
    if not ctx.obj["quiet"]:
        ctx.obj["console"].print(f"Exported {len(rules)} series to {path}")


@main.command(name="import")
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option("--materialize/--no-materialize", default=True, show_default=True,
              help="Create records through the current year for imported series")
@click.pass_context
def import_rules(ctx, path, materialize) -> None:
    """Load series definitions from a JSON file written by 'export'."""
    app = _scheduler(ctx)
    try:
        rules = load_rules(path)
    except (FinSchedError, ValueError) as e:
        _fail(f"could not read {path}: {e}")

    imported = 0
    created = 0
    for rule in rules:
        try:
            result = app.import_rule(rule, materialize=materialize)
        except FinSchedError as e:
            _fail(str(e))
        if result is None:
            continue
        imported += 1
        created += result.created_count

    if ctx.obj["quiet"]:
        click.echo(f"{imported}\t{created}")
        return
    ctx.obj["console"].print(f"Imported {imported} series, {created} record(s) created")


if __name__ == "__main__":
    main()
