"""
CLI interface for the power bill tracker.

Provides command-line access to record entry, bulk import, the dashboard
and user management.
"""

import csv
import json
import logging
import sys
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from power_bill_tracker.config.loader import TrackerConfig, load_tracker_config
from power_bill_tracker.core.access import Actor, require_role
from power_bill_tracker.core.aggregation import DashboardSnapshot, InsightKind, build_dashboard
from power_bill_tracker.core.errors import TrackerError, Unauthorized
from power_bill_tracker.core.importer import BatchImporter
from power_bill_tracker.core.reconciliation import ReconciliationEngine
from power_bill_tracker.core.validation import build_candidate, prepare_import_rows
from power_bill_tracker.demo.seed_demo_data import seed_demo_data
from power_bill_tracker.storage.models import ROLE_ADMIN, VALID_ROLES
from power_bill_tracker.storage.repository import (
    fetch_records,
    get_record_store,
    initialize_schema,
)
from power_bill_tracker.storage.users import UserRepository, initialize_user_schema

app = typer.Typer()
users_app = typer.Typer(help="Manage whitelisted users (admin only).")
app.add_typer(users_app, name="users")
console = Console()

logger = logging.getLogger(__name__)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

ACTOR_ENV_VAR = "POWER_BILL_TRACKER_ACTOR"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=level,
        stream=sys.stderr,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to tracker YAML config"
    ),
    actor: Optional[str] = typer.Option(
        None, "--actor", "-a", envvar=ACTOR_ENV_VAR, help="Email of the acting user"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable DEBUG logging"),
):
    """Power bill tracker CLI."""
    _setup_logging(verbose)
    ctx.obj = {"config_path": config, "actor": actor}
    if ctx.invoked_subcommand is None:
        console.print("Power Bill Tracker - Use --help to see available commands")


def _fail(message: str) -> None:
    if "no such table" in message.lower():
        message += "\nRun `power-bill-tracker init` to initialize the database"
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


def _load_config(ctx: typer.Context) -> TrackerConfig:
    try:
        return load_tracker_config(ctx.obj.get("config_path"))
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        _fail(str(e))


def _current_actor(ctx: typer.Context, users: UserRepository) -> Optional[Actor]:
    email = ctx.obj.get("actor")
    if not email:
        return None
    user = users.get_user_by_email(email)
    if user is None:
        return Actor(id=email, email=email)
    return Actor(id=user.id, email=user.email)


def _require_whitelisted(ctx: typer.Context, users: UserRepository) -> Actor:
    actor = _current_actor(ctx, users)
    if actor is None:
        raise Unauthorized(f"Not signed in; pass --actor or set {ACTOR_ENV_VAR}")
    if users.role_of(actor) is None:
        raise Unauthorized(f"{actor.email} is not whitelisted")
    return actor


def _require_admin(ctx: typer.Context, users: UserRepository) -> Actor:
    actor = _current_actor(ctx, users)
    require_role(users, actor, ROLE_ADMIN)
    return actor


@app.command()
def init(
    ctx: typer.Context,
    admin: Optional[str] = typer.Option(
        None, "--admin", help="Whitelist this email as the first admin"
    ),
):
    """Initialize the tracker database."""
    config = _load_config(ctx)
    try:
        initialize_schema(config.database.path, config.database.enforce_unique_period)
        initialize_user_schema(config.database.path)
        if admin:
            users = UserRepository(config.database.path)
            if users.get_user_by_email(admin) is None:
                users.add_user(admin, ROLE_ADMIN)
        console.print("[green]✓[/] Database initialized successfully")
    except TrackerError as e:
        _fail(f"Error initializing database: {e}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def record(
    ctx: typer.Context,
    subject: str = typer.Argument(..., help="Subject (account) number"),
    month: int = typer.Option(..., "--month", "-m", help="Billing month (1-12)"),
    year: int = typer.Option(..., "--year", "-y", help="Billing year"),
    usage: str = typer.Option(..., "--usage", "-u", help="Electricity usage in units"),
    cost: str = typer.Option(..., "--cost", help="Total cost including VAT"),
    meter: Optional[str] = typer.Option(None, "--meter", help="Meter code (mapped from subject if omitted)"),
    ft_rate: Optional[str] = typer.Option(None, "--ft-rate", help="Fuel adjustment rate"),
):
    """
    Save one monthly bill.

    If the subject already has a bill for the month, that bill is updated;
    otherwise a new one is recorded.
    """
    config = _load_config(ctx)
    try:
        users = UserRepository(config.database.path)
        actor = _require_whitelisted(ctx, users)

        candidate = build_candidate(
            {
                "subject_number": subject,
                "meter_code": meter,
                "month": month,
                "year": year,
                "usage_units": usage,
                "total_cost": cost,
                "fuel_adjustment_rate": ft_rate,
            },
            config.meters,
        )
        engine = ReconciliationEngine(get_record_store(config.database.path), config.meters)
        existing = engine.lookup_for_edit(candidate.subject_number, candidate.month, candidate.year)
        outcome = engine.save(
            candidate, actor.id, record_id=existing.record_id if existing else None
        )
    except TrackerError as e:
        _fail(str(e))

    if outcome.created:
        console.print(f"[green]✓[/] Recorded new bill {outcome.record_id}")
    else:
        console.print(
            f"[green]✓[/] Updated bill for {candidate.subject_number} "
            f"({candidate.month}/{candidate.year})"
        )
    sys.exit(EXIT_CODE_PASS)


@app.command("list")
def list_records(
    ctx: typer.Context,
    year: Optional[int] = typer.Option(None, "--year", "-y", help="Filter by year"),
    month: Optional[int] = typer.Option(None, "--month", "-m", help="Filter by month"),
    subject: Optional[str] = typer.Option(None, "--subject", "-s", help="Filter by subject number"),
):
    """List recorded bills, newest first."""
    config = _load_config(ctx)
    try:
        records = fetch_records(
            get_record_store(config.database.path),
            year=year,
            month=month,
            subject_number=subject,
        )
    except TrackerError as e:
        _fail(str(e))

    if not records:
        console.print("\n[dim]No bills recorded.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Electricity bills")
    table.add_column("Period")
    table.add_column("Subject")
    table.add_column("Meter")
    table.add_column("Units", justify="right")
    table.add_column("Cost", justify="right")
    for r in records:
        table.add_row(
            f"{r.month}/{r.year}",
            r.subject_number,
            r.meter_code or "-",
            f"{r.usage_units:,}",
            _format_currency(r.total_cost),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command("import")
def import_csv(
    ctx: typer.Context,
    csv_path: Path = typer.Argument(..., help="CSV file with one bill per row"),
    as_json: bool = typer.Option(False, "--json", help="Print the import result as JSON"),
    strict: bool = typer.Option(
        False, "--strict", help="Exit with error code if any row failed or was a duplicate"
    ),
):
    """
    Bulk import bills from CSV (admin only).

    Required columns: user_number, month, year, electricity_usage,
    total_with_vat. Optional: meter_code, ft_rate. Periods that already
    have a bill are skipped, never overwritten.
    """
    config = _load_config(ctx)
    if csv_path.suffix.lower() != ".csv":
        _fail("Only .csv files can be imported")
    if not csv_path.exists():
        _fail(f"File not found: {csv_path}")

    try:
        users = UserRepository(config.database.path)
        actor = _require_admin(ctx, users)

        with open(csv_path, "r", encoding="utf-8-sig", newline="") as f:
            reader = csv.DictReader(f)
            rows = list(reader)
            headers = reader.fieldnames or []
        prepared = prepare_import_rows(rows, config.meters, headers=headers)

        importer = BatchImporter(get_record_store(config.database.path), config.meters)
        result = importer.import_records(prepared.records, actor.id)
    except TrackerError as e:
        _fail(f"Import failed: {e}")
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        _fail(f"Could not read CSV file: {e}")

    if as_json:
        typer.echo(json.dumps(result.to_dict()))
    else:
        _display_import_result(result, prepared.skipped)

    if strict and result.errors:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def dashboard(
    ctx: typer.Context,
    month: Optional[int] = typer.Option(
        None, "--month", "-m", help="Show the per-meter breakdown for this month across years"
    ),
):
    """Show consumption and cost trends."""
    config = _load_config(ctx)
    if month is not None and not 1 <= month <= 12:
        _fail("month must be between 1 and 12")
    try:
        records = fetch_records(get_record_store(config.database.path))
    except TrackerError as e:
        _fail(f"Could not load data: {e}")

    if not records:
        console.print("\n[bold yellow]No bills recorded yet[/]")
        console.print("Use `power-bill-tracker record` or `power-bill-tracker import` to add data.\n")
        sys.exit(EXIT_CODE_PASS)

    _display_dashboard(build_dashboard(records, selected_month=month))
    sys.exit(EXIT_CODE_PASS)


@app.command("seed-demo")
def seed_demo(ctx: typer.Context):
    """Insert demo bills (admin only)."""
    config = _load_config(ctx)
    try:
        _require_admin(ctx, UserRepository(config.database.path))
        engine = ReconciliationEngine(get_record_store(config.database.path), config.meters)
        inserted = seed_demo_data(engine)
    except TrackerError as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Demo data inserted ({inserted} bills)")
    sys.exit(EXIT_CODE_PASS)


@users_app.command("list")
def users_list(ctx: typer.Context):
    """List whitelisted users."""
    config = _load_config(ctx)
    try:
        users = UserRepository(config.database.path)
        _require_admin(ctx, users)
        accounts = users.list_users()
    except TrackerError as e:
        _fail(str(e))

    table = Table(title="Users")
    table.add_column("ID")
    table.add_column("Email")
    table.add_column("Role")
    for account in accounts:
        table.add_row(account.id, account.email, account.role)
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@users_app.command("add")
def users_add(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Email to whitelist"),
    role: str = typer.Option("user", "--role", "-r", help=f"One of: {', '.join(VALID_ROLES)}"),
):
    """Whitelist a user."""
    config = _load_config(ctx)
    try:
        users = UserRepository(config.database.path)
        _require_admin(ctx, users)
        account = users.add_user(email, role)
    except TrackerError as e:
        _fail(str(e))
    console.print(f"[green]✓[/] {account.email} whitelisted as {account.role} ({account.id})")
    sys.exit(EXIT_CODE_PASS)


@users_app.command("set-role")
def users_set_role(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User id"),
    role: str = typer.Argument(..., help=f"One of: {', '.join(VALID_ROLES)}"),
):
    """Change a user's role."""
    config = _load_config(ctx)
    try:
        users = UserRepository(config.database.path)
        _require_admin(ctx, users)
        users.update_user_role(user_id, role)
    except TrackerError as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Role of {user_id} set to {role}")
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: Decimal) -> str:
    """Format currency with proper symbols and formatting."""
    return f"฿{amount:,.2f}"


def _format_percent(percent: Optional[Decimal]) -> str:
    """Format percentage change with sign."""
    if percent is None:
        return "N/A"
    return f"{'+' if percent >= 0 else ''}{percent:,.1f}%"


def _display_import_result(result, skipped: List[str]) -> None:
    console.print("\n[bold]Import Result[/bold]")
    console.print("-" * 40)
    console.print(f"Imported: [green]{result.success}[/]")
    console.print(f"Duplicates skipped: [yellow]{result.duplicates}[/]")
    console.print(f"Errors: [red]{len(result.errors)}[/]")
    for message in result.errors:
        console.print(f"  {message}")
    if skipped:
        console.print(f"\nRows not imported ({len(skipped)}):")
        for message in skipped:
            console.print(f"  [dim]{message}[/]")


def _display_dashboard(snapshot: DashboardSnapshot) -> None:
    """Display every dashboard view."""
    insight = snapshot.insight
    tone = {
        InsightKind.INCREASE: "yellow",
        InsightKind.DECREASE: "green",
        InsightKind.IMPROVEMENT: "green",
        InsightKind.NEUTRAL: "blue",
    }[insight.kind]
    console.print(f"\n[bold {tone}]{insight.message}[/]")

    latest = snapshot.latest
    console.print(f"\n[bold]Latest bill ({latest.label}):[/bold] {_format_currency(latest.total_cost)}")
    console.print(f"Change from previous month: {_format_percent(snapshot.month_over_month)}")
    console.print(f"Carbon footprint: {snapshot.carbon_kg:,.1f} kgCO2e")
    console.print(f"Average per bill: {_format_currency(snapshot.average_cost_per_bill)}")

    yearly = Table(title="Cost per year")
    yearly.add_column("Year")
    yearly.add_column("Total", justify="right")
    for row in snapshot.yearly_totals:
        yearly.add_row(str(row.year), _format_currency(row.total))
    console.print(yearly)

    years = [row.year for row in snapshot.yearly_totals]
    seasonal = Table(title="Seasonal trend (month by year)")
    seasonal.add_column("Month")
    for year in years:
        seasonal.add_column(str(year), justify="right")
    for row in snapshot.monthly_comparison:
        seasonal.add_row(row.label, *(_format_currency(row.totals[y]) for y in years))
    console.print(seasonal)

    meters = snapshot.meter_history.meters
    history = Table(title="Monthly history by meter")
    history.add_column("Period")
    for meter in meters:
        history.add_column(meter, justify="right")
    history.add_column("Total", justify="right")
    for period in snapshot.meter_history.periods:
        history.add_row(
            period.label,
            *(_format_currency(period.by_meter[m]) for m in meters),
            _format_currency(period.total),
        )
    console.print(history)

    if snapshot.selected_month is not None:
        breakdown = Table(title=f"Month {snapshot.selected_month} across years")
        breakdown.add_column("Year")
        for meter in meters:
            breakdown.add_column(meter, justify="right")
        for row in snapshot.month_breakdown:
            breakdown.add_row(str(row.year), *(_format_currency(row.by_meter[m]) for m in meters))
        console.print(breakdown)


if __name__ == "__main__":
    app()
