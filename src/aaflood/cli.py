# aaflood/cli.py
import logging
import os
import time
from datetime import date
from pathlib import Path
from typing import List, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from aaflood.activities import ActivityDispatcher, CommsClient
from aaflood.chain import ChainClient, ChainReconciler
from aaflood.config import (
    get_chain_access_token,
    get_config,
    load_basin_settings,
)
from aaflood.db import Database
from aaflood.errors import PhaseError
from aaflood.ingest import ReadingCollector, build_adapters, parse_glofas_forecast
from aaflood.phases import PhaseManager
from aaflood.pipeline.monitoring import CycleSummary, MonitoringCycle
from aaflood.triggers import TriggerEvaluator

app = typer.Typer(help="Anticipatory-action flood trigger engine")
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to config.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if config_path is not None:
        os.environ["AAFLOOD_CONFIG"] = str(config_path)
    # one handle per process, shared by the command
    ctx.obj = Database()


def _dispatcher(session, config) -> ActivityDispatcher:
    comms_cfg = config.get("comms", {})
    return ActivityDispatcher(
        session,
        CommsClient.from_config(config),
        completed_by=comms_cfg.get("completed_by", "aaflood-dispatcher"),
        max_workers=int(comms_cfg.get("max_workers", 4)),
    )


def _print_summary(summary: CycleSummary) -> None:
    table = Table(title=f"Monitoring cycle {summary.cycle_id}", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Readings", str(summary.readings))
    table.add_row("Source failures", str(len(summary.failures)))
    table.add_row("Triggers fired", str(len(summary.fired)))
    table.add_row("Evaluation errors", str(len(summary.errors)))
    table.add_row("Activities completed", str(len(summary.activities_completed)))
    table.add_row("Activities pending", str(len(summary.activities_pending)))
    console.print(table)

    for failure in summary.failures:
        console.print(f"  {failure.source.value}:{failure.basin} {failure.kind.value}: {failure.message}", style="yellow")
    for fired in summary.fired:
        console.print(f"  fired {fired.trigger_uuid} in {fired.river_basin}/{fired.phase_name.value}", style="green")
    for error in summary.errors:
        console.print(f"  trigger {error.trigger_uuid}: {error}", style="red")


@app.command("init-db")
def init_db(ctx: typer.Context):
    "Create all tables (use alembic for managed databases)"
    ctx.obj.create_all()
    console.print("tables created", style="green")


@app.command("ensure-phases")
def ensure_phases(
    ctx: typer.Context,
    years: List[int] = typer.Option([], "--year", help="Override configured active years"),
):
    "Create missing phases for every configured basin and active year"
    config = get_config()
    active_years = years or config.get("active_years") or []
    if not active_years:
        console.print("no active years configured (set ACTIVE_YEAR)", style="red")
        raise typer.Exit(code=1)

    with ctx.obj.session_scope() as s:
        manager = PhaseManager(s)
        for basin in load_basin_settings(config):
            manager.ensure_source(basin.river_basin, basin.data_sources)
            phases = manager.ensure_phases(basin.river_basin, active_years)
            console.print(f"{basin.river_basin}: {len(phases)} phases for {active_years}")


@app.command("monitor")
def monitor(
    ctx: typer.Context,
    day: Optional[str] = typer.Option(None, "--day", help="Forecast day (YYYY-MM-DD), default today"),
    loop: bool = typer.Option(False, "--loop", help="Run continuously"),
    interval: int = typer.Option(900, "--interval", help="Seconds between cycles when looping"),
):
    "Collect readings, evaluate triggers and dispatch activities"
    config = get_config()
    sources = config.get("sources", {})
    collector = ReadingCollector(
        build_adapters(config),
        max_workers=int(sources.get("max_workers", 4)),
        task_timeout=float(sources.get("timeout_seconds", 30)) * 2,
    )
    target_day = date.fromisoformat(day) if day else None

    while True:
        with ctx.obj.session_scope() as s:
            cycle = MonitoringCycle(config, collector, s, _dispatcher(s, config))
            summary = cycle.run(target_day)
        _print_summary(summary)
        if not loop:
            break
        time.sleep(interval)


@app.command("retry-activities")
def retry_activities(ctx: typer.Context):
    "Re-dispatch automated activities stuck in progress"
    config = get_config()
    with ctx.obj.session_scope() as s:
        report = _dispatcher(s, config).retry_pending()
    console.print(f"completed={len(report.completed)} pending={len(report.pending)}")


@app.command("reconcile")
def reconcile(
    ctx: typer.Context,
    dry_run: Optional[bool] = typer.Option(None, "--dry-run/--no-dry-run"),
):
    "Post unconfirmed triggers to the on-chain action endpoint"
    chain_cfg = get_config().get("chain", {})
    client = ChainClient(
        chain_cfg["endpoint"],
        access_token=get_chain_access_token(),
        timeout=float(chain_cfg.get("timeout_seconds", 30)),
    )
    with ctx.obj.session_scope() as s:
        reconciler = ChainReconciler(
            s,
            client,
            batch_size=int(chain_cfg.get("batch_size", 2)),
            delay_seconds=float(chain_cfg.get("delay_seconds", 4)),
            dry_run=chain_cfg.get("dry_run", False) if dry_run is None else dry_run,
        )
        report = reconciler.reconcile()

    table = Table(title="On-chain reconciliation", box=box.ROUNDED)
    table.add_column("Batches")
    table.add_column("Confirmed", style="green")
    table.add_column("Failed", style="red")
    table.add_row(str(report.batches), str(len(report.confirmed)), str(len(report.failed)))
    console.print(table)


@app.command("fire")
def fire(
    ctx: typer.Context,
    trigger_uuid: str = typer.Argument(..., help="Trigger uuid"),
    user: str = typer.Option(..., "--user", help="Operator firing the trigger"),
):
    "Fire a manual trigger and dispatch its activities"
    config = get_config()
    with ctx.obj.session_scope() as s:
        fired = TriggerEvaluator(s).fire_manually(trigger_uuid, user)
        if fired is None:
            console.print("already fired for the current repeat key", style="yellow")
            return
        report = _dispatcher(s, config).on_fired(fired)
    console.print(f"fired {trigger_uuid}; activities completed={len(report.completed)} pending={len(report.pending)}", style="green")


@app.command("revert-phase")
def revert_phase(
    ctx: typer.Context,
    phase_uuid: str = typer.Argument(..., help="Phase uuid"),
):
    "Revert an activated phase and start a new period for its triggers"
    with ctx.obj.session_scope() as s:
        manager = PhaseManager(s)
        try:
            phase = manager.revert_phase(phase_uuid)
        except PhaseError as e:
            console.print(str(e), style="red")
            raise typer.Exit(code=1)
        stats = manager.trigger_stats(phase)

        table = Table(title=f"{phase.river_basin} {phase.active_year} {phase.name.value}", box=box.ROUNDED)
        table.add_column("Triggers", style="cyan")
        table.add_column("Fired", justify="right")
        table.add_column("Total", justify="right")
        table.add_row("Mandatory", str(stats.mandatory_triggered), str(stats.total_mandatory))
        table.add_row("Optional", str(stats.optional_triggered), str(stats.total_optional))
    console.print(table)

@app.command("parse-glofas")
def parse_glofas(path: Path = typer.Argument(..., exists=True, readable=True)):
    "Parse a saved GLOFAS reporting-point page and show what was found"
    bundle = parse_glofas_forecast(path.read_text())
    if bundle is None:
        console.print("incomplete page: no forecast data", style="yellow")
        raise typer.Exit(code=1)

    pf = bundle.point_forecast
    info = Table(title="Point forecast", box=box.ROUNDED)
    info.add_column("Field", style="cyan")
    info.add_column("Value")
    for item in (pf.forecast_date, pf.max_probability, pf.alert_level, pf.max_probability_step, pf.peak_forecasted):
        info.add_row(item.header, item.data or "")
    info.add_row("Hydrograph", bundle.hydrograph_image_url)
    console.print(info)

    for rp_table in bundle.return_period_tables:
        table = Table(title=f"> {rp_table.return_period} yr RP", box=box.SIMPLE)
        for header in rp_table.headers:
            table.add_column(header)
        for row in rp_table.rows:
            table.add_row(*row[:len(rp_table.headers)])
        console.print(table)


if __name__ == "__main__":
    app()
