"""CLI entry point for swap-scheduler."""

import logging
import threading
from pathlib import Path
from typing import Annotated

import typer

from swap_scheduler import __version__
from swap_scheduler.config import AppConfig, load_config
from swap_scheduler.db import Database
from swap_scheduler.orchestrator import LOOP_NAMES, Orchestrator, cancel_order, order_status
from swap_scheduler.orders import OrderKind

logger = logging.getLogger(__name__)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"swap-scheduler {__version__}")
        raise typer.Exit()


app = typer.Typer(name="swap-scheduler", help="Swap Scheduler: recurring, limit and trailing-stop swap execution")


@app.callback()
def main(
    version: Annotated[
        bool, typer.Option("--version", "-V", help="Show version and exit", callback=_version_callback, is_eager=True)
    ] = False,
) -> None:
    """Swap Scheduler: recurring, limit and trailing-stop swap execution."""


DEFAULT_CONFIG = Path("config.yaml")
DEFAULT_DB = Path("swap_scheduler.db")

ConfigOption = Annotated[Path, typer.Option("--config", "-c", help="Path to config.yaml")]
DbOption = Annotated[Path, typer.Option("--db", help="Path to SQLite database")]
LoopOption = Annotated[
    list[str] | None,
    typer.Option("--loop", "-l", help=f"Loop to run (repeatable): {', '.join(LOOP_NAMES)}. Default: all enabled"),
]
LiveOption = Annotated[bool, typer.Option("--live", help="Required confirmation flag for live mode")]


def _load_config(config_path: Path) -> AppConfig:
    """Load config from file, warning if the file does not exist."""
    if config_path.exists():
        return load_config(config_path)
    logger.warning("Config file %s not found, using defaults", config_path)
    return AppConfig()


def _setup_logging(cfg: AppConfig) -> None:
    """Configure logging based on monitoring config."""
    if cfg.monitoring.structured_logging:
        from swap_scheduler.monitoring.logging import setup_structured_logging  # noqa: PLC0415

        log_file = Path(cfg.monitoring.log_file) if cfg.monitoring.log_file else None
        setup_structured_logging(log_file=log_file, level=cfg.monitoring.log_level)
    else:
        logging.basicConfig(level=cfg.monitoring.log_level.upper(), format="%(asctime)s %(levelname)s %(message)s")


def _build_orchestrator(cfg: AppConfig, db_path: Path, *, live: bool, command: str) -> Orchestrator:
    """Create an Orchestrator, refusing live mode without the confirmation flag."""
    if cfg.mode == "live" and not live:
        typer.echo(f"Live mode requires the --live flag: swap-scheduler {command} --live")
        raise typer.Exit(code=1)
    try:
        return Orchestrator(config=cfg, db_path=db_path)
    except ValueError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc


def _check_loops(loops: list[str] | None) -> list[str] | None:
    if not loops:
        return None
    unknown = [name for name in loops if name not in LOOP_NAMES]
    if unknown:
        typer.echo(f"Unknown loop(s): {', '.join(unknown)}. Choose from {', '.join(LOOP_NAMES)}")
        raise typer.Exit(code=1)
    return loops


@app.command()
def run(
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
    loop: LoopOption = None,
    live: LiveOption = False,
) -> None:
    """Run the polling loops continuously."""
    loops = _check_loops(loop)
    cfg = _load_config(config)
    _setup_logging(cfg)
    orch = _build_orchestrator(cfg, db, live=live, command="run")
    selected = loops or list(orch.workers)
    typer.echo(f"Starting swap-scheduler in {cfg.mode} mode (loops: {', '.join(selected) or 'none'})")
    stop = threading.Event()
    try:
        orch.run(loops, stop=stop)
    except KeyboardInterrupt:
        stop.set()
        typer.echo("\nStopped.")
    finally:
        orch.close()


@app.command()
def tick(
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
    loop: LoopOption = None,
    live: LiveOption = False,
) -> None:
    """Run a single cycle of each selected loop."""
    loops = _check_loops(loop)
    cfg = _load_config(config)
    _setup_logging(cfg)
    orch = _build_orchestrator(cfg, db, live=live, command="tick")
    try:
        reports = orch.tick(loops)
        for name, report in reports.items():
            outcomes = ", ".join(f"{key}={value}" for key, value in sorted(report.outcomes.items()))
            line = f"{name}: candidates={report.candidates}"
            if outcomes:
                line += f" {outcomes}"
            if report.load_failed:
                line += " (load failed)"
            typer.echo(line)
    finally:
        orch.close()


@app.command()
def status(
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Show active order counts."""
    cfg = _load_config(config)
    with Database(db) as store:
        info = order_status(cfg, store)
        typer.echo(f"Mode: {info['mode']}")
        typer.echo(f"Loops: {', '.join(info['loops']) or 'none'}")
        for kind in OrderKind:
            typer.echo(f"Active {kind.value}: {info['orders'][kind.value]}")
        typer.echo(f"Executed orders: {info['orders']['executed']}")
        typer.echo(f"Watched orders: {info['watched']}")


@app.command()
def cancel(
    kind: Annotated[OrderKind, typer.Argument(help="Order kind")],
    order_id: Annotated[int, typer.Argument(help="Order id")],
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Cancel an active order."""
    _setup_logging(_load_config(config))
    with Database(db) as store:
        cancelled = cancel_order(store, kind, order_id)
    if not cancelled:
        typer.echo(f"No active {kind.value} order {order_id}")
        raise typer.Exit(code=1)
    typer.echo(f"Cancelled {kind.value} order {order_id}")
