"""Typer-powered helper CLI for validating and inspecting strategy configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from core.config import ConfigError, StrategyConfig, load_config
from core.settings import get_settings
from services.execution.milestones import build_ladder
from services.execution.store import JsonlOrderRepository
from services.runtime.replay import ReplayError, run_replay

console = Console()
app = typer.Typer(add_completion=False, help="Options scalper configuration and replay helper")

CONFIG_ARGUMENT = typer.Argument(None, help="Strategy config file (defaults to STRATEGY_CONFIG_PATH)")


def _load_env() -> None:
    """Load environment variables from the default `.env` file."""

    load_dotenv(override=False)


def _resolve(path: Optional[Path]) -> Path:
    if path is not None:
        return path
    get_settings.cache_clear()
    return get_settings().strategy_config_path


def _load_or_exit(path: Path) -> StrategyConfig:
    try:
        return load_config(path)
    except ConfigError as exc:
        console.print(f"[red]INVALID:[/red] {path}\n{exc}")
        raise typer.Exit(code=1)


@app.command("check-config")
def check_config(path: Optional[Path] = CONFIG_ARGUMENT) -> None:
    """Validate a strategy config file."""

    _load_env()
    path = _resolve(path)
    cfg = _load_or_exit(path)
    active = len(cfg.active_scenarios())
    console.print(
        f"[green]OK[/green] {path}: {len(cfg.scenarios)} scenarios ({active} active), "
        f"cooldown {cfg.cooldown.timeframe_minutes()}min on {', '.join(sorted(cfg.cooldown.blocking_reasons))}"
    )


@app.command()
def scenarios(path: Optional[Path] = CONFIG_ARGUMENT) -> None:
    """Print the configured entry scenarios."""

    _load_env()
    cfg = _load_or_exit(_resolve(path))
    table = Table(title="Entry scenarios")
    for column in ("Name", "Active", "Min quality", "EMA", "Future+Vol", "Candlestick", "Momentum"):
        table.add_column(column)

    def fmt(value: Optional[float]) -> str:
        return "-" if value is None else f"{value:g}"

    for scenario in cfg.scenarios:
        req = scenario.requirements
        quality = req.min_quality_score
        table.add_row(
            scenario.name,
            "yes" if scenario.active else "no",
            fmt(quality) if quality is not None else f"({cfg.scoring.min_quality_score:g})",
            fmt(req.ema_min_score),
            fmt(req.future_and_volume_min_score),
            fmt(req.candlestick_min_score),
            fmt(req.momentum_min_score),
        )
    console.print(table)


@app.command()
def ladder(
    entry: float = typer.Argument(..., help="Entry premium"),
    target_points: float = typer.Argument(..., help="Total target distance in points"),
    step: float = typer.Option(5.0, min=0.01, help="Milestone step in points"),
) -> None:
    """Show the milestone ladder and trailing stops for an entry."""

    rungs = build_ladder(entry, target_points, step)
    if not rungs:
        console.print("[red]No milestones:[/red] target and step must be positive")
        raise typer.Exit(code=1)
    table = Table(title=f"Milestones for entry {entry:g}")
    for column in ("#", "Points", "Target price", "Stop after hit"):
        table.add_column(column)
    previous = entry
    for rung in rungs:
        table.add_row(str(rung.milestone_number), f"{rung.points:g}", f"{rung.target_price:.2f}", f"{previous:.2f}")
        previous = rung.target_price
    console.print(table)


@app.command()
def orders(
    store: Optional[Path] = typer.Option(None, "--store", help="Order journal (defaults to ORDER_STORE_PATH)"),
) -> None:
    """List orders recorded in an NDJSON order journal."""

    _load_env()
    if store is None:
        get_settings.cache_clear()
        store = get_settings().order_store_path
    if store is None or not store.exists():
        console.print(f"[yellow]No order journal found[/yellow] ({store})")
        raise typer.Exit(code=1)
    table = Table(title=str(store))
    for column in ("Id", "Type", "Symbol", "Status", "Entry", "Exit", "Reason", "Points"):
        table.add_column(column)
    for order in JsonlOrderRepository(store).all():
        table.add_row(
            order.id[:8],
            order.order_type.value,
            order.trading_symbol,
            order.status.value,
            f"{order.entry_price:.2f}",
            "-" if order.exit_price is None else f"{order.exit_price:.2f}",
            order.exit_reason.value if order.exit_reason else "-",
            "-" if order.total_points is None else f"{order.total_points:.2f}",
        )
    console.print(table)


@app.command()
def replay(
    ticks: Path = typer.Argument(..., exists=True, dir_okay=False, help="NDJSON file of recorded ticks"),
    path: Optional[Path] = typer.Option(None, "--config", help="Strategy config (defaults to STRATEGY_CONFIG_PATH)"),
    store: Optional[Path] = typer.Option(None, "--store", help="Journal replayed orders to this file"),
    keep_open: bool = typer.Option(False, "--keep-open", help="Leave an order still open at the end"),
) -> None:
    """Run recorded ticks through the full pipeline and print the resulting exits."""

    _load_env()
    get_settings.cache_clear()
    settings = get_settings()
    cfg = _load_or_exit(path or settings.strategy_config_path)
    try:
        summary = run_replay(
            ticks,
            settings,
            config=cfg,
            repository=JsonlOrderRepository(store) if store is not None else None,
            close_open=not keep_open,
        )
    except ReplayError as exc:
        console.print(f"[red]Bad replay file:[/red] {exc}")
        raise typer.Exit(code=1)

    table = Table(title=f"Replay of {ticks.name}")
    for column in ("Order", "Reason", "Exit", "Index", "Time", "Points", "Profit"):
        table.add_column(column)
    for event in summary.exits:
        table.add_row(
            event.order_id[:8],
            event.reason.value,
            f"{event.exit_price:.2f}",
            "-" if event.exit_index_price is None else f"{event.exit_index_price:.2f}",
            event.exit_time.isoformat(),
            f"{event.total_points:.2f}",
            f"{event.total_profit:.2f}",
        )
    console.print(table)
    console.print(
        f"{summary.frames} ticks, {len(summary.opened)} entries, {len(summary.exits)} exits, "
        f"P&L {summary.total_profit:.2f}"
    )
    if summary.errors:
        console.print(f"[yellow]{len(summary.errors)} ticks failed[/yellow]: {summary.errors[0]}")


def main() -> None:  # pragma: no cover - thin wrapper
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
