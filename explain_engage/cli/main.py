"""
CLI interface for Explain Engage.

Operator access to the store, the quota gate and the confusion classifier.
"""

import logging
import sys
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from explain_engage.config.loader import EngagementConfig, load_engagement_config
from explain_engage.core.adjuster import next_level, should_adjust
from explain_engage.core.confusion import analyze as analyze_message
from explain_engage.core.errors import StoreUnavailable
from explain_engage.core.quota import check_quota
from explain_engage.core.summaries import achievement_summary, streak_summary, usage_summary
from explain_engage.storage.catalog import seed_achievements
from explain_engage.storage.models import SimplicityLevel, Tier
from explain_engage.storage.repository import get_repository

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_DENIED = 1  # Quota check denied the question
EXIT_CODE_FAIL = 2


def configure_logging(level: int = logging.WARNING) -> None:
    """Route structlog through stdlib logging as JSON lines."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _config(ctx: typer.Context) -> EngagementConfig:
    return ctx.obj["config"]


def _repository(ctx: typer.Context):
    return get_repository(_config(ctx).storage.db_path)


def _fail_store(e: StoreUnavailable) -> None:
    if "no such table" in str(e.cause).lower():
        console.print("[bold yellow]Store is not initialized.[/] Run `explain-engage init` first.")
    else:
        console.print(f"[red]Store unavailable:[/] {e.cause}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log engagement events to stderr"
    ),
):
    """Explain Engage CLI."""
    configure_logging(logging.INFO if verbose else logging.WARNING)
    try:
        ctx.obj = {"config": load_engagement_config(config)}
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if ctx.invoked_subcommand is None:
        console.print("Explain Engage - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Create the engagement tables and load the achievement catalogue."""
    repository = _repository(ctx)
    try:
        repository.initialize_schema()
        count = seed_achievements(repository)
    except StoreUnavailable as e:
        _fail_store(e)
    console.print(f"[green]✓[/] Database initialized at {repository.db_path} ({count} achievements)")


@app.command()
def check(
    ctx: typer.Context,
    tier: Tier = typer.Argument(..., help="Subscription tier"),
    daily: int = typer.Option(0, "--daily", "-d", min=0, help="Questions asked today"),
    monthly: int = typer.Option(0, "--monthly", "-m", min=0, help="Questions asked this month"),
):
    """Evaluate the quota gate for the given counts."""
    decision = check_quota(tier, daily, monthly, _config(ctx).quota)

    if decision.can_ask:
        console.print(f"[green]✓[/] Allowed ({decision.questions_left} questions left)")
        sys.exit(EXIT_CODE_PASS)

    console.print(f"[red]✗[/] Denied: {decision.reason}")
    console.print(f"Upgrade required: [bold]{decision.upgrade_required.value}[/]")
    sys.exit(EXIT_CODE_DENIED)


@app.command()
def analyze(
    message: str = typer.Argument(..., help="User message to classify"),
    previous: Optional[str] = typer.Option(None, "--previous", "-p", help="Previous question"),
    level: SimplicityLevel = typer.Option(SimplicityLevel.NORMAL, "--level", "-l", help="Current level"),
):
    """Classify a message for confusion and show the level the next answer would use."""
    signal = analyze_message(message, previous)

    table = Table(title="Confusion Signal")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Confused", "yes" if signal.is_confused else "no")
    table.add_row("Confidence", f"{signal.confidence:.2f}")
    table.add_row("Signals", ", ".join(sorted(signal.matched_signals)) or "-")
    table.add_row("Suggested action", signal.suggested_action.value)
    console.print(table)

    if should_adjust(signal):
        adjustment = next_level(level, signal)
        console.print(f"\n[bold]Next level:[/] {level.value} -> {adjustment.new_level.value}")
        console.print(f"[dim]{adjustment.retry_instructions}[/]")
    else:
        console.print(f"\n[bold]Next level:[/] {level.value} (unchanged)")


@app.command()
def usage(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User id"),
    tier: Tier = typer.Option(Tier.FREE, "--tier", "-t", help="Subscription tier"),
):
    """Show question usage for the current day and month."""
    try:
        summaries = usage_summary(_repository(ctx), user_id, tier, _config(ctx).quota)
    except StoreUnavailable as e:
        _fail_store(e)

    table = Table(title=f"Usage for {user_id} ({tier.value})")
    table.add_column("Period")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Resets at")
    for summary in summaries:
        limit = str(summary.limit) if summary.limit is not None else "-"
        table.add_row(summary.period_kind.value, str(summary.used), limit, summary.reset_at)
    console.print(table)


@app.command()
def streak(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User id"),
):
    """Show a user's streak and the last 30 days of activity."""
    try:
        summary = streak_summary(_repository(ctx), user_id)
    except StoreUnavailable as e:
        _fail_store(e)

    console.print(f"[bold]Current streak:[/] {summary.current} days")
    console.print(f"[bold]Longest streak:[/] {summary.longest} days")
    calendar = "".join("■" if day.active else "·" for day in summary.calendar)
    console.print(f"Last 30 days: {calendar}")


@app.command()
def achievements(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User id"),
):
    """Show a user's achievement progress."""
    try:
        summary = achievement_summary(_repository(ctx), user_id)
    except StoreUnavailable as e:
        _fail_store(e)

    console.print(f"[bold]Unlocked:[/] {summary.unlocked}/{summary.total}")
    if summary.recently_unlocked:
        console.print("\n[bold]Recently unlocked[/bold]")
        for achievement in summary.recently_unlocked:
            console.print(f"  {achievement.name} - {achievement.description}")


if __name__ == "__main__":
    app()
