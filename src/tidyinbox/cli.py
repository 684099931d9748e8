"""Command-line interface for tidyinbox.

Provides commands for configuration validation, schedule rule management,
grouped inbox analysis and running the sweeper.

Usage:
    python -m tidyinbox validate-config
    python -m tidyinbox add-rule --owner alice --type weekly --time 09:00 --day-of-week 1
    python -m tidyinbox analyze --owner alice
    python -m tidyinbox run --once
    python -m tidyinbox run
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Coroutine
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.table import Table

from tidyinbox.config import validate_config_file
from tidyinbox.core.errors import RuleValidationError, TidyInboxError
from tidyinbox.core.logging import configure_logging

if TYPE_CHECKING:
    from tidyinbox.config_schema import AppConfig
    from tidyinbox.db.store import DatabaseStore, ScheduleRule
    from tidyinbox.engine.sweeper import SweepResult
    from tidyinbox.gateway import CredentialProvider, MailGateway
    from tidyinbox.notifier import Notifier

console = Console()

CONFIDENCE_STYLES = {"VERY_HIGH": "green", "HIGH": "cyan", "MEDIUM": "yellow", "LOW": "dim"}


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    store: DatabaseStore


@dataclass(frozen=True, slots=True)
class SweepDeps:
    """Gateway-side dependencies needed only by commands that touch a mailbox."""

    gateway: MailGateway
    credentials: CredentialProvider
    notifier: Notifier


async def _init_cli_deps() -> CLIDeps:
    """Load config and open the database.

    Prints an actionable error and calls sys.exit(1) on failure.
    """
    from tidyinbox.config import get_config
    from tidyinbox.core.errors import ConfigLoadError, ConfigValidationError
    from tidyinbox.db.store import DatabaseStore

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Copy config/config.yaml.example to config/config.yaml to get started."
        )
        sys.exit(1)

    db_path = Path(config.database.path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = DatabaseStore(db_path)
    await store.initialize()
    return CLIDeps(config=config, store=store)


def _init_sweep_deps(config: AppConfig) -> SweepDeps:
    """Build the configured gateway and notifier, or exit with guidance."""
    from tidyinbox.gateway import build_gateway
    from tidyinbox.notifier import create_notifier

    if not config.gateway.factory:
        console.print(
            "[red]No mail gateway configured.[/red]\n\n"
            "Set [cyan]gateway.factory[/cyan] in config.yaml to a "
            "'package.module:callable' that returns (MailGateway, CredentialProvider)."
        )
        sys.exit(1)

    gateway, credentials = build_gateway(config.gateway.factory, config.gateway.options)
    return SweepDeps(
        gateway=gateway,
        credentials=credentials,
        notifier=create_notifier(config.notifier),
    )


def _run_async(coro: Coroutine[Any, Any, None]) -> None:
    """Run a command coroutine, turning known errors into exit code 1."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except RuleValidationError as e:
        console.print(f"[red]Invalid rule:[/red] {e}")
        sys.exit(1)
    except TidyInboxError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


def _format_when(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC") if value else "-"


def _rules_table(rules: list[ScheduleRule]) -> Table:
    table = Table(box=None, padding=(0, 2))
    table.add_column("ID", justify="right")
    table.add_column("Owner")
    table.add_column("Schedule")
    table.add_column("Action")
    table.add_column("Threshold")
    table.add_column("Active")
    table.add_column("Next run")
    table.add_column("Runs", justify="right")
    table.add_column("Items", justify="right")
    for rule in rules:
        table.add_row(
            str(rule.id),
            rule.owner_id,
            f"{rule.recurrence.describe()} ({rule.timezone})",
            rule.target_action,
            rule.confidence_threshold,
            "[green]yes[/green]" if rule.is_active else "[dim]no[/dim]",
            _format_when(rule.next_run_at),
            str(rule.total_runs),
            str(rule.total_items_processed),
        )
    return table


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """tidyinbox - rule-based inbox cleanup on a schedule."""
    # Human-readable output for CLI commands; `run` switches to JSON, so
    # nothing may be cached under this setup
    configure_logging(
        log_level="DEBUG" if debug else "INFO", json_output=False, cache_loggers=False
    )


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file."""
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")
    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    console.print(f"\n[red]✗[/red] {message}")
    sys.exit(1)


@cli.command("init-db")
def init_db() -> None:
    """Create the database and its tables if they do not exist."""

    async def _init() -> None:
        deps = await _init_cli_deps()
        console.print(f"[green]✓[/green] Database ready at [cyan]{deps.store.db_path}[/cyan]")

    _run_async(_init())


@cli.command("rules")
@click.option("--owner", default=None, help="Only show rules for this owner")
def list_rules(owner: str | None) -> None:
    """List schedule rules."""

    async def _list() -> None:
        deps = await _init_cli_deps()
        rules = await deps.store.list_schedule_rules(owner)
        if not rules:
            console.print("[dim]No schedule rules.[/dim]")
            return
        console.print(_rules_table(rules))

    _run_async(_list())


@cli.command("add-rule")
@click.option("--owner", required=True, help="Mailbox owner id")
@click.option(
    "--type",
    "recurrence_type",
    type=click.Choice(["daily", "weekly", "monthly"]),
    required=True,
)
@click.option("--time", "time_of_day", required=True, help="Local time of day, HH:MM")
@click.option("--day-of-week", type=int, default=None, help="0=Sunday .. 6=Saturday (weekly)")
@click.option("--day-of-month", type=int, default=None, help="1..31 (monthly)")
@click.option("--timezone", default=None, help="IANA timezone (default: config default_timezone)")
@click.option(
    "--threshold",
    type=click.Choice(["high", "medium", "all"]),
    default="high",
    show_default=True,
)
@click.option(
    "--action",
    "target_action",
    type=click.Choice(["archive", "delete"]),
    default="archive",
    show_default=True,
)
@click.option("--category", "categories", multiple=True, help="Only act on these categories")
def add_rule(
    owner: str,
    recurrence_type: str,
    time_of_day: str,
    day_of_week: int | None,
    day_of_month: int | None,
    timezone: str | None,
    threshold: str,
    target_action: str,
    categories: tuple[str, ...],
) -> None:
    """Create a schedule rule."""
    from tidyinbox.engine.recurrence import parse_recurrence

    async def _add() -> None:
        deps = await _init_cli_deps()
        recurrence = parse_recurrence(recurrence_type, time_of_day, day_of_week, day_of_month)
        rule = await deps.store.create_schedule_rule(
            owner_id=owner,
            recurrence=recurrence,
            timezone=timezone or deps.config.default_timezone,
            confidence_threshold=threshold,
            target_action=target_action,
            category_filter=categories,
        )
        console.print(
            f"[green]✓[/green] Created rule {rule.id}: {recurrence.describe()} "
            f"({rule.timezone}), next run {_format_when(rule.next_run_at)}"
        )

    _run_async(_add())


@cli.command("set-active")
@click.argument("rule_id", type=int)
@click.argument("state", type=click.Choice(["on", "off"]))
def set_active(rule_id: int, state: str) -> None:
    """Enable or disable a schedule rule (takes effect at the next tick)."""

    async def _set() -> None:
        deps = await _init_cli_deps()
        rule = await deps.store.set_rule_active(rule_id, state == "on")
        if rule is None:
            console.print(f"[red]No rule with id {rule_id}[/red]")
            sys.exit(1)
        console.print(
            f"Rule {rule.id} is now {'active' if rule.is_active else 'inactive'}; "
            f"next run {_format_when(rule.next_run_at) if rule.is_active else '-'}"
        )

    _run_async(_set())


@cli.command("delete-rule")
@click.argument("rule_id", type=int)
@click.confirmation_option(prompt="Delete this rule and its execution history?")
def delete_rule(rule_id: int) -> None:
    """Delete a schedule rule and its execution history."""

    async def _delete() -> None:
        deps = await _init_cli_deps()
        if not await deps.store.delete_schedule_rule(rule_id):
            console.print(f"[red]No rule with id {rule_id}[/red]")
            sys.exit(1)
        console.print(f"[green]✓[/green] Deleted rule {rule_id}")

    _run_async(_delete())


@cli.command("history")
@click.option("--rule", "rule_id", type=int, default=None, help="Only this rule")
@click.option("--owner", default=None, help="Only this owner")
@click.option("--limit", type=int, default=20, show_default=True)
def history(rule_id: int | None, owner: str | None, limit: int) -> None:
    """Show recent execution log entries."""

    async def _history() -> None:
        deps = await _init_cli_deps()
        entries = await deps.store.get_execution_logs(rule_id=rule_id, owner_id=owner, limit=limit)
        if not entries:
            console.print("[dim]No runs recorded yet.[/dim]")
            return

        table = Table(box=None, padding=(0, 2))
        table.add_column("When")
        table.add_column("Rule", justify="right")
        table.add_column("Owner")
        table.add_column("Status")
        table.add_column("Action")
        table.add_column("Items", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Error")
        status_styles = {"success": "green", "partial": "yellow", "failed": "red"}
        for entry in entries:
            style = status_styles.get(entry.status, "white")
            table.add_row(
                _format_when(entry.executed_at),
                str(entry.rule_id),
                entry.owner_id,
                f"[{style}]{entry.status}[/{style}]",
                entry.action_taken,
                str(entry.items_processed),
                f"{entry.duration_ms}ms",
                entry.error_message or "",
            )
        console.print(table)

    _run_async(_history())


@cli.command("protect-sender")
@click.option("--owner", required=True, help="Mailbox owner id")
@click.argument("sender_email")
@click.option("--off", "unprotect", is_flag=True, help="Remove the protection instead")
def protect_sender(owner: str, sender_email: str, unprotect: bool) -> None:
    """Mark a sender as protected (VIP); cleanup never touches their mail."""

    async def _protect() -> None:
        deps = await _init_cli_deps()
        profile = await deps.store.set_sender_protected(owner, sender_email, not unprotect)
        state = "protected" if profile.is_protected else "no longer protected"
        console.print(
            f"[green]✓[/green] {profile.sender_email} is {state} "
            f"(category {profile.category}, importance {profile.importance_score:.2f})"
        )

    _run_async(_protect())


@cli.command("analyze")
@click.option("--owner", required=True, help="Mailbox owner id")
@click.option("--limit", type=int, default=None, help="Messages to fetch (default: sweeper.fetch_limit)")
def analyze(owner: str, limit: int | None) -> None:
    """Fetch recent mail and show suggested cleanup groups (no changes made)."""

    async def _analyze() -> None:
        from tidyinbox.classifier.engine import ClassificationEngine
        from tidyinbox.gateway import require_credential

        deps = await _init_cli_deps()
        sweep_deps = _init_sweep_deps(deps.config)
        credential = await require_credential(sweep_deps.credentials, owner)
        messages = await sweep_deps.gateway.list_recent(
            credential, limit or deps.config.sweeper.fetch_limit
        )

        engine = ClassificationEngine(deps.store, deps.config.classifier)
        report = await engine.analyze_grouped(owner, messages)

        stats = report.statistics
        console.print(
            f"\n[bold]Analyzed {stats['total_analyzed']} emails[/bold]: "
            f"{stats['total_groups']} groups, {stats['safe_to_act']} safe to act on, "
            f"{stats['high_confidence']} high confidence\n"
        )
        if not report.groups:
            return

        table = Table(box=None, padding=(0, 2))
        table.add_column("Group")
        table.add_column("Category")
        table.add_column("Confidence")
        table.add_column("Avg age", justify="right")
        table.add_column("Suggested")
        table.add_column("Why")
        for group in report.groups:
            style = CONFIDENCE_STYLES[group.confidence.name]
            if group.safety_check.is_safe:
                suggested = ", ".join(group.suggested_actions)
            else:
                suggested = f"[red]none ({group.safety_check.unsafe_count} protected)[/red]"
            table.add_row(
                group.title,
                group.category,
                f"[{style}]{group.confidence.name}[/{style}]",
                f"{group.average_age}d",
                suggested,
                "; ".join(reason.description for reason in group.reasons),
            )
        console.print(table)

    _run_async(_analyze())


@cli.command("run")
@click.option("--once", is_flag=True, help="Run a single sweep and exit")
def run(once: bool) -> None:
    """Run the sweeper.

    Without --once, ticks every sweeper.interval_seconds until interrupted.
    """
    if once:
        _run_async(_run_sweep_once())
    else:
        try:
            asyncio.run(_run_sweep_continuous())
        except KeyboardInterrupt:
            console.print("\n[yellow]Stopped.[/yellow]")
            sys.exit(0)
        except TidyInboxError as e:
            console.print(f"\n[red]Error:[/red] {e}")
            sys.exit(1)


def _print_sweep(result: SweepResult) -> None:
    if result.skipped:
        console.print("[yellow]Sweep skipped: previous sweep still running[/yellow]")
        return
    console.print(
        f"[dim]Sweep {result.sweep_id[:8]}...[/dim] "
        f"rules={result.rules_due} items={result.items_processed} ({result.duration_ms}ms)"
    )
    for run_result in result.runs:
        colour = {"success": "green", "partial": "yellow"}.get(run_result.status, "red")
        line = (
            f"  rule {run_result.rule_id} [{colour}]{run_result.status}[/{colour}] "
            f"{run_result.items_processed}/{run_result.items_matched} items, "
            f"next {_format_when(run_result.next_run_at)}"
        )
        if run_result.error_message:
            line += f" - {run_result.error_message}"
        console.print(line)


async def _build_sweeper():
    from tidyinbox.engine.sweeper import Sweeper

    deps = await _init_cli_deps()
    sweep_deps = _init_sweep_deps(deps.config)
    sweeper = Sweeper(
        store=deps.store,
        gateway=sweep_deps.gateway,
        credentials=sweep_deps.credentials,
        notifier=sweep_deps.notifier,
        config=deps.config,
    )
    return deps, sweeper


async def _run_sweep_once() -> None:
    _, sweeper = await _build_sweeper()
    _print_sweep(await sweeper.tick())


async def _run_sweep_continuous() -> None:
    """Run the sweeper on an interval with APScheduler."""
    import signal

    from tidyinbox.engine.scheduler import SweepScheduler

    deps, sweeper = await _build_sweeper()
    configure_logging(
        log_level=deps.config.logging.level,
        json_output=deps.config.logging.json_output,
    )

    scheduler = SweepScheduler(
        sweeper,
        interval_seconds=deps.config.sweeper.interval_seconds,
        on_result=_print_sweep,
    )
    scheduler.start()
    console.print(
        f"Sweeper running every {deps.config.sweeper.interval_seconds}s. Press Ctrl+C to stop."
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, stop_event.set)
    loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    await stop_event.wait()

    scheduler.shutdown()


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
