"""CLI command implementations."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich import box
from rich.console import Console
from rich.table import Table

from radar.agent.cycle import CycleSummary
from radar.agent.poller import PollerService, build_poll_cycle
from radar.llm.completion import build_completion_backend
from radar.mail.gmail_client import run_oauth_flow
from radar.rules.csv_import import ImportPreview, analyze_csv, apply_preview
from radar.rules.matcher import format_rule_pattern
from radar.rules.parser import RuleParser
from radar.rules.types import RuleAction
from radar.storage.models import ProcessingConfig

if TYPE_CHECKING:
    from radar.cli.main import AppContext

logger = logging.getLogger(__name__)
console = Console(width=200)

_ACTION_CHOICE = click.Choice(["vip", "suppress"], case_sensitive=False)


def _action(value: str) -> RuleAction:
    return RuleAction.SUPPRESS if value.lower() == "suppress" else RuleAction.VIP


# ── Poller ───────────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def run(app: AppContext) -> None:
    """Run the background poller until interrupted."""
    logging.getLogger().setLevel(logging.INFO)
    service = PollerService(build_poll_cycle(app.config, app.db), app.config.poll_interval)
    console.print(
        f"Polling every [bold]{app.config.poll_interval}s[/bold]. Press Ctrl+C to stop."
    )
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


@click.command()
@click.pass_obj
def poll(app: AppContext) -> None:
    """Run exactly one poll cycle and print its summary."""
    summary = asyncio.run(build_poll_cycle(app.config, app.db).run())
    _print_cycle_summary(summary)
    if summary.needs_reauth:
        console.print("[red]Gmail authorization failed.[/red] Run `radar auth`.")
        raise SystemExit(2)


def _print_cycle_summary(summary: CycleSummary) -> None:
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Field")
    table.add_column("Value")
    for key, value in summary.to_log_fields().items():
        table.add_row(key, str(value))
    console.print(table)


@click.command()
@click.pass_obj
def auth(app: AppContext) -> None:
    """Authorize Gmail access in the browser and save the token."""
    if not app.config.credentials_path.exists():
        console.print(
            f"[red]OAuth client secrets not found at {app.config.credentials_path}.[/red]"
        )
        raise SystemExit(1)
    path = run_oauth_flow(app.config.credentials_path, app.config.token_path)
    console.print(f"[green]Token saved to {path}.[/green]")


@click.command()
@click.pass_obj
def status(app: AppContext) -> None:
    """Show sync cursor, stored counts and processing settings."""
    db = app.db
    config = db.get_processing_config()
    cursor = db.get_cursor()
    vip_list = db.get_vip_list()

    table = Table(box=box.ROUNDED, show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("History cursor", str(cursor) if cursor is not None else "[dim]not set[/dim]")
    table.add_row("Threads", str(db.count_threads()))
    table.add_row("Tasks", str(len(db.list_tasks())))
    table.add_row("Rules", str(len(db.list_rules())))
    table.add_row("Confidence threshold", f"{config.confidence:.2f}")
    table.add_row("VIP only", "yes" if config.vip_only else "no")
    table.add_row("VIPs", ", ".join(vip_list) or "[dim]none[/dim]")
    console.print(table)


# ── Rules ────────────────────────────────────────────────────────────────────


@click.group()
def rules() -> None:
    """Manage VIP / suppression rules."""


@rules.command("list")
@click.pass_obj
def rules_list(app: AppContext) -> None:
    """List stored rules, newest first."""
    stored = app.db.list_rules()
    if not stored:
        console.print("[yellow]No rules yet. Add one with `radar rules add`.[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", max_width=36)
    table.add_column("Type", width=7)
    table.add_column("Pattern", max_width=40)
    table.add_column("Action", width=9)
    table.add_column("Unless", max_width=24)
    table.add_column("Notes", max_width=30)
    for rule in stored:
        style = "green" if rule.action == RuleAction.VIP else "red"
        table.add_row(
            rule.id,
            rule.type.value,
            format_rule_pattern(rule),
            f"[{style}]{rule.action.value}[/{style}]",
            rule.unless_contains or "",
            rule.notes or "",
        )
    console.print(table)


@rules.command("add")
@click.argument("text")
@click.option("--action", type=_ACTION_CHOICE, default="vip", show_default=True)
@click.pass_obj
def rules_add(app: AppContext, text: str, action: str) -> None:
    """Parse TEXT into a rule and store it."""
    parser = RuleParser(build_completion_backend(app.config))
    result = asyncio.run(parser.parse(text, _action(action)))
    if not result.rule.pattern:
        console.print("[red]Nothing to store: the rule text is empty.[/red]")
        raise SystemExit(1)

    record = app.db.create_rule(result.rule)
    if record is None:
        console.print("[yellow]An identical rule is already stored; nothing added.[/yellow]")
        return
    console.print(
        f"[green]Stored[/green] {record.action.value} {record.type.value} "
        f"[bold]{format_rule_pattern(record)}[/bold] "
        f"[dim](strategy: {result.strategy.value}, id: {record.id})[/dim]"
    )


@rules.command("delete")
@click.argument("rule_id")
@click.pass_obj
def rules_delete(app: AppContext, rule_id: str) -> None:
    """Delete the rule with RULE_ID."""
    if app.db.delete_rule(rule_id):
        console.print(f"[green]Deleted rule {rule_id}.[/green]")
    else:
        console.print(f"[yellow]No rule with id {rule_id}.[/yellow]")


@rules.command("import")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--action", type=_ACTION_CHOICE, default="vip", show_default=True,
              help="Action for rows with no action column or keyword.")
@click.option("--apply", "apply_", is_flag=True, help="Store the previewed rules.")
@click.pass_obj
def rules_import(app: AppContext, csv_file: Path, action: str, apply_: bool) -> None:
    """Preview (and optionally store) rules from a CSV sheet."""
    text = csv_file.read_text(encoding="utf-8-sig")
    parser = RuleParser(build_completion_backend(app.config))
    preview = asyncio.run(analyze_csv(text, _action(action), parser))
    _print_preview(preview)

    if not preview.entries:
        return
    if apply_:
        stored = apply_preview(app.db, preview)
        console.print(f"[green]Stored {len(stored)} rule(s).[/green]")
        skipped = len(preview.entries) - len(stored)
        if skipped:
            console.print(f"[dim]Skipped {skipped} rule(s) already stored.[/dim]")
    else:
        console.print("[dim]Preview only — re-run with --apply to store these rules.[/dim]")


def _print_preview(preview: ImportPreview) -> None:
    s = preview.summary
    if not preview.entries:
        console.print(f"[yellow]No rules found ({s.total_rows} data row(s) scanned).[/yellow]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Row", width=4)
    table.add_column("Column", max_width=20)
    table.add_column("Type", width=7)
    table.add_column("Pattern", max_width=40)
    table.add_column("Action", width=9)
    table.add_column("Unless", max_width=24)
    table.add_column("Strategy", width=10)
    for entry in preview.entries:
        r = entry.rule
        table.add_row(
            str(entry.source.row),
            entry.source.column,
            r.type.value,
            r.pattern,
            r.action.value,
            r.unless_contains or "",
            entry.strategy.value,
        )
    console.print(table)
    console.print(
        f"{s.total_rows} row(s) scanned, [bold]{s.total_rules}[/bold] rule(s): "
        f"[green]{s.vip_count} VIP[/green], [red]{s.suppress_count} suppress[/red]."
    )


# ── Settings ─────────────────────────────────────────────────────────────────


@click.group()
def vips() -> None:
    """Show or replace the VIP sender list."""


@vips.command("show")
@click.pass_obj
def vips_show(app: AppContext) -> None:
    entries = app.db.get_vip_list()
    if not entries:
        console.print("[yellow]VIP list is empty.[/yellow]")
        return
    for entry in entries:
        console.print(f"  • {entry}")


@vips.command("set")
@click.argument("patterns", nargs=-1)
@click.pass_obj
def vips_set(app: AppContext, patterns: tuple[str, ...]) -> None:
    """Replace the VIP list with PATTERNS (none clears it)."""
    app.db.set_vip_list(list(patterns))
    console.print(f"[green]VIP list saved ({len(app.db.get_vip_list())} pattern(s)).[/green]")


@click.group("config")
def config_group() -> None:
    """Show or change the processing config."""


@config_group.command("show")
@click.pass_obj
def config_show(app: AppContext) -> None:
    config = app.db.get_processing_config()
    console.print(f"confidence: {config.confidence:.2f}")
    console.print(f"vip-only:   {'yes' if config.vip_only else 'no'}")


@config_group.command("set")
@click.option("--confidence", type=click.FloatRange(0.0, 1.0), default=None,
              help="Minimum confidence for auto-created tasks.")
@click.option("--vip-only/--all-senders", default=None,
              help="Only surface VIP senders, or also keyword matches.")
@click.pass_obj
def config_set(app: AppContext, confidence: float | None, vip_only: bool | None) -> None:
    current = app.db.get_processing_config()
    updated = ProcessingConfig(
        confidence=current.confidence if confidence is None else confidence,
        vip_only=current.vip_only if vip_only is None else vip_only,
    )
    app.db.set_processing_config(updated)
    console.print(
        f"[green]Saved.[/green] confidence={updated.confidence:.2f} "
        f"vip-only={'yes' if updated.vip_only else 'no'}"
    )
