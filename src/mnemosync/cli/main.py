"""
Command Line Interface for Mnemosync.

Runs the conversation and scene companions from a terminal and manages the
local memory store (reminders, conversations, people).
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import date, datetime
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from mnemosync import __version__
from mnemosync.ai.client import AIUnavailableError, GeminiSource, build_sources
from mnemosync.companion.capture import ImageFileCapture, LineSpeechCapture
from mnemosync.companion.conversation import ConversationSession
from mnemosync.companion.scene import STATUS_QUOTA, STATUS_WATCHING, SceneWatcher
from mnemosync.companion.voice import ConsoleVoice
from mnemosync.config import APIKeyError, APIKeyManager, AppConfig, ConfigError, load_config
from mnemosync.core.models import ConversationRecord, ScheduledEvent, StoreKind, VisitorIdentity
from mnemosync.core.store import JsonFileStore, StoreError
from mnemosync.parsers.dates import resolve_detailed
from mnemosync.parsers.heuristics import extract as heuristic_extract
from mnemosync.utils.logging import level_for_flags, setup_logging

logger = logging.getLogger(__name__)

console = Console()


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def print_header(text: str) -> None:
    """Print a styled header."""
    console.print()
    console.print(Panel(text, style="bold magenta", expand=False))
    console.print()


def print_success(text: str) -> None:
    """Print green success message."""
    console.print(f"[bold green]✓[/bold green] {text}")


def print_warning(text: str) -> None:
    """Print yellow warning message."""
    console.print(f"[bold yellow]⚠[/bold yellow] {text}")


def print_error(text: str) -> None:
    """Print red error message."""
    console.print(f"[bold red]✗[/bold red] {text}")


def print_info_panel(title: str, content: str, border_style: str = "blue") -> None:
    """Print info panel box."""
    console.print(Panel(content, title=title, border_style=border_style))


def print_events_table(events: list[ScheduledEvent], title: str = "Reminders") -> None:
    """Print scheduled events as a table."""
    table = Table(title=title)
    table.add_column("Date", style="cyan")
    table.add_column("Kind", style="magenta")
    table.add_column("Label")
    table.add_column("ID", style="dim")

    for event in events:
        label = event.label
        if event.needs_confirmation:
            label += " [yellow](date needs confirmation)[/yellow]"
        table.add_row(event.iso_date, event.kind.value, label, event.id[:8])

    console.print(table)


def parse_visitor_option(value: str | None) -> VisitorIdentity | None:
    """Parse "Name,relation" from the command line."""
    if not value:
        return None
    name, _, relation = value.partition(",")
    if not name.strip():
        raise click.BadParameter("visitor name is empty", param_hint="--visitor")
    return VisitorIdentity(name=name.strip(), relation=relation.strip() or "visitor")


def get_store(config: AppConfig) -> JsonFileStore:
    """Open the memory store, exiting with an error message on failure."""
    try:
        return JsonFileStore(config.paths.data_dir)
    except StoreError as e:
        print_error(str(e))
        sys.exit(1)


def get_sources(config: AppConfig, no_ai: bool = False) -> tuple[GeminiSource | None, GeminiSource | None]:
    """Build Gemini sources, or (None, None) for heuristic-only operation."""
    if no_ai:
        return None, None
    try:
        return build_sources(config)
    except AIUnavailableError as e:
        print_warning(f"{e.message}. Using offline extraction only.")
        return None, None


def find_event(store: JsonFileStore, event_id: str) -> ScheduledEvent | None:
    """Find an event by full id or unique id prefix."""
    matches = [e for e in store.list_all(StoreKind.EVENTS) if e.id.startswith(event_id)]
    return matches[0] if len(matches) == 1 else None


# =============================================================================
# MAIN CLI GROUP
# =============================================================================


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug mode")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Custom config file")
@click.version_option(__version__, prog_name="mnemosync")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool, config_path: Path | None) -> None:
    """
    Mnemosync - a memory companion for people living with dementia.

    Summarises conversations, turns them into reminders, and helps recognise
    the people who visit.
    """
    config = load_config(config_path)
    debug = debug or config.debug
    verbose = verbose or config.verbose

    log_file = config.paths.log_dir / "mnemosync.log" if debug and config.paths.log_dir else None
    setup_logging(level_for_flags(verbose, debug), log_file=log_file)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["debug"] = debug


# =============================================================================
# OFFLINE TOOLS
# =============================================================================


@cli.command("extract")
@click.argument("text")
def extract_command(text: str) -> None:
    """Find dates and tasks in TEXT without calling any model."""
    mentions = heuristic_extract(text)
    if mentions.is_empty():
        print_warning("No dates or tasks found")
        return

    table = Table(title="Extracted Mentions")
    table.add_column("Type", style="cyan")
    table.add_column("Text")
    for mention in mentions.dates:
        table.add_row("date", mention)
    for mention in mentions.actions:
        table.add_row("action", mention)
    console.print(table)


@cli.command("resolve")
@click.argument("phrase")
@click.option(
    "--today",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Reference date (default: today)",
)
def resolve_command(phrase: str, today: datetime | None) -> None:
    """Resolve a date PHRASE such as "next Monday" or "Feb 16"."""
    reference = today.date() if today else date.today()
    resolved = resolve_detailed(phrase, reference)

    console.print(f"[bold]{resolved.date.isoformat()}[/bold] ({resolved.date:%A})  [dim]rule: {resolved.rule}[/dim]")
    if not resolved.confident:
        print_warning("Could not understand the date; defaulted to today. Please confirm.")


# =============================================================================
# COMPANION COMMANDS
# =============================================================================


async def run_session(
    session: ConversationSession,
    capture: LineSpeechCapture,
    visitor: VisitorIdentity | None = None,
    wait_each: bool = True,
    echo: bool = False,
) -> ConversationRecord | None:
    """Feed every utterance from capture into a fresh session, then stop it.

    With ``wait_each`` each periodic analysis finishes before the next line
    is read, which keeps replays of recorded files deterministic.
    """
    session.start()
    if visitor:
        session.set_visitor(visitor)
    try:
        async for utterance in capture:
            turn = await session.hear(utterance.text, utterance.pause_seconds)
            if echo and turn is not None:
                console.print(f"[dim]{turn.speaker}:[/dim] {turn.text}")
            if wait_each:
                await session.drain()
    finally:
        record = await session.stop()
    return record


@cli.command("analyze")
@click.argument("transcript_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--visitor", help='Known visitor as "Name,relation"')
@click.option("--no-ai", is_flag=True, help="Use offline extraction only")
@click.pass_context
def analyze_command(ctx: click.Context, transcript_file: Path, visitor: str | None, no_ai: bool) -> None:
    """Summarise a recorded conversation and save its reminders.

    TRANSCRIPT_FILE holds one utterance per line. A line may start with a
    pause marker such as "(+5s)" giving the silence before it.
    """
    config: AppConfig = ctx.obj["config"]
    identity = parse_visitor_option(visitor)
    store = get_store(config)
    primary, secondary = get_sources(config, no_ai)
    voice = ConsoleVoice(patient_name=config.companion.patient_name, console=console)

    session = ConversationSession(store, primary, secondary, config=config.companion)

    print_header("Conversation Analysis")
    record = asyncio.run(run_session(session, LineSpeechCapture(transcript_file), visitor=identity))
    if record is None:
        print_warning("The transcript is empty")
        return

    for turn in session.turns:
        console.print(f"[dim]{turn.speaker}:[/dim] {turn.text}")
    console.print()

    if session.quota_exceeded:
        print_warning("Gemini quota exceeded; some results come from offline extraction")
    voice.speak(record.summary, greeting=session.visitor)

    if session.events:
        print_events_table(session.events, title="New Reminders")
    else:
        console.print("[dim]No new reminders.[/dim]")
    print_success("Conversation saved")


@cli.command("listen")
@click.option(
    "--input",
    "input_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read utterances from a file instead of standard input",
)
@click.option("--no-ai", is_flag=True, help="Use offline extraction only")
@click.pass_context
def listen_command(ctx: click.Context, input_file: Path | None, no_ai: bool) -> None:
    """Listen to a conversation typed (or piped) line by line.

    End the conversation with Ctrl-D.
    """
    config: AppConfig = ctx.obj["config"]
    store = get_store(config)
    primary, secondary = get_sources(config, no_ai)
    voice = ConsoleVoice(patient_name=config.companion.patient_name, console=console)

    session = ConversationSession(
        store,
        primary,
        secondary,
        config=config.companion,
        on_update=lambda summary, visitor: console.print(f"[magenta]Summary:[/magenta] {summary}"),
        on_task=lambda task: console.print(f"[cyan]{task}[/cyan]"),
    )
    capture = LineSpeechCapture(input_file if input_file else sys.stdin)

    print_header("Listening")
    try:
        record = asyncio.run(run_session(session, capture, wait_each=input_file is not None, echo=True))
    except KeyboardInterrupt:
        print_warning("Interrupted")
        return

    if record is None:
        print_warning("Nothing was said")
        return

    voice.speak(record.summary, greeting=session.visitor)
    if session.events:
        print_events_table(session.events, title="New Reminders")
    print_success("Conversation saved")


@cli.command("scan")
@click.argument("image", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--history", default="", help="Earlier sightings to give as context")
@click.pass_context
def scan_command(ctx: click.Context, image: Path, history: str) -> None:
    """Identify who is in IMAGE."""
    config: AppConfig = ctx.obj["config"]
    store = get_store(config)
    try:
        primary, secondary = build_sources(config)
    except AIUnavailableError as e:
        print_error(e.message)
        sys.exit(1)

    watcher = SceneWatcher(
        ImageFileCapture(image),
        primary,
        store,
        secondary=secondary,
        config=config.companion,
        history=history,
    )
    outcome = asyncio.run(watcher.scan())

    if outcome.status == STATUS_QUOTA:
        print_warning(outcome.status)
        sys.exit(2)
    if outcome.status != STATUS_WATCHING:
        print_error(outcome.status)
        sys.exit(1)

    if outcome.identification:
        person = outcome.identification
        print_info_panel(
            f"{person.name} ({person.relation})",
            person.summary,
            border_style="green",
        )
    else:
        print_info_panel("No one recognised", outcome.summary)

    for nudge in outcome.nudges:
        console.print(f"[cyan]•[/cyan] {nudge}")
    if outcome.used_fallback:
        console.print("[dim]Answered by the secondary model.[/dim]")


# =============================================================================
# MEMORY STORE
# =============================================================================


@cli.group()
def events() -> None:
    """Manage stored reminders."""
    pass


@events.command("list")
@click.pass_context
def events_list(ctx: click.Context) -> None:
    """List stored reminders by date."""
    store = get_store(ctx.obj["config"])
    try:
        stored = store.list_all(StoreKind.EVENTS)
    except StoreError as e:
        print_error(str(e))
        sys.exit(1)
    if not stored:
        console.print("[dim]No reminders stored.[/dim]")
        return
    print_events_table(stored)


@events.command("delete")
@click.argument("event_id")
@click.pass_context
def events_delete(ctx: click.Context, event_id: str) -> None:
    """Delete the reminder with EVENT_ID (a unique prefix is enough)."""
    store = get_store(ctx.obj["config"])
    try:
        event = find_event(store, event_id)
        deleted = event is not None and store.delete(StoreKind.EVENTS, event.id)
    except StoreError as e:
        print_error(str(e))
        sys.exit(1)
    if not deleted:
        print_error(f"No single reminder matches '{event_id}'")
        sys.exit(1)
    print_success(f"Deleted: {event.label}")


@events.command("clear")
@click.option("--force", is_flag=True, help="Skip confirmation")
@click.pass_context
def events_clear(ctx: click.Context, force: bool) -> None:
    """Delete all stored reminders."""
    if not force and not Confirm.ask("Delete all reminders?", default=False):
        return
    store = get_store(ctx.obj["config"])
    try:
        count = store.clear(StoreKind.EVENTS)
    except StoreError as e:
        print_error(str(e))
        sys.exit(1)
    print_success(f"Deleted {count} reminder(s)")


@cli.group()
def people() -> None:
    """Browse the people Mnemosync has met."""
    pass


@people.command("list")
@click.pass_context
def people_list(ctx: click.Context) -> None:
    """List known visitors, most recently seen first."""
    store = get_store(ctx.obj["config"])
    try:
        profiles = store.list_all(StoreKind.VISITORS)
    except StoreError as e:
        print_error(str(e))
        sys.exit(1)
    if not profiles:
        console.print("[dim]No one has been recognised yet.[/dim]")
        return

    table = Table(title="People")
    table.add_column("Name", style="cyan")
    table.add_column("Relation", style="magenta")
    table.add_column("Last seen")
    table.add_column("Context")
    for profile in profiles:
        table.add_row(
            profile.name,
            profile.relation,
            profile.last_seen.strftime("%Y-%m-%d %H:%M"),
            profile.context[:60],
        )
    console.print(table)


# =============================================================================
# CONFIG GROUP
# =============================================================================


@cli.group()
def config() -> None:
    """Manage configuration settings."""
    pass


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Display current configuration."""
    app_config: AppConfig = ctx.obj["config"]
    key_manager = APIKeyManager()
    key_present = key_manager.get_key() is not None

    table = Table(title="Settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("AI mode", app_config.ai.mode.value)
    table.add_row("API key", f"[CONFIGURED] ({key_manager.get_key_source().value})" if key_present else "[NOT SET]")
    table.add_row("Primary model", app_config.ai.primary_model)
    table.add_row("Secondary model", app_config.ai.secondary_model or "none")
    table.add_row("Patient name", app_config.companion.patient_name)
    table.add_row("Scan interval", f"{app_config.companion.scan_interval_seconds:.0f}s")
    table.add_row("Analyse every", f"{app_config.companion.analyze_every_n_turns} turns")
    table.add_row("Data directory", str(app_config.paths.data_dir))
    console.print(table)


@config.command("set-key")
def config_set_key() -> None:
    """Store the Gemini API key in the system keyring."""
    print_header("Set Gemini API Key")
    api_key = click.prompt("Enter your Gemini API key", hide_input=True)
    try:
        APIKeyManager().store_key(api_key.strip())
    except (APIKeyError, ConfigError) as e:
        print_error(str(e))
        sys.exit(1)
    print_success("API key configured successfully")


def main() -> None:
    """Entry point for the console script."""
    cli()


if __name__ == "__main__":
    main()
