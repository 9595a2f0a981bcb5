"""
Cadence: Main CLI for course practice.

A Rich terminal interface over the practice core.

Commands:
- cadence review KEY   - Record a review for one item
- cadence due          - List items due for review
- cadence weakest      - List the weakest items
- cadence practice     - Run a practice session
- cadence streak       - Show streaks and recent activity
- cadence strength     - Concept and module strength report
- cadence timer ...    - Pomodoro timer (start, toggle, reset, status, watch, ...)
- cadence export       - Write a backup file
- cadence import       - Restore a backup file
"""
from __future__ import annotations

import json
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from config import Settings, get_settings

from cadence.study.mastery_calculator import (
    StrengthCalculator,
    StrengthConfig,
    StrengthLabel,
    due_status,
    prettify_key,
)
from cadence.study.pomodoro_engine import (
    Phase,
    PhaseTicker,
    PhaseTransition,
    PomodoroEngine,
    RecordSessionRepository,
    TimerConfig,
    TimerDisplay,
    TimerStatus,
    sound_enabled,
    toggle_sound,
)
from cadence.study.queue_builder import (
    CatalogItem,
    KeyFilter,
    QueueBuilder,
    QueueConfig,
    QueueMode,
    build_discover_queue,
)
from cadence.study.session_runner import PracticeSession, SessionSummary

from .backup import BackupFormatError, read_backup, write_backup
from .progress import ProgressStore
from .scheduler import ScheduleEntry, SRSScheduler, derive_quality, utc_now
from .state_store import RecordStore, open_record_store
from .streaks import StreakLedger, activity_level

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="cadence",
    help="Cadence: spaced-repetition practice CLI",
    no_args_is_help=True,
)
timer_app = typer.Typer(help="Pomodoro timer", no_args_is_help=True)
app.add_typer(timer_app, name="timer")

console = Console()


# =============================================================================
# Styling
# =============================================================================

STYLES = {
    "info": "bold cyan",
    "warning": "bold yellow",
    "dim": "dim",
    "strength": {
        StrengthLabel.STRONG: "bright_green",
        StrengthLabel.GOOD: "cyan",
        StrengthLabel.MODERATE: "yellow",
        StrengthLabel.WEAK: "red",
        StrengthLabel.TOO_EARLY: "dim",
    },
    "phase": {
        Phase.PREP: "magenta",
        Phase.FOCUS: "cyan",
        Phase.BREAK: "green",
        Phase.LONG_BREAK: "bright_green",
    },
}

HEATMAP_CELLS = ["[dim]·[/dim]", "[green]░[/green]", "[green]▒[/green]", "[bright_green]▓[/bright_green]"]

RATING_CHOICES = {"1": "got it", "2": "struggled", "3": "needed the solution"}


def style_strength(label: StrengthLabel) -> str:
    color = STYLES["strength"].get(label, "white")
    text = "Too early" if label == StrengthLabel.TOO_EARLY else label.value
    return f"[{color}]{text}[/{color}]"


# =============================================================================
# Wiring
# =============================================================================


def open_store(settings: Settings | None = None) -> RecordStore:
    settings = settings or get_settings()
    return open_record_store(settings.state_db_path, prefix=settings.storage_prefix)


def build_engine(store: RecordStore, settings: Settings) -> PomodoroEngine:
    return PomodoroEngine(
        RecordSessionRepository(store),
        TimerConfig(
            focus_minutes=settings.focus_minutes,
            break_minutes=settings.break_minutes,
            long_break_minutes=settings.long_break_minutes,
            cycles_before_long_break=settings.cycles_before_long_break,
        ),
    )


def load_concept_index(path: Path | None) -> dict[str, str]:
    """Key -> concept mapping supplied by the content layer."""
    if path is None or not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read concept index {path}: {e}")
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items() if v}


def load_catalog(path: Path | None) -> list[CatalogItem]:
    """Practice items for discover sessions: a JSON list of {key, label}."""
    if path is None or not path.exists():
        return []
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read catalog {path}: {e}")
        return []
    return [CatalogItem.from_dict(item) for item in data if isinstance(item, dict) and "key" in item]


# =============================================================================
# Display Helpers
# =============================================================================


def entry_table(entries: list[ScheduleEntry], title: str, settings: Settings) -> Table:
    now = utc_now()
    table = Table(title=title)
    table.add_column("Item")
    table.add_column("Ease", justify="right")
    table.add_column("Interval", justify="right")
    table.add_column("Reps", justify="right")
    table.add_column("Next review")
    for entry in entries:
        table.add_row(
            prettify_key(entry.key, entry, settings.module_names),
            f"{entry.ease_factor:.2f}",
            f"{entry.interval}d",
            str(entry.repetitions),
            due_status(entry.next_review, now),
        )
    return table


def display_item(item: ScheduleEntry | CatalogItem, index: int, total: int) -> None:
    settings = get_settings()
    name = item.label or prettify_key(item.key, module_names=settings.module_names)
    header = f"Item {index + 1}/{total}"
    console.print(
        Panel(
            f"[bold]{name}[/bold]\n[dim]{item.key}[/dim]",
            title=header,
            title_align="left",
            border_style="cyan",
            padding=(1, 2),
        )
    )


def display_session_summary(summary: SessionSummary) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold]Session Complete![/bold]\n\n"
            f"Completed: {summary.completed}\n"
            f"Skipped: {summary.skipped}\n\n"
            f"Got it: {summary.ratings.got_it}  "
            f"Struggled: {summary.ratings.struggled}  "
            f"Peeked: {summary.ratings.peeked}",
            title="Summary",
            border_style="green",
        )
    )


def render_timer(display: TimerDisplay) -> Panel:
    color = STYLES["phase"].get(display.phase, "white")
    if display.status == TimerStatus.PAUSED:
        color = "yellow"
    filled = int(display.progress * 30)
    bar = "█" * filled + "░" * (30 - filled)
    body = f"[bold {color}]{display.countdown}[/bold {color}]\n{bar}"
    if display.message:
        body += f"\n\n[dim]{display.message}[/dim]"
    return Panel(body, title=display.label, border_style=color, padding=(1, 2))


# =============================================================================
# Review Commands
# =============================================================================


@app.command()
def review(
    key: str = typer.Argument(..., help="Item key, e.g. m2_warmup_1"),
    quality: Optional[int] = typer.Option(
        None,
        "--quality", "-q",
        help="SM-2 quality 0-5",
    ),
    rating: Optional[int] = typer.Option(
        None,
        "--rating", "-r",
        min=1, max=3,
        help="Self-rating: 1 got it, 2 struggled, 3 needed the solution",
    ),
    hints: bool = typer.Option(False, "--hints", help="Hints were used"),
    label: Optional[str] = typer.Option(None, "--label", "-l", help="Display name"),
) -> None:
    """Record a review for one item."""
    store = open_store()
    scheduler = SRSScheduler(store)

    if quality is None:
        progress = ProgressStore(store)
        if rating is not None:
            record = progress.rate(key, rating, hints_used=hints)
        else:
            record = progress.update(key, hints_used=hints)
        quality = derive_quality(record.to_dict())

    entry = scheduler.record_review(key, quality, label=label)
    console.print(
        f"[green]Recorded[/green] {key}: quality {quality}, "
        f"ease {entry.ease_factor:.2f}, next review in {entry.interval}d"
    )


@app.command()
def due() -> None:
    """List items due for review."""
    settings = get_settings()
    entries = SRSScheduler(open_store(settings)).get_due_exercises()
    if not entries:
        console.print("[green]Nothing due for review![/green]")
        return
    console.print(entry_table(entries, f"Due for review ({len(entries)})", settings))


@app.command()
def weakest(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of items"),
) -> None:
    """List the items with the lowest ease factors."""
    settings = get_settings()
    entries = SRSScheduler(open_store(settings)).get_weakest_exercises(limit)
    if not entries:
        console.print("[dim]No weak items yet. An item needs two passing reviews first.[/dim]")
        return
    console.print(entry_table(entries, "Weakest items", settings))


@app.command()
def practice(
    mode: Optional[QueueMode] = typer.Option(
        None,
        "--mode", "-m",
        case_sensitive=False,
        help="review, weakest, mixed or discover (default: recommended mode)",
    ),
    count: Optional[int] = typer.Option(None, "--count", "-c", help="Items per session"),
    item_type: str = typer.Option("all", "--type", "-t", help="all, warmup or challenge"),
    modules: Optional[list[int]] = typer.Option(None, "--module", help="Limit to module number(s)"),
    catalog_path: Optional[Path] = typer.Option(
        None,
        "--catalog",
        help="JSON list of {key, label} items for discover sessions",
    ),
) -> None:
    """
    Run a practice session.

    Each item is rated 1 (got it), 2 (struggled) or 3 (needed the solution);
    's' skips it and 'q' ends the session.
    """
    settings = get_settings()
    store = open_store(settings)
    scheduler = SRSScheduler(store)
    progress = ProgressStore(store)
    ledger = StreakLedger(store)
    builder = QueueBuilder(scheduler, QueueConfig(min_session_size=settings.min_session_size))

    key_filter = KeyFilter(item_type=item_type, modules=set(modules) if modules else None)
    count = count or settings.default_session_count
    mode = mode or builder.preselect_best_mode(key_filter)

    if mode == QueueMode.DISCOVER:
        catalog = [item for item in load_catalog(catalog_path) if key_filter(item.key)]
        queue: list = build_discover_queue(catalog, count, set(scheduler.get_all()))
    else:
        queue = builder.assemble_session(mode, count, key_filter)

    session = PracticeSession(
        on_render=display_item,
        ledger=ledger,
        progress=progress,
        on_complete=display_session_summary,
    )

    console.print(f"\n[bold cyan]Practice[/bold cyan] - {mode.value} mode")
    if not session.start(queue):
        console.print("[yellow]Nothing to practice in this mode.[/yellow]")
        console.print("[dim]Try another mode or widen the module filter.[/dim]")
        raise typer.Exit(0)

    try:
        while session.current is not None:
            item = session.current
            choice = Prompt.ask(
                "Rating [1 got it / 2 struggled / 3 peeked / s skip / q quit]",
                choices=[*RATING_CHOICES, "s", "q"],
            )
            if choice == "q":
                break
            if choice == "s":
                session.skip_exercise()
                continue

            record = progress.rate(item.key, int(choice))
            quality = derive_quality(record.to_dict())
            scheduler.record_review(item.key, quality, label=item.label)
            session.next_exercise()
    except KeyboardInterrupt:
        console.print("\n\n[yellow]Session interrupted.[/yellow]")

    if session.summary is None:
        console.print(
            f"[dim]Ended early: {session.results.completed} completed, "
            f"{session.results.skipped} skipped[/dim]"
        )


@app.command()
def streak(
    days: int = typer.Option(28, "--days", "-d", help="Days of activity to show"),
) -> None:
    """Show the current and longest streak with recent activity."""
    ledger = StreakLedger(open_store())

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("Current streak", f"{ledger.get_current()} days")
    table.add_row("Longest streak", f"{ledger.get_longest()} days")
    table.add_row("Completed today", str(ledger.get_today_count()))
    console.print(table)

    activity = ledger.get_activity_data()
    today = utc_now().date()
    cells = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        cells.append(HEATMAP_CELLS[activity_level(activity.get(day.isoformat(), 0))])
    console.print("\n" + "".join(cells))
    console.print(f"[dim]last {days} days[/dim]")


@app.command()
def strength(
    index_path: Optional[Path] = typer.Option(
        None,
        "--index", "-i",
        help="Concept index JSON (defaults to CADENCE_CONCEPT_INDEX_PATH)",
    ),
) -> None:
    """Concept and module strength report."""
    settings = get_settings()
    store = open_store(settings)
    calculator = StrengthCalculator(
        StrengthConfig(
            recency_decay_days=settings.recency_decay_days,
            concept_min_samples=settings.concept_min_samples,
            module_min_samples=settings.module_min_samples,
        )
    )
    report = calculator.build_report(
        SRSScheduler(store).get_all(),
        ProgressStore(store).load_all(),
        load_concept_index(index_path or settings.concept_index_path),
        utc_now(),
        settings.module_names,
    )
    if report is None:
        console.print("[dim]No review data yet. Practice a few items first.[/dim]")
        return

    console.print(
        f"\n[bold]{report.total_tracked}[/bold] items reviewed  "
        f"[bold]{report.modules_rated} / {len(report.modules)}[/bold] modules rated  "
        f"[bright_green]{report.mastered_count} mastered[/bright_green]  "
        f"[red]{report.weak_count} weak[/red]"
    )

    modules_table = Table(title="Modules")
    modules_table.add_column("Module")
    modules_table.add_column("Reviewed", justify="right")
    modules_table.add_column("Mastered", justify="right")
    modules_table.add_column("Avg ease", justify="right")
    modules_table.add_column("Strength")
    for module in report.modules:
        early = module.label == StrengthLabel.TOO_EARLY
        modules_table.add_row(
            f"M{module.module_id} {module.name}",
            str(module.sample_count),
            str(module.mastered),
            "" if early else f"{module.avg_ease:.1f}",
            style_strength(module.label),
        )
    console.print(modules_table)

    if report.concepts:
        concepts_table = Table(title="Concepts")
        concepts_table.add_column("Concept")
        concepts_table.add_column("Module", justify="right")
        concepts_table.add_column("Samples", justify="right")
        concepts_table.add_column("Avg ease", justify="right")
        concepts_table.add_column("Strength")
        for concept in report.concepts:
            concepts_table.add_row(
                concept.concept,
                f"M{concept.module_id}",
                str(concept.sample_count),
                f"{concept.avg_ease:.2f}",
                style_strength(concept.label),
            )
        console.print(concepts_table)

    if report.weakest:
        console.print(entry_table(report.weakest, "Weakest exercises", settings))

    ratings = report.ratings
    console.print(
        f"\nSelf-ratings: got it {ratings.got_it}, "
        f"struggled {ratings.struggled}, peeked {ratings.peeked}"
    )


# =============================================================================
# Timer Commands
# =============================================================================


def _timer_engine() -> tuple[PomodoroEngine, RecordStore]:
    settings = get_settings()
    store = open_store(settings)
    return build_engine(store, settings), store


def _print_timer(display: TimerDisplay | None) -> None:
    if display is None:
        console.print("[dim]No timer running. Start one with 'cadence timer start'.[/dim]")
        return
    console.print(render_timer(display))


@timer_app.command("start")
def timer_start(
    duration: Optional[str] = typer.Argument(
        None,
        help='Preset like "25-5-15" (focus-break-long break) or focus minutes only',
    ),
) -> None:
    """Start a new session with the prep phase."""
    engine, _ = _timer_engine()
    engine.start_session(duration)
    _print_timer(engine.display())


@timer_app.command("toggle")
def timer_toggle() -> None:
    """Pause or resume the session."""
    engine, _ = _timer_engine()
    engine.tick()
    engine.toggle_pause()
    _print_timer(engine.display())


@timer_app.command("reset")
def timer_reset() -> None:
    """Reset to a paused, fresh focus block."""
    engine, _ = _timer_engine()
    engine.reset_session()
    _print_timer(engine.display())


@timer_app.command("duration")
def timer_duration(
    duration: str = typer.Argument(..., help='Preset like "50-10-15" or focus minutes'),
) -> None:
    """Switch duration presets (resets the session)."""
    engine, _ = _timer_engine()
    if engine.update_duration(duration) is None:
        console.print("[red]Focus length must be at least one minute.[/red]")
        raise typer.Exit(1)
    _print_timer(engine.display())


@timer_app.command("status")
def timer_status() -> None:
    """Show the session, applying any phase change that is due."""
    engine, _ = _timer_engine()
    _print_timer(engine.tick())


@timer_app.command("watch")
def timer_watch() -> None:
    """Follow the countdown live until the session pauses (Ctrl+C to stop watching)."""
    engine, store = _timer_engine()

    def ring(transition: PhaseTransition) -> None:
        if sound_enabled(store):
            console.bell()

    engine.add_listener(ring)
    display = engine.tick()
    if display is None or display.status != TimerStatus.RUNNING:
        _print_timer(display)
        return

    try:
        with Live(render_timer(display), console=console, refresh_per_second=4) as live:
            ticker = PhaseTicker(engine, on_tick=lambda d: live.update(render_timer(d)))
            final = ticker.run()
    except KeyboardInterrupt:
        console.print("[dim]Stopped watching; the timer keeps its state.[/dim]")
        return

    if final is None:
        console.print("[dim]Session ended.[/dim]")


@timer_app.command("hide")
def timer_hide() -> None:
    """Hide the timer; a hidden session ends when its phase runs out."""
    engine, _ = _timer_engine()
    engine.hide()


@timer_app.command("show")
def timer_show() -> None:
    """Show a hidden timer again."""
    engine, _ = _timer_engine()
    engine.show()
    _print_timer(engine.tick())


@timer_app.command("sound")
def timer_sound() -> None:
    """Toggle the bell on phase changes."""
    _, store = _timer_engine()
    enabled = toggle_sound(store)
    console.print(f"Timer sound {'on' if enabled else 'off'}")


# =============================================================================
# Backup Commands
# =============================================================================


@app.command("export")
def export_data(
    path: Path = typer.Argument(Path("cadence-backup.json"), help="Backup file to write"),
) -> None:
    """Export every practice record to a JSON file."""
    count = write_backup(open_store(), path)
    if count == 0:
        console.print("[yellow]No data to export.[/yellow]")
        return
    console.print(f"[green]Exported {count} records to {path}[/green]")


@app.command("import")
def import_data(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Backup file to restore"),
    confirm: bool = typer.Option(
        False,
        "--yes", "-y",
        help="Skip confirmation",
    ),
) -> None:
    """Restore practice records from a backup, overwriting current data."""
    if not confirm and not Confirm.ask("This will overwrite your current progress. Continue?", default=False):
        raise typer.Exit(0)

    try:
        count = read_backup(open_store(), path)
    except BackupFormatError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    console.print(f"[green]Imported {count} records.[/green]")


# =============================================================================
# Entry Point
# =============================================================================


def configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<level>{message}</level>",
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            level="DEBUG",
            rotation="1 MB",
            retention=3,
        )


def main() -> None:
    """CLI entry point."""
    configure_logging(get_settings())
    app()


if __name__ == "__main__":
    main()
