"""CLI commands for ZenFocus using Typer."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from zenfocus import __version__
from zenfocus.breathing.cadence import DEFAULT_EXERCISES, BreathingCadence, BreathingPhase
from zenfocus.core.config import get_config
from zenfocus.core.engine import FocusEngine
from zenfocus.focus.models import (
    COMPLETION_MESSAGES,
    StressLevel,
    TimerPhase,
    TimerState,
    format_clock,
    format_duration,
)
from zenfocus.focus.presets import PresetLibrary
from zenfocus.focus.recorder import SessionRecorder
from zenfocus.focus.scheduler import EventKind, PhaseScheduler, SchedulerEvent, SchedulerSnapshot
from zenfocus.storage.session_store import SessionStore

app = typer.Typer(
    name="zenfocus",
    help="Stress-adaptive focus timer.",
    add_completion=False,
)

console = Console()


def setup_logging(log_level: str, log_file: Path | None = None) -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    # Reduce noise from external libraries
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


@app.command()
def version() -> None:
    """Show the version."""
    console.print(f"zenfocus {__version__}")


@app.command()
def presets() -> None:
    """List available timer presets."""
    library = PresetLibrary.from_config(get_config().timer)

    table = Table(title="Timer Presets")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Focus", justify="right")
    table.add_column("Short Break", justify="right")
    table.add_column("Long Break", justify="right")
    table.add_column("Long Break Every", justify="right")

    for p in library.all():
        name = f"{p.name} [green](default)[/green]" if p.is_default else p.name
        table.add_row(
            p.id,
            name,
            format_clock(p.focus_duration),
            format_clock(p.short_break_duration),
            format_clock(p.long_break_duration),
            str(p.sessions_until_long_break),
        )

    console.print(table)


@app.command()
def stress(
    heart_rate: float = typer.Option(..., "--hr", help="Heart rate in bpm"),
    hrv: float = typer.Option(..., "--hrv", help="Heart rate variability (SDNN) in ms"),
    resting: float = typer.Option(60.0, "--resting", "-r", help="Resting heart rate in bpm"),
) -> None:
    """Classify a heart-rate / HRV pair."""
    from zenfocus.focus.biometrics import StressEstimator

    hrv_level = StressLevel.from_hrv(hrv)
    hr_level = StressLevel.from_heart_rate(heart_rate, resting)
    fused = StressEstimator.fuse(hrv_level, hr_level)

    table = Table(show_header=False, box=None)
    table.add_row("HRV", f"{hrv:g} ms", hrv_level.display_name)
    table.add_row("Heart rate", f"{heart_rate:g} bpm (resting {resting:g})", hr_level.display_name)
    table.add_row("[bold]Stress[/bold]", "", f"[bold]{fused.display_name}[/bold]")
    console.print(table)
    console.print(f"\n{fused.recommendation}")


@app.command()
def stats(
    days: int = typer.Option(7, "--days", "-d", min=1, help="Number of days to show"),
) -> None:
    """Show focus statistics."""
    config = get_config()

    async def load():
        store = SessionStore(config.db_path)
        try:
            await store.connect()
            return await store.load_all()
        finally:
            await store.close()

    recorder = SessionRecorder(daily_goal=config.timer.daily_goal_minutes * 60)
    recorder.load(asyncio.run(load()))
    today = recorder.today_stats()

    console.print(Panel.fit(
        f"Focus time today: [bold]{today.total_focus_display}[/bold]\n"
        f"Sessions completed: [bold]{today.completed_sessions}[/bold]\n"
        f"Daily goal: {today.goal_progress:.0%} of {format_duration(today.daily_goal)}\n"
        f"Current streak: {recorder.current_streak()} days  (best {recorder.best_streak()})",
        title="Today",
    ))

    table = Table(title=f"Last {days} days")
    table.add_column("Date")
    table.add_column("Focus", justify="right")
    table.add_column("Sessions", justify="right")
    table.add_column("Avg Stress", justify="right")
    table.add_column("Focus Score", justify="right")
    table.add_column("Goal", justify="right")

    for day in recorder.history(days):
        table.add_row(
            day.date.strftime("%a %b %d"),
            day.total_focus_display,
            str(day.completed_sessions),
            f"{day.average_stress_level:.2f}" if day.average_stress_level is not None else "-",
            str(day.focus_score) if day.focus_score is not None else "-",
            f"{day.goal_progress:.0%}",
        )

    console.print(table)


def restart_when_idle(scheduler: PhaseScheduler, done: asyncio.Event):
    """Listener that starts the next phase whenever the scheduler settles to Idle.

    Without auto-start the next phase waits in Idle. Once `done` is set the
    listener does nothing, so a final stop() leaves the timer idle.
    """

    async def keep_running(event: SchedulerEvent) -> None:
        if (
            event.kind == EventKind.STATE_CHANGED
            and event.snapshot.state == TimerState.IDLE
            and not done.is_set()
        ):
            await scheduler.start()

    return keep_running


@app.command()
def run(
    preset: str = typer.Option(None, "--preset", "-p", help="Preset id or name"),
    cycles: int = typer.Option(
        0, "--cycles", "-c", min=0, help="Stop after this many focus sessions (0 = until Ctrl+C)"
    ),
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Log level"),
) -> None:
    """Run the focus timer in the foreground."""
    config = get_config()
    setup_logging(log_level, config.log_dir / "zenfocus.log")

    async def run_timer():
        engine = FocusEngine(config, store=SessionStore(config.db_path))
        await engine.start()

        if preset and not await engine.select_preset(preset):
            console.print(f"[red]Unknown preset: {preset}[/red]")
            await engine.close()
            raise typer.Exit(1)

        done = asyncio.Event()
        focus_done = 0

        def on_tick(snap: SchedulerSnapshot) -> None:
            sys.stdout.write(
                f"\r{snap.phase.display_name:<12} {snap.time_remaining_display} | "
                f"#{snap.current_session_number} | stress {snap.stress_level.value:<8} "
                f"| today {format_duration(snap.todays_total_focus_time)}   "
            )
            sys.stdout.flush()

        async def on_phase_complete(phase: TimerPhase) -> None:
            nonlocal focus_done
            title, body = COMPLETION_MESSAGES[phase]
            console.print(f"\n[bold green]{title}[/bold green] {body}")
            if phase == TimerPhase.FOCUS:
                focus_done += 1
                if cycles and focus_done >= cycles:
                    done.set()

        engine.scheduler.on_tick = on_tick
        engine.notifier = on_phase_complete

        engine.scheduler.subscribe(restart_when_idle(engine.scheduler, done))

        snap = engine.state
        console.print(
            f"[green]Starting {engine.scheduler.preset.name}[/green] "
            f"({format_clock(snap.total_time)} focus). {snap.phase.random_encouragement}"
        )
        await engine.scheduler.start()

        try:
            await done.wait()
        finally:
            # Keep the Idle from stop() from restarting the timer
            done.set()
            await engine.scheduler.stop()
            await engine.close()

    try:
        asyncio.run(run_timer())
    except KeyboardInterrupt:
        console.print("\n[yellow]Timer stopped[/yellow]")


@app.command()
def breathe(
    exercise: str = typer.Option(None, "--exercise", "-e", help="Exercise key"),
) -> None:
    """Run a guided breathing exercise."""
    config = get_config()
    key = exercise or config.breathing.default_exercise
    chosen = DEFAULT_EXERCISES.get(key)
    if chosen is None:
        console.print(f"[red]Unknown exercise: {key}[/red]")
        console.print("Available: " + ", ".join(DEFAULT_EXERCISES))
        raise typer.Exit(1)

    console.print(Panel.fit(
        f"{chosen.description}\nPattern {chosen.pattern}, {chosen.cycles} cycles "
        f"({format_clock(chosen.total_duration)})",
        title=chosen.name,
    ))

    async def run_breathing():
        cadence = BreathingCadence(chosen, tick_seconds=config.breathing.tick_seconds)

        def on_phase_change(phase: BreathingPhase, cycle: int) -> None:
            if phase == BreathingPhase.COMPLETE:
                console.print("[bold green]Complete[/bold green]")
            else:
                seconds = chosen.duration_of(phase)
                console.print(f"Cycle {cycle}/{chosen.cycles}  {phase.instruction} ({seconds:g}s)")

        cadence.on_phase_change = on_phase_change
        await cadence.start()
        try:
            await cadence.wait_finished()
        finally:
            await cadence.stop()

    try:
        asyncio.run(run_breathing())
    except KeyboardInterrupt:
        console.print("\n[yellow]Breathing stopped[/yellow]")


@app.command(name="config")
def show_config() -> None:
    """Show the effective configuration."""
    config = get_config()
    console.print(Panel.fit(f"Config file: {config.config_file}\nDatabase: {config.db_path}"))
    console.print_json(config.model_dump_json())


if __name__ == "__main__":
    app()
