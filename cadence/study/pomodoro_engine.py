"""
Pomodoro Phase Engine for Practice Sessions.

Drives timed focus/break cycles:

    prep (5 min, once) -> focus -> break -> focus -> ... -> long break -> focus

Session Flow:
1. Start: a running prep phase to get set up
2. Each cycle: a focus block, then a short break
3. Every Nth completed cycle the break is a long break
4. Without a break length the timer pauses at the end of each focus block

Every transition is a pure function of (state, now). The engine only loads
the persisted state, applies the transition, saves it and notifies listeners,
so a restart mid-session resumes from the stored phase and timestamps.
"""

from __future__ import annotations

import math
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol

from loguru import logger

from cadence.delivery.scheduler import Clock, parse_instant, utc_now
from cadence.delivery.state_store import CorruptRecord, RecordStore

PREP_MINUTES = 5
DEFAULT_FOCUS_MINUTES = 25
DEFAULT_BREAK_MINUTES = 5
DEFAULT_LONG_BREAK_MINUTES = 15
DEFAULT_CYCLES_BEFORE_LONG_BREAK = 4

SESSION_RECORD = "session"
TIMER_SOUND_RECORD = "timer-sound"


class Phase(str, Enum):
    """Phase of the timed session."""

    PREP = "prep"
    FOCUS = "focus"
    BREAK = "break"
    LONG_BREAK = "long_break"

    @property
    def display_name(self) -> str:
        return {
            Phase.PREP: "Prep",
            Phase.FOCUS: "Focus block",
            Phase.BREAK: "Break",
            Phase.LONG_BREAK: "Long break",
        }[self]


class TimerStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"


class MessageKind(str, Enum):
    """Occasions for a phase message."""

    PREP_START = "prep_start"
    FOCUS_START = "focus_start"
    BREAK_START = "break_start"
    BACK_TO_WORK = "back_to_work"


PHASE_MESSAGES: dict[MessageKind, list[str]] = {
    MessageKind.PREP_START: [
        "Get set up, you have 5 minutes",
        "Open your notes, grab a drink",
        "Pick your task and settle in",
        "Clear your desk, get comfortable",
    ],
    MessageKind.FOCUS_START: [
        "Prep done, let's go",
        "Alright, focus time",
        "Time to lock in",
        "Let's get to work",
    ],
    MessageKind.BREAK_START: [
        "Step away from the screen",
        "Grab a drink, stretch your legs",
        "Take a breather",
        "Good work, take a break",
    ],
    MessageKind.BACK_TO_WORK: [
        "Break's over, back to it",
        "Ready for another round",
        "Recharged? Let's continue",
        "Back at it",
    ],
}

MessagePicker = Callable[[MessageKind], str]


def no_message(kind: MessageKind) -> str:
    return ""


# =============================================================================
# State
# =============================================================================


@dataclass
class TimerConfig:
    """Default durations for new sessions."""

    focus_minutes: int = DEFAULT_FOCUS_MINUTES
    break_minutes: int = DEFAULT_BREAK_MINUTES
    long_break_minutes: int = DEFAULT_LONG_BREAK_MINUTES
    cycles_before_long_break: int = DEFAULT_CYCLES_BEFORE_LONG_BREAK

    @property
    def preset(self) -> str:
        return f"{self.focus_minutes}-{self.break_minutes}-{self.long_break_minutes}"


@dataclass(frozen=True)
class Durations:
    focus_minutes: int
    break_minutes: int
    long_break_minutes: int


def parse_duration(value: str | int | float | None) -> Durations:
    """
    Parse a duration preset.

    "50-10-15" sets focus, break and long break; a bare number sets the focus
    length only (no breaks, so the timer pauses after each focus block).
    """
    if isinstance(value, (int, float)):
        return Durations(int(value), 0, DEFAULT_LONG_BREAK_MINUTES)

    raw = str(value or "").strip()
    if "-" in raw:
        parts = [_to_int(part) for part in raw.split("-")]
        parts += [None] * (3 - len(parts))
        focus, short_break, long_break = parts[:3]
        return Durations(
            focus if focus is not None else DEFAULT_FOCUS_MINUTES,
            short_break if short_break is not None else DEFAULT_BREAK_MINUTES,
            long_break if long_break is not None else DEFAULT_LONG_BREAK_MINUTES,
        )

    minutes = _to_int(raw)
    return Durations(
        minutes if minutes is not None else DEFAULT_FOCUS_MINUTES,
        0,
        DEFAULT_LONG_BREAK_MINUTES,
    )


def _to_int(value: str) -> int | None:
    try:
        number = float(value)
    except ValueError:
        return None
    return int(number) if math.isfinite(number) else None


@dataclass
class SessionState:
    """The singleton timed session, persisted as one record."""

    status: TimerStatus
    phase: Phase
    focus_minutes: int
    break_minutes: int = 0
    long_break_minutes: int = DEFAULT_LONG_BREAK_MINUTES
    completed_cycles: int = 0
    cycles_before_long_break: int = DEFAULT_CYCLES_BEFORE_LONG_BREAK
    start_at: datetime | None = None  # set while running
    remaining_seconds: int | None = None  # set while paused
    message: str = ""
    hidden: bool = False

    @property
    def is_running(self) -> bool:
        return self.status == TimerStatus.RUNNING

    @property
    def durations(self) -> Durations:
        return Durations(self.focus_minutes, self.break_minutes, self.long_break_minutes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "phase": self.phase.value,
            "focus_minutes": self.focus_minutes,
            "break_minutes": self.break_minutes,
            "long_break_minutes": self.long_break_minutes,
            "completed_cycles": self.completed_cycles,
            "cycles_before_long_break": self.cycles_before_long_break,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "remaining_seconds": self.remaining_seconds,
            "message": self.message,
            "hidden": self.hidden,
        }

    @classmethod
    def from_dict(cls, data: Any) -> SessionState:
        """
        Create from a persisted record, filling defaults for missing fields.

        Raises:
            CorruptRecord: If status/phase are unknown or values are malformed
        """
        if not isinstance(data, dict):
            raise CorruptRecord("session record is not an object")
        try:
            status = TimerStatus(data["status"])
            phase = Phase(data.get("phase") or Phase.FOCUS.value)
            focus = data.get("focus_minutes", data.get("minutes", DEFAULT_FOCUS_MINUTES))
            start_at = data.get("start_at")
            remaining = data.get("remaining_seconds")
            state = cls(
                status=status,
                phase=phase,
                focus_minutes=int(focus),
                break_minutes=int(data.get("break_minutes") or 0),
                long_break_minutes=int(data.get("long_break_minutes", DEFAULT_LONG_BREAK_MINUTES)),
                completed_cycles=int(data.get("completed_cycles") or 0),
                cycles_before_long_break=int(
                    data.get("cycles_before_long_break") or DEFAULT_CYCLES_BEFORE_LONG_BREAK
                ),
                start_at=parse_instant(start_at) if start_at else None,
                remaining_seconds=int(remaining) if remaining is not None else None,
                message=str(data.get("message") or ""),
                hidden=bool(data.get("hidden", False)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptRecord(f"session record: {e}") from e

        if state.is_running and state.start_at is None:
            raise CorruptRecord("running session without start_at")
        return state


# =============================================================================
# Pure transitions
# =============================================================================


def phase_duration_seconds(state: SessionState) -> int:
    if state.phase == Phase.PREP:
        return PREP_MINUTES * 60
    if state.phase == Phase.BREAK:
        return state.break_minutes * 60
    if state.phase == Phase.LONG_BREAK:
        return state.long_break_minutes * 60
    return state.focus_minutes * 60


def remaining_seconds(state: SessionState, now: datetime) -> int:
    if not state.is_running:
        return max(0, int(state.remaining_seconds or 0))
    elapsed = math.floor((now - state.start_at).total_seconds())
    return max(0, phase_duration_seconds(state) - elapsed)


def new_session(
    durations: Durations,
    now: datetime,
    cycles_before_long_break: int = DEFAULT_CYCLES_BEFORE_LONG_BREAK,
    message: str = "",
) -> SessionState:
    """A freshly started session always opens with the prep phase."""
    return SessionState(
        status=TimerStatus.RUNNING,
        phase=Phase.PREP,
        focus_minutes=durations.focus_minutes,
        break_minutes=durations.break_minutes,
        long_break_minutes=durations.long_break_minutes,
        completed_cycles=0,
        cycles_before_long_break=cycles_before_long_break,
        start_at=now,
        message=message,
    )


def seed_paused(
    durations: Durations,
    cycles_before_long_break: int = DEFAULT_CYCLES_BEFORE_LONG_BREAK,
) -> SessionState:
    """A paused, untouched focus block; resuming it enters prep."""
    return SessionState(
        status=TimerStatus.PAUSED,
        phase=Phase.FOCUS,
        focus_minutes=durations.focus_minutes,
        break_minutes=durations.break_minutes,
        long_break_minutes=durations.long_break_minutes,
        completed_cycles=0,
        cycles_before_long_break=cycles_before_long_break,
        remaining_seconds=durations.focus_minutes * 60,
    )


def is_fresh_start(state: SessionState) -> bool:
    """Paused at the very beginning: focus phase, no cycles, nothing elapsed."""
    if state.is_running or state.phase != Phase.FOCUS or state.completed_cycles != 0:
        return False
    total = phase_duration_seconds(state)
    remaining = state.remaining_seconds if state.remaining_seconds else total
    return remaining == state.focus_minutes * 60


def pause(state: SessionState, now: datetime) -> SessionState:
    if not state.is_running:
        return state
    return replace(
        state,
        status=TimerStatus.PAUSED,
        remaining_seconds=remaining_seconds(state, now),
        start_at=None,
        hidden=False,
    )


def resume(state: SessionState, now: datetime, pick_message: MessagePicker = no_message) -> SessionState:
    """
    Resume a paused session.

    The countdown continues where it stopped (start_at = now - elapsed); only
    a fresh start goes through prep first.
    """
    if state.is_running:
        return state

    if is_fresh_start(state):
        return new_session(
            state.durations,
            now,
            cycles_before_long_break=state.cycles_before_long_break,
            message=pick_message(MessageKind.PREP_START),
        )

    total = phase_duration_seconds(state)
    remaining = max(0, state.remaining_seconds if state.remaining_seconds else total)
    elapsed = total - remaining
    return replace(
        state,
        status=TimerStatus.RUNNING,
        start_at=now - timedelta(seconds=elapsed),
        remaining_seconds=None,
        hidden=False,
    )


@dataclass(frozen=True)
class PhaseTransition:
    """An expired phase and the state that replaces it."""

    previous: Phase
    state: SessionState
    kind: MessageKind | None  # None when the timer paused itself


def advance(
    state: SessionState,
    now: datetime,
    pick_message: MessagePicker = no_message,
) -> PhaseTransition | None:
    """
    Apply the phase rules if the running phase has expired.

    Returns:
        The transition, or None while the phase still has time left
    """
    if not state.is_running or remaining_seconds(state, now) > 0:
        return None

    if state.phase == Phase.PREP:
        kind = MessageKind.FOCUS_START
        next_state = replace(state, phase=Phase.FOCUS, start_at=now, message=pick_message(kind))

    elif state.phase == Phase.FOCUS and state.break_minutes > 0:
        kind = MessageKind.BREAK_START
        cycles = state.completed_cycles + 1
        needs_long_break = cycles % max(1, state.cycles_before_long_break) == 0
        next_state = replace(
            state,
            phase=Phase.LONG_BREAK if needs_long_break else Phase.BREAK,
            completed_cycles=cycles,
            start_at=now,
            message=pick_message(kind),
        )

    elif state.phase in (Phase.BREAK, Phase.LONG_BREAK) and state.focus_minutes > 0:
        kind = MessageKind.BACK_TO_WORK
        next_state = replace(state, phase=Phase.FOCUS, start_at=now, message=pick_message(kind))

    else:
        kind = None
        next_state = replace(
            state,
            status=TimerStatus.PAUSED,
            phase=Phase.FOCUS,
            start_at=None,
            remaining_seconds=state.focus_minutes * 60,
            message="",
        )

    return PhaseTransition(previous=state.phase, state=next_state, kind=kind)


# =============================================================================
# Display
# =============================================================================


def format_countdown(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


@dataclass(frozen=True)
class TimerDisplay:
    """Snapshot of the timer for rendering."""

    status: TimerStatus
    phase: Phase
    remaining_seconds: int
    total_seconds: int
    completed_cycles: int
    cycles_before_long_break: int
    phase_minutes: int
    message: str
    hidden: bool

    @property
    def countdown(self) -> str:
        return format_countdown(self.remaining_seconds)

    @property
    def progress(self) -> float:
        """Elapsed fraction of the current phase (0-1)."""
        if self.total_seconds <= 0:
            return 1.0
        return min(1.0, max(0.0, 1 - self.remaining_seconds / self.total_seconds))

    @property
    def label(self) -> str:
        status = "Stopped" if self.status == TimerStatus.PAUSED else self.phase.display_name
        return (
            f"{status} • {self.phase_minutes} min • "
            f"{self.completed_cycles}/{self.cycles_before_long_break}"
        )


def snapshot(state: SessionState, now: datetime) -> TimerDisplay:
    if state.is_running:
        minutes = phase_duration_seconds(state) // 60
    else:
        minutes = state.focus_minutes
    return TimerDisplay(
        status=state.status,
        phase=state.phase,
        remaining_seconds=remaining_seconds(state, now),
        total_seconds=phase_duration_seconds(state),
        completed_cycles=state.completed_cycles,
        cycles_before_long_break=state.cycles_before_long_break,
        phase_minutes=minutes,
        message=state.message,
        hidden=state.hidden,
    )


# =============================================================================
# Repository
# =============================================================================


class SessionRepository(Protocol):
    def load(self) -> SessionState | None: ...

    def save(self, state: SessionState) -> None: ...

    def clear(self) -> None: ...


class MemorySessionRepository:
    """Keeps the session in memory only."""

    def __init__(self, state: SessionState | None = None):
        self.state = state

    def load(self) -> SessionState | None:
        return self.state

    def save(self, state: SessionState) -> None:
        self.state = state

    def clear(self) -> None:
        self.state = None


class RecordSessionRepository:
    """Persists the session as the "session" record; corrupt records read as absent."""

    def __init__(self, store: RecordStore):
        self.store = store

    def load(self) -> SessionState | None:
        raw = self.store.load(SESSION_RECORD)
        if raw is None:
            return None
        try:
            return SessionState.from_dict(raw)
        except CorruptRecord as e:
            logger.warning(f"Discarding {e}")
            return None

    def save(self, state: SessionState) -> None:
        self.store.save(SESSION_RECORD, state.to_dict())

    def clear(self) -> None:
        self.store.delete(SESSION_RECORD)


def sound_enabled(store: RecordStore) -> bool:
    return store.load(TIMER_SOUND_RECORD, True) is not False


def toggle_sound(store: RecordStore) -> bool:
    enabled = not sound_enabled(store)
    store.save(TIMER_SOUND_RECORD, enabled)
    return enabled


# =============================================================================
# Engine
# =============================================================================


class PomodoroEngine:
    """
    Engine for running the timed practice session.

    Every action loads the stored session, applies a pure transition and
    saves the result. Actions without a session are no-ops.
    """

    def __init__(
        self,
        repository: SessionRepository,
        config: TimerConfig | None = None,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
    ):
        self.repository = repository
        self.config = config or TimerConfig()
        self.clock = clock
        self.rng = rng or random.Random()
        self._listeners: list[Callable[[PhaseTransition], None]] = []

    def pick_message(self, kind: MessageKind) -> str:
        return self.rng.choice(PHASE_MESSAGES[kind])

    def add_listener(self, listener: Callable[[PhaseTransition], None]) -> None:
        """Called after every automatic phase transition."""
        self._listeners.append(listener)

    def current(self) -> SessionState | None:
        return self.repository.load()

    def display(self) -> TimerDisplay | None:
        state = self.repository.load()
        return snapshot(state, self.clock()) if state else None

    def start_session(self, duration: str | int | None = None) -> SessionState:
        """Start a new running session in prep, replacing any existing one."""
        durations = parse_duration(duration if duration is not None else self.config.preset)
        state = new_session(
            durations,
            self.clock(),
            cycles_before_long_break=self.config.cycles_before_long_break,
            message=self.pick_message(MessageKind.PREP_START),
        )
        self.repository.save(state)
        logger.info(
            f"Timer started: {durations.focus_minutes}/{durations.break_minutes}/"
            f"{durations.long_break_minutes} min"
        )
        return state

    def toggle_pause(self) -> SessionState | None:
        state = self.repository.load()
        if state is None:
            return None
        now = self.clock()
        if state.is_running:
            state = pause(state, now)
            logger.debug(f"Timer paused in {state.phase.value} with {state.remaining_seconds}s left")
        else:
            state = resume(state, now, self.pick_message)
            logger.debug(f"Timer resumed in {state.phase.value}")
        self.repository.save(state)
        return state

    def reset_session(self) -> SessionState:
        """Back to a paused fresh focus block, keeping the configured durations."""
        state = self.repository.load()
        durations = state.durations if state else parse_duration(self.config.preset)
        if durations.focus_minutes <= 0:
            durations = replace(durations, focus_minutes=self.config.focus_minutes)
        seeded = seed_paused(durations, self.config.cycles_before_long_break)
        self.repository.save(seeded)
        return seeded

    def update_duration(self, duration: str | int) -> SessionState | None:
        """Switch presets; the session restarts as a paused fresh focus block."""
        durations = parse_duration(duration)
        if durations.focus_minutes <= 0:
            return None
        seeded = seed_paused(durations, self.config.cycles_before_long_break)
        self.repository.save(seeded)
        return seeded

    def hide(self) -> None:
        state = self.repository.load()
        if state is not None:
            self.repository.save(replace(state, hidden=True))

    def show(self) -> None:
        state = self.repository.load()
        if state is not None:
            self.repository.save(replace(state, hidden=False))

    def end_session(self) -> None:
        self.repository.clear()

    def tick(self) -> TimerDisplay | None:
        """
        Advance the session by at most one phase.

        A hidden session whose phase has run out is ended instead.

        Returns:
            Display snapshot, or None when no session exists
        """
        state = self.repository.load()
        if state is None:
            return None

        now = self.clock()
        if state.hidden and state.is_running and remaining_seconds(state, now) <= 0:
            logger.info("Hidden timer ran out; session ended")
            self.repository.clear()
            return None

        transition = advance(state, now, self.pick_message)
        if transition is not None:
            state = transition.state
            self.repository.save(state)
            logger.info(
                f"Timer phase {transition.previous.value} -> {state.phase.value} "
                f"({state.status.value}, cycles={state.completed_cycles})"
            )
            for listener in list(self._listeners):
                listener(transition)

        return snapshot(state, now)


class PhaseTicker:
    """
    Calls engine.tick() once per interval while the session runs.

    Stops by itself when the session is paused, hidden-and-expired or gone.
    """

    def __init__(
        self,
        engine: PomodoroEngine,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        on_tick: Callable[[TimerDisplay], None] | None = None,
    ):
        self.engine = engine
        self.interval = interval
        self.sleep = sleep
        self.on_tick = on_tick

    def run(self, max_ticks: int | None = None) -> TimerDisplay | None:
        """
        Tick until the session stops running.

        Args:
            max_ticks: Optional upper bound on ticks (None = unbounded)

        Returns:
            The last display snapshot, or None if the session is gone
        """
        ticks = 0
        while True:
            display = self.engine.tick()
            if display is not None and self.on_tick is not None:
                self.on_tick(display)
            if display is None or display.status != TimerStatus.RUNNING:
                return display
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                return display
            self.sleep(self.interval)
