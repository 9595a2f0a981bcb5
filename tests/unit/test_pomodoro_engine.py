"""
Unit tests for the pomodoro phase engine.

Transitions are driven by a fake clock; nothing sleeps.
"""

import random
from datetime import timedelta

import pytest

from cadence.study.pomodoro_engine import (
    PHASE_MESSAGES,
    Durations,
    MemorySessionRepository,
    MessageKind,
    Phase,
    PhaseTicker,
    PomodoroEngine,
    RecordSessionRepository,
    SessionState,
    TimerStatus,
    advance,
    format_countdown,
    is_fresh_start,
    parse_duration,
    pause,
    remaining_seconds,
    resume,
    seed_paused,
    sound_enabled,
    toggle_sound,
)


@pytest.fixture
def repository():
    return MemorySessionRepository()


@pytest.fixture
def engine(repository, clock):
    return PomodoroEngine(repository, clock=clock, rng=random.Random(0))


def expire(state, now):
    """Instant at which the running phase runs out."""
    return now + timedelta(seconds=remaining_seconds(state, now))


class TestParseDuration:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("50-10-15", Durations(50, 10, 15)),
            ("25-5", Durations(25, 5, 15)),
            ("45", Durations(45, 0, 15)),
            (30, Durations(30, 0, 15)),
            ("", Durations(25, 0, 15)),
            (None, Durations(25, 0, 15)),
            ("abc-5", Durations(25, 5, 15)),
            ("50-x-20", Durations(50, 5, 20)),
        ],
    )
    def test_presets(self, value, expected):
        assert parse_duration(value) == expected


class TestPhaseRules:
    def test_start_enters_prep(self, engine, clock):
        state = engine.start_session("25-5-15")

        assert state.status == TimerStatus.RUNNING
        assert state.phase == Phase.PREP
        assert state.start_at == clock.now
        assert state.message in PHASE_MESSAGES[MessageKind.PREP_START]
        assert engine.display().countdown == "05:00"

    def test_prep_expires_into_focus(self, engine, clock):
        engine.start_session("25-5-15")
        clock.advance(minutes=5)

        display = engine.tick()
        state = engine.current()

        assert state.phase == Phase.FOCUS
        assert state.completed_cycles == 0
        assert state.start_at == clock.now
        assert state.message in PHASE_MESSAGES[MessageKind.FOCUS_START]
        assert display.remaining_seconds == 25 * 60

    def test_focus_expires_into_break(self, engine, clock):
        engine.start_session("25-5-15")
        clock.advance(minutes=5)
        engine.tick()
        clock.advance(minutes=25)
        engine.tick()

        state = engine.current()
        assert state.phase == Phase.BREAK
        assert state.completed_cycles == 1
        assert state.message in PHASE_MESSAGES[MessageKind.BREAK_START]

    def test_every_fourth_cycle_is_long_break(self, clock):
        state = SessionState(
            status=TimerStatus.RUNNING,
            phase=Phase.FOCUS,
            focus_minutes=25,
            break_minutes=5,
            completed_cycles=3,
            start_at=clock.now - timedelta(minutes=25),
        )

        transition = advance(state, clock.now)

        assert transition.state.phase == Phase.LONG_BREAK
        assert transition.state.completed_cycles == 4

    @pytest.mark.parametrize("phase", [Phase.BREAK, Phase.LONG_BREAK])
    def test_break_expires_into_focus(self, clock, phase):
        state = SessionState(
            status=TimerStatus.RUNNING,
            phase=phase,
            focus_minutes=25,
            break_minutes=5,
            long_break_minutes=15,
            completed_cycles=2,
            start_at=clock.now - timedelta(minutes=15),
        )

        transition = advance(state, clock.now)

        assert transition.previous == phase
        assert transition.state.phase == Phase.FOCUS
        assert transition.state.completed_cycles == 2
        assert transition.kind == MessageKind.BACK_TO_WORK

    def test_focus_without_break_pauses(self, engine, clock):
        engine.start_session("30")
        clock.advance(minutes=5)
        engine.tick()
        clock.advance(minutes=30)
        display = engine.tick()

        state = engine.current()
        assert state.status == TimerStatus.PAUSED
        assert state.phase == Phase.FOCUS
        assert state.remaining_seconds == 30 * 60
        assert display.label == "Stopped • 30 min • 0/4"

    def test_no_transition_before_expiry(self, clock):
        state = SessionState(
            status=TimerStatus.RUNNING,
            phase=Phase.FOCUS,
            focus_minutes=25,
            start_at=clock.now - timedelta(minutes=24),
        )
        assert advance(state, clock.now) is None

    def test_late_tick_does_not_catch_up(self, engine, clock):
        engine.start_session("25-5-15")
        clock.advance(hours=3)
        engine.tick()

        state = engine.current()
        assert state.phase == Phase.FOCUS
        assert state.start_at == clock.now

    def test_single_prep_per_continuous_run(self, engine, clock):
        transitions = []
        engine.add_listener(transitions.append)
        engine.start_session("25-5-15")

        for _ in range(6 * 60):
            clock.advance(minutes=1)
            engine.tick()

        assert [t.previous for t in transitions].count(Phase.PREP) == 1
        assert engine.current().completed_cycles >= 8


class TestPauseResume:
    def test_pause_captures_remaining(self, engine, clock):
        engine.start_session("25-5-15")
        clock.advance(minutes=2)

        state = engine.toggle_pause()

        assert state.status == TimerStatus.PAUSED
        assert state.remaining_seconds == 180
        assert state.start_at is None

    def test_resume_continues_countdown(self, engine, clock):
        engine.start_session("25-5-15")
        clock.advance(minutes=2)
        engine.toggle_pause()
        clock.advance(hours=1)

        state = engine.toggle_pause()

        assert state.status == TimerStatus.RUNNING
        assert state.phase == Phase.PREP
        assert state.start_at == clock.now - timedelta(minutes=2)
        assert remaining_seconds(state, clock.now) == 180

    def test_fresh_start_resumes_into_prep(self, engine, clock):
        engine.reset_session()
        assert is_fresh_start(engine.current())

        state = engine.toggle_pause()

        assert state.phase == Phase.PREP
        assert state.start_at == clock.now
        assert state.message in PHASE_MESSAGES[MessageKind.PREP_START]

    def test_partially_used_focus_is_not_fresh(self, clock):
        state = seed_paused(Durations(25, 5, 15))
        state.remaining_seconds = 600

        resumed = resume(state, clock.now)

        assert resumed.phase == Phase.FOCUS
        assert remaining_seconds(resumed, clock.now) == 600

    def test_pause_of_paused_state_is_identity(self, clock):
        state = seed_paused(Durations(25, 5, 15))
        assert pause(state, clock.now) is state

    def test_toggle_without_session_is_noop(self, engine, repository):
        assert engine.toggle_pause() is None
        assert repository.state is None


class TestEngineActions:
    def test_tick_without_session(self, engine):
        assert engine.tick() is None

    def test_reset_keeps_durations(self, engine):
        engine.start_session("50-10-20")
        state = engine.reset_session()

        assert state.status == TimerStatus.PAUSED
        assert state.phase == Phase.FOCUS
        assert state.durations == Durations(50, 10, 20)
        assert state.remaining_seconds == 50 * 60

    def test_update_duration(self, engine):
        engine.start_session()
        state = engine.update_duration("45-15-30")

        assert state.durations == Durations(45, 15, 30)
        assert state.status == TimerStatus.PAUSED
        assert engine.update_duration("0") is None

    def test_hidden_expired_session_ends(self, engine, clock, repository):
        engine.start_session("25-5-15")
        engine.hide()
        clock.advance(minutes=5)

        assert engine.tick() is None
        assert repository.state is None

    def test_show_unhides(self, engine):
        engine.start_session()
        engine.hide()
        engine.show()
        assert engine.current().hidden is False

    def test_listener_receives_transitions(self, engine, clock):
        seen = []
        engine.add_listener(seen.append)
        engine.start_session("25-5-15")
        clock.advance(minutes=5)
        engine.tick()

        assert len(seen) == 1
        assert seen[0].previous == Phase.PREP
        assert seen[0].state.phase == Phase.FOCUS


class TestDisplay:
    def test_label_and_progress(self, engine, clock):
        engine.start_session("25-5-15")
        clock.advance(seconds=150)

        display = engine.tick()

        assert display.label == "Prep • 5 min • 0/4"
        assert display.countdown == "02:30"
        assert display.progress == pytest.approx(0.5)

    def test_focus_label(self, engine, clock):
        engine.start_session("25-5-15")
        clock.advance(minutes=5)
        assert engine.tick().label == "Focus block • 25 min • 0/4"

    @pytest.mark.parametrize("seconds,text", [(0, "00:00"), (59, "00:59"), (1500, "25:00"), (-4, "00:00")])
    def test_format_countdown(self, seconds, text):
        assert format_countdown(seconds) == text


class TestPhaseTicker:
    def test_runs_until_paused(self, engine, clock):
        engine.start_session("10")
        sleeps = []

        def fake_sleep(seconds):
            sleeps.append(seconds)
            clock.advance(seconds=60)

        final = PhaseTicker(engine, sleep=fake_sleep).run()

        assert final.status == TimerStatus.PAUSED
        assert final.phase == Phase.FOCUS
        assert len(sleeps) == 15
        assert all(s == 1.0 for s in sleeps)

    def test_stops_without_session(self, engine):
        assert PhaseTicker(engine, sleep=lambda s: None).run() is None

    def test_max_ticks(self, engine, clock):
        engine.start_session()
        ticks = []
        ticker = PhaseTicker(engine, sleep=lambda s: clock.advance(seconds=1), on_tick=ticks.append)

        final = ticker.run(max_ticks=3)

        assert len(ticks) == 3
        assert final.status == TimerStatus.RUNNING


class TestPersistence:
    def test_record_repository_roundtrip(self, memory_store, clock):
        repository = RecordSessionRepository(memory_store)
        engine = PomodoroEngine(repository, clock=clock)
        state = engine.start_session("25-5-15")

        assert repository.load() == state
        assert memory_store.load("session")["phase"] == "prep"

    def test_corrupt_session_reads_as_absent(self, memory_store):
        memory_store.save("session", {"status": "sprinting"})
        assert RecordSessionRepository(memory_store).load() is None

    def test_running_without_start_is_corrupt(self, memory_store):
        memory_store.save("session", {"status": "running", "phase": "focus", "focus_minutes": 25})
        assert RecordSessionRepository(memory_store).load() is None

    def test_legacy_minutes_field(self):
        state = SessionState.from_dict({"status": "paused", "minutes": 40, "remaining_seconds": 100})
        assert state.focus_minutes == 40
        assert state.phase == Phase.FOCUS

    def test_sound_preference(self, memory_store):
        assert sound_enabled(memory_store) is True
        assert toggle_sound(memory_store) is False
        assert memory_store.load("timer-sound") is False
        assert sound_enabled(memory_store) is False
