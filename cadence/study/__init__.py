"""
Study module for practice sessions.

Provides:
- Review queue building and mode preselection
- Practice session runner
- Pomodoro phase timer
- Concept and module strength analytics
"""

from cadence.study.mastery_calculator import StrengthCalculator, compute_concept_strength
from cadence.study.pomodoro_engine import PhaseTicker, PomodoroEngine
from cadence.study.queue_builder import KeyFilter, QueueBuilder, QueueMode
from cadence.study.session_runner import PracticeSession

__all__ = [
    "QueueBuilder",
    "QueueMode",
    "KeyFilter",
    "PracticeSession",
    "PomodoroEngine",
    "PhaseTicker",
    "StrengthCalculator",
    "compute_concept_strength",
]
