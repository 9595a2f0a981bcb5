"""
Practice session runner.

Walks a learner through a queue one item at a time:

    configuring --start(queue)--> running --advance past end--> complete

Items are completed (counted toward the daily streak) or skipped. Once the
index moves past an item it cannot be revisited in the same session.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, Protocol, TypeVar

from loguru import logger

from cadence.delivery.progress import ProgressStore, RatingBreakdown
from cadence.delivery.streaks import StreakLedger


class Keyed(Protocol):
    key: str


ItemT = TypeVar("ItemT", bound=Keyed)


class RunnerState(str, Enum):
    CONFIGURING = "configuring"
    RUNNING = "running"
    COMPLETE = "complete"


@dataclass
class SessionResults:
    """Outcome counters for one session."""

    completed: int = 0
    skipped: int = 0


@dataclass
class SessionSummary:
    """What the results screen shows."""

    completed: int
    skipped: int
    ratings: RatingBreakdown = field(default_factory=RatingBreakdown)

    @property
    def total(self) -> int:
        return self.completed + self.skipped


class PracticeSession(Generic[ItemT]):
    """
    Generic session runner.

    The caller supplies on_render, called with (item, index, total) for each
    item, and optionally on_complete, called once with the summary.
    """

    def __init__(
        self,
        on_render: Callable[[ItemT, int, int], None],
        ledger: StreakLedger | None = None,
        progress: ProgressStore | None = None,
        on_complete: Callable[[SessionSummary], None] | None = None,
    ):
        self.on_render = on_render
        self.on_complete = on_complete
        self.ledger = ledger
        self.progress = progress

        self.state = RunnerState.CONFIGURING
        self.queue: list[ItemT] = []
        self.index = 0
        self.results = SessionResults()
        self.summary: SessionSummary | None = None

    @property
    def current(self) -> ItemT | None:
        if self.state != RunnerState.RUNNING:
            return None
        return self.queue[self.index]

    def start(self, queue: Sequence[ItemT]) -> bool:
        """
        Start a session.

        Returns:
            False if the queue is empty (nothing to practice)
        """
        if not queue:
            logger.info("Practice session not started: empty queue")
            return False

        self.queue = list(queue)
        self.index = 0
        self.results = SessionResults()
        self.summary = None
        self.state = RunnerState.RUNNING

        logger.debug(f"Practice session started with {len(self.queue)} items")
        self._render_current()
        return True

    def next_exercise(self) -> None:
        """Mark the current item completed and move on."""
        if self.state != RunnerState.RUNNING:
            return
        self.results.completed += 1
        if self.ledger is not None:
            self.ledger.record_activity()
        self._advance()

    def skip_exercise(self) -> None:
        """Skip the current item without counting activity."""
        if self.state != RunnerState.RUNNING:
            return
        self.results.skipped += 1
        self._advance()

    def _advance(self) -> None:
        self.index += 1
        if self.index >= len(self.queue):
            self._finish()
        else:
            self._render_current()

    def _render_current(self) -> None:
        self.on_render(self.queue[self.index], self.index, len(self.queue))

    def _finish(self) -> None:
        self.state = RunnerState.COMPLETE

        ratings = RatingBreakdown()
        if self.progress is not None:
            ratings = self.progress.rating_breakdown([item.key for item in self.queue])

        self.summary = SessionSummary(
            completed=self.results.completed,
            skipped=self.results.skipped,
            ratings=ratings,
        )
        logger.info(
            f"Practice session complete: {self.summary.completed} completed, "
            f"{self.summary.skipped} skipped"
        )
        if self.on_complete is not None:
            self.on_complete(self.summary)
