"""
Completion notifications.

The scheduler publishes an ItemRated event every time a learner's outcome is
recorded. Streak tracking, CLI feedback and any other observer subscribe here
instead of being called directly by the scheduler.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from .scheduler import ScheduleEntry


@dataclass(frozen=True)
class ItemRated:
    """An item was rated with a quality outcome."""

    key: str
    quality: int
    entry: ScheduleEntry


Listener = Callable[[ItemRated], None]


class ReviewEvents:
    """Synchronous observer list for ItemRated events."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: ItemRated) -> None:
        """Deliver an event to every listener, in subscription order."""
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # remaining listeners still run
                logger.warning(f"Listener {listener!r} failed for {event.key}: {e}")

    def __len__(self) -> int:
        return len(self._listeners)
