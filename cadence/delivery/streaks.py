"""
Streak and activity ledger.

Records how many items were completed per calendar day and the run of
consecutive active days. Staleness is resolved when the streak is read:
the stored current streak is left as written until the next activity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from loguru import logger

from .events import ItemRated, ReviewEvents
from .scheduler import Clock, utc_now
from .state_store import RecordStore

STREAK_RECORD = "streaks"
ACTIVITY_RECORD = "activity"


@dataclass
class StreakState:
    """Persisted streak record."""

    current: int = 0
    longest: int = 0
    last_active_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "longest": self.longest,
            "last_active_date": self.last_active_date.isoformat() if self.last_active_date else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> StreakState:
        if not isinstance(data, dict):
            return cls()
        try:
            last = data.get("last_active_date")
            return cls(
                current=int(data.get("current", 0)),
                longest=int(data.get("longest", 0)),
                last_active_date=date.fromisoformat(last) if last else None,
            )
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding corrupt streak record: {e}")
            return cls()


def activity_level(count: int) -> int:
    """Heatmap bucket (0-3) for a day's completed item count."""
    if count <= 0:
        return 0
    if count <= 2:
        return 1
    if count <= 5:
        return 2
    return 3


class StreakLedger:
    """Daily activity counts and consecutive-day streaks."""

    def __init__(self, store: RecordStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def _today(self) -> date:
        return self.clock().date()

    def _load_streaks(self) -> StreakState:
        return StreakState.from_dict(self.store.load(STREAK_RECORD))

    def get_activity_data(self) -> dict[str, int]:
        """Completed item counts keyed by ISO date."""
        raw = self.store.load(ACTIVITY_RECORD, {})
        if not isinstance(raw, dict):
            return {}
        activity: dict[str, int] = {}
        for day, record in raw.items():
            if isinstance(record, dict):
                try:
                    activity[day] = int(record.get("items_completed", 0))
                except (TypeError, ValueError):
                    continue
        return activity

    def record_activity(self) -> StreakState:
        """
        Count one completed item for today and update the streak.

        Returns:
            The streak state as written
        """
        today = self._today()
        yesterday = today - timedelta(days=1)

        raw = self.store.load(ACTIVITY_RECORD, {})
        if not isinstance(raw, dict):
            raw = {}
        day_key = today.isoformat()
        record = raw.get(day_key)
        if not isinstance(record, dict):
            record = {"items_completed": 0}
        try:
            completed = int(record.get("items_completed", 0))
        except (TypeError, ValueError):
            logger.warning(f"Discarding corrupt activity record for {day_key}: {record!r}")
            record = {"items_completed": 0}
            completed = 0
        record["items_completed"] = completed + 1
        raw[day_key] = record
        self.store.save(ACTIVITY_RECORD, raw)

        streaks = self._load_streaks()
        if streaks.last_active_date != today:
            if streaks.last_active_date == yesterday:
                streaks.current += 1
            else:
                streaks.current = 1
            streaks.last_active_date = today
        streaks.longest = max(streaks.longest, streaks.current)
        self.store.save(STREAK_RECORD, streaks.to_dict())

        logger.debug(f"Activity recorded for {day_key}: streak={streaks.current}")
        return streaks

    def get_current(self) -> int:
        """Current streak, 0 if the last active day is before yesterday."""
        streaks = self._load_streaks()
        if streaks.last_active_date is None:
            return 0
        if streaks.last_active_date < self._today() - timedelta(days=1):
            return 0
        return streaks.current

    def get_longest(self) -> int:
        return self._load_streaks().longest

    def get_today_count(self) -> int:
        return self.get_activity_data().get(self._today().isoformat(), 0)

    def is_active_today(self) -> bool:
        return self.get_today_count() > 0

    def subscribe_to(self, events: ReviewEvents):
        """Record one activity per rated item published on the event bus."""

        def on_rated(event: ItemRated) -> None:
            self.record_activity()

        return events.subscribe(on_rated)
