"""
Exercise-level progress tracking.

Tracks per-item interaction data captured by the rendering layer:
completion status, hint/solution usage and the learner's self-rating
(1 = got it, 2 = struggled, 3 = needed the solution).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any

from loguru import logger

from .scheduler import Clock, utc_now
from .state_store import RecordStore

PROGRESS_RECORD = "exercise-progress"

SELF_RATING_GOT_IT = 1
SELF_RATING_STRUGGLED = 2
SELF_RATING_PEEKED = 3


@dataclass
class ExerciseProgress:
    """Interaction record for one practice item."""

    status: str = "attempted"  # attempted | completed
    hints_used: bool = False
    solution_viewed: bool = False
    self_rating: int = 0  # 0 = not rated yet
    last_attempted: str | None = None  # ISO instant

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExerciseProgress:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class RatingBreakdown:
    """Self-rating counts over a set of items."""

    got_it: int = 0
    struggled: int = 0
    peeked: int = 0

    def add(self, self_rating: int) -> None:
        if self_rating == SELF_RATING_GOT_IT:
            self.got_it += 1
        elif self_rating == SELF_RATING_STRUGGLED:
            self.struggled += 1
        elif self_rating == SELF_RATING_PEEKED:
            self.peeked += 1


class ProgressStore:
    """Reads and merges ExerciseProgress records."""

    def __init__(self, store: RecordStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def load_all(self) -> dict[str, ExerciseProgress]:
        raw = self.store.load(PROGRESS_RECORD, {})
        if not isinstance(raw, dict):
            return {}
        progress: dict[str, ExerciseProgress] = {}
        for key, value in raw.items():
            if not isinstance(value, Mapping):
                continue
            try:
                progress[key] = ExerciseProgress.from_dict(value)
            except TypeError as e:
                logger.warning(f"Skipping corrupt progress record {key!r}: {e}")
        return progress

    def get(self, key: str) -> ExerciseProgress | None:
        return self.load_all().get(key)

    def update(self, key: str, **updates: Any) -> ExerciseProgress:
        """
        Merge updates into an item's progress record.

        Unknown field names are ignored; last_attempted is always refreshed.
        """
        raw = self.store.load(PROGRESS_RECORD, {})
        if not isinstance(raw, dict):
            raw = {}

        existing = raw.get(key)
        try:
            current = ExerciseProgress.from_dict(existing) if isinstance(existing, Mapping) else ExerciseProgress()
        except TypeError:
            current = ExerciseProgress()
        merged = current.to_dict()
        merged.update({k: v for k, v in updates.items() if k in merged})
        merged["last_attempted"] = self.clock().isoformat()

        raw[key] = merged
        self.store.save(PROGRESS_RECORD, raw)
        return ExerciseProgress.from_dict(merged)

    def rate(self, key: str, self_rating: int, hints_used: bool | None = None) -> ExerciseProgress:
        """Store a self-rating; a rated item counts as completed with its solution checked."""
        updates: dict[str, Any] = {
            "self_rating": self_rating,
            "status": "completed",
            "solution_viewed": True,
        }
        if hints_used is not None:
            updates["hints_used"] = hints_used
        return self.update(key, **updates)

    def rating_breakdown(self, keys: list[str] | None = None) -> RatingBreakdown:
        """Count self-ratings over the given keys (all items when None)."""
        progress = self.load_all()
        breakdown = RatingBreakdown()
        selected = progress.keys() if keys is None else keys
        for key in selected:
            item = progress.get(key)
            if item is not None:
                breakdown.add(item.self_rating)
        return breakdown
