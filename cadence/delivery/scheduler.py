"""
SM-2 Spaced Repetition Scheduler.

Implements:
- Simplified SM-2 update rule for review intervals
- Quality derivation from learner self-ratings
- Due and weakest-item queries over the persisted schedule map

SM-2 Quality Scale:
5 - Self-rated "got it", no hints
4 - Self-rated "got it", used hints
3 - Self-rated "struggled" (SM-2 minimum correct)
2 - Solution viewed without a self-rating
1 - Self-rated "needed solution" (reset)
0 - Not engaged
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger

from .events import ItemRated, ReviewEvents
from .state_store import CorruptRecord, RecordStore

SRS_RECORD = "srs"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_instant(value: str) -> datetime:
    """Parse an ISO instant, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ScheduleEntry:
    """SM-2 scheduling state for a single practice item."""

    key: str
    ease_factor: float = 2.5  # EF starts at 2.5, never below 1.3
    interval: int = 0  # Days until next review
    repetitions: int = 0  # Consecutive passing reviews
    next_review: datetime | None = None
    last_quality: int = 0
    review_count: int = 0
    label: str | None = None
    last_reviewed: datetime | None = None

    @property
    def last_review_at(self) -> datetime | None:
        """Instant of the latest review, derived from next_review for older records."""
        if self.last_reviewed is not None:
            return self.last_reviewed
        if self.next_review is None:
            return None
        return self.next_review - timedelta(days=self.interval)

    def is_due(self, now: datetime) -> bool:
        return self.next_review is None or self.next_review <= now

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON shape (the key is the map key)."""
        data: dict[str, Any] = {
            "ease_factor": self.ease_factor,
            "interval": self.interval,
            "repetitions": self.repetitions,
            "next_review": self.next_review.isoformat() if self.next_review else None,
            "last_quality": self.last_quality,
            "review_count": self.review_count,
        }
        if self.label:
            data["label"] = self.label
        if self.last_reviewed:
            data["last_reviewed"] = self.last_reviewed.isoformat()
        return data

    @classmethod
    def from_dict(cls, key: str, data: Mapping[str, Any]) -> ScheduleEntry:
        """Create from a persisted record, raising CorruptRecord on bad shape."""
        try:
            next_review = data.get("next_review")
            last_reviewed = data.get("last_reviewed")
            return cls(
                key=key,
                ease_factor=float(data["ease_factor"]),
                interval=int(data["interval"]),
                repetitions=int(data["repetitions"]),
                next_review=parse_instant(next_review) if next_review else None,
                last_quality=int(data.get("last_quality", 0)),
                review_count=int(data.get("review_count", 0)),
                label=data.get("label") or None,
                last_reviewed=parse_instant(last_reviewed) if last_reviewed else None,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptRecord(f"schedule entry {key!r}: {e}") from e


# =============================================================================
# SM-2 Algorithm
# =============================================================================


@dataclass
class SM2Config:
    """Configuration for SM-2 algorithm."""

    initial_easiness: float = 2.5
    minimum_easiness: float = 1.3
    first_interval: int = 1  # Days after the first passing review
    second_interval: int = 6  # Days after the second passing review
    passing_quality: int = 3


class SM2Scheduler:
    """
    Implements the SM-2 update rule.

    Each item has:
    - Ease Factor (EF): How easy the item is (2.5 default, min 1.3)
    - Interval: Days until next review
    - Repetitions: Consecutive passing recalls
    """

    def __init__(self, config: SM2Config | None = None):
        self.config = config or SM2Config()

    def seed(self, key: str, now: datetime) -> ScheduleEntry:
        """Initial state for an item that has never been reviewed."""
        return ScheduleEntry(
            key=key,
            ease_factor=self.config.initial_easiness,
            interval=0,
            repetitions=0,
            next_review=now,
        )

    def calculate_next_review(
        self,
        entry: ScheduleEntry,
        quality: int,
        now: datetime,
    ) -> ScheduleEntry:
        """
        Calculate the next schedule for an item.

        Args:
            entry: Current state for the item
            quality: Review quality (0-5)
            now: Review instant

        Returns:
            New ScheduleEntry; the input is left untouched
        """
        if quality >= self.config.passing_quality:
            if entry.repetitions == 0:
                interval = self.config.first_interval
            elif entry.repetitions == 1:
                interval = self.config.second_interval
            else:
                # grows with the ease factor held before this review
                interval = round(entry.interval * entry.ease_factor)
            repetitions = entry.repetitions + 1
        else:
            repetitions = 0
            interval = self.config.first_interval

        # EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
        ef_delta = 0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)
        ease_factor = max(self.config.minimum_easiness, entry.ease_factor + ef_delta)

        return replace(
            entry,
            ease_factor=round(ease_factor, 2),
            interval=interval,
            repetitions=repetitions,
            next_review=now + timedelta(days=interval),
            last_quality=quality,
            last_reviewed=now,
        )


def derive_quality(progress: Mapping[str, Any] | None) -> int:
    """
    Derive an SM-2 quality score from exercise interaction data.

    The self-rating is the primary signal; viewing the solution is the normal
    "check your answer" step once a rating exists. Without a rating, hint and
    solution usage decide.

    Args:
        progress: Mapping with optional self_rating (1-3), hints_used and
            solution_viewed

    Returns:
        Quality 0-5
    """
    if not progress:
        return 0

    self_rating = progress.get("self_rating") or 0
    hints_used = bool(progress.get("hints_used"))
    solution_viewed = bool(progress.get("solution_viewed"))

    if self_rating == 1:
        return 4 if hints_used else 5
    if self_rating == 2:
        return 3
    if self_rating == 3:
        return 1

    if not solution_viewed and not hints_used:
        return 4
    if not solution_viewed and hints_used:
        return 3
    return 2


# =============================================================================
# SRS Scheduler
# =============================================================================


class SRSScheduler:
    """
    Records reviews and answers scheduling queries against the record store.

    All reads go through the store on every call, so state written by another
    process (or a backup import) is picked up immediately.
    """

    def __init__(
        self,
        store: RecordStore,
        sm2: SM2Scheduler | None = None,
        events: ReviewEvents | None = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.sm2 = sm2 or SM2Scheduler()
        self.events = events or ReviewEvents()
        self.clock = clock

    def _load_raw(self) -> dict[str, Any]:
        data = self.store.load(SRS_RECORD, {})
        if not isinstance(data, dict):
            logger.warning("Discarding schedule map with unexpected shape")
            return {}
        return data

    def get_all(self) -> dict[str, ScheduleEntry]:
        """Every readable schedule entry by key. Corrupt entries are skipped."""
        entries: dict[str, ScheduleEntry] = {}
        for key, raw in self._load_raw().items():
            if not isinstance(raw, Mapping):
                logger.warning(f"Skipping corrupt schedule entry {key!r}")
                continue
            try:
                entries[key] = ScheduleEntry.from_dict(key, raw)
            except CorruptRecord as e:
                logger.warning(f"Skipping {e}")
        return entries

    def get_entry(self, key: str) -> ScheduleEntry | None:
        return self.get_all().get(key)

    def record_review(self, key: str, quality: int, label: str | None = None) -> ScheduleEntry:
        """
        Record a review and update scheduling state.

        Args:
            key: Item key
            quality: Review quality (0-5); out-of-range values are clamped
            label: Optional display name; kept from the previous entry if empty

        Returns:
            Updated ScheduleEntry
        """
        quality = max(0, min(5, int(quality)))
        now = self.clock()

        raw = self._load_raw()
        current: ScheduleEntry | None = None
        if isinstance(raw.get(key), Mapping):
            try:
                current = ScheduleEntry.from_dict(key, raw[key])
            except CorruptRecord as e:
                logger.warning(f"Reseeding {e}")
        if current is None:
            current = self.sm2.seed(key, now)

        entry = self.sm2.calculate_next_review(current, quality, now)
        entry.review_count = current.review_count + 1
        entry.label = label or current.label

        raw[key] = entry.to_dict()
        self.store.save(SRS_RECORD, raw)

        logger.debug(
            f"Recorded review for {key}: quality={quality}, "
            f"ease={entry.ease_factor}, interval={entry.interval}d"
        )

        self.events.publish(ItemRated(key=key, quality=quality, entry=entry))
        return entry

    def get_due_exercises(self) -> list[ScheduleEntry]:
        """
        Entries whose next review has passed.

        Returns:
            Most overdue first; equally overdue items hardest (lowest ease) first
        """
        now = self.clock()
        due = [entry for entry in self.get_all().values() if entry.is_due(now)]
        due.sort(key=lambda e: (e.next_review or now, e.ease_factor))
        return due

    def get_weakest_exercises(self, count: int = 10) -> list[ScheduleEntry]:
        """
        Items the learner struggles with most.

        Only items with at least two passing repetitions and an ease below
        2.5 qualify; a single review is not a pattern.
        """
        weak = [
            entry
            for entry in self.get_all().values()
            if entry.repetitions >= 2 and entry.ease_factor < 2.5
        ]
        weak.sort(key=lambda e: e.ease_factor)
        return weak[: max(0, count)]

    def get_due_count(self) -> int:
        return len(self.get_due_exercises())
