"""
Review queue builder for practice sessions.

Builds candidate queues from scheduling state:
1. review  - everything due, most overdue first
2. weakest - lowest ease factors, over-fetched so filtering still leaves enough
3. mixed   - due first, then weakest, deduplicated

Also recommends a default mode and assembles session-sized queues
(minimum pool, padding, truncation) and "discover" queues of unseen content.
"""

from __future__ import annotations

import random
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from cadence.delivery.scheduler import ScheduleEntry, SRSScheduler

KeyPredicate = Callable[[str], bool]

MODULE_KEY_PATTERN = re.compile(r"^(?:fc_)?m(\d+)_")
FLASHCARD_PREFIX = "fc_"


class QueueMode(str, Enum):
    """Practice session mode."""

    REVIEW = "review"
    WEAKEST = "weakest"
    MIXED = "mixed"
    DISCOVER = "discover"  # no scheduling history; offer unseen content


@dataclass
class QueueConfig:
    """Thresholds for queue assembly and mode preselection."""

    min_session_size: int = 5
    review_mode_min_due: int = 5
    weakest_mode_min_weak: int = 3
    weak_ease_threshold: float = 2.0
    preselect_weak_pool: int = 10


def extract_module_num(key: str) -> int | None:
    """Module number from a key like "m2_warmup_1" or "fc_m1_0"."""
    match = MODULE_KEY_PATTERN.match(key)
    return int(match.group(1)) if match else None


def accept_all(key: str) -> bool:
    return True


@dataclass
class KeyFilter:
    """
    Which item keys a session may practice.

    Flashcard keys never qualify as exercises. item_type narrows to
    "warmup" or "challenge"; modules narrows to a set of module numbers;
    modules_without_exercises lists modules that cannot be rendered.
    """

    item_type: str = "all"
    modules: set[int] | None = None
    modules_without_exercises: set[int] = field(default_factory=set)

    def __call__(self, key: str) -> bool:
        if key.startswith(FLASHCARD_PREFIX):
            return False

        module_num = extract_module_num(key)
        if module_num is not None and module_num in self.modules_without_exercises:
            return False

        if self.item_type == "warmup" and "warmup" not in key:
            return False
        if self.item_type == "challenge" and "challenge" not in key:
            return False

        if self.modules is not None:
            if module_num is None or module_num not in self.modules:
                return False

        return True


class QueueBuilder:
    """Composes practice queues from the SRS scheduler."""

    def __init__(
        self,
        scheduler: SRSScheduler,
        config: QueueConfig | None = None,
        rng: random.Random | None = None,
    ):
        self.scheduler = scheduler
        self.config = config or QueueConfig()
        self.rng = rng or random.Random()

    def build_queue(
        self,
        mode: QueueMode | str,
        count: int,
        key_filter: KeyPredicate = accept_all,
    ) -> list[ScheduleEntry]:
        """
        Build the candidate queue for a mode.

        Args:
            mode: review, weakest or mixed
            count: Requested session size (review is not truncated here)
            key_filter: Applied after candidate selection

        Returns:
            Ordered candidates that pass the filter
        """
        mode = QueueMode(mode)

        if mode == QueueMode.REVIEW:
            candidates = self.scheduler.get_due_exercises()
        elif mode == QueueMode.WEAKEST:
            candidates = self.scheduler.get_weakest_exercises(count * 2)
        elif mode == QueueMode.MIXED:
            candidates = merge_unique(
                self.scheduler.get_due_exercises(),
                self.scheduler.get_weakest_exercises(count),
            )
        else:
            return []

        return [entry for entry in candidates if key_filter(entry.key)]

    def preselect_best_mode(self, key_filter: KeyPredicate = accept_all) -> QueueMode:
        """Recommend a default mode from the current scheduling state."""
        due = [e for e in self.scheduler.get_due_exercises() if key_filter(e.key)]
        weak = [
            e
            for e in self.scheduler.get_weakest_exercises(self.config.preselect_weak_pool)
            if e.ease_factor < self.config.weak_ease_threshold and key_filter(e.key)
        ]

        if len(due) >= self.config.review_mode_min_due:
            mode = QueueMode.REVIEW
        elif len(weak) >= self.config.weakest_mode_min_weak:
            mode = QueueMode.WEAKEST
        elif due or weak:
            mode = QueueMode.MIXED
        else:
            mode = QueueMode.DISCOVER

        logger.debug(f"Preselected mode {mode.value}: {len(due)} due, {len(weak)} weak")
        return mode

    def assemble_session(
        self,
        mode: QueueMode | str,
        count: int,
        key_filter: KeyPredicate = accept_all,
    ) -> list[ScheduleEntry]:
        """
        Build a session-sized queue.

        review and weakest need a minimum pool to carry any signal and return
        nothing below it. Short queues are padded with other tracked items
        that pass the filter, in random order, then truncated to count.
        """
        mode = QueueMode(mode)
        candidates = self.build_queue(mode, count, key_filter)

        if mode in (QueueMode.REVIEW, QueueMode.WEAKEST) and len(candidates) < self.config.min_session_size:
            logger.info(
                f"Only {len(candidates)} {mode.value} candidates "
                f"(need {self.config.min_session_size})"
            )
            return []

        if len(candidates) < count:
            existing = {entry.key for entry in candidates}
            extras = [
                entry
                for key, entry in self.scheduler.get_all().items()
                if key not in existing and key_filter(key)
            ]
            self.rng.shuffle(extras)
            candidates.extend(extras)

        return candidates[:count]


def merge_unique(*groups: Iterable[ScheduleEntry]) -> list[ScheduleEntry]:
    """Concatenate groups, keeping the first occurrence of each key."""
    seen: set[str] = set()
    merged: list[ScheduleEntry] = []
    for group in groups:
        for entry in group:
            if entry.key not in seen:
                seen.add(entry.key)
                merged.append(entry)
    return merged


@dataclass
class CatalogItem:
    """A practice item known to the content layer."""

    key: str
    label: str | None = None

    @property
    def module_num(self) -> int | None:
        return extract_module_num(self.key)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CatalogItem:
        return cls(key=str(data["key"]), label=data.get("label"))


def build_discover_queue(
    catalog: Sequence[CatalogItem],
    count: int,
    tracked_keys: set[str],
    rng: random.Random | None = None,
) -> list[CatalogItem]:
    """
    Queue of catalog items for learners without useful scheduling history.

    Args:
        catalog: Items supplied by the content layer
        count: Maximum queue length
        tracked_keys: Keys that already have scheduling state

    Returns:
        Unseen items first, then seen ones; each pool shuffled
    """
    rng = rng or random.Random()
    unseen = [item for item in catalog if item.key not in tracked_keys]
    seen = [item for item in catalog if item.key in tracked_keys]
    rng.shuffle(unseen)
    rng.shuffle(seen)
    return (unseen + seen)[: max(0, count)]
