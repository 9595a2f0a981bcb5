"""
Concept Strength Calculator for practice analytics.

Ranks concepts and modules by recency-weighted ease factor:

    weight = 1 / (1 + days_since_last_review / decay_days)

Strength labels (average ease):
- Strong:   >= 2.5
- Good:     >= 2.3
- Moderate: >= 1.8
- Weak:     below that
- TooEarly: fewer reviews than the minimum sample (3 per concept, 5 per module)
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from cadence.delivery.progress import ExerciseProgress, RatingBreakdown
from cadence.delivery.scheduler import ScheduleEntry
from cadence.study.queue_builder import FLASHCARD_PREFIX, extract_module_num

VARIANT_SUFFIX_PATTERN = re.compile(r"_v\d+$")
EXERCISE_KEY_PATTERN = re.compile(r"^m(\d+)_(\w+?)_(\d+)$")
FLASHCARD_KEY_PATTERN = re.compile(r"^fc_m(\d+)_(\d+)$")

SECONDS_PER_DAY = 86400


class StrengthLabel(str, Enum):
    WEAK = "Weak"
    MODERATE = "Moderate"
    GOOD = "Good"
    STRONG = "Strong"
    TOO_EARLY = "TooEarly"


@dataclass
class StrengthConfig:
    """Thresholds for strength labels and report counters."""

    recency_decay_days: float = 30.0
    concept_min_samples: int = 3
    module_min_samples: int = 5
    strong_ease: float = 2.5
    good_ease: float = 2.3
    moderate_ease: float = 1.8
    mastered_ease: float = 2.5  # strictly above
    weak_item_ease: float = 1.7  # strictly below
    min_repetitions: int = 2
    weakest_limit: int = 10


@dataclass
class ConceptStrength:
    concept: str
    module_id: int
    avg_ease: float
    sample_count: int
    label: StrengthLabel


@dataclass
class ModuleStrength:
    module_id: int
    name: str
    avg_ease: float
    sample_count: int
    mastered: int
    label: StrengthLabel


@dataclass
class StrengthReport:
    """Everything the analytics view shows."""

    total_tracked: int
    mastered_count: int
    weak_count: int
    modules: list[ModuleStrength] = field(default_factory=list)
    concepts: list[ConceptStrength] = field(default_factory=list)
    weakest: list[ScheduleEntry] = field(default_factory=list)
    ratings: RatingBreakdown = field(default_factory=RatingBreakdown)

    @property
    def modules_rated(self) -> int:
        return sum(1 for m in self.modules if m.label != StrengthLabel.TOO_EARLY)


def strip_variant_suffix(key: str) -> str:
    """m1_challenge_4_v9 -> m1_challenge_4"""
    return VARIANT_SUFFIX_PATTERN.sub("", key)


def recency_weight(entry: ScheduleEntry, now: datetime, decay_days: float = 30.0) -> float:
    """Halves at decay_days since the last review; unknown review dates weigh 1."""
    last = entry.last_review_at
    if last is None:
        return 1.0
    days = max(0.0, (now - last).total_seconds() / SECONDS_PER_DAY)
    return 1.0 / (1.0 + days / decay_days)


def strength_label(
    avg_ease: float,
    sample_count: int,
    min_samples: int,
    config: StrengthConfig | None = None,
) -> StrengthLabel:
    config = config or StrengthConfig()
    if sample_count < min_samples:
        return StrengthLabel.TOO_EARLY
    if avg_ease >= config.strong_ease:
        return StrengthLabel.STRONG
    if avg_ease >= config.good_ease:
        return StrengthLabel.GOOD
    if avg_ease >= config.moderate_ease:
        return StrengthLabel.MODERATE
    return StrengthLabel.WEAK


def display_order(label: StrengthLabel, avg_ease: float) -> tuple[int, float]:
    """TooEarly last, otherwise weakest first."""
    return (1 if label == StrengthLabel.TOO_EARLY else 0, avg_ease)


class _WeightedEase:
    __slots__ = ("weighted_sum", "weight_total", "count", "mastered")

    def __init__(self) -> None:
        self.weighted_sum = 0.0
        self.weight_total = 0.0
        self.count = 0
        self.mastered = 0

    def add(self, ease: float, weight: float) -> None:
        self.weighted_sum += ease * weight
        self.weight_total += weight
        self.count += 1

    @property
    def average(self) -> float:
        return self.weighted_sum / self.weight_total if self.weight_total else 0.0


class StrengthCalculator:
    """Aggregates schedule entries into concept and module strengths."""

    def __init__(self, config: StrengthConfig | None = None):
        self.config = config or StrengthConfig()

    def compute_concept_strength(
        self,
        entries: Mapping[str, ScheduleEntry],
        concept_index: Mapping[str, str],
        now: datetime,
    ) -> list[ConceptStrength]:
        """
        Group exercise entries by (module, concept).

        Flashcards, keys without a module and keys missing from the concept
        index are skipped; variant keys count toward their base exercise.
        """
        groups: dict[tuple[int, str], _WeightedEase] = {}
        for key, entry in entries.items():
            if key.startswith(FLASHCARD_PREFIX):
                continue
            module_num = extract_module_num(key)
            if module_num is None:
                continue
            concept = concept_index.get(strip_variant_suffix(key))
            if not concept:
                continue
            group = groups.setdefault((module_num, concept), _WeightedEase())
            group.add(entry.ease_factor, recency_weight(entry, now, self.config.recency_decay_days))

        concepts = []
        for (module_num, concept), group in groups.items():
            avg = group.average
            concepts.append(
                ConceptStrength(
                    concept=concept,
                    module_id=module_num,
                    avg_ease=round(avg, 2),
                    sample_count=group.count,
                    label=strength_label(avg, group.count, self.config.concept_min_samples, self.config),
                )
            )
        concepts.sort(key=lambda c: display_order(c.label, c.avg_ease))
        return concepts

    def compute_module_strength(
        self,
        entries: Mapping[str, ScheduleEntry],
        now: datetime,
        module_names: Mapping[int, str] | None = None,
    ) -> list[ModuleStrength]:
        """Group every entry with a module number (flashcards included) by module."""
        module_names = module_names or {}
        groups: dict[int, _WeightedEase] = {}
        for key, entry in entries.items():
            module_num = extract_module_num(key)
            if module_num is None:
                continue
            group = groups.setdefault(module_num, _WeightedEase())
            group.add(entry.ease_factor, recency_weight(entry, now, self.config.recency_decay_days))
            if entry.ease_factor > self.config.mastered_ease:
                group.mastered += 1

        modules = []
        for module_num, group in groups.items():
            avg = group.average
            modules.append(
                ModuleStrength(
                    module_id=module_num,
                    name=module_names.get(module_num) or f"Module {module_num}",
                    avg_ease=round(avg, 1),
                    sample_count=group.count,
                    mastered=group.mastered,
                    label=strength_label(avg, group.count, self.config.module_min_samples, self.config),
                )
            )
        modules.sort(key=lambda m: display_order(m.label, m.avg_ease))
        return modules

    def weakest_items(self, entries: Mapping[str, ScheduleEntry]) -> list[ScheduleEntry]:
        """Weakest reviewed exercises; flashcards use a different quality scale."""
        candidates = [
            entry
            for key, entry in entries.items()
            if not key.startswith(FLASHCARD_PREFIX)
            and entry.repetitions >= self.config.min_repetitions
            and entry.ease_factor < self.config.strong_ease
        ]
        candidates.sort(key=lambda e: e.ease_factor)
        return candidates[: self.config.weakest_limit]

    def build_report(
        self,
        entries: Mapping[str, ScheduleEntry],
        progress: Mapping[str, ExerciseProgress],
        concept_index: Mapping[str, str],
        now: datetime,
        module_names: Mapping[int, str] | None = None,
    ) -> StrengthReport | None:
        """
        Build the full analytics report.

        Returns:
            The report, or None when nothing has been scheduled yet
        """
        if not entries:
            return None

        reviewed = [e for e in entries.values() if e.repetitions >= self.config.min_repetitions]
        ratings = RatingBreakdown()
        for item in progress.values():
            ratings.add(item.self_rating)

        return StrengthReport(
            total_tracked=len(entries),
            mastered_count=sum(1 for e in reviewed if e.ease_factor > self.config.mastered_ease),
            weak_count=sum(1 for e in reviewed if e.ease_factor < self.config.weak_item_ease),
            modules=self.compute_module_strength(entries, now, module_names),
            concepts=self.compute_concept_strength(entries, concept_index, now),
            weakest=self.weakest_items(entries),
            ratings=ratings,
        )


def compute_concept_strength(
    entries: Mapping[str, ScheduleEntry],
    concept_index: Mapping[str, str],
    now: datetime,
) -> list[ConceptStrength]:
    return StrengthCalculator().compute_concept_strength(entries, concept_index, now)


# =============================================================================
# Display helpers
# =============================================================================


def prettify_key(
    key: str,
    entry: ScheduleEntry | None = None,
    module_names: Mapping[int, str] | None = None,
) -> str:
    """
    Human-readable name for an item key.

    Examples:
        m2_warmup_1 -> "Module 2 \u2014 Warmup 1"
        fc_m1_0     -> "M1 Flashcard 1 (Go Fundamentals)"
    """
    if entry is not None and entry.label:
        return entry.label

    match = EXERCISE_KEY_PATTERN.match(key)
    if match:
        module_num, kind, number = match.groups()
        return f"Module {module_num} \u2014 {kind.capitalize()} {number}"

    match = FLASHCARD_KEY_PATTERN.match(key)
    if match:
        module_num, index = int(match.group(1)), int(match.group(2))
        name = (module_names or {}).get(module_num, "")
        suffix = f" ({name})" if name else ""
        return f"M{module_num} Flashcard {index + 1}{suffix}"

    return key


def due_status(next_review: datetime | None, now: datetime) -> str:
    """Relative due date by calendar day: "Due today", "Due 2 days ago", "Due in 1 day"."""
    if next_review is None:
        return ""
    days = (next_review.astimezone(now.tzinfo).date() - now.date()).days
    if days == 0:
        return "Due today"
    if days < 0:
        return f"Due {-days} day{'' if days == -1 else 's'} ago"
    return f"Due in {days} day{'' if days == 1 else 's'}"
