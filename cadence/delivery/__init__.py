"""
Cadence delivery layer.

Persistence and scheduling core for self-paced course practice.

Components:
- RecordStore: namespaced JSON records over a key-value backend
- SRSScheduler: SM-2 review scheduling and due/weakest queries
- StreakLedger: daily activity counts and the practice streak
- ProgressStore: hints, solution views and self-ratings per item
- ReviewEvents: completion notifications
- Backup: export and import of every record
"""

from .backup import BackupFormatError, export_all_data, import_all_data, read_backup, write_backup
from .events import ItemRated, ReviewEvents
from .progress import ExerciseProgress, ProgressStore, RatingBreakdown
from .scheduler import ScheduleEntry, SM2Config, SM2Scheduler, SRSScheduler, derive_quality
from .state_store import (
    CorruptRecord,
    MemoryKeyValueStore,
    RecordStore,
    SqliteKeyValueStore,
    StorageUnavailable,
    open_record_store,
)
from .streaks import StreakLedger, StreakState

__all__ = [
    # Persistence
    "RecordStore",
    "MemoryKeyValueStore",
    "SqliteKeyValueStore",
    "open_record_store",
    "StorageUnavailable",
    "CorruptRecord",
    # Scheduling
    "ScheduleEntry",
    "SM2Config",
    "SM2Scheduler",
    "SRSScheduler",
    "derive_quality",
    # Events
    "ItemRated",
    "ReviewEvents",
    # Progress and streaks
    "ExerciseProgress",
    "ProgressStore",
    "RatingBreakdown",
    "StreakLedger",
    "StreakState",
    # Backup
    "BackupFormatError",
    "export_all_data",
    "import_all_data",
    "read_backup",
    "write_backup",
]
