"""
Export and import of all persisted practice records.

A backup is one JSON document holding every namespaced record plus a
``_meta`` block (export date, format version, record count).
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from cadence.study.pomodoro_engine import SESSION_RECORD, TIMER_SOUND_RECORD

from .progress import PROGRESS_RECORD
from .scheduler import SRS_RECORD, utc_now
from .state_store import CorruptRecord, RecordStore, decode_record
from .streaks import ACTIVITY_RECORD, STREAK_RECORD

BACKUP_VERSION = 1

BACKUP_SUFFIXES = (
    SRS_RECORD,
    PROGRESS_RECORD,
    STREAK_RECORD,
    ACTIVITY_RECORD,
    SESSION_RECORD,
    TIMER_SOUND_RECORD,
)


class BackupFormatError(Exception):
    """The file is not a usable backup."""


def export_all_data(store: RecordStore, exported_at: datetime | None = None) -> dict[str, Any] | None:
    """
    Collect every known record into a backup document.

    Returns:
        The backup dict, or None when there is nothing to export
    """
    data: dict[str, Any] = {}
    for suffix in BACKUP_SUFFIXES:
        key = store.key(suffix)
        raw = store.load_raw(key)
        if raw is None:
            continue
        try:
            data[key] = decode_record(raw)
        except CorruptRecord:
            data[key] = raw

    if not data:
        return None

    data["_meta"] = {
        "export_date": (exported_at or utc_now()).isoformat(),
        "version": BACKUP_VERSION,
        "keys": len(data),
    }
    return data


def write_backup(store: RecordStore, path: Path) -> int:
    """Write a backup file. Returns the number of records exported."""
    data = export_all_data(store)
    if data is None:
        return 0
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    logger.info(f"Backup written to {path}")
    return data["_meta"]["keys"]


def import_all_data(store: RecordStore, data: Any) -> int:
    """
    Restore records from a backup document, overwriting current values.

    Raises:
        BackupFormatError: If the document has no metadata block

    Returns:
        Number of records restored
    """
    if not isinstance(data, dict) or "_meta" not in data:
        raise BackupFormatError("Invalid backup file: missing metadata.")

    restored = 0
    for suffix in BACKUP_SUFFIXES:
        key = store.key(suffix)
        if key not in data:
            continue
        value = data[key]
        encoded = value if isinstance(value, str) else json.dumps(value)
        if store.save_raw(key, encoded):
            restored += 1
    logger.info(f"Restored {restored} records")
    return restored


def read_backup(store: RecordStore, path: Path) -> int:
    """Load a backup file and import it."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise BackupFormatError("Invalid backup file: could not parse JSON.") from e
    except OSError as e:
        raise BackupFormatError(f"Could not read backup file: {e}") from e
    return import_all_data(store, data)
