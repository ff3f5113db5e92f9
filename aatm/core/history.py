"""Append-only, bounded operation history stored as one JSON document."""

import json
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Union

from aatm.config import env
from aatm.core.logger import setup_logger
from aatm.core.models import HistoryEntry

logger = setup_logger(__name__)


class HistoryLog:
    """Newest-first list of HistoryEntry records, capped at ``limit``."""

    def __init__(self, path: Union[str, Path], limit: int = 500):
        self._path = Path(path)
        self._limit = limit
        self._lock = Lock()

    @property
    def limit(self) -> int:
        return self._limit

    def ensure(self) -> None:
        with self._lock:
            if self._path.exists():
                return
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._write([])

    def _read(self) -> List[Dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Could not read history file {self._path}: {e}")
            return []
        if not isinstance(data, list):
            logger.error(f"History file {self._path} does not contain a list, ignoring it")
            return []
        return [item for item in data if isinstance(item, dict)]

    def _write(self, entries: List[Dict[str, Any]]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(entries, f, indent=2, ensure_ascii=False)
        tmp_path.replace(self._path)

    def append(self, **fields: Any) -> HistoryEntry:
        """Record a new entry at the head of the log and persist it."""
        entry = HistoryEntry(**fields)
        with self._lock:
            entries = self._read()
            entries.insert(0, entry.to_dict())
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._write(entries[: self._limit])
        logger.debug(f"History entry {entry.id} recorded for {entry.sourcePath or entry.torrentPath}")
        return entry

    def entries(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent entries, newest first."""
        with self._lock:
            entries = self._read()
        if limit is not None and limit >= 0:
            return entries[:limit]
        return entries


history = HistoryLog(env.HISTORY_PATH, limit=env.HISTORY_LIMIT)
