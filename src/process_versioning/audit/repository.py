"""
Persistence backends for the audit trail.

Both backends hold a single global log bounded by ``max_entries``; once the
ceiling is exceeded the oldest entries are evicted first.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections import deque
from pathlib import Path
from typing import Deque, Dict, Any, List, Sequence

from ..errors import StoreUnavailable
from .models import AuditEntry

DEFAULT_MAX_ENTRIES = 1000


class AuditRepository(ABC):
    """Storage interface for audit entries."""

    @abstractmethod
    def append_many(self, entries: Sequence[AuditEntry]) -> None:
        """Append entries in order, evicting the oldest beyond the ceiling."""

    @abstractmethod
    def entries(self) -> List[AuditEntry]:
        """Snapshot of all retained entries, oldest first."""


class InMemoryAuditRepository(AuditRepository):
    """Bounded in-memory log."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._records: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def append_many(self, entries: Sequence[AuditEntry]) -> None:
        records = [e.to_dict() for e in entries]
        with self._lock:
            self._records.extend(records)

    def entries(self) -> List[AuditEntry]:
        with self._lock:
            records = list(self._records)
        return [AuditEntry.from_dict(r) for r in records]


class JsonLinesAuditRepository(AuditRepository):
    """
    Audit log stored as JSON lines in a single file.

    Appends are plain file appends. When the line count exceeds the ceiling
    the file is rewritten with only the newest ``max_entries`` lines.
    """

    def __init__(self, path: Path, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.path = Path(path)
        self.max_entries = max_entries
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Cannot create audit storage at {self.path.parent}: {e}", e) from e

        self._count = len(self._read_lines())

    def _read_lines(self) -> List[str]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return [line for line in f.read().splitlines() if line.strip()]
        except OSError as e:
            self.logger.error(f"Failed to read audit log {self.path}: {e}", exc_info=True)
            raise StoreUnavailable(f"Cannot read audit log {self.path}: {e}", e) from e

    def append_many(self, entries: Sequence[AuditEntry]) -> None:
        if not entries:
            return
        lines = [json.dumps(e.to_dict(), default=str) for e in entries]

        with self._lock:
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write("\n".join(lines) + "\n")
            except OSError as e:
                self.logger.error(f"Failed to append to audit log {self.path}: {e}", exc_info=True)
                raise StoreUnavailable(f"Cannot write audit log {self.path}: {e}", e) from e

            self._count += len(lines)
            if self._count > self.max_entries:
                self._evict()

    def _evict(self) -> None:
        """Rewrite the file keeping only the newest entries."""
        kept = self._read_lines()[-self.max_entries:]
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".audit_", suffix=".jsonl")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write("\n".join(kept) + "\n")
            os.replace(tmp_name, self.path)
        except OSError as e:
            # The new entries are already on disk; eviction is retried on the next append
            self.logger.error(f"Failed to trim audit log {self.path}: {e}", exc_info=True)
            return

        self.logger.debug(f"Evicted {self._count - len(kept)} audit entries from {self.path}")
        self._count = len(kept)

    def entries(self) -> List[AuditEntry]:
        with self._lock:
            lines = self._read_lines()
        try:
            return [AuditEntry.from_dict(json.loads(line)) for line in lines]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Corrupt audit log {self.path}: {e}", exc_info=True)
            raise StoreUnavailable(f"Cannot decode audit log {self.path}: {e}", e) from e
