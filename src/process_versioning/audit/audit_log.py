"""
Append-only audit trail.

Writes are fire-and-forget by default: ``append`` puts the entry on a FIFO
queue and a background writer persists batches, so logging never blocks the
caller's primary operation. Entries are written in append order. A backend
failure is never dropped silently: the failed batch is kept, the error is
logged, and the next ``append`` or ``flush`` raises ``StoreUnavailable`` if the
backend is still down.
"""

from __future__ import annotations

import atexit
import csv
import io
import logging
import queue
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from ..errors import AuditLogClosed, StoreUnavailable
from .models import Actor, AuditAction, AuditEntry, AuditFilters, AuditPage
from .repository import AuditRepository, InMemoryAuditRepository

CSV_HEADERS = [
    "Timestamp",
    "Action",
    "Description",
    "Resource Type",
    "Resource Name",
    "User",
    "User Email",
    "Version",
    "Success",
]

SYSTEM_ACTOR = Actor(user_id="system", user_name="System")

_STOP = object()


class AuditLog:
    """
    Audit trail over an injected ``AuditRepository``.

    Use as a context manager, or call ``close()``, to guarantee every buffered
    entry is written. Open logs are also flushed at interpreter exit.
    """

    def __init__(
        self,
        repository: Optional[AuditRepository] = None,
        async_writes: bool = True,
        batch_size: int = 50,
        flush_interval: float = 0.5,
        default_actor: Optional[Actor] = None,
    ):
        self.repository = repository or InMemoryAuditRepository()
        self.async_writes = async_writes
        self.batch_size = max(1, batch_size)
        self.flush_interval = flush_interval
        self.default_actor = default_actor or SYSTEM_ACTOR
        self.logger = logging.getLogger(__name__)

        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._write_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._failed: List[AuditEntry] = []
        self._last_error: Optional[StoreUnavailable] = None
        self._closed = False
        self._writer: Optional[threading.Thread] = None

        if self.async_writes:
            self._writer = threading.Thread(
                target=self._run_writer, name="audit-log-writer", daemon=True
            )
            self._writer.start()
            atexit.register(self.close)

    def __enter__(self) -> AuditLog:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def append(self, entry: AuditEntry) -> None:
        """
        Append an entry to the log.

        Raises:
            AuditLogClosed: If the log has been closed
            StoreUnavailable: If the backend is failing and the entry cannot
                be accepted
        """
        # The closed check and the enqueue must not interleave with close()
        with self._state_lock:
            if self._closed:
                raise AuditLogClosed()

            if not self.async_writes:
                with self._write_lock:
                    self._write([entry])
                return

            if self._last_error is not None:
                # Backend failed earlier; retry the held batch now and fail loudly
                # if it is still down.
                with self._write_lock:
                    self._write([])

            self._queue.put(entry)

    def record(
        self,
        action: Union[AuditAction, str],
        description: str,
        resource_type: str,
        resource_id: str,
        resource_name: str,
        actor: Optional[Actor] = None,
        document_id: Optional[str] = None,
        document_name: Optional[str] = None,
        step_id: Optional[str] = None,
        step_name: Optional[str] = None,
        version_id: Optional[str] = None,
        version: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditEntry:
        """Build an entry for ``actor`` (or the default actor) and append it."""
        actor = actor or self.default_actor
        entry = AuditEntry(
            id=f"audit_{uuid.uuid4().hex}",
            action=AuditAction(action),
            description=description,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_name=resource_name,
            document_id=document_id,
            document_name=document_name,
            step_id=step_id,
            step_name=step_name,
            version_id=version_id,
            version=version,
            user_id=actor.user_id,
            user_name=actor.user_name,
            user_email=actor.user_email,
            user_role=actor.user_role,
            timestamp=datetime.now(timezone.utc),
            success=success,
            error_message=error_message,
            metadata=dict(metadata or {}),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.append(entry)
        return entry

    def flush(self) -> None:
        """
        Block until every appended entry has been handed to the backend.

        Raises:
            StoreUnavailable: If some entries could not be written
        """
        if self.async_writes and self._writer is not None and self._writer.is_alive():
            self._queue.join()

        with self._write_lock:
            self._write([])

    def close(self) -> None:
        """Flush pending entries and stop the background writer."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
            if self._writer is not None:
                self._queue.put(_STOP)

        if self._writer is not None:
            self._writer.join()
            atexit.unregister(self.close)

        with self._write_lock:
            self._write([])

    @property
    def pending_failures(self) -> int:
        """Number of entries held back after a backend failure."""
        return len(self._failed)

    def _write(self, batch: List[AuditEntry]) -> None:
        """Write held entries then ``batch``. Caller holds ``_write_lock``."""
        pending = self._failed + batch
        if not pending:
            return
        try:
            self.repository.append_many(pending)
        except StoreUnavailable as e:
            self._failed = pending
            self._last_error = e
            raise
        self._failed = []
        self._last_error = None

    def _run_writer(self) -> None:
        """Background loop: drain the queue in batches until told to stop."""
        stop = False
        while not stop:
            try:
                item = self._queue.get(timeout=self.flush_interval)
            except queue.Empty:
                continue

            items = [item]
            while len(items) < self.batch_size:
                try:
                    items.append(self._queue.get_nowait())
                except queue.Empty:
                    break

            batch = [i for i in items if i is not _STOP]
            stop = len(batch) != len(items)

            try:
                with self._write_lock:
                    self._write(batch)
                if batch:
                    self.logger.debug(f"Wrote {len(batch)} audit entries")
            except StoreUnavailable as e:
                self.logger.error(
                    f"Audit write failed, holding {len(self._failed)} entries: {e}",
                    exc_info=True,
                )
            except Exception as e:
                # Keep the writer alive so flush() cannot hang on a dead thread
                self.logger.error(f"Discarding {len(batch)} unwritable audit entries: {e}", exc_info=True)
            finally:
                for _ in items:
                    self._queue.task_done()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def query(
        self,
        document_id: str,
        filters: Optional[AuditFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> AuditPage:
        """
        Entries for a document, newest first.

        Filters are applied before pagination; ``total`` counts every match.
        Entries still buffered by the writer may not be visible yet.
        """
        filters = filters or AuditFilters()
        matches = [
            e for e in self.repository.entries()
            if e.document_id == document_id and filters.matches(e)
        ]
        matches.reverse()

        total = len(matches)
        page = matches[offset:]
        if limit is not None:
            page = page[:limit]

        return AuditPage(entries=page, total=total, limit=limit, offset=offset)

    def export_csv(self, document_id: str, filters: Optional[AuditFilters] = None) -> bytes:
        """Export every matching entry (not a single page) as UTF-8 CSV."""
        entries = self.query(document_id, filters).entries

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for e in entries:
            writer.writerow([
                e.timestamp.isoformat(),
                e.action_label,
                e.description,
                e.resource_type,
                e.resource_name,
                e.user_name,
                e.user_email or "",
                e.version or "",
                "Yes" if e.success else "No",
            ])

        return buffer.getvalue().encode("utf-8")
