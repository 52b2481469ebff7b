"""
Persistence backends for version chains.

The version store talks to storage only through ``VersionRepository``, so the
backend is injected rather than shared global state. Two implementations are
provided: an in-memory map and a JSON file per document.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import StoreUnavailable, VersionNotFound
from .models import Version


class VersionRepository(ABC):
    """Storage interface for per-document version chains."""

    @abstractmethod
    def list_versions(self, document_id: str) -> List[Version]:
        """All versions of a document, newest first."""

    @abstractmethod
    def get_version(self, version_id: str) -> Optional[Version]:
        """A single version, or None if unknown."""

    @abstractmethod
    def commit(self, version: Version) -> None:
        """
        Insert ``version`` as the latest version of its document.

        Every other version of the document must stop being latest in the same
        step; no reader may observe two latest versions or none.
        """

    @abstractmethod
    def delete_version(self, version_id: str) -> Version:
        """Remove a version and return it. Raises VersionNotFound."""

    def get_latest_version(self, document_id: str) -> Optional[Version]:
        """The latest version of a document, or None."""
        for version in self.list_versions(document_id):
            if version.is_latest:
                return version
        return None


class InMemoryVersionRepository(VersionRepository):
    """
    Version chains kept in a dictionary behind a mutex.

    Records are stored serialized and rebuilt on every read, so callers always
    get private copies of snapshots.
    """

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._by_document: Dict[str, List[str]] = {}
        self._lock = threading.RLock()

    def list_versions(self, document_id: str) -> List[Version]:
        with self._lock:
            records = [self._records[vid] for vid in self._by_document.get(document_id, [])]
        versions = [Version.from_dict(r) for r in records]
        versions.sort(key=lambda v: v.version_number, reverse=True)
        return versions

    def get_version(self, version_id: str) -> Optional[Version]:
        with self._lock:
            record = self._records.get(version_id)
        return Version.from_dict(record) if record else None

    def commit(self, version: Version) -> None:
        record = replace(version, is_latest=True).to_dict()
        with self._lock:
            for vid in self._by_document.get(version.document_id, []):
                self._records[vid] = {**self._records[vid], "is_latest": False}
            self._records[version.id] = record
            self._by_document.setdefault(version.document_id, []).append(version.id)

    def delete_version(self, version_id: str) -> Version:
        with self._lock:
            record = self._records.pop(version_id, None)
            if record is None:
                raise VersionNotFound(version_id)
            self._by_document[record["document_id"]].remove(version_id)
        return Version.from_dict(record)


class JsonFileVersionRepository(VersionRepository):
    """
    One JSON file per document under a storage directory.

    Files are replaced atomically (write to a temporary file, then rename), so
    a crash mid-write leaves the previous chain intact.
    """

    def __init__(self, storage_path: Path):
        self.storage_path = Path(storage_path)
        self.logger = logging.getLogger(__name__)
        self._index: Dict[str, str] = {}  # version_id -> document_id
        self._lock = threading.RLock()

        try:
            self.storage_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Cannot create version storage at {self.storage_path}: {e}", e) from e

        self._load_index()

    def _document_file(self, document_id: str) -> Path:
        digest = hashlib.sha256(document_id.encode("utf-8")).hexdigest()[:16]
        return self.storage_path / f"versions_{digest}.json"

    def _load_index(self) -> None:
        """Build the version id index from the files on disk."""
        for path in sorted(self.storage_path.glob("versions_*.json")):
            data = self._read_file(path)
            for record in data.get("versions", []):
                self._index[record["id"]] = record["document_id"]
        self.logger.debug(f"Loaded {len(self._index)} versions from {self.storage_path}")

    def _read_file(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {"versions": []}
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to read version file {path}: {e}", exc_info=True)
            raise StoreUnavailable(f"Cannot read version file {path}: {e}", e) from e

    def _write_file(self, path: Path, data: Dict[str, Any]) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.storage_path, prefix=".tmp_", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            self.logger.error(f"Failed to write version file {path}: {e}", exc_info=True)
            raise StoreUnavailable(f"Cannot write version file {path}: {e}", e) from e

    def _read_records(self, document_id: str) -> List[Dict[str, Any]]:
        return self._read_file(self._document_file(document_id)).get("versions", [])

    def list_versions(self, document_id: str) -> List[Version]:
        versions = [Version.from_dict(r) for r in self._read_records(document_id)]
        versions.sort(key=lambda v: v.version_number, reverse=True)
        return versions

    def get_version(self, version_id: str) -> Optional[Version]:
        with self._lock:
            document_id = self._index.get(version_id)
        if document_id is None:
            return None
        for record in self._read_records(document_id):
            if record["id"] == version_id:
                return Version.from_dict(record)
        return None

    def commit(self, version: Version) -> None:
        path = self._document_file(version.document_id)
        with self._lock:
            records = [{**r, "is_latest": False} for r in self._read_records(version.document_id)]
            records.append(replace(version, is_latest=True).to_dict())

            self._write_file(path, {"document_id": version.document_id, "versions": records})
            self._index[version.id] = version.document_id

    def delete_version(self, version_id: str) -> Version:
        with self._lock:
            document_id = self._index.get(version_id)
            if document_id is None:
                raise VersionNotFound(version_id)

            records = self._read_records(document_id)
            target = next((r for r in records if r["id"] == version_id), None)
            if target is None:
                raise VersionNotFound(version_id)

            remaining = [r for r in records if r["id"] != version_id]
            self._write_file(
                self._document_file(document_id),
                {"document_id": document_id, "versions": remaining},
            )
            self._index.pop(version_id, None)
        return Version.from_dict(target)
