"""
Document versioning and change tracking modules.
"""

from .diff_engine import DiffEngine, DiffChange, DiffSummary, StepDiff, TextDiff, VersionDiff
from .models import ChangeLog, ChangeLogEntry, ChangeType, Version
from .repository import InMemoryVersionRepository, JsonFileVersionRepository, VersionRepository
from .version_control import VersionStore, calculate_semantic_version

__all__ = [
    "ChangeLog",
    "ChangeLogEntry",
    "ChangeType",
    "DiffChange",
    "DiffEngine",
    "DiffSummary",
    "InMemoryVersionRepository",
    "JsonFileVersionRepository",
    "StepDiff",
    "TextDiff",
    "Version",
    "VersionDiff",
    "VersionRepository",
    "VersionStore",
    "calculate_semantic_version",
]
