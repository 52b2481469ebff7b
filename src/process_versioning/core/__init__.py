"""
Core process document representation.
"""

from .document_model import (
    Checklist,
    ChecklistItem,
    MediaItem,
    ProcessDocument,
    ProcessStep,
    Tool,
)

__all__ = [
    "Checklist",
    "ChecklistItem",
    "MediaItem",
    "ProcessDocument",
    "ProcessStep",
    "Tool",
]
