"""
Process document model: the unit that gets versioned.

A process is a named, ordered sequence of steps with scalar metadata. Steps
carry a stable ``step_id`` that identifies them independently of position.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from ..errors import MalformedSnapshot


class _ProcessModel(BaseModel):
    """Shared configuration: camelCase payloads accepted, unknown fields kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class ChecklistItem(_ProcessModel):
    id: str
    text: str
    required: bool = False
    order: int = 0


class Checklist(_ProcessModel):
    id: str
    title: str = ""
    items: List[ChecklistItem] = Field(default_factory=list)


class Tool(_ProcessModel):
    id: str
    name: str
    category: str = "software"
    url: Optional[str] = None


class MediaItem(_ProcessModel):
    """A video or screenshot attached to a step."""

    id: str
    title: str = ""
    url: str = ""


class ProcessStep(_ProcessModel):
    """A single step of a process."""

    step_id: str
    name: str
    short_description: str = ""
    long_description: str = ""
    why_it_matters: Optional[str] = None
    automation_level: str = "none"
    checklist: Optional[Checklist] = None
    tools_used: List[Tool] = Field(default_factory=list)
    videos: List[MediaItem] = Field(default_factory=list)
    screenshots: List[MediaItem] = Field(default_factory=list)


class ProcessDocument(_ProcessModel):
    """
    A process document as edited by a user.

    Only ``id`` and ``name`` are required; everything else has an empty default
    so partially filled drafts can still be versioned.
    """

    id: str
    name: str
    description: str = ""
    status: str = "draft"
    priority: str = "medium"
    department: str = ""
    frequency: str = ""
    estimated_duration: str = ""
    steps: List[ProcessStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_step_ids(self) -> ProcessDocument:
        seen = set()
        for step in self.steps:
            if step.step_id in seen:
                raise ValueError(f"duplicate step_id '{step.step_id}'")
            seen.add(step.step_id)
        return self

    @classmethod
    def coerce(cls, value: Union[ProcessDocument, Mapping[str, Any]]) -> ProcessDocument:
        """
        Accept a document or a raw mapping and return a validated document.

        Document instances are validated again: attribute assignment is not
        checked, so an instance may have been edited into an invalid state.

        Raises:
            MalformedSnapshot: If the value is not a valid process document
        """
        if isinstance(value, ProcessDocument):
            value = value.model_dump(warnings=False)
        if not isinstance(value, Mapping):
            raise MalformedSnapshot(
                f"Expected a process document, got {type(value).__name__}"
            )
        try:
            return cls.model_validate(dict(value))
        except ValidationError as e:
            raise MalformedSnapshot(
                f"Invalid process document: {e.error_count()} validation error(s)",
                errors=e.errors(include_url=False),
            ) from e

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProcessDocument:
        """Create from dictionary."""
        return cls.coerce(data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    def clone(self) -> ProcessDocument:
        """Create a deep copy of the document."""
        return self.model_copy(deep=True)

    def step_map(self) -> Dict[str, ProcessStep]:
        """Map of step_id to step, in document order."""
        return {step.step_id: step for step in self.steps}
