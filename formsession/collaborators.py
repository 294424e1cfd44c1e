"""Narrow contracts between the engine and its external collaborators.

The engine never talks to storage, the network or device hardware itself.
It consumes:

- a ``TemplateSource`` that returns raw template data by id,
- a ``ContextDataProvider`` that returns read-only reference lists (workers,
  jobsites, equipment, hazards, tasks) for a company,
- a ``PersistenceCollaborator`` that saves drafts and final submissions.

Persistence calls are coroutines and may fail; the engine does not retry them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

from typing_extensions import Protocol, runtime_checkable

from formsession.attachments import SubmissionPayload
from formsession.types import LibrarySource


@runtime_checkable
class TemplateSource(Protocol):
    """Provides raw template data (sections and fields included) by id."""

    def get_template(self, template_id: str) -> Optional[Mapping[str, Any]]:
        ...


@dataclass
class ContextData:
    """Reference lists used to resolve lookup-type field options.

    Items are plain mappings with at least an ``id`` key. The engine only ever
    checks that a selected id is present; it does not validate the items.
    """
    company_id: str
    user_id: Optional[str] = None
    workers: List[Mapping[str, Any]] = field(default_factory=list)
    jobsites: List[Mapping[str, Any]] = field(default_factory=list)
    equipment: List[Mapping[str, Any]] = field(default_factory=list)
    hazards: List[Mapping[str, Any]] = field(default_factory=list)
    tasks: List[Mapping[str, Any]] = field(default_factory=list)
    sds: List[Mapping[str, Any]] = field(default_factory=list)
    legislation: List[Mapping[str, Any]] = field(default_factory=list)
    is_online: bool = True

    def items_for(self, source: LibrarySource) -> List[Mapping[str, Any]]:
        return list(getattr(self, LibrarySource(source).value))

    def ids_for(self, source: LibrarySource) -> Set[str]:
        return {str(item["id"]) for item in self.items_for(source) if "id" in item}

    def find(self, source: LibrarySource, item_id: Any) -> Optional[Mapping[str, Any]]:
        for item in self.items_for(source):
            if str(item.get("id")) == str(item_id):
                return item
        return None


@runtime_checkable
class ContextDataProvider(Protocol):
    """Supplies reference lists keyed by company/tenant."""

    def get_context(self, company_id: str) -> ContextData:
        ...


@runtime_checkable
class PersistenceCollaborator(Protocol):
    """Stores drafts and final submissions.

    Drafts arrive as a ``SubmissionPayload`` with ``status`` set to draft, so
    repeatable section instances survive a save and resume.
    """

    async def save_draft(self, payload: SubmissionPayload) -> None:
        ...

    async def submit(self, payload: SubmissionPayload) -> None:
        ...


__all__ = [
    "TemplateSource",
    "ContextData",
    "ContextDataProvider",
    "PersistenceCollaborator",
]
