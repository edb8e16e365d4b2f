"""Enrichment filters applied to each event before it is submitted."""

import logging
from typing import Iterable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

ARCHIVED_TAG = "evebox.archived"
AUTO_ARCHIVED_TAG = "evebox.auto-archived"


@runtime_checkable
class EveFilter(Protocol):
    def apply(self, event: dict) -> None: ...


class TagsFilter:
    """Make sure ``tags`` is a list."""

    def apply(self, event: dict) -> None:
        if event.get("tags") is None:
            event["tags"] = []


class MetadataFilter:
    """Record where the event came from under the ``evebox`` key."""

    def __init__(self, filename: str | None = None):
        self.filename = filename

    def apply(self, event: dict) -> None:
        if event.get("evebox") is None:
            event["evebox"] = {}
        if isinstance(event["evebox"], dict) and self.filename:
            event["evebox"]["filename"] = self.filename
        if event.get("tags") is None:
            event["tags"] = []


class AutoArchiveFilter:
    """Archive alerts whose rule metadata asks for it.

    A rule carrying ``metadata: evebox-action archive`` produces alerts with
    ``alert.metadata["evebox-action"] == ["archive"]``.
    """

    def apply(self, event: dict) -> None:
        alert = event.get("alert")
        if not isinstance(alert, dict):
            return
        metadata = alert.get("metadata")
        if not isinstance(metadata, dict):
            return
        actions = metadata.get("evebox-action")
        if not isinstance(actions, list) or not actions or actions[0] != "archive":
            return

        tags = event.get("tags")
        if tags is None:
            event["tags"] = [ARCHIVED_TAG, AUTO_ARCHIVED_TAG]
        elif isinstance(tags, list):
            tags.extend([ARCHIVED_TAG, AUTO_ARCHIVED_TAG])
        else:
            logger.warning("Unable to auto-archive event, event has incompatible tags entry")


class CustomFieldFilter:
    def __init__(self, field: str, value):
        self.field = field
        self.value = value

    def apply(self, event: dict) -> None:
        event[self.field] = self.value


class FilterChain:
    """Applies filters in the order they were added."""

    def __init__(self, filters: Iterable[EveFilter] = ()):
        self._filters: list[EveFilter] = list(filters)

    def __len__(self) -> int:
        return len(self._filters)

    def add(self, f: EveFilter):
        self._filters.append(f)

    def apply(self, event: dict) -> None:
        for f in self._filters:
            f.apply(event)
