"""Issue record types shared by the store client, the graph builder and the views."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Status(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CLOSED = "closed"


# Internal store status for deleted issues; never shown.
TOMBSTONE = "tombstone"

KNOWN_STATUSES = frozenset(s.value for s in Status)
TERMINAL_STATUSES = frozenset({Status.CLOSED.value})


def parse_status(raw: str | None) -> str:
    """Normalize a status string.

    Unknown statuses from newer store versions are kept verbatim so they can
    still be displayed. Blank and tombstone values are rejected.
    """
    status = (raw or "").strip().lower()
    if not status:
        raise ValueError("status is blank")
    if status == TOMBSTONE:
        raise ValueError(f"invalid status: {raw!r}")
    return status


def is_known_status(status: str) -> bool:
    return status in KNOWN_STATUSES


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


class RelationType(str, Enum):
    PARENT_CHILD = "parent-child"
    BLOCKS = "blocks"
    RELATED = "related"
    DISCOVERED_FROM = "discovered-from"
    DUPLICATES = "duplicates"
    SUPERSEDES = "supersedes"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str | None) -> "RelationType":
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


# Issues with no creation time sort after everything else.
DISTANT_FUTURE = datetime(9999, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Relationship:
    """A typed edge to another issue, as reported by the store."""

    target_id: str
    relation_type: RelationType
    raw_type: str = ""

    @property
    def type_name(self) -> str:
        return self.raw_type or self.relation_type.value


@dataclass(frozen=True)
class IssueRecord:
    """One issue as fetched from the store. Immutable for the whole fetch cycle.

    ``relationships`` are outgoing ("this issue depends on target"),
    ``dependents`` are incoming ("target depends on this issue").
    """

    id: str
    title: str = ""
    status: str = Status.OPEN.value
    priority: int = 2
    issue_type: str = "task"
    labels: frozenset[str] = field(default_factory=frozenset)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    closed_at: datetime | None = None
    assignee: str | None = None
    description: str = ""
    relationships: tuple[Relationship, ...] = ()
    dependents: tuple[Relationship, ...] = ()

    @property
    def created_sort_key(self) -> datetime:
        return self.created_at or DISTANT_FUTURE

    @property
    def is_closed(self) -> bool:
        return is_terminal(self.status)

    def relations_of(self, relation_type: RelationType) -> list[Relationship]:
        return [r for r in self.relationships if r.relation_type is relation_type]
