"""
Secondary index bookkeeping shared by all storage backends.

Every record belongs to a fixed set of index buckets:

- the master bucket (every id)
- one type bucket
- one tag bucket per tag
- one contract bucket, only if contract_type is set

Backends never compute memberships themselves. store/update/delete all go
through IndexDelta.between(before, after), and each backend applies the
resulting additions and removals in a single step.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..contexts.models import ContextPayload


class IndexFamily(str, Enum):
    """Kinds of index buckets. The value is the key segment used by Redis."""

    ALL = "all"
    TYPE = "type"
    TAG = "tag"
    CONTRACT = "contract"


# (family, value); the master bucket uses an empty value
IndexEntry = tuple[IndexFamily, str]

MASTER_ENTRY: IndexEntry = (IndexFamily.ALL, "")


def index_entries(payload: Optional[ContextPayload]) -> frozenset[IndexEntry]:
    """Return every index bucket the payload belongs to."""
    if payload is None:
        return frozenset()

    entries = {MASTER_ENTRY, (IndexFamily.TYPE, payload.type.value)}
    entries.update((IndexFamily.TAG, tag) for tag in payload.metadata.tags)
    if payload.metadata.contract_type:
        entries.add((IndexFamily.CONTRACT, payload.metadata.contract_type))
    return frozenset(entries)


@dataclass(frozen=True)
class IndexDelta:
    """Index memberships to add and remove for one record id."""

    additions: frozenset[IndexEntry]
    removals: frozenset[IndexEntry]

    @classmethod
    def between(
        cls, before: Optional[ContextPayload], after: Optional[ContextPayload]
    ) -> "IndexDelta":
        """
        Compute the delta that moves a record from `before` to `after`.

        `before=None` is a fresh insert, `after=None` is a delete.
        """
        old = index_entries(before)
        new = index_entries(after)
        return cls(additions=new - old, removals=old - new)

    def __bool__(self) -> bool:
        return bool(self.additions or self.removals)
