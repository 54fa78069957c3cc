"""
Base protocol and types for snapshot persistence.

The entity store is in-memory. When a sink is attached, the store hands it
the full post-mutation snapshot of every kind a mutation touched; the sink
decides how to make that durable. ``load`` returns what was saved so a
store can be rebuilt with EntityStore.restore().

Invariants:
    - save() receives every record of one kind, never a delta
    - Records are plain JSON-compatible dicts (schema.codec.to_dict)
    - sequence is the last identifier handed out for the kind, so ids are
      not reused after a restore

How to change safely:
    - Protocol changes require updating all implementations
    - Keep SinkState readable by older snapshots (new fields need defaults)
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable
import logging

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)


@dataclass
class SinkState:
    """Everything a sink holds.

    Attributes:
        records: Kind name -> list of record dicts
        sequences: Kind name -> last identifier handed out
        fingerprint: Model fingerprint the records were written under
    """

    records: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    sequences: Dict[str, int] = field(default_factory=dict)
    fingerprint: Optional[str] = None

    @property
    def empty(self) -> bool:
        return not any(self.records.values())


@runtime_checkable
class SnapshotSink(Protocol):
    """Protocol for persistence backends.

    Example:
        >>> sink = InMemorySink()
        >>> store = EntityStore(sink=sink)
        >>> store.create(Supplier(name="Acme"))
        >>> sink.load().records["Supplier"]
        [{'name': 'Acme', 'contact': '', 'email': '', 'id': 1}]
    """

    @abstractmethod
    def save(self, kind: str, records: List[Dict[str, Any]], sequence: int) -> None:
        """Replace the stored snapshot of one kind.

        Args:
            kind: Entity kind name
            records: Every record of the kind after the mutation
            sequence: Last identifier handed out for the kind

        Raises:
            OSError: Or any backend error; the store wraps it in PersistenceError
        """
        ...

    @abstractmethod
    def load(self) -> SinkState:
        """Return everything saved so far (empty state if nothing was saved)."""
        ...


def create_sink(settings: "Settings", fingerprint: Optional[str] = None) -> Optional[SnapshotSink]:
    """Factory for the sink configured in settings.

    Returns:
        DirectorySink when settings.data_dir is set, else None
    """
    from .directory import DirectorySink

    if not settings.data_dir:
        return None
    return DirectorySink(
        settings.data_dir,
        compress=settings.compress_snapshots,
        fingerprint=fingerprint,
    )
