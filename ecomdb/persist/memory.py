"""
In-memory snapshot sink.

Keeps deep copies of every saved snapshot. Useful for:
- Unit tests that check what the store persisted
- Cloning a store (save from one, restore into another)

Invariants:
    - All data is lost on process exit
    - Saved records are copied, so later changes by the caller are not seen
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, List, Optional
import logging

from .base import SinkState

logger = logging.getLogger(__name__)


class InMemorySink:
    """SnapshotSink that keeps snapshots in a dict.

    Attributes:
        saves: Number of save() calls, per kind

    Example:
        >>> sink = InMemorySink()
        >>> sink.save("Supplier", [{"id": 1, "name": "Acme"}], sequence=1)
        >>> sink.load().sequences
        {'Supplier': 1}
    """

    def __init__(self, fingerprint: Optional[str] = None) -> None:
        self._records: Dict[str, List[Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._fingerprint = fingerprint
        self._lock = threading.Lock()
        self.saves: Dict[str, int] = {}

    def save(self, kind: str, records: List[Dict[str, Any]], sequence: int) -> None:
        with self._lock:
            self._records[kind] = copy.deepcopy(records)
            self._sequences[kind] = sequence
            self.saves[kind] = self.saves.get(kind, 0) + 1
        logger.debug(f"InMemorySink saved {len(records)} {kind} record(s)")

    def load(self) -> SinkState:
        with self._lock:
            return SinkState(
                records=copy.deepcopy(self._records),
                sequences=dict(self._sequences),
                fingerprint=self._fingerprint,
            )

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._sequences.clear()
            self.saves.clear()
