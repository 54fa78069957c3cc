"""
Snapshot persistence for ecomdb.

This module provides pluggable sinks the entity store reports to after
every committed mutation:
- InMemorySink (tests, cloning)
- DirectorySink (gzip JSON files plus a checksummed manifest)

Invariants:
    - Sinks receive full per-kind snapshots, never deltas
    - The store is the source of truth; sinks only mirror it

How to change safely:
    - New backends must implement the SnapshotSink protocol
    - Keep load() compatible with snapshots written by older versions
"""

from .base import SinkState, SnapshotSink, create_sink
from .directory import DirectorySink
from .memory import InMemorySink

__all__ = [
    # Protocol and types
    "SnapshotSink",
    "SinkState",
    # Factory
    "create_sink",
    # Implementations
    "InMemorySink",
    "DirectorySink",
]
