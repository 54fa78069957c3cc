"""
Directory snapshot sink.

Writes one JSON file per entity kind plus a manifest:

    <data_dir>/Account.json.gz
    <data_dir>/Order.json.gz
    ...
    <data_dir>/manifest.json

Manifest contains:
    - version: Manifest format version
    - fingerprint: Model fingerprint the files were written under
    - sequences: Last identifier handed out per kind
    - files: Per kind file name, record count and SHA-256 checksum
    - saved_at: Unix ms of the last save

Invariants:
    - Files are replaced atomically (write temp file, then os.replace)
    - The manifest is written after the kind's file
    - load() verifies checksums before returning any record

How to change safely:
    - Add new manifest fields, don't remove existing ones
    - Bump MANIFEST_VERSION when the file layout changes
"""

from __future__ import annotations

import gzip
import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import PersistenceError
from .base import SinkState

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
MANIFEST_VERSION = 1


class DirectorySink:
    """SnapshotSink writing gzip-compressed JSON files to a directory.

    Attributes:
        data_dir: Directory holding the snapshot files
        compress: Whether files are gzip-compressed
        fingerprint: Model fingerprint recorded in the manifest

    Example:
        >>> sink = DirectorySink("/var/lib/ecomdb")
        >>> store = EntityStore(sink=sink)
        >>> # ... later, in a new process
        >>> EntityStore().restore(DirectorySink("/var/lib/ecomdb"))
    """

    def __init__(
        self,
        data_dir: str | Path,
        compress: bool = True,
        fingerprint: Optional[str] = None,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.compress = compress
        self.fingerprint = fingerprint
        self._lock = threading.Lock()

    def _file_name(self, kind: str) -> str:
        safe = "".join(c for c in kind if c.isalnum() or c in "-_")
        return f"{safe}.json.gz" if self.compress else f"{safe}.json"

    @staticmethod
    def _checksum(data: bytes) -> str:
        return f"sha256:{hashlib.sha256(data).hexdigest()}"

    def _write_atomic(self, path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read_manifest(self) -> Dict[str, Any]:
        path = self.data_dir / MANIFEST_NAME
        if not path.exists():
            return {"version": MANIFEST_VERSION, "sequences": {}, "files": {}}
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, kind: str, records: List[Dict[str, Any]], sequence: int) -> None:
        """Write the kind's file, then update the manifest."""
        payload = json.dumps(records, sort_keys=True, separators=(",", ":")).encode("utf-8")
        if self.compress:
            payload = gzip.compress(payload, mtime=0)

        with self._lock:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            file_name = self._file_name(kind)
            self._write_atomic(self.data_dir / file_name, payload)

            manifest = self._read_manifest()
            manifest["version"] = MANIFEST_VERSION
            manifest["fingerprint"] = self.fingerprint
            manifest["saved_at"] = int(time.time() * 1000)
            manifest.setdefault("sequences", {})[kind] = sequence
            manifest.setdefault("files", {})[kind] = {
                "file": file_name,
                "records": len(records),
                "checksum": self._checksum(payload),
            }
            self._write_atomic(
                self.data_dir / MANIFEST_NAME,
                json.dumps(manifest, indent=2, sort_keys=True).encode("utf-8"),
            )

        logger.debug(f"Saved {len(records)} {kind} record(s) to {self.data_dir / file_name}")

    def load(self) -> SinkState:
        """Read every kind listed in the manifest.

        Raises:
            PersistenceError: If a file is missing or fails its checksum
        """
        with self._lock:
            if not (self.data_dir / MANIFEST_NAME).exists():
                logger.info(f"No manifest in {self.data_dir}, starting empty")
                return SinkState(fingerprint=self.fingerprint)

            manifest = self._read_manifest()
            stored_fingerprint = manifest.get("fingerprint")
            if self.fingerprint and stored_fingerprint and stored_fingerprint != self.fingerprint:
                logger.warning(
                    f"Snapshot in {self.data_dir} was written under model "
                    f"{stored_fingerprint}, current model is {self.fingerprint}"
                )

            records: Dict[str, List[Dict[str, Any]]] = {}
            for kind, entry in manifest.get("files", {}).items():
                path = self.data_dir / entry["file"]
                if not path.exists():
                    raise PersistenceError(f"Snapshot file missing: {path}", kind=kind)
                data = path.read_bytes()
                if self._checksum(data) != entry["checksum"]:
                    raise PersistenceError(f"Checksum mismatch for {path}", kind=kind)
                if entry["file"].endswith(".gz"):
                    data = gzip.decompress(data)
                records[kind] = json.loads(data.decode("utf-8"))

            return SinkState(
                records=records,
                sequences={k: int(v) for k, v in manifest.get("sequences", {}).items()},
                fingerprint=stored_fingerprint,
            )
