# store.py
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional

from .model import InputFingerprint

STORE_VERSION = 1
STORE_FILE = "fingerprints.json"


class FingerprintStore:
    """
    Last committed fingerprint per stage name.

    File layout (when persisted):
      <root>/fingerprints.json
        {"version": 1, "fingerprints": {"<stage>": {"digest": ..., "manifest": {...}}}}

    Reads see an immutable snapshot. Writes only happen through commit(),
    which replaces whole entries and is serialized by a lock.
    """

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root).resolve() if root is not None else None
        self._lock = threading.Lock()
        self._entries: Dict[str, InputFingerprint] = {}
        self.commits = 0
        if self.root is not None:
            self._entries = self._load()

    @property
    def path(self) -> Optional[Path]:
        if self.root is None:
            return None
        return self.root / STORE_FILE

    def _load(self) -> Dict[str, InputFingerprint]:
        path = self.path
        if path is None or not path.exists():
            return {}
        data = json.loads(path.read_text(encoding="utf-8"))
        if data.get("version") != STORE_VERSION:
            # unknown format: start over rather than trusting stale digests
            return {}
        return {
            name: InputFingerprint.from_dict(entry)
            for name, entry in (data.get("fingerprints") or {}).items()
        }

    def _write(self, entries: Mapping[str, InputFingerprint]) -> None:
        path = self.path
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": STORE_VERSION,
            "fingerprints": {name: fp.to_dict() for name, fp in sorted(entries.items())},
        }
        tmp = path.with_suffix(".json.tmp")
        try:
            # Write tmp, then atomic rename
            tmp.write_text(json.dumps(payload, sort_keys=True, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    def get(self, name: str) -> Optional[InputFingerprint]:
        return self._entries.get(name)

    def snapshot(self) -> Dict[str, InputFingerprint]:
        return dict(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def commit(self, fingerprints: Mapping[str, InputFingerprint]) -> None:
        """Replace the given entries in one write. Other entries are kept."""
        with self._lock:
            merged = dict(self._entries)
            merged.update(fingerprints)
            self._write(merged)
            self._entries = merged
            self.commits += 1

    def forget(self, *names: str) -> None:
        """Drop entries so the next plan reports those stages as misses."""
        with self._lock:
            merged = {k: v for k, v in self._entries.items() if k not in names}
            self._write(merged)
            self._entries = merged
