# fingerprint.py
from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from .model import InputFingerprint, Stage

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Stage fingerprint:
#   digest = sha256(
#       stage name,
#       base reference (external image or upstream stage),
#       instruction text, in order,
#       build args,
#       contents + relative paths of declared input files (globs),
#       fingerprints of every upstream stage
#   )
#
# The manifest stored with the digest explains what went into it.
# Bump FINGERPRINT_VERSION whenever the hashing format changes.
# ---------------------------------------------------------------------

FINGERPRINT_VERSION = 1
CHUNK_SIZE = 1024 * 1024

DEFAULT_EXCLUDES = [
    ".git/**",
    ".dockplan/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _glob_to_regex(pattern: str) -> re.Pattern:
    """
    Translate a .dockerignore-style glob into a regex over "/"-separated paths.

      *   any run of characters inside one path segment
      ?   one character inside a segment
      **  any number of segments (including none)
    """
    parts: List[str] = []
    segments = pattern.strip("/").split("/")
    for i, seg in enumerate(segments):
        last = i == len(segments) - 1
        if seg == "**":
            parts.append(".*" if last else "(?:[^/]+/)*")
            continue
        rx = ""
        for ch in seg:
            if ch == "*":
                rx += "[^/]*"
            elif ch == "?":
                rx += "[^/]"
            else:
                rx += re.escape(ch)
        parts.append(rx if last else rx + "/")
    return re.compile("^" + "".join(parts) + "$")


def matches_any(rel: str, patterns: Iterable[str]) -> bool:
    """True if `rel` or one of its parent directories matches a pattern."""
    candidates = [rel]
    segs = rel.split("/")
    candidates.extend("/".join(segs[:i]) for i in range(1, len(segs)))
    for pat in patterns:
        rx = _glob_to_regex(pat)
        if any(rx.match(c) for c in candidates):
            return True
    return False


def parse_ignore_file(text: str) -> Tuple[List[str], List[str]]:
    """
    Parse .dockerignore content into (excludes, re-includes).
    Blank lines and comments are skipped; "!pattern" re-includes.
    """
    excludes: List[str] = []
    includes: List[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("!"):
            includes.append(line[1:].strip().lstrip("/"))
        else:
            excludes.append(line.lstrip("/"))
    return excludes, includes


# ---------------------------------------------------------------------
# Content readers
# ---------------------------------------------------------------------

class ContentReader(Protocol):
    """Produces byte streams for declared file inputs."""

    def expand(self, pattern: str) -> List[str]:
        """Concrete file paths (relative, "/"-separated, sorted) matched by pattern."""
        ...

    def read_chunks(self, path: str) -> Iterable[bytes]:
        ...


class FileContentReader:
    """
    Reads build context files from disk.

    Supports:
      - file path: "pyproject.toml"
      - dir path:  "src/" (every file below it)
      - glob:      "app/**", "tests/**/*.py"
    Paths matching the excludes (defaults + .dockerignore) are skipped.
    """

    def __init__(
        self,
        root: str | Path = ".",
        *,
        excludes: Optional[List[str]] = None,
        ignore_file: Optional[str] = ".dockerignore",
    ):
        self.root = Path(root).resolve()
        self.excludes: List[str] = list(DEFAULT_EXCLUDES)
        self.includes: List[str] = []
        if excludes:
            self.excludes.extend(excludes)
        if ignore_file:
            ignore_path = self.root / ignore_file
            if ignore_path.is_file():
                ex, inc = parse_ignore_file(ignore_path.read_text(encoding="utf-8"))
                self.excludes.extend(ex)
                self.includes.extend(inc)

    def _rel(self, p: Path) -> str:
        return str(p.resolve().relative_to(self.root)).replace("\\", "/")

    def _excluded(self, rel: str) -> bool:
        if not matches_any(rel, self.excludes):
            return False
        return not matches_any(rel, self.includes)

    def _files_under(self, p: Path) -> Iterable[Path]:
        # deterministic traversal
        for f in sorted(p.rglob("*")):
            if f.is_file():
                yield f

    def expand(self, pattern: str) -> List[str]:
        pattern = pattern.strip()
        if not pattern:
            return []
        p = self.root / pattern
        if p.is_file():
            matches = [p]
        elif p.is_dir():
            matches = list(self._files_under(p))
        else:
            matches = []
            for m in sorted(self.root.glob(pattern)):
                if m.is_file():
                    matches.append(m)
                elif m.is_dir():
                    matches.extend(self._files_under(m))

        out = {self._rel(m) for m in matches}
        return sorted(r for r in out if not self._excluded(r))

    def read_chunks(self, path: str) -> Iterable[bytes]:
        with (self.root / path).open("rb") as f:
            while True:
                chunk = f.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk


class MemoryContentReader:
    """In-memory build context: {"relative/path": b"bytes"}."""

    def __init__(self, files: Optional[Mapping[str, bytes]] = None):
        self.files: Dict[str, bytes] = dict(files or {})

    def expand(self, pattern: str) -> List[str]:
        pattern = pattern.strip().rstrip("/")
        if not pattern:
            return []
        if pattern in self.files:
            return [pattern]
        return sorted(r for r in self.files if matches_any(r, [pattern]))

    def read_chunks(self, path: str) -> Iterable[bytes]:
        yield self.files[path]


# ---------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------

def hash_file(reader: ContentReader, path: str) -> str:
    h = hashlib.sha256()
    for chunk in reader.read_chunks(path):
        h.update(chunk)
    return h.hexdigest()


def hash_inputs(reader: ContentReader, patterns: Iterable[str]) -> Tuple[str, Dict]:
    """
    Hash a declared input set deterministically:
      - file contents
      - relative paths
      - patterns that matched nothing (so a file appearing later is a change)
    """
    seen = set()
    files: List[Tuple[str, str]] = []
    missing: List[str] = []

    for pat in patterns:
        matched = reader.expand(pat)
        if not matched:
            missing.append(pat)
            continue
        for rel in matched:
            if rel in seen:
                continue
            seen.add(rel)
            files.append((rel, hash_file(reader, rel)))

    files.sort(key=lambda t: t[0])  # stable ordering by relpath
    payload = {"files": files, "missing": sorted(missing)}
    return _sha256_str(_json_dumps_stable(payload)), payload


def compute_fingerprint(
    stage: Stage,
    upstream: Mapping[str, InputFingerprint],
    reader: ContentReader,
) -> InputFingerprint:
    """
    Fingerprint one stage. `upstream` must hold the fingerprint of every stage
    this one depends on.
    """
    inputs_hash, inputs_manifest = hash_inputs(reader, stage.files)
    upstream_digests = {name: upstream[name].digest for name in stage.depends_on(set(upstream))}

    payload = {
        "v": FINGERPRINT_VERSION,
        "stage": stage.name,
        "base": stage.base,
        "instructions": list(stage.instructions),
        "args": dict(stage.args),
        "inputs_hash": inputs_hash,
        "upstream": upstream_digests,
    }
    digest = _sha256_str(_json_dumps_stable(payload))
    manifest = {
        "payload": payload,
        "inputs": inputs_manifest,
    }
    return InputFingerprint(digest=digest, manifest=manifest)
