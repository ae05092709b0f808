# cache.py
from __future__ import annotations

import hashlib
import io
import json
import os
import re
import tarfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from .errors import CacheError
from .settings import CACHE_DIR, CACHE_KEEP
from .ui.console import Console, get_console

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Keys are deterministic:
#   key = "<prefix>-" + sha256(stable_json(declared inputs))
# so identical inputs across runs produce identical keys.
#
# Payloads are opaque bytes. Directory caches are tar.gz archives built
# by pack_paths() and extracted by unpack_paths().
#
# Retention is per key prefix: at most `keep` entries, oldest committed
# entry evicted first.
#
# The engine only talks to CacheManager; CacheManager only talks to a
# CacheBackend (file store, in-memory map, ...).
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: bytes
    created_at: float


@dataclass(frozen=True)
class CacheLookup:
    hit: bool
    key: str
    reason: str  # human readable
    payload: Optional[bytes] = None


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _sha256_str(s: str) -> str:
    return _sha256_bytes(s.encode("utf-8"))


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def make_key(prefix: str, inputs: Mapping[str, object]) -> str:
    """Deterministic cache key for a set of declared inputs."""
    payload = {"v": 1, "inputs": dict(inputs)}  # bump v if the hashing format changes
    return f"{prefix}-{_sha256_str(_json_dumps_stable(payload))}"


def key_prefix(key: str) -> str:
    """'apt-3fa1...' -> 'apt'. A key without '-' is its own prefix."""
    head, sep, _tail = key.rpartition("-")
    return head if sep and head else key


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def hash_files(root: str | Path, patterns: Iterable[str]) -> str:
    """
    Hash declared input files deterministically (relative path + content).

    Patterns are globs relative to root ("Cargo.lock", "src/**/*.rs").
    Missing patterns contribute their name so adding the file changes the key.
    """
    root = Path(root).resolve()
    fps: List[Tuple[str, str]] = []
    missing: List[str] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        matches = sorted(p for p in root.glob(pat) if p.is_file())
        if not matches:
            missing.append(pat)
        for p in matches:
            rel = p.resolve().relative_to(root).as_posix()
            fps.append((rel, _hash_file_contents(p)))
    fps = sorted(set(fps))
    return _sha256_str(_json_dumps_stable({"files": fps, "missing": sorted(missing)}))


# ---------------------------------------------------------------------
# Directory payloads
# ---------------------------------------------------------------------

def _arcname(path: Path, root: Path) -> str:
    try:
        return "ws/" + path.relative_to(root).as_posix()
    except ValueError:
        return "abs/" + path.as_posix().lstrip("/")


def _target(arcname: str, root: Path) -> Path:
    kind, _, rest = arcname.partition("/")
    if kind == "abs":
        return Path("/") / rest
    return root / rest


def pack_paths(root: str | Path, paths: Iterable[str]) -> bytes:
    """
    tar.gz the given files/dirs. Relative paths are taken from root,
    '~' and absolute paths are stored as absolute.
    """
    root = Path(root).resolve()
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for entry in paths:
            src = (root / Path(entry).expanduser()).resolve()
            if not src.exists():
                continue
            files = [src] if src.is_file() else sorted(p for p in src.rglob("*") if p.is_file())
            for f in files:
                tar.add(str(f), arcname=_arcname(f, root), recursive=False)
    return buf.getvalue()


def unpack_paths(payload: bytes, root: str | Path) -> int:
    """Extract a pack_paths() payload. Returns the number of files restored."""
    root = Path(root).resolve()
    count = 0
    with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as tar:
        for member in tar.getmembers():
            if not member.isfile():
                continue
            dest = _target(member.name, root)
            if ".." in Path(member.name).parts:
                continue
            src = tar.extractfile(member)
            if src is None:
                continue
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(src.read())
            count += 1
    return count


# ---------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------

class CacheBackend(Protocol):
    def get(self, key: str) -> Optional[CacheEntry]: ...

    def set(self, entry: CacheEntry) -> None: ...

    def delete(self, key: str) -> None: ...

    def entries(self, prefix: str) -> List[Tuple[str, float]]:
        """(key, created_at) of every stored entry with this key prefix."""
        ...


class MemoryCacheBackend:
    """In-process map. Handy for tests and single-run pipelines."""

    def __init__(self):
        self._data: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._data.get(key)

    def set(self, entry: CacheEntry) -> None:
        with self._lock:
            self._data[entry.key] = entry

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def entries(self, prefix: str) -> List[Tuple[str, float]]:
        with self._lock:
            return [(k, e.created_at) for k, e in self._data.items() if key_prefix(k) == prefix]


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class FileCacheBackend:
    """
    File-based cache store:
      root/
        <prefix>/
          <sha256(key)>.bin
          <sha256(key)>.manifest.json   {key, created_at, size, sha256}

    Writes go to a temp file and are renamed into place, payload first,
    manifest last. A reader that sees a manifest whose digest does not
    match the payload treats the entry as missing.
    """

    def __init__(self, root: str | Path = CACHE_DIR):
        self.root = Path(root).expanduser().resolve()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"cannot create cache directory {self.root}: {e}") from e

    def _prefix_dir(self, prefix: str) -> Path:
        return self.root / (_UNSAFE.sub("_", prefix) or "_")

    def _paths(self, key: str) -> Tuple[Path, Path]:
        d = self._prefix_dir(key_prefix(key))
        stem = _sha256_str(key)
        return d / f"{stem}.bin", d / f"{stem}.manifest.json"

    def get(self, key: str) -> Optional[CacheEntry]:
        art, man = self._paths(key)
        if not art.exists() or not man.exists():
            return None
        manifest = json.loads(man.read_text(encoding="utf-8"))
        payload = art.read_bytes()
        if manifest.get("key") != key or manifest.get("sha256") != _sha256_bytes(payload):
            return None
        return CacheEntry(key=key, payload=payload, created_at=float(manifest.get("created_at", 0.0)))

    def set(self, entry: CacheEntry) -> None:
        art, man = self._paths(entry.key)
        art.parent.mkdir(parents=True, exist_ok=True)
        manifest = {
            "key": entry.key,
            "created_at": entry.created_at,
            "size": len(entry.payload),
            "sha256": _sha256_bytes(entry.payload),
        }
        self._atomic_write(art, entry.payload)
        self._atomic_write(man, json.dumps(manifest, sort_keys=True, indent=2).encode("utf-8"))

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        tmp = path.with_name(f"{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            tmp.write_bytes(data)
            tmp.replace(path)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

    def delete(self, key: str) -> None:
        art, man = self._paths(key)
        man.unlink(missing_ok=True)
        art.unlink(missing_ok=True)

    def entries(self, prefix: str) -> List[Tuple[str, float]]:
        d = self._prefix_dir(prefix)
        if not d.exists():
            return []
        out = []
        for man in d.glob("*.manifest.json"):
            try:
                data = json.loads(man.read_text(encoding="utf-8"))
            except (OSError, ValueError):
                continue
            key = data.get("key", "")
            if key_prefix(key) == prefix:
                out.append((key, float(data.get("created_at", 0.0))))
        return out


# ---------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------

class CacheManager:
    """
    get/set facade over a backend with per-prefix locking and retention.

    Backend failures never escape: get() reports a miss, set() reports a
    no-op, and both print a CacheError line.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        keep: int = CACHE_KEEP,
        console: Console | None = None,
    ):
        if keep < 1:
            raise ValueError("keep must be >= 1")
        self.backend = backend
        self.keep = keep
        self._console = console
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._last_commit = 0.0

    @property
    def console(self) -> Console:
        return self._console or get_console()

    def _lock_for(self, key: str) -> threading.Lock:
        prefix = key_prefix(key)
        with self._guard:
            lock = self._locks.get(prefix)
            if lock is None:
                lock = self._locks[prefix] = threading.Lock()
            return lock

    def _commit_time(self) -> float:
        # strictly increasing so "oldest committed" is well defined
        with self._guard:
            now = max(time.time(), self._last_commit + 1e-6)
            self._last_commit = now
            return now

    def get(self, key: str) -> CacheLookup:
        with self._lock_for(key):
            try:
                entry = self.backend.get(key)
            except (OSError, ValueError, CacheError) as e:
                self.console.print_cache_error("get", key, e)
                return CacheLookup(hit=False, key=key, reason=f"cache unavailable: {e}")
        if entry is None:
            return CacheLookup(hit=False, key=key, reason="cache miss")
        return CacheLookup(hit=True, key=key, reason="cache hit", payload=entry.payload)

    def set(self, key: str, payload: bytes) -> bool:
        with self._lock_for(key):
            entry = CacheEntry(key=key, payload=bytes(payload), created_at=self._commit_time())
            try:
                self.backend.set(entry)
            except (OSError, CacheError) as e:
                self.console.print_cache_error("set", key, e)
                return False
            self._evict(key_prefix(key))
        return True

    def _evict(self, prefix: str) -> None:
        try:
            entries = sorted(self.backend.entries(prefix), key=lambda e: e[1])
            for key, _created in entries[: max(0, len(entries) - self.keep)]:
                self.backend.delete(key)
                self.console.print_debug(f"cache: evicted {key}")
        except (OSError, CacheError) as e:
            self.console.print_cache_error("evict", prefix, e)
