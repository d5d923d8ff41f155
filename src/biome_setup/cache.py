# cache.py
from __future__ import annotations

import hashlib
import json
import os
import tarfile
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# The artifact cache is a key -> directory snapshot store:
#   restore(paths, key) -> hit key | None
#   save(paths, key)    -> cache id | None
#
# Entries are immutable: once a key is saved, later saves for it are no-ops,
# so the first job to populate a key wins.
#
# LocalArtifactCache layout:
#   root/
#     <sha256(key)>.tar.gz
#     <sha256(key)>.manifest.json
#
# Archive members are stored by absolute path (leading "/" stripped) and
# extracted back onto "/", so a snapshot of /hab/pkgs restores to /hab/pkgs.
# ---------------------------------------------------------------------


class ArtifactCache(Protocol):
    def restore(self, paths: Sequence[str | Path], key: str) -> Optional[str]:
        ...

    def save(self, paths: Sequence[str | Path], key: str) -> Optional[str]:
        ...


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False)


def _arcname(p: Path) -> str:
    return str(p.relative_to(p.anchor)).replace("\\", "/")


def _iter_entries(root: Path) -> Iterable[Path]:
    # deterministic traversal; symlinks are archived as links, not followed
    yield root
    if root.is_dir() and not root.is_symlink():
        for p in sorted(root.rglob("*")):
            yield p


class LocalArtifactCache:
    """Directory-backed artifact cache."""

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser().resolve()

    def artifact_path(self, key: str) -> Path:
        return self.root / f"{_sha256_str(key)}.tar.gz"

    def manifest_path(self, key: str) -> Path:
        return self.root / f"{_sha256_str(key)}.manifest.json"

    def has(self, key: str) -> bool:
        return self.artifact_path(key).exists() and self.manifest_path(key).exists()

    def restore(self, paths: Sequence[str | Path], key: str) -> Optional[str]:
        """
        Extract the snapshot stored under key back onto the filesystem.

        Returns the key on a hit, None on a miss. Only members that live under
        one of the requested paths are extracted.
        """
        if not self.has(key):
            return None

        wanted = [_arcname(Path(p).absolute()) for p in paths]

        def _selected(name: str) -> bool:
            return any(name == w or name.startswith(w + "/") for w in wanted)

        with tarfile.open(str(self.artifact_path(key)), mode="r:gz") as tar:
            members = [m for m in tar.getmembers() if _selected(m.name)]
            tar.extractall(path="/", members=members, filter="tar")

        return key

    def save(self, paths: Sequence[str | Path], key: str) -> Optional[str]:
        """
        Snapshot paths under key.

        Returns the new cache id, or None when nothing was saved
        (key already taken, or none of the paths exist).
        """
        if self.has(key):
            return None

        sources = [Path(p).absolute() for p in paths]
        existing = [p for p in sources if p.exists() or p.is_symlink()]
        if not existing:
            return None

        self.root.mkdir(parents=True, exist_ok=True)
        art = self.artifact_path(key)
        man = self.manifest_path(key)
        cache_id = _sha256_str(f"{key}:{time.time_ns()}")[:16]

        files: List[str] = []
        tmp = art.with_suffix(".tmp")
        try:
            # Build tar.gz in tmp, then atomic rename
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for src in existing:
                    for entry in _iter_entries(src):
                        name = _arcname(entry)
                        tar.add(str(entry), arcname=name, recursive=False)
                        files.append(name)

            manifest: Dict = {
                "key": key,
                "cache_id": cache_id,
                "paths": [str(p) for p in sources],
                "entries": len(files),
                "created_at_unix": int(time.time()),
            }
            tmp.replace(art)
            man.write_text(_json_dumps_stable(manifest), encoding="utf-8")
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

        return cache_id


# ---------------------------------------------------------------------
# Markers
# ---------------------------------------------------------------------

class Marker:
    """
    Zero-byte file whose existence records that a guarded cache action
    already ran in this job.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def __str__(self) -> str:
        return str(self.path)

    def exists(self) -> bool:
        return self.path.exists()

    def claim(self) -> bool:
        """Create the marker exclusively. False if someone else already did."""
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        os.close(fd)
        return True

    def touch(self) -> None:
        self.path.write_bytes(b"")

    def clear(self) -> bool:
        """Delete the marker; True if there was one."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True
