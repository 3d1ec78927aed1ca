"""
Filesystem helpers -- walking, copying, hashing and JSON persistence

Every walk in shadowbox goes through walk_tree() with an IgnoreMatcher, so
ignore semantics are identical for sandbox creation, baseline hashing,
change detection and apply.

Paths handed to matchers and stored in indexes are always tree-relative
with forward slashes, regardless of the host separator.
"""

import hashlib
import logging
import os
import shutil
import stat
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Tuple

import orjson
import pathspec

logger = logging.getLogger(__name__)

# Private control directory, present at both the source root and the sandbox root
CONTROL_DIR = ".shadowbox"

HASH_CHUNK = 64 * 1024


class EntryKind(Enum):
    """Directory-entry kind as seen without following symlinks."""
    FILE = "file"
    DIR = "dir"
    SYMLINK = "symlink"
    OTHER = "other"


def to_posix(rel_path: str) -> str:
    """Normalize a relative path to forward slashes."""
    return rel_path.replace(os.sep, "/") if os.sep != "/" else rel_path


def entry_kind(path: Path) -> Optional[EntryKind]:
    """Classify a path with lstat. Returns None if it does not exist."""
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return None
    if stat.S_ISLNK(st.st_mode):
        return EntryKind.SYMLINK
    if stat.S_ISDIR(st.st_mode):
        return EntryKind.DIR
    if stat.S_ISREG(st.st_mode):
        return EntryKind.FILE
    return EntryKind.OTHER


class IgnoreMatcher:
    """
    Pure predicate (relative path) -> bool over glob patterns.

    Patterns use gitignore semantics: tree-relative, forward slashes,
    dot-files matched like any other name. `always` names are ignored
    at the tree root regardless of the configured patterns.
    """

    def __init__(self, patterns: Iterable[str] = (), always: Iterable[str] = (CONTROL_DIR,)):
        self.patterns = list(patterns)
        self.always = tuple(always)
        self._spec = pathspec.PathSpec.from_lines("gitignore", self.patterns)

    def __call__(self, rel_path: str) -> bool:
        rel = to_posix(rel_path).strip("/")
        if not rel or rel == ".":
            return False
        for name in self.always:
            if rel == name or rel.startswith(name + "/"):
                return True
        return self._spec.match_file(rel)

    def with_always(self, *names: str) -> "IgnoreMatcher":
        """Copy of this matcher that also always ignores the given root names."""
        return IgnoreMatcher(self.patterns, always=self.always + names)


def walk_tree(root: Path, ignore: IgnoreMatcher, base: Optional[Path] = None) -> Iterator[Tuple[str, EntryKind]]:
    """
    Stream (relative path, entry kind) for every non-ignored entry under root.

    Symlinks are reported, never followed. Ignored directories are not
    descended into. Entries are yielded parent-first in sorted order.
    """
    root = Path(root)
    base = Path(base) if base is not None else root
    try:
        entries = sorted(os.scandir(root), key=lambda e: e.name)
    except FileNotFoundError:
        return
    for entry in entries:
        rel = to_posix(os.path.relpath(entry.path, base))
        if ignore(rel):
            continue
        if entry.is_symlink():
            yield rel, EntryKind.SYMLINK
        elif entry.is_dir(follow_symlinks=False):
            yield rel, EntryKind.DIR
            yield from walk_tree(Path(entry.path), ignore, base)
        elif entry.is_file(follow_symlinks=False):
            yield rel, EntryKind.FILE
        else:
            yield rel, EntryKind.OTHER


def hash_file(path: Path) -> str:
    """SHA-1 content digest, streamed."""
    digest = hashlib.sha1()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def replace_with_symlink(target: str, link_path: Path) -> None:
    """Create link_path -> target, removing whatever was there first."""
    remove_path(link_path)
    link_path.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(target, link_path)


def copy_entry(src: Path, dest: Path, kind: EntryKind) -> None:
    """Copy a single walked entry, preserving symlinks as links."""
    if kind == EntryKind.DIR:
        if dest.is_symlink() or (dest.exists() and not dest.is_dir()):
            remove_path(dest)
        dest.mkdir(parents=True, exist_ok=True)
    elif kind == EntryKind.SYMLINK:
        replace_with_symlink(os.readlink(src), dest)
    elif kind == EntryKind.FILE:
        dest.parent.mkdir(parents=True, exist_ok=True)
        if dest.is_symlink() or dest.is_dir():
            remove_path(dest)
        shutil.copy2(src, dest)


def copy_tree(src: Path, dest: Path, ignore: IgnoreMatcher) -> int:
    """
    Copy every non-ignored entry from src into dest. Returns entries copied.

    When dest is nested inside src, the nested destination is excluded
    from the walk so the copy never recurses into itself.
    """
    src = Path(src).resolve()
    dest = Path(dest).resolve()
    dest.mkdir(parents=True, exist_ok=True)

    matcher = ignore
    if dest != src and src in dest.parents:
        matcher = ignore.with_always(to_posix(os.path.relpath(dest, src)))

    count = 0
    for rel, kind in walk_tree(src, matcher):
        if kind == EntryKind.OTHER:
            logger.debug("Skipping special file %s", rel)
            continue
        copy_entry(src / rel, dest / rel, kind)
        count += 1
    return count


def remove_path(path: Path) -> None:
    """Remove a file, symlink or directory tree. No-op if absent."""
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def read_json(path: Path, fallback: Any = None) -> Any:
    """
    Read a JSON document, falling back on a missing or corrupt file.

    Corruption is logged at WARNING; shadowbox prefers degraded history
    over refusing to continue.
    """
    path = Path(path)
    if not path.exists():
        return fallback
    try:
        return orjson.loads(path.read_bytes())
    except (orjson.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable %s: %s", path, e)
        return fallback


def write_json(path: Path, data: Any) -> None:
    """Write a pretty-printed JSON document, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))
