"""
Baseline -- Content-addressed snapshot of the sandbox and change detection

The baseline is a mirror of the sandbox taken when tracking first starts,
plus an index mapping each relative path to a FileRecord (digest and size
for regular files, link target for symlinks). After every run the sandbox
is compared against the index, changes are reported, and the baseline is
advanced to match, so each change is reported exactly once.

Detection is either incremental (only the hinted paths are inspected) or
a full scan (every live path, plus index entries no longer present).
"""

import difflib
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from .fsutil import (
    EntryKind,
    IgnoreMatcher,
    copy_entry,
    copy_tree,
    entry_kind,
    hash_file,
    read_json,
    remove_path,
    to_posix,
    walk_tree,
    write_json,
)

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileRecord:
    """Index entry for one tracked path."""
    kind: str                       # "file" or "symlink"
    digest: Optional[str] = None
    size: Optional[int] = None
    target: Optional[str] = None

    @classmethod
    def of(cls, path: Path) -> Optional['FileRecord']:
        """Record for a live path, or None if absent or not trackable."""
        kind = entry_kind(path)
        try:
            if kind == EntryKind.FILE:
                return cls(kind="file", digest=hash_file(path), size=path.stat().st_size)
            if kind == EntryKind.SYMLINK:
                return cls(kind="symlink", target=os.readlink(path))
        except FileNotFoundError:
            # Removed after the lstat
            return None
        return None

    def same_content(self, other: 'FileRecord') -> bool:
        if self.kind != other.kind:
            return False
        if self.kind == "symlink":
            return self.target == other.target
        return self.digest == other.digest

    def to_dict(self) -> Dict[str, Any]:
        if self.kind == "symlink":
            return {"kind": "symlink", "target": self.target}
        return {"kind": "file", "digest": self.digest, "size": self.size}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileRecord':
        return cls(
            kind=data.get("kind", "file"),
            digest=data.get("digest"),
            size=data.get("size"),
            target=data.get("target"),
        )


@dataclass
class Change:
    """One added, modified or deleted path, optionally with a diff."""
    path: str
    type: ChangeType
    record: Optional[FileRecord] = None     # live record; prior record for deletions
    diff: Optional[str] = None
    truncated: bool = False
    reason: Optional[str] = None            # why no diff: too_large, binary, symlink

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"path": self.path, "type": self.type.value}
        if self.record is not None and self.record.kind == "file" and self.type != ChangeType.DELETED:
            d["size"] = self.record.size
        if self.diff is not None:
            d["diff"] = self.diff
            if self.truncated:
                d["truncated"] = True
        if self.reason:
            d["reason"] = self.reason
        return d


@dataclass
class ChangeHint:
    """
    Which paths the runner believes changed since the previous run.

    paths=None, or full_scan=True, requests a full scan.
    """
    paths: Optional[Set[str]] = None
    full_scan: bool = False

    @property
    def is_full(self) -> bool:
        return self.full_scan or self.paths is None


@dataclass
class PendingUpdate:
    """Baseline mutation to perform once a change has been recorded."""
    path: str
    action: str                             # "upsert" or "delete"
    record: Optional[FileRecord] = None


@dataclass
class BaselineIndex:
    files: Dict[str, FileRecord] = field(default_factory=dict)
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": {path: record.to_dict() for path, record in sorted(self.files.items())},
            "updatedAt": self.updated_at,
        }


@dataclass
class ChangeSet:
    changes: List[Change] = field(default_factory=list)
    pending: List[PendingUpdate] = field(default_factory=list)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BaselineTracker:
    """
    Detects and records changes in a sandbox relative to its baseline.

    Usage:
        tracker = BaselineTracker(sandbox_root, ai_dir / "baseline",
                                  ai_dir / "baseline-index.json", ignore)
        tracker.ensure_baseline()
        index = tracker.load_index()
        result = tracker.compute_changes(index, ChangeHint(paths={"src/a.py"}))
        tracker.enrich_with_diff(result.changes, max_file_bytes, max_diff_bytes)
        tracker.apply_updates(result.pending, index)
    """

    def __init__(self, sandbox_root: Path, baseline_root: Path, index_path: Path, ignore: IgnoreMatcher):
        self.sandbox_root = Path(sandbox_root)
        self.baseline_root = Path(baseline_root)
        self.index_path = Path(index_path)
        self.ignore = ignore

    @property
    def exists(self) -> bool:
        return self.baseline_root.is_dir()

    def ensure_baseline(self) -> bool:
        """
        Snapshot the sandbox into the baseline mirror if none exists.

        Returns True if a new baseline was created.
        """
        if self.exists:
            return False

        copied = copy_tree(self.sandbox_root, self.baseline_root, self.ignore)
        index = BaselineIndex()
        for rel, kind in walk_tree(self.baseline_root, self.ignore):
            if kind in (EntryKind.FILE, EntryKind.SYMLINK):
                record = FileRecord.of(self.baseline_root / rel)
                if record is not None:
                    index.files[rel] = record
        self._save_index(index)
        logger.debug("Baseline created with %d entries (%d tracked)", copied, len(index.files))
        return True

    def load_index(self) -> BaselineIndex:
        """Load the index. A missing or corrupt index is treated as empty."""
        data = read_json(self.index_path, fallback=None)
        if data is None:
            return BaselineIndex()
        if not isinstance(data, dict) or not isinstance(data.get("files"), dict):
            logger.warning("Baseline index %s is malformed; treating as empty", self.index_path)
            return BaselineIndex()
        files = {
            path: FileRecord.from_dict(entry)
            for path, entry in data["files"].items()
            if isinstance(entry, dict)
        }
        return BaselineIndex(files=files, updated_at=data.get("updatedAt"))

    def is_tracked_dir(self, rel_path: str) -> bool:
        """True if the baseline mirror holds a directory at rel_path."""
        return (self.baseline_root / rel_path).is_dir()

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    def compute_changes(self, index: BaselineIndex, hint: Optional[ChangeHint] = None) -> ChangeSet:
        """Compare the sandbox against the index. Does not mutate anything."""
        hint = hint or ChangeHint()
        result = ChangeSet()

        if hint.is_full:
            seen: Set[str] = set()
            for rel, kind in walk_tree(self.sandbox_root, self.ignore):
                if kind not in (EntryKind.FILE, EntryKind.SYMLINK):
                    continue
                seen.add(rel)
                self._classify(rel, index, result)
            for rel in sorted(set(index.files) - seen):
                self._classify(rel, index, result)
        else:
            for rel in sorted(_normalize_hint(hint.paths or ())):
                if self.ignore(rel):
                    continue
                self._classify(rel, index, result)

        return result

    def _classify(self, rel: str, index: BaselineIndex, result: ChangeSet) -> None:
        live = FileRecord.of(self.sandbox_root / rel)
        prior = index.files.get(rel)

        if live is None and prior is None:
            return
        if live is None:
            result.changes.append(Change(path=rel, type=ChangeType.DELETED, record=prior))
            result.pending.append(PendingUpdate(path=rel, action="delete"))
            return
        if prior is None:
            change_type = ChangeType.ADDED
        elif not live.same_content(prior):
            change_type = ChangeType.MODIFIED
        else:
            return
        result.changes.append(Change(path=rel, type=change_type, record=live))
        result.pending.append(PendingUpdate(path=rel, action="upsert", record=live))

    # -------------------------------------------------------------------------
    # Diffs
    # -------------------------------------------------------------------------

    def enrich_with_diff(self, changes: List[Change], max_file_bytes: int, max_diff_bytes: int) -> List[Change]:
        """Attach a unified diff (or the reason there is none) to each change."""
        for change in changes:
            if change.record is not None and change.record.kind != "file":
                change.reason = change.record.kind
                continue

            old_text, old_reason = ("", None)
            new_text, new_reason = ("", None)
            if change.type != ChangeType.ADDED:
                old_text, old_reason = _read_text(self.baseline_root / change.path, max_file_bytes)
            if change.type != ChangeType.DELETED:
                new_text, new_reason = _read_text(self.sandbox_root / change.path, max_file_bytes)

            reason = old_reason or new_reason
            if reason:
                change.reason = reason
                continue
            if old_text == new_text:
                continue

            patch = unified_patch(change.path, old_text, new_text)
            change.diff, change.truncated = _truncate_bytes(patch, max_diff_bytes)
        return changes

    # -------------------------------------------------------------------------
    # Advancing the baseline
    # -------------------------------------------------------------------------

    def apply_updates(self, pending: Iterable[PendingUpdate], index: BaselineIndex) -> BaselineIndex:
        """Advance the baseline mirror and index to the recorded state."""
        for update in pending:
            mirror = self.baseline_root / update.path
            if update.action == "delete":
                remove_path(mirror)
                index.files.pop(update.path, None)
                continue

            source = self.sandbox_root / update.path
            kind = entry_kind(source)
            if kind not in (EntryKind.FILE, EntryKind.SYMLINK):
                # Gone again since detection; the next scan reports it
                continue
            try:
                copy_entry(source, mirror, kind)
            except FileNotFoundError:
                continue
            index.files[update.path] = update.record

        self._save_index(index)
        return index

    def _save_index(self, index: BaselineIndex) -> None:
        index.updated_at = _now()
        write_json(self.index_path, index.to_dict())


def _normalize_hint(paths: Iterable[str]) -> Set[str]:
    normalized = set()
    for path in paths:
        rel = to_posix(str(path)).strip("/")
        if rel and rel != ".":
            normalized.add(rel)
    return normalized


def _read_text(path: Path, max_file_bytes: int):
    """Returns (text, None) or ("", reason) for too_large/binary content."""
    kind = entry_kind(path)
    if kind is None:
        return "", None
    if kind != EntryKind.FILE:
        return "", kind.value
    try:
        if path.stat().st_size > max_file_bytes:
            return "", "too_large"
        data = path.read_bytes()
    except FileNotFoundError:
        return "", None
    if b"\x00" in data:
        return "", "binary"
    return data.decode("utf-8", errors="replace"), None


def unified_patch(rel_path: str, old_text: str, new_text: str, context: int = 3) -> str:
    """Unified diff with a missing-newline marker, so the patch applies exactly."""
    lines = []
    for line in difflib.unified_diff(
        old_text.splitlines(keepends=True),
        new_text.splitlines(keepends=True),
        fromfile=f"a/{rel_path}",
        tofile=f"b/{rel_path}",
        n=context,
    ):
        if line.endswith("\n"):
            lines.append(line)
        else:
            lines.append(line + "\n\\ No newline at end of file\n")
    return "".join(lines)


def _truncate_bytes(text: str, limit: int):
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text, False
    return encoded[:limit].decode("utf-8", errors="ignore"), True
