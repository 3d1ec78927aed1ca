"""
Apply -- propagate the sandbox's current tree back onto its source tree

Gated by the last recorded run Status when apply_requires_success is set.
Every gate check happens before the first write, so a refused apply leaves
the target untouched.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .errors import ApplyRefusedError
from .fsutil import (
    CONTROL_DIR,
    EntryKind,
    IgnoreMatcher,
    copy_entry,
    read_json,
    walk_tree,
    write_json,
)
from .sandbox import read_meta

logger = logging.getLogger(__name__)

STATUS_FILE = "status.json"
VCS_DIR = ".git"


@dataclass
class Status:
    """Outcome of the most recent run, overwritten after every run."""
    last_run_at: str
    last_run_ok: bool
    interrupted: bool = False
    duration_ms: int = 0
    exits: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastRunAt": self.last_run_at,
            "lastRunOk": self.last_run_ok,
            "interrupted": self.interrupted,
            "durationMs": self.duration_ms,
            "exits": self.exits,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Status':
        return cls(
            last_run_at=data.get("lastRunAt", ""),
            last_run_ok=bool(data.get("lastRunOk")),
            interrupted=bool(data.get("interrupted")),
            duration_ms=int(data.get("durationMs") or 0),
            exits=list(data.get("exits") or []),
        )


def status_path(sandbox_root: Path) -> Path:
    return Path(sandbox_root) / CONTROL_DIR / STATUS_FILE


def read_status(sandbox_root: Path) -> Optional[Status]:
    data = read_json(status_path(sandbox_root), fallback=None)
    if not isinstance(data, dict):
        return None
    return Status.from_dict(data)


def write_status(sandbox_root: Path, status: Status) -> None:
    write_json(status_path(sandbox_root), status.to_dict())


def sync_tree(src_root: Path, dest_root: Path, ignore: IgnoreMatcher, prune: bool = False) -> Set[str]:
    """
    Copy every non-ignored entry of src_root onto dest_root.

    With prune, non-ignored entries of dest_root absent from src_root are
    removed child-first; a directory is only removed once it is empty, so
    ignored content inside it survives. Returns the set of synced paths.
    """
    src_root = Path(src_root)
    dest_root = Path(dest_root)
    dest_root.mkdir(parents=True, exist_ok=True)

    seen: Set[str] = set()
    for rel, kind in walk_tree(src_root, ignore):
        if kind == EntryKind.OTHER:
            continue
        seen.add(rel)
        copy_entry(src_root / rel, dest_root / rel, kind)

    if prune:
        stale = [(rel, kind) for rel, kind in walk_tree(dest_root, ignore) if rel not in seen]
        for rel, kind in reversed(stale):
            target = dest_root / rel
            if kind == EntryKind.DIR and any(target.iterdir()):
                logger.debug("Keeping %s: holds ignored entries", rel)
                continue
            if kind == EntryKind.DIR:
                target.rmdir()
            else:
                target.unlink()
            logger.debug("Pruned %s", rel)

    return seen


def apply_sandbox(
    sandbox_root: Path,
    source_root: Path,
    ignore_patterns: List[str],
    require_success: bool = True,
    prune: bool = False,
) -> Path:
    """
    Write the sandbox tree onto its recorded source root.

    Raises:
        ApplyRefusedError: require_success is set and the last run did not succeed
    """
    sandbox_root = Path(sandbox_root)
    meta = read_meta(sandbox_root)
    target_root = Path(meta.source_root) if meta and meta.source_root else Path(source_root)

    if require_success:
        status = read_status(sandbox_root)
        if status is None:
            raise ApplyRefusedError("no_status")
        if not status.last_run_ok:
            raise ApplyRefusedError("last_run_failed")

    ignore = IgnoreMatcher(ignore_patterns, always=(CONTROL_DIR, VCS_DIR))
    synced = sync_tree(sandbox_root, target_root, ignore, prune=prune)
    logger.info("Applied %d entries from %s to %s", len(synced), sandbox_root, target_root)
    return target_root
