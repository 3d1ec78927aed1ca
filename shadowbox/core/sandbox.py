"""
Sandbox Manager -- create, register, resolve and clean sandboxes

A sandbox is a full copy of the source tree (minus ignored paths) with its
own control directory. The source tree's registry (.shadowbox/state.json)
remembers every sandbox created for it and which one was created last, so
later commands can default to it.
"""

import logging
import os
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import DEPENDENCY_DIR, Config
from .fsutil import (
    CONTROL_DIR,
    IgnoreMatcher,
    copy_tree,
    read_json,
    remove_path,
    write_json,
)

logger = logging.getLogger(__name__)

REGISTRY_FILE = "state.json"
SANDBOXES_DIR = "sandboxes"
META_FILE = "meta.json"


def sandbox_id() -> str:
    """Time-ordered id with a random suffix: <epoch-ms>-<6 hex>."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def registry_path(source_root: Path) -> Path:
    return Path(source_root) / CONTROL_DIR / REGISTRY_FILE


def meta_path(sandbox_root: Path) -> Path:
    return Path(sandbox_root) / CONTROL_DIR / META_FILE


@dataclass
class SandboxMeta:
    source_root: str
    sandbox_root: str
    created_at: str
    config: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceRoot": self.source_root,
            "sandboxRoot": self.sandbox_root,
            "createdAt": self.created_at,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SandboxMeta':
        return cls(
            source_root=data.get("sourceRoot", ""),
            sandbox_root=data.get("sandboxRoot", ""),
            created_at=data.get("createdAt", ""),
            config=data.get("config") or {},
        )


def create_sandbox(source_root: Path, config: Config, explicit_path: Optional[str] = None) -> Path:
    """
    Create (or reuse) a sandbox for source_root and register it.

    An explicit path naming an existing directory is reused as-is; anything
    else gets a fresh copy of the source tree.
    """
    source_root = Path(source_root).resolve()
    if explicit_path:
        sandbox_root = (source_root / explicit_path).resolve()
    else:
        sandbox_root = source_root / CONTROL_DIR / SANDBOXES_DIR / sandbox_id()

    if explicit_path and sandbox_root.is_dir():
        logger.info("Reusing sandbox %s", sandbox_root)
    else:
        copied = copy_tree(source_root, sandbox_root, IgnoreMatcher(config.ignore))
        logger.info("Created sandbox %s (%d entries copied)", sandbox_root, copied)
        if config.link_dependencies:
            link_dependency_dir(source_root, sandbox_root)

    meta_file = meta_path(sandbox_root)
    if not meta_file.exists():
        meta = SandboxMeta(
            source_root=str(source_root),
            sandbox_root=str(sandbox_root),
            created_at=datetime.now(timezone.utc).isoformat(),
            config=config.to_dict(),
        )
        write_json(meta_file, meta.to_dict())

    register_sandbox(source_root, sandbox_root)
    return sandbox_root


def link_dependency_dir(source_root: Path, sandbox_root: Path, name: str = DEPENDENCY_DIR) -> bool:
    """Symlink the dependency cache instead of copying it. Failure is non-fatal."""
    src = source_root / name
    dest = sandbox_root / name
    if not src.is_dir() or os.path.lexists(dest):
        return False
    try:
        os.symlink(src, dest, target_is_directory=True)
    except OSError as e:
        logger.warning("Could not link %s into sandbox: %s", name, e)
        return False
    logger.debug("Linked %s -> %s", dest, src)
    return True


def register_sandbox(source_root: Path, sandbox_root: Path) -> None:
    """Record sandbox_root as the most recent sandbox. Last writer wins."""
    path = registry_path(source_root)
    state = read_json(path, fallback={})
    if not isinstance(state, dict):
        state = {}
    sandboxes: List[str] = state.get("sandboxes") if isinstance(state.get("sandboxes"), list) else []
    if str(sandbox_root) not in sandboxes:
        sandboxes.append(str(sandbox_root))
    state.update({"lastSandbox": str(sandbox_root), "sandboxes": sandboxes})
    write_json(path, state)


def resolve_sandbox(source_root: Path, explicit_path: Optional[str] = None) -> Optional[Path]:
    """Explicit path wins, then the registry's last sandbox; None if neither."""
    source_root = Path(source_root).resolve()
    if explicit_path:
        return (source_root / explicit_path).resolve()
    state = read_json(registry_path(source_root), fallback=None)
    if isinstance(state, dict) and state.get("lastSandbox"):
        return Path(state["lastSandbox"])
    return None


def read_meta(sandbox_root: Path) -> Optional[SandboxMeta]:
    data = read_json(meta_path(sandbox_root), fallback=None)
    if not isinstance(data, dict):
        return None
    return SandboxMeta.from_dict(data)


def clean_sandboxes(source_root: Path) -> bool:
    """Delete the sandbox storage subtree. Returns False if there was nothing to delete."""
    target = Path(source_root) / CONTROL_DIR / SANDBOXES_DIR
    if not target.exists():
        return False
    remove_path(target)
    logger.info("Removed %s", target)
    return True
