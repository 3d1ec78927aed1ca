"""
Shadowbox -- Sandboxed live rebuilds with baseline change tracking

Edit a sandbox copy of your tree while build/test commands re-run on every
change. Each run records what changed since the last one, with diffs, so a
human or a coding agent can see exactly what happened. Apply copies the
sandbox back once the build is green.

Usage:
    shadowbox init
    shadowbox start
    shadowbox note "Switching the parser to a streaming reader"
    shadowbox context --format compact
    shadowbox diff
    shadowbox apply
    shadowbox clean
"""

__version__ = "0.1.0"

# Core layer
from .core.errors import ShadowboxError, PreconditionError, NoSandboxError, ApplyRefusedError, CommandSpawnError
from .core.fsutil import IgnoreMatcher, walk_tree, EntryKind, CONTROL_DIR
from .core.sandbox import create_sandbox, resolve_sandbox, read_meta, clean_sandboxes, SandboxMeta
from .core.apply import apply_sandbox, read_status, Status
from .core.baseline import BaselineTracker, BaselineIndex, Change, ChangeHint, ChangeType, FileRecord
from .core.journal import Journal, Event, EventType
from .core.session import Session, ControlPaths
from .core.runner import Supervisor, SandboxWatcher, OutputCapture, CommandExit, RunOutcome, start_watching

# Presentation layer
from .presentation.context import render_full, render_compact, render_structured

# Config (stays at root)
from .config import Config, ConfigManager, CommandSpec, TrackingConfig, CompactConfig, get_config

__all__ = [
    # Errors
    'ShadowboxError', 'PreconditionError', 'NoSandboxError', 'ApplyRefusedError', 'CommandSpawnError',
    # Core
    'IgnoreMatcher', 'walk_tree', 'EntryKind', 'CONTROL_DIR',
    'create_sandbox', 'resolve_sandbox', 'read_meta', 'clean_sandboxes', 'SandboxMeta',
    'apply_sandbox', 'read_status', 'Status',
    'BaselineTracker', 'BaselineIndex', 'Change', 'ChangeHint', 'ChangeType', 'FileRecord',
    'Journal', 'Event', 'EventType',
    'Session', 'ControlPaths',
    'Supervisor', 'SandboxWatcher', 'OutputCapture', 'CommandExit', 'RunOutcome', 'start_watching',
    # Presentation
    'render_full', 'render_compact', 'render_structured',
    # Config
    'Config', 'ConfigManager', 'CommandSpec', 'TrackingConfig', 'CompactConfig', 'get_config',
]
