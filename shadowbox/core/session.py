"""
Session -- ties a sandbox's control directory together

Owns the paths under <sandbox>/.shadowbox/ai/ and the per-run pipeline:

  compute changes -> attach diffs -> advance baseline -> journal -> snapshot -> render

Every operation is a no-op when tracking is disabled, so callers never
need to check the toggle themselves.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..config import Config
from ..presentation.context import render_compact, render_full, render_structured
from .baseline import BaselineTracker, ChangeHint
from .fsutil import CONTROL_DIR, IgnoreMatcher, read_json, write_json
from .journal import Event, EventType, Journal
from .sandbox import read_meta

if TYPE_CHECKING:
    from .runner import RunOutcome

logger = logging.getLogger(__name__)

CONTEXT_FORMATS = ("full", "compact", "structured")


@dataclass(frozen=True)
class ControlPaths:
    """Locations of every tracking artifact for one sandbox."""
    root: Path

    @classmethod
    def for_sandbox(cls, sandbox_root: Path) -> 'ControlPaths':
        return cls(Path(sandbox_root) / CONTROL_DIR / "ai")

    @property
    def baseline(self) -> Path:
        return self.root / "baseline"

    @property
    def index(self) -> Path:
        return self.root / "baseline-index.json"

    @property
    def session(self) -> Path:
        return self.root / "session.json"

    @property
    def journal(self) -> Path:
        return self.root / "changes.ndjson"

    @property
    def last_run(self) -> Path:
        return self.root / "last_run.json"

    @property
    def context(self) -> Path:
        return self.root / "context.md"

    @property
    def compact_context(self) -> Path:
        return self.root / "context.compact.md"

    @property
    def intent(self) -> Path:
        return self.root / "intent.md"


class Session:
    """
    Change tracking and context for one sandbox.

    Usage:
        session = Session(sandbox_root, config, agent="claude")
        session.init()
        ...
        session.record_run(outcome, ChangeHint(paths={"src/app.py"}))
        print(session.export_context("compact"))
    """

    def __init__(self, sandbox_root: Path, config: Config, agent: Optional[str] = None):
        self.sandbox_root = Path(sandbox_root)
        self.config = config
        self.tracking = config.tracking
        self.agent = agent
        self.paths = ControlPaths.for_sandbox(self.sandbox_root)
        self.tracker = BaselineTracker(
            self.sandbox_root,
            self.paths.baseline,
            self.paths.index,
            IgnoreMatcher(config.ignore),
        )
        self.journal = Journal(self.paths.journal)

    @property
    def enabled(self) -> bool:
        return self.tracking.enabled

    @property
    def source_root(self) -> Optional[str]:
        meta = read_meta(self.sandbox_root)
        return meta.source_root if meta else None

    def init(self) -> bool:
        """
        Write the session descriptor once and snapshot the baseline.

        Returns True if a new baseline was created.
        """
        if not self.enabled:
            return False
        self.paths.root.mkdir(parents=True, exist_ok=True)

        if read_json(self.paths.session, fallback=None) is None:
            write_json(self.paths.session, {
                "createdAt": datetime.now(timezone.utc).isoformat(),
                "sandboxRoot": str(self.sandbox_root),
                "sourceRoot": self.source_root,
                "agent": self.agent,
                "config": self.config.to_dict(),
            })

        if not self.tracking.baseline:
            return False
        created = self.tracker.ensure_baseline()
        if created:
            logger.info("Baseline snapshot written to %s", self.paths.baseline)
        return created

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def record_run(self, outcome: 'RunOutcome', hint: Optional[ChangeHint] = None) -> Optional[Event]:
        """Detect changes since the previous run, record them and re-render context."""
        if not self.enabled:
            return None

        index = self.tracker.load_index()
        result = self.tracker.compute_changes(index, hint)
        if self.tracking.verbose:
            self.tracker.enrich_with_diff(
                result.changes, self.tracking.max_file_bytes, self.tracking.max_diff_bytes
            )
        # Must follow diffing: the diff reads the pre-update baseline
        self.tracker.apply_updates(result.pending, index)

        for change in result.changes:
            if change.reason in ("too_large", "binary"):
                logger.warning("No diff for %s (%s)", change.path, change.reason)
            else:
                logger.debug("%s: %s", change.type.value, change.path)

        data: Dict[str, Any] = {
            "runId": outcome.run_id,
            "ok": outcome.ok,
            "interrupted": outcome.interrupted,
            "durationMs": outcome.duration_ms,
            "exits": [e.to_dict() for e in outcome.exits],
            "changes": [c.to_dict() for c in result.changes],
        }
        if self.tracking.include_outputs and outcome.outputs:
            data["outputs"] = outcome.outputs

        event = Event(type=EventType.RUN, data=data, agent=self.agent)
        if self.tracking.journal:
            self.journal.append(event)

        last_run = {"timestamp": event.timestamp, "agent": self.agent}
        last_run.update(data)
        write_json(self.paths.last_run, last_run)
        self.write_context(last_run)
        return event

    def read_last_run(self) -> Optional[Dict[str, Any]]:
        data = read_json(self.paths.last_run, fallback=None)
        return data if isinstance(data, dict) else None

    def last_run_diff(self) -> str:
        """Concatenated diffs from the last run, or a one-line reason there are none."""
        last_run = self.read_last_run()
        if not last_run:
            return "No runs recorded yet."
        diffs = [c["diff"] for c in last_run.get("changes") or [] if c.get("diff")]
        if not diffs:
            return "No diffs in last run."
        return "\n".join(d.rstrip("\n") for d in diffs) + "\n"

    # -------------------------------------------------------------------------
    # Intent notes
    # -------------------------------------------------------------------------

    def read_intent(self) -> str:
        if not self.paths.intent.exists():
            return ""
        return self.paths.intent.read_text(encoding="utf-8")

    def append_intent(self, note: str) -> Optional[Event]:
        """Append a free-form note to intent.md and the journal."""
        if not self.enabled or not self.tracking.intent_notes:
            return None
        self.paths.root.mkdir(parents=True, exist_ok=True)
        with open(self.paths.intent, "a", encoding="utf-8") as f:
            f.write(note + "\n")
        event = Event(type=EventType.INTENT, data={"note": note}, agent=self.agent)
        if self.tracking.journal:
            self.journal.append(event)
        return event

    # -------------------------------------------------------------------------
    # Apply
    # -------------------------------------------------------------------------

    def record_apply(self, target_root: Path) -> Optional[Event]:
        if not self.enabled or not self.tracking.journal:
            return None
        event = Event(type=EventType.APPLY, data={"targetRoot": str(target_root)}, agent=self.agent)
        return self.journal.append(event)

    # -------------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------------

    def write_context(self, last_run: Optional[Dict[str, Any]]) -> None:
        """Re-render context.md (and context.compact.md when enabled)."""
        self.paths.root.mkdir(parents=True, exist_ok=True)
        self.paths.context.write_text(self._render("full", last_run), encoding="utf-8")
        if self.tracking.compact.enabled:
            self.paths.compact_context.write_text(self._render("compact", last_run), encoding="utf-8")

    def export_context(self, fmt: str = "full") -> str:
        """
        Render the current context in the requested format.

        full and compact are also written back to their files.
        """
        if fmt not in CONTEXT_FORMATS:
            raise ValueError(f"Unknown context format: {fmt}. Expected one of {', '.join(CONTEXT_FORMATS)}")
        if not self.enabled:
            return ""

        last_run = self.read_last_run()
        text = self._render(fmt, last_run)
        if fmt == "full":
            self.paths.root.mkdir(parents=True, exist_ok=True)
            self.paths.context.write_text(text, encoding="utf-8")
        elif fmt == "compact":
            self.paths.root.mkdir(parents=True, exist_ok=True)
            self.paths.compact_context.write_text(text, encoding="utf-8")
        return text

    def _render(self, fmt: str, last_run: Optional[Dict[str, Any]]) -> str:
        intent = self.read_intent()
        if fmt == "structured":
            session = read_json(self.paths.session, fallback={})
            return render_structured(session if isinstance(session, dict) else {}, last_run, intent, self.agent)

        config = self.config.to_dict()
        if fmt == "compact":
            return render_compact(
                str(self.sandbox_root), self.source_root, last_run, intent,
                self.agent, config, self.tracking.compact,
            )
        return render_full(str(self.sandbox_root), self.source_root, last_run, intent, self.agent, config)
