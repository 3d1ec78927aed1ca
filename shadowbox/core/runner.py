"""
Runner -- Run Supervisor, output capture and the sandbox watch loop

State machine per supervisor:

  Idle --request_run()--> Running --(done, no pending)--> Idle
                             |  ^
        request_run() while  |  |  pending_rerun cleared,
        running sets pending v  |  run again
                          Running (rerun pending)

Everything runs on one asyncio event loop; the running/pending flags need
no lock, but at most one run (and therefore one baseline writer) is ever
active. Child commands run through the shell in their own process group,
so termination reaches the whole tree: SIGTERM first, SIGKILL after
KILL_GRACE_SECONDS.

Filesystem events come from watchfiles.awatch and are coalesced by
ChangeCollector into a ChangeHint, with a quiet-period timer that resets on
every event.
"""

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import pathspec
from watchfiles import Change, awatch

from ..config import CommandSpec, Config
from ..presentation.text import format_duration
from .apply import Status, write_status
from .baseline import ChangeHint
from .errors import CommandSpawnError
from .fsutil import IgnoreMatcher, to_posix
from .session import Session

logger = logging.getLogger(__name__)

# Command output is forwarded here so it can be filtered separately
output_log = logging.getLogger("shadowbox.output")

KILL_GRACE_SECONDS = 2.0
READ_CHUNK = 64 * 1024
# An unterminated line longer than this is forwarded in pieces
MAX_LINE_BYTES = 1024 * 1024


class OutputCapture:
    """
    Per-command stdout/stderr capture, bounded in UTF-8 bytes per stream.

    When a stream exceeds max_bytes the oldest bytes are dropped and the
    command's entry is flagged truncated.
    """

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        self._outputs: Dict[str, Dict[str, Any]] = {}

    def append(self, name: str, stream: str, line: str) -> None:
        entry = self._outputs.setdefault(name, {"stdout": "", "stderr": "", "truncated": False})
        key = "stderr" if stream == "stderr" else "stdout"
        text = entry[key] + line + "\n"
        encoded = text.encode("utf-8")
        if len(encoded) > self.max_bytes:
            text = encoded[len(encoded) - self.max_bytes:].decode("utf-8", errors="ignore")
            entry["truncated"] = True
        entry[key] = text

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {name: dict(entry) for name, entry in self._outputs.items()}

    def reset(self) -> None:
        self._outputs.clear()


@dataclass
class CommandExit:
    """How one command ended. A signal-terminated command has code None."""
    name: str
    code: Optional[int]
    signal: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.code == 0

    @classmethod
    def from_returncode(cls, name: str, returncode: int) -> 'CommandExit':
        if returncode < 0:
            try:
                sig_name = signal.Signals(-returncode).name
            except ValueError:
                sig_name = str(-returncode)
            return cls(name=name, code=None, signal=sig_name)
        return cls(name=name, code=returncode)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "code": self.code, "signal": self.signal}


@dataclass
class RunOutcome:
    run_id: int
    ok: bool
    interrupted: bool
    duration_ms: int
    exits: List[CommandExit] = field(default_factory=list)
    outputs: Optional[Dict[str, Dict[str, Any]]] = None


class ChangeCollector:
    """
    Coalesces watch events into the hint for the next run.

    File-level events accumulate paths; directory-level events request a
    full scan (unless scan_all_on_dir_change is off, in which case they only
    trigger a run). The first hint taken is always a full scan, so edits
    made while nothing was watching are picked up.
    """

    def __init__(self, scan_all_on_dir_change: bool = True):
        self.scan_all_on_dir_change = scan_all_on_dir_change
        self._paths: Set[str] = set()
        self._full_scan = True

    def record_file(self, rel_path: str) -> None:
        self._paths.add(rel_path)

    def record_dir(self, rel_path: str) -> None:
        if self.scan_all_on_dir_change:
            self._full_scan = True
        else:
            logger.debug("Directory event on %s (full scan disabled)", rel_path)

    def take(self) -> ChangeHint:
        """Return the pending hint and start collecting afresh."""
        hint = ChangeHint(paths=self._paths, full_scan=self._full_scan)
        self._paths = set()
        self._full_scan = False
        return hint


class Supervisor:
    """
    Owns command execution for one sandbox.

    Usage:
        supervisor = Supervisor(sandbox_root, config, session=session, take_hint=collector.take)
        await supervisor.request_run()
    """

    def __init__(
        self,
        sandbox_root: Path,
        config: Config,
        session: Optional[Session] = None,
        take_hint: Optional[Callable[[], ChangeHint]] = None,
        grace_seconds: float = KILL_GRACE_SECONDS,
    ):
        self.sandbox_root = Path(sandbox_root)
        self.config = config
        self.session = session
        self.take_hint = take_hint
        self.grace_seconds = grace_seconds

        self.running = False
        self.pending_rerun = False
        self.run_count = 0
        self.last_outcome: Optional[RunOutcome] = None
        self._procs: List[asyncio.subprocess.Process] = []
        self._interrupted = False

        tracking = config.tracking
        self.capture = OutputCapture(tracking.max_output_bytes) if tracking.enabled and tracking.include_outputs else None

    async def request_run(self) -> None:
        """
        Run now if idle; otherwise mark a rerun pending (and interrupt the
        active run when restart_on_change is set) and return immediately.
        """
        if self.running:
            self.pending_rerun = True
            if self.config.restart_on_change:
                self.stop_current_run()
            return

        self.running = True
        try:
            while True:
                await self.run_once()
                if not self.pending_rerun:
                    break
                self.pending_rerun = False
        finally:
            self.running = False

    def stop_current_run(self) -> bool:
        """
        Signal in-flight commands without waiting for them to exit.

        Marks an active run interrupted even between sequential commands,
        so the rest of the list is skipped. Returns True if anything was
        signalled.
        """
        if self.running:
            self._interrupted = True
        alive = [p for p in self._procs if p.returncode is None]
        if not alive:
            return False
        self._interrupted = True
        for proc in alive:
            _signal_group(proc, signal.SIGTERM)
        asyncio.get_running_loop().call_later(self.grace_seconds, self._force_kill, alive)
        logger.debug("Sent SIGTERM to %d command(s)", len(alive))
        return True

    def _force_kill(self, procs: Iterable[asyncio.subprocess.Process]) -> None:
        for proc in procs:
            if proc.returncode is None:
                logger.debug("Command pid %d ignored SIGTERM; sending SIGKILL", proc.pid)
                _signal_group(proc, signal.SIGKILL)

    async def run_once(self) -> RunOutcome:
        """Execute the configured commands once and record the outcome."""
        self.run_count += 1
        run_id = self.run_count
        self._interrupted = False
        self._procs = []
        if self.capture:
            self.capture.reset()
        hint = self.take_hint() if self.take_hint else None

        logger.info("Run #%d started.", run_id)
        started = time.monotonic()
        env = dict(os.environ, SHADOWBOX="1", SHADOWBOX_SANDBOX=str(self.sandbox_root))

        try:
            if self.config.parallel:
                exits = list(await asyncio.gather(
                    *(self._run_command(command, env) for command in self.config.commands)
                ))
            else:
                exits = []
                for command in self.config.commands:
                    if self._interrupted:
                        break
                    result = await self._run_command(command, env)
                    exits.append(result)
                    if not result.ok:
                        break
        except Exception:
            for proc in self._procs:
                if proc.returncode is None:
                    _signal_group(proc, signal.SIGKILL)
            raise
        finally:
            self._procs = []

        duration_ms = int((time.monotonic() - started) * 1000)
        interrupted = self._interrupted
        ok = all(e.ok for e in exits) and not interrupted

        write_status(self.sandbox_root, Status(
            last_run_at=_utc_now(),
            last_run_ok=ok,
            interrupted=interrupted,
            duration_ms=duration_ms,
            exits=[e.to_dict() for e in exits],
        ))
        logger.info(
            "Run #%d %s in %s.",
            run_id,
            "succeeded" if ok else ("interrupted" if interrupted else "failed"),
            format_duration(duration_ms),
        )

        outcome = RunOutcome(
            run_id=run_id,
            ok=ok,
            interrupted=interrupted,
            duration_ms=duration_ms,
            exits=exits,
            outputs=self.capture.snapshot() if self.capture else None,
        )
        if self.session is not None and self.session.enabled:
            await asyncio.to_thread(self.session.record_run, outcome, hint)
        self.last_outcome = outcome
        return outcome

    async def _run_command(self, command: CommandSpec, env: Dict[str, str]) -> CommandExit:
        cwd = self.sandbox_root / command.cwd if command.cwd else self.sandbox_root
        try:
            proc = await asyncio.create_subprocess_shell(
                command.cmd,
                cwd=str(cwd),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise CommandSpawnError(command.name, e) from e
        self._procs.append(proc)

        await asyncio.gather(
            self._drain(command.name, "stdout", proc.stdout),
            self._drain(command.name, "stderr", proc.stderr),
        )
        returncode = await proc.wait()
        return CommandExit.from_returncode(command.name, returncode)

    async def _drain(self, name: str, stream: str, reader: asyncio.StreamReader) -> None:
        pending = b""
        while True:
            chunk = await reader.read(READ_CHUNK)
            if not chunk:
                break
            *lines, pending = (pending + chunk).split(b"\n")
            for raw in lines:
                self._emit(name, stream, raw)
            if len(pending) > MAX_LINE_BYTES:
                self._emit(name, stream, pending)
                pending = b""
        if pending:
            self._emit(name, stream, pending)

    def _emit(self, name: str, stream: str, raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        if not line:
            return
        if stream == "stderr":
            output_log.warning("[%s] %s", name, line)
        else:
            output_log.info("[%s] %s", name, line)
        if self.capture:
            self.capture.append(name, stream, line)


def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass  # already exited


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SandboxWatcher:
    """
    Watches a sandbox and drives its Supervisor.

    The first run starts as soon as watching begins; later runs follow
    each quiet period of debounce_ms with no further events.
    """

    def __init__(self, sandbox_root: Path, config: Config, session: Optional[Session] = None):
        self.sandbox_root = Path(sandbox_root).resolve()
        self.config = config
        self.session = session
        self.ignore = IgnoreMatcher(config.ignore)
        self.watch_spec = pathspec.PathSpec.from_lines("gitignore", config.watch)
        self.collector = ChangeCollector(config.tracking.scan_all_on_dir_change)
        self.supervisor = Supervisor(self.sandbox_root, config, session=session, take_hint=self.collector.take)
        self.failure: Optional[BaseException] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._stop: Optional[asyncio.Event] = None

    def relative(self, path: str) -> Optional[str]:
        """Sandbox-relative posix path, or None for paths outside the sandbox."""
        rel = os.path.relpath(path, self.sandbox_root)
        if rel == "." or rel.startswith(".."):
            return None
        return to_posix(rel)

    def accepts(self, change: Change, path: str) -> bool:
        """watchfiles filter: drop events on ignored paths."""
        rel = self.relative(path)
        return rel is not None and not self.ignore(rel)

    def handle_changes(self, changes: Iterable[Tuple[Change, str]]) -> bool:
        """
        Classify one batch of events into the collector.

        Returns True if anything in the batch should trigger a run.
        """
        triggered = False
        for change, path in changes:
            rel = self.relative(path)
            if rel is None or self.ignore(rel):
                continue
            if self._is_dir_event(change, path, rel):
                self.collector.record_dir(rel)
                triggered = True
            elif self.watch_spec.match_file(rel):
                self.collector.record_file(rel)
                triggered = True
        return triggered

    def _is_dir_event(self, change: Change, path: str, rel: str) -> bool:
        if change == Change.deleted:
            return self.session is not None and self.session.tracker.is_tracked_dir(rel)
        return os.path.isdir(path) and not os.path.islink(path)

    def schedule_run(self) -> None:
        """(Re)start the quiet-period timer."""
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.config.debounce_ms / 1000, self._start_run)

    def _start_run(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.supervisor.request_run())
        self._tasks.add(task)
        task.add_done_callback(self._run_done)

    def _run_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failure = exc
            self.stop()

    def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()

    async def run(self) -> None:
        """Watch until stopped (SIGINT/SIGTERM or stop()). Re-raises run failures."""
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._on_signal)

        logger.info("Watching sandbox: %s", self.sandbox_root)
        self._start_run()
        try:
            async for batch in awatch(
                self.sandbox_root,
                watch_filter=self.accepts,
                stop_event=self._stop,
                debounce=max(self.config.debounce_ms, 50),
                step=50,
            ):
                if self.handle_changes(batch):
                    self.schedule_run()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self._shutdown()

        if self.failure is not None:
            raise self.failure

    def _on_signal(self) -> None:
        logger.info("Shutting down...")
        self.stop()

    async def _shutdown(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.supervisor.pending_rerun = False
        self.supervisor.stop_current_run()
        if self._tasks:
            await asyncio.wait(list(self._tasks))


def start_watching(
    sandbox_root: Path,
    config: Config,
    on_session_init: Optional[Callable[[Session], None]] = None,
    agent: Optional[str] = None,
) -> SandboxWatcher:
    """
    Initialize tracking for the sandbox and watch it until interrupted.

    Blocks; returns the watcher once it has shut down.
    """
    session = Session(sandbox_root, config, agent=agent)
    session.init()
    if on_session_init is not None:
        on_session_init(session)

    watcher = SandboxWatcher(sandbox_root, config, session=session)
    asyncio.run(watcher.run())
    return watcher
