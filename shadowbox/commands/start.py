"""
StartCommand -- Create a sandbox and watch it

Copies the source tree into a fresh sandbox (or reuses --sandbox), snapshots
the baseline, and re-runs the configured commands on every change until
interrupted.
"""

from typing import Any, Dict, Optional

from ..commands.base import BaseCommand
from ..core.runner import start_watching
from ..core.sandbox import create_sandbox


class StartCommand(BaseCommand):
    """Command for the live rebuild loop."""

    def start(
        self,
        sandbox: Optional[str] = None,
        parallel: Optional[bool] = None,
        restart_on_change: Optional[bool] = None,
        debounce_ms: Optional[int] = None,
    ) -> int:
        """
        Start watching a sandbox.

        Args:
            sandbox: Reuse this directory instead of creating a new sandbox
            parallel: Override the parallel setting
            restart_on_change: Override restart_on_change
            debounce_ms: Override the quiet period

        Blocks until SIGINT/SIGTERM.
        """
        overrides: Dict[str, Any] = {
            "parallel": parallel,
            "restart_on_change": restart_on_change,
            "debounce_ms": debounce_ms,
        }
        config = self._cli.load_config(overrides)

        sandbox_root = create_sandbox(self.project_dir, config, sandbox)
        print(f"Sandbox: {sandbox_root}")
        print(f"Commands: {', '.join(c.name for c in config.commands)}")
        print(f"Edit files in the sandbox; apply with: shadowbox apply --sandbox {sandbox_root}")

        def on_session_init(session):
            if session.enabled:
                print(f"Context: {session.paths.context}")

        start_watching(sandbox_root, config, on_session_init=on_session_init, agent=self.agent)
        return 0


# =============================================================================
# Command Registration (Self-Registration Pattern)
# =============================================================================

def register_parser(subparsers):
    """Register start command parser."""
    p = subparsers.add_parser('start', help='Create a sandbox and re-run commands on change')
    p.add_argument('--sandbox', metavar='PATH',
                   help='Reuse an existing sandbox directory')
    p.add_argument('--no-parallel', action='store_true',
                   help='Run commands one after another, stopping at the first failure')
    p.add_argument('--no-restart', action='store_true',
                   help='Let an active run finish instead of interrupting it on change')
    p.add_argument('--debounce', type=int, metavar='MS',
                   help='Quiet period before a run starts (default: 250)')
    return p


def handle(cli, args):
    """Handle start command dispatch."""
    return cli._start_cmd.start(
        sandbox=args.sandbox,
        parallel=False if args.no_parallel else None,
        restart_on_change=False if args.no_restart else None,
        debounce_ms=args.debounce,
    )
