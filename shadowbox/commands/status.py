"""
StatusCommand -- Show the sandbox, its source and the last run
"""

from typing import List, Optional

from ..commands.base import BaseCommand
from ..core.apply import read_status
from ..core.sandbox import read_meta
from ..presentation.context import exit_label
from ..presentation.text import format_duration, truncate


class StatusCommand(BaseCommand):

    def status(self, sandbox: Optional[str] = None) -> int:
        sandbox_root = self.sandbox(sandbox)
        meta = read_meta(sandbox_root)
        lines: List[str] = [f"Sandbox: {sandbox_root}"]
        if meta:
            lines.append(f"Source: {meta.source_root}")
            lines.append(f"Created: {meta.created_at}")

        status = read_status(sandbox_root)
        if status is None:
            lines.append("Last run: none recorded yet")
        else:
            if status.last_run_ok:
                state = "ok"
            elif status.interrupted:
                state = "interrupted"
            else:
                state = "failed"
            lines.append(f"Last run: {state} in {format_duration(status.duration_ms)} at {status.last_run_at}")
            for exit_record in status.exits:
                lines.append(f"  {truncate(str(exit_record.get('name')), 40)}: {exit_label(exit_record)}")

        print("\n".join(lines))
        return 0


# =============================================================================
# Command Registration (Self-Registration Pattern)
# =============================================================================

def register_parser(subparsers):
    """Register status command parser."""
    p = subparsers.add_parser('status', help='Show sandbox and last run status')
    p.add_argument('--sandbox', metavar='PATH',
                   help='Sandbox to inspect (default: most recent)')
    return p


def handle(cli, args):
    """Handle status command dispatch."""
    return cli._status_cmd.status(sandbox=args.sandbox)
