"""
DiffCommand -- Print the diffs recorded by the last run
"""

from typing import Optional

from ..commands.base import BaseCommand
from ..presentation.text import safe_print


class DiffCommand(BaseCommand):

    def diff(self, sandbox: Optional[str] = None) -> int:
        text = self.session(sandbox).last_run_diff()
        safe_print(text, end="" if text.endswith("\n") else "\n")
        return 0


# =============================================================================
# Command Registration (Self-Registration Pattern)
# =============================================================================

def register_parser(subparsers):
    """Register diff command parser."""
    p = subparsers.add_parser('diff', help='Show diffs from the last run')
    p.add_argument('--sandbox', metavar='PATH',
                   help='Sandbox to read (default: most recent)')
    return p


def handle(cli, args):
    """Handle diff command dispatch."""
    return cli._diff_cmd.diff(sandbox=args.sandbox)
