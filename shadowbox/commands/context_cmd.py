"""
ContextCommand -- Print the last run's context

Formats:
- full: context.md (human summary plus config)
- compact: bounded diffs and output tails, for agent prompts
- structured: JSON bundle {session, lastRun, intent, agent}
"""

from typing import Optional

from ..commands.base import BaseCommand
from ..core.session import CONTEXT_FORMATS
from ..presentation.text import safe_print


class ContextCommand(BaseCommand):

    def context(self, fmt: str = "full", sandbox: Optional[str] = None) -> int:
        session = self.session(sandbox)
        if not session.enabled:
            print("Change tracking is disabled (tracking.enabled = false).")
            return 0
        safe_print(session.export_context(fmt))
        return 0


# =============================================================================
# Command Registration (Self-Registration Pattern)
# =============================================================================

COMMAND_NAME = 'context'


def register_parser(subparsers):
    """Register context command parser."""
    p = subparsers.add_parser('context', help='Show what changed in the last run')
    p.add_argument('--format', '-f', choices=CONTEXT_FORMATS, default='full',
                   help='Output format (default: full)')
    p.add_argument('--sandbox', metavar='PATH',
                   help='Sandbox to read (default: most recent)')
    return p


def handle(cli, args):
    """Handle context command dispatch."""
    return cli._context_cmd.context(fmt=args.format, sandbox=args.sandbox)
