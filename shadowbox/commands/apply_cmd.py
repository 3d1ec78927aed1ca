"""
ApplyCommand -- Copy the sandbox back onto the source tree

Refused unless the last run succeeded (apply_requires_success), unless
--force is given.
"""

from typing import Optional

from ..commands.base import BaseCommand
from ..core.apply import apply_sandbox


class ApplyCommand(BaseCommand):
    """Command for propagating sandbox changes."""

    def apply(self, sandbox: Optional[str] = None, force: bool = False, prune: bool = False) -> int:
        """
        Apply the sandbox to its source tree.

        Args:
            sandbox: Sandbox path (default: most recent)
            force: Skip the successful-run check
            prune: Also delete source paths absent from the sandbox

        Raises:
            NoSandboxError: No sandbox could be resolved
            ApplyRefusedError: The last run did not succeed
        """
        config = self.config
        session = self.session(sandbox)
        target = apply_sandbox(
            session.sandbox_root,
            self.project_dir,
            config.ignore,
            require_success=config.apply_requires_success and not force,
            prune=prune or config.prune_on_apply,
        )
        session.record_apply(target)
        print(f"Applied sandbox changes to {target}")
        return 0


# =============================================================================
# Command Registration (Self-Registration Pattern)
# =============================================================================

COMMAND_NAME = 'apply'


def register_parser(subparsers):
    """Register apply command parser."""
    p = subparsers.add_parser('apply', help='Copy sandbox changes back to the source tree')
    p.add_argument('--sandbox', metavar='PATH',
                   help='Sandbox to apply (default: most recent)')
    p.add_argument('--force', action='store_true',
                   help='Apply even if the last run failed')
    p.add_argument('--prune', action='store_true',
                   help='Delete source files that no longer exist in the sandbox')
    return p


def handle(cli, args):
    """Handle apply command dispatch."""
    return cli._apply_cmd.apply(sandbox=args.sandbox, force=args.force, prune=args.prune)
