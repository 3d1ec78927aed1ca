"""
CleanCommand -- Remove every sandbox created for this source tree
"""

from ..commands.base import BaseCommand
from ..core.sandbox import clean_sandboxes


class CleanCommand(BaseCommand):

    def clean(self) -> int:
        if clean_sandboxes(self.project_dir):
            print("Removed sandboxes.")
        else:
            print("Nothing to clean.")
        return 0


# =============================================================================
# Command Registration (Self-Registration Pattern)
# =============================================================================

def register_parser(subparsers):
    """Register clean command parser."""
    return subparsers.add_parser('clean', help='Delete all sandboxes under .shadowbox/sandboxes')


def handle(cli, args):
    """Handle clean command dispatch."""
    return cli._clean_cmd.clean()
